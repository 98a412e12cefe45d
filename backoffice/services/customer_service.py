from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from backoffice.crud import user_crud
from backoffice.services.payment_provider import PaymentProvider

logger = logging.getLogger(__name__)


class CustomerService:
    """Customer Directory: local user <-> provider customer id"""

    def __init__(self, provider: PaymentProvider):
        self.provider = provider

    async def resolve_or_create_customer(self, db: AsyncSession, email: str, name: Optional[str] = None) -> str:
        """
        Return the provider customer for this email, creating it on first checkout.
        An existing customer whose local link went missing (e.g. after a user table
        restore) is re-linked to the local user.
        """
        customer_id = await self.provider.find_customer_by_email(email)
        if customer_id:
            linked = await user_crud.get_by_customer_id(db, customer_id)
            if linked is None:
                logger.info(f"Customer {customer_id} has no local link, re-linking")
                await self._link(db, email, customer_id)
            return customer_id

        customer_id = await self.provider.create_customer(email, name)
        logger.info(f"✅ Created provider customer {customer_id}")
        await self._link(db, email, customer_id)
        return customer_id

    async def _link(self, db: AsyncSession, email: str, customer_id: str) -> None:
        user_id = await user_crud.set_customer_id_by_email(db, email, customer_id)
        if user_id is None:
            logger.warning(f"⚠️ No local user for customer {customer_id}, link not stored")
        else:
            logger.info(f"Linked customer {customer_id} to user {user_id}")
