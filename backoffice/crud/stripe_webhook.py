from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional

from backoffice.crud.base import CRUDBase
from backoffice.models.base import utcnow
from backoffice.models.stripe_webhook import StripeWebhook
from pydantic import BaseModel


class StripeWebhookCreate(BaseModel):
    event_id: str
    event_type: str
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    session_id: Optional[str] = None


class CRUDStripeWebhook(CRUDBase[StripeWebhook, StripeWebhookCreate, BaseModel]):
    async def get_by_event_id(self, db: AsyncSession, event_id: str) -> Optional[StripeWebhook]:
        result = await db.execute(select(self.model).where(self.model.event_id == event_id))
        return result.scalar_one_or_none()

    async def record_if_absent(self, db: AsyncSession, *, obj_in: StripeWebhookCreate) -> Optional[str]:
        """Claim an event id inside the caller's transaction. None means the event was already handled."""
        return await self.insert_if_absent(db, values=obj_in.model_dump(), conflict_columns=["event_id"])

    async def set_action(self, db: AsyncSession, *, row_id: str, action: str) -> None:
        now = utcnow()
        await db.execute(
            update(self.model)
            .where(self.model.id == row_id)
            .values(action=action, processed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )


stripe_webhook_crud = CRUDStripeWebhook(StripeWebhook)
