from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from backoffice.crud.base import CRUDBase
from backoffice.models.base import utcnow
from backoffice.models.user import User
from pydantic import BaseModel


class UserCreate(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    customer_id: Optional[str] = None


class CRUDUser(CRUDBase[User, UserCreate, BaseModel]):
    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(
            select(self.model).where(self.model.email == email)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, db: AsyncSession, customer_id: str) -> Optional[User]:
        result = await db.execute(select(self.model).where(self.model.customer_id == customer_id))
        return result.scalar_one_or_none()

    async def set_customer_id_by_email(self, db: AsyncSession, email: str, customer_id: str) -> Optional[str]:
        """Link a provider customer to the local user. Returns the user id, or None if no user has that email."""
        result = await db.execute(
            update(self.model)
            .where(self.model.email == email)
            .values(customer_id=customer_id, updated_at=utcnow())
            .returning(self.model.id)
            .execution_options(synchronize_session=False)
        )
        user_id = result.scalar_one_or_none()
        await db.commit()
        return user_id


user_crud = CRUDUser(User)
