from typing import List, Optional, Tuple
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func

from backoffice.crud.base import CRUDBase
from backoffice.models.credit_transaction import CreditTransaction
from backoffice.schemas.billing import CreditTransactionCreate
from pydantic import BaseModel


class CRUDCreditTransaction(CRUDBase[CreditTransaction, CreditTransactionCreate, BaseModel]):
    """Append-only ledger storage. There is no update or delete path."""

    async def append(self, db: AsyncSession, *, obj_in: CreditTransactionCreate) -> Optional[str]:
        """
        Append one entry. Entries carrying a grant_key are written insert-if-absent,
        so a replayed grant returns None instead of a second row.
        """
        values = obj_in.model_dump()
        values["type"] = obj_in.type.value
        return await self.insert_if_absent(db, values=values, conflict_columns=["grant_key"])

    async def get_by_grant_key(self, db: AsyncSession, grant_key: str) -> Optional[CreditTransaction]:
        result = await db.execute(select(self.model).where(self.model.grant_key == grant_key))
        return result.scalar_one_or_none()

    async def sum_unexpired(self, db: AsyncSession, user_id: str, now: datetime) -> int:
        """SUM(amount) over entries that never expire or expire after `now`"""
        result = await db.execute(
            select(func.coalesce(func.sum(self.model.amount), 0)).where(
                and_(
                    self.model.user_id == user_id,
                    or_(self.model.expire_at.is_(None), self.model.expire_at > now)
                )
            )
        )
        return int(result.scalar() or 0)

    async def list_expiring_within(
        self,
        db: AsyncSession,
        user_id: str,
        now: datetime,
        within_days: int
    ) -> List[CreditTransaction]:
        """Positive entries that are still valid but expire in the next `within_days` days"""
        horizon = now + timedelta(days=within_days)
        result = await db.execute(
            select(self.model)
            .where(
                and_(
                    self.model.user_id == user_id,
                    self.model.amount > 0,
                    self.model.expire_at.is_not(None),
                    self.model.expire_at > now,
                    self.model.expire_at <= horizon
                )
            )
            .order_by(self.model.expire_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_user(
        self,
        db: AsyncSession,
        user_id: str,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[CreditTransaction], int]:
        return await self.get_multi(
            db,
            skip=skip,
            limit=limit,
            filters={"user_id": user_id},
            order_by="created_at",
            order_desc=True
        )


credit_transaction_crud = CRUDCreditTransaction(CreditTransaction)
