from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_

from backoffice.crud.base import CRUDBase
from backoffice.models.base import utcnow
from backoffice.models.payment import Payment, PaymentType, PaymentStatus
from backoffice.schemas.billing import PaymentCreate, PaymentUpdate


class CRUDPayment(CRUDBase[Payment, PaymentCreate, PaymentUpdate]):
    """
    Payment Record Store.

    Writes here never commit: the reconciliation engine commits the payment
    row together with the ledger entries of the same event.
    """

    async def get_by_subscription_id(self, db: AsyncSession, subscription_id: str) -> Optional[Payment]:
        result = await db.execute(
            select(self.model).where(self.model.subscription_id == subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_session_id(self, db: AsyncSession, session_id: str) -> Optional[Payment]:
        result = await db.execute(
            select(self.model).where(self.model.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, db: AsyncSession, user_id: str) -> List[Payment]:
        """All payment records of a user, newest first"""
        result = await db.execute(
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_active_by_type(
        self,
        db: AsyncSession,
        *,
        payment_type: PaymentType,
        statuses: List[PaymentStatus]
    ) -> List[Payment]:
        result = await db.execute(
            select(self.model).where(
                and_(
                    self.model.type == payment_type,
                    self.model.status.in_(statuses)
                )
            )
        )
        return list(result.scalars().all())

    async def insert_by_subscription_id(self, db: AsyncSession, *, obj_in: PaymentCreate) -> Optional[str]:
        """Insert-if-absent keyed by subscription_id. Returns the new id, or None on duplicate."""
        return await self.insert_if_absent(
            db,
            values=obj_in.model_dump(),
            conflict_columns=["subscription_id"]
        )

    async def insert_by_session_id(self, db: AsyncSession, *, obj_in: PaymentCreate) -> Optional[str]:
        """Insert-if-absent keyed by session_id. Sessions are never updated after creation."""
        return await self.insert_if_absent(
            db,
            values=obj_in.model_dump(),
            conflict_columns=["session_id"]
        )

    async def compare_and_set_by_subscription_id(
        self,
        db: AsyncSession,
        *,
        subscription_id: str,
        expected_period_start: Optional[datetime],
        values: Dict[str, Any]
    ) -> bool:
        """
        Update the subscription row only if its period_start still equals the value
        the caller read and it has not been canceled since. Returns False when a
        concurrent writer got there first.
        """
        if expected_period_start is None:
            period_condition = self.model.period_start.is_(None)
        else:
            period_condition = self.model.period_start == expected_period_start

        result = await db.execute(
            update(self.model)
            .where(
                and_(
                    self.model.subscription_id == subscription_id,
                    period_condition,
                    self.model.status != PaymentStatus.CANCELED
                )
            )
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def set_status_by_subscription_id(
        self,
        db: AsyncSession,
        *,
        subscription_id: str,
        status: PaymentStatus
    ) -> bool:
        result = await db.execute(
            update(self.model)
            .where(self.model.subscription_id == subscription_id)
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


payment_crud = CRUDPayment(Payment)
