from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Tuple
from datetime import datetime, timedelta
import logging

from backoffice.core.exceptions import UnknownPriceError
from backoffice.core.price_plans import CreditPackage, PlanCatalog, PricePlan, plan_catalog
from backoffice.crud import credit_transaction_crud, payment_crud
from backoffice.models.base import as_utc, utcnow
from backoffice.models.credit_transaction import CreditTransaction, CreditTransactionType
from backoffice.models.payment import Payment, PaymentStatus, PaymentType, PlanInterval
from backoffice.schemas.billing import CreditTransactionCreate

logger = logging.getLogger(__name__)


def subscription_grant_key(subscription_id: str, period_start: Optional[datetime]) -> str:
    cycle = int(as_utc(period_start).timestamp()) if period_start else "initial"
    return f"subscription:{subscription_id}:{cycle}"


def monthly_grant_key(payment_id: str, now: datetime) -> str:
    return f"monthly:{payment_id}:{now.strftime('%Y-%m')}"


class CreditService:
    """
    Credit Ledger.

    Every write is an append. Grants tied to a payment carry a grant_key so a
    retried grant is absorbed by the unique index instead of double-counting.
    None of the append methods commit; the caller owns the transaction.
    """

    def __init__(self, catalog: PlanCatalog = plan_catalog):
        self.catalog = catalog

    async def append_transaction(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        amount: int,
        type: CreditTransactionType,
        description: Optional[str] = None,
        payment_id: Optional[str] = None,
        expire_days: Optional[int] = None,
        grant_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[str]:
        """Append one ledger entry. Returns the new id, or None if grant_key was already used."""
        now = now or utcnow()
        expire_at = now + timedelta(days=expire_days) if expire_days else None

        transaction_id = await credit_transaction_crud.append(
            db,
            obj_in=CreditTransactionCreate(
                user_id=user_id,
                amount=amount,
                type=type,
                description=description,
                payment_id=payment_id,
                grant_key=grant_key,
                expire_at=expire_at
            )
        )
        if transaction_id is None:
            logger.info(f"Credit grant {grant_key} already applied, skipping")
        else:
            logger.info(f"✅ Appended {type.value} of {amount} credits for user {user_id}")
        return transaction_id

    async def get_balance(self, db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> int:
        """Live sum of non-expired entries; there is no stored balance to drift"""
        return await credit_transaction_crud.sum_unexpired(db, user_id, now or utcnow())

    async def list_expiring_soon(
        self,
        db: AsyncSession,
        user_id: str,
        within_days: int,
        now: Optional[datetime] = None
    ) -> List[CreditTransaction]:
        return await credit_transaction_crud.list_expiring_within(db, user_id, now or utcnow(), within_days)

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[CreditTransaction], int]:
        return await credit_transaction_crud.list_by_user(db, user_id, skip=skip, limit=limit)

    def _plan_for_price(self, price_id: str) -> PricePlan:
        plan = self.catalog.find_plan_by_price_id(price_id)
        if plan is None:
            raise UnknownPriceError(f"Price {price_id} is not in the plan catalog")
        return plan

    async def add_subscription_credits(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        price_id: str,
        payment_id: str,
        subscription_id: str,
        period_start: Optional[datetime]
    ) -> Optional[str]:
        """Grant the plan's allotment for one billing period of a subscription"""
        plan = self._plan_for_price(price_id)
        if not plan.credits:
            logger.info(f"Plan {plan.id} carries no credits")
            return None

        cycle = as_utc(period_start).strftime("%Y-%m-%d") if period_start else "first period"
        return await self.append_transaction(
            db,
            user_id=user_id,
            amount=plan.credits.amount,
            type=CreditTransactionType.SUBSCRIPTION_GRANT,
            description=f"+{plan.credits.amount} credits for {plan.name} subscription ({cycle})",
            payment_id=payment_id,
            expire_days=plan.credits.expire_days,
            grant_key=subscription_grant_key(subscription_id, period_start)
        )

    async def add_lifetime_credits(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        price_id: str,
        payment_id: str,
        session_id: str
    ) -> Optional[str]:
        """First monthly allotment of a lifetime plan, granted at purchase"""
        plan = self._plan_for_price(price_id)
        if not plan.is_lifetime or not plan.credits:
            logger.info(f"Plan {plan.id} has no lifetime credit allotment")
            return None

        return await self.append_transaction(
            db,
            user_id=user_id,
            amount=plan.credits.amount,
            type=CreditTransactionType.LIFETIME_GRANT,
            description=f"+{plan.credits.amount} credits for {plan.name} plan",
            payment_id=payment_id,
            expire_days=plan.credits.expire_days,
            grant_key=f"lifetime:{session_id}"
        )

    async def add_package_credits(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        package: CreditPackage,
        payment_id: str,
        session_id: str,
        amount_paid: Optional[int] = None
    ) -> Optional[str]:
        """Credits bought as a one-time package. amount_paid is in the smallest currency unit."""
        paid = (amount_paid or 0) / 100
        return await self.append_transaction(
            db,
            user_id=user_id,
            amount=package.credits,
            type=CreditTransactionType.PURCHASE_PACKAGE,
            description=f"+{package.credits} credits for package {package.id} (${paid:,.2f})",
            payment_id=payment_id,
            expire_days=package.expire_days,
            grant_key=f"purchase:{session_id}"
        )

    async def distribute_monthly_credits(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Monthly allotment for yearly subscribers and lifetime members.

        Subscription events only fire once a year for yearly plans, so these
        members are topped up here. One grant per payment record per calendar
        month; the month in which the current period started is skipped since
        the webhook already granted it. Re-running for the same month is a no-op.
        """
        now = now or utcnow()
        yearly = await payment_crud.list_active_by_type(
            db,
            payment_type=PaymentType.SUBSCRIPTION,
            statuses=[PaymentStatus.ACTIVE, PaymentStatus.TRIALING]
        )
        lifetime = await payment_crud.list_active_by_type(
            db,
            payment_type=PaymentType.ONE_TIME,
            statuses=[PaymentStatus.COMPLETED]
        )
        candidates: List[Payment] = [p for p in yearly if p.interval == PlanInterval.YEAR] + lifetime

        granted = 0
        try:
            for payment in candidates:
                plan = self.catalog.find_plan_by_price_id(payment.price_id)
                if plan is None or not plan.credits:
                    continue
                if payment.type == PaymentType.ONE_TIME and not plan.is_lifetime:
                    continue

                started = as_utc(payment.period_start)
                if started and (started.year, started.month) == (now.year, now.month):
                    continue

                transaction_id = await self.append_transaction(
                    db,
                    user_id=payment.user_id,
                    amount=plan.credits.amount,
                    type=CreditTransactionType.MONTHLY_GRANT,
                    description=f"+{plan.credits.amount} monthly credits for {plan.name} plan ({now.strftime('%Y-%m')})",
                    payment_id=payment.id,
                    expire_days=plan.credits.expire_days,
                    grant_key=monthly_grant_key(payment.id, now),
                    now=now
                )
                if transaction_id:
                    granted += 1
            await db.commit()
        except Exception:
            logger.exception("❌ Monthly credit distribution failed")
            await db.rollback()
            raise

        logger.info(f"✅ Distributed monthly credits to {granted} of {len(candidates)} members")
        return granted


credit_service = CreditService()
