"""
Reconciliation of provider webhook events into local payment and credit state.

Each event is handled in one database transaction: the audit row claiming the
event id, the payment record write and any credit grants commit together or
not at all. Skips (missing metadata, unknown subscription, duplicate delivery)
are results, not exceptions; only database failures propagate.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from backoffice.core.config import settings
from backoffice.core.exceptions import ConcurrentUpdateError, MalformedEventError, UnknownPriceError
from backoffice.core.price_plans import PlanCatalog, plan_catalog
from backoffice.crud import payment_crud, stripe_webhook_crud
from backoffice.crud.stripe_webhook import StripeWebhookCreate
from backoffice.models.base import utcnow
from backoffice.models.payment import PaymentStatus, PaymentType, PlanInterval
from backoffice.schemas.billing import PaymentCreate
from backoffice.schemas.webhook import (
    METADATA_VERSION,
    EventType,
    ProviderCheckoutSession,
    ProviderSubscription,
    WebhookEvent,
)
from backoffice.services.credit_service import CreditService, credit_service
from backoffice.services.notification_service import NotificationService, notification_service
from backoffice.services.subscription_state import SubscriptionAction, Transition, decide

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    EventType.SUBSCRIPTION_CREATED,
    EventType.SUBSCRIPTION_UPDATED,
    EventType.SUBSCRIPTION_DELETED,
}

# Outcomes beyond the subscription transition actions
SKIP_DUPLICATE_EVENT = "skip_duplicate_event"
SKIP_MISSING_METADATA = "skip_missing_metadata"
SKIP_UNKNOWN_PACKAGE = "skip_unknown_package"
SKIP_SUBSCRIPTION_CHECKOUT = "skip_subscription_checkout"
ONE_TIME_PAYMENT = "one_time_payment"
CREDIT_PURCHASE = "credit_purchase"

MAX_CAS_ATTEMPTS = 3


@dataclass
class ReconciliationResult:
    action: str
    applied: bool
    reason: Optional[str] = None
    payment_id: Optional[str] = None
    credit_transaction_ids: List[str] = field(default_factory=list)


def _skip(action: str, reason: str) -> ReconciliationResult:
    return ReconciliationResult(action=action, applied=False, reason=reason)


def _check_metadata_version(event: WebhookEvent) -> None:
    """Metadata written by a different checkout builder version is still read with the current keys"""
    source = event.subscription or event.session
    version = source.metadata.version if source else None
    if version and version != METADATA_VERSION:
        logger.warning(
            f"⚠️ Event {event.id} carries metadata version {version}, expected {METADATA_VERSION}"
        )


class ReconciliationService:
    def __init__(
        self,
        ledger: CreditService = credit_service,
        notifier: NotificationService = notification_service,
        catalog: PlanCatalog = plan_catalog,
        credits_enabled: Optional[bool] = None
    ):
        self.ledger = ledger
        self.notifier = notifier
        self.catalog = catalog
        self._credits_enabled = credits_enabled

    @property
    def credits_enabled(self) -> bool:
        if self._credits_enabled is not None:
            return self._credits_enabled
        return settings.credits_enabled

    async def handle_event(self, db: AsyncSession, event: WebhookEvent) -> ReconciliationResult:
        """Apply one verified event. Commits on success, rolls back and re-raises on failure."""
        logger.info(f"🔔 Reconciling {event.type.value} {event.id}")
        _check_metadata_version(event)
        notification: Optional[Dict[str, Any]] = None

        try:
            audit_id = await stripe_webhook_crud.record_if_absent(db, obj_in=self._audit_row(event))
            if audit_id is None:
                await db.rollback()
                logger.info(f"Event {event.id} already processed, skipping")
                return _skip(SKIP_DUPLICATE_EVENT, "event already processed")

            if event.type in SUBSCRIPTION_EVENTS:
                if event.subscription is None:
                    raise MalformedEventError(f"Event {event.id} carries no subscription")
                result = await self._handle_subscription_event(db, event.type, event.subscription)
            else:
                if event.session is None:
                    raise MalformedEventError(f"Event {event.id} carries no checkout session")
                result, notification = await self._handle_checkout_completed(db, event.session)

            await stripe_webhook_crud.set_action(db, row_id=audit_id, action=result.action)
            await db.commit()
        except Exception:
            logger.exception(f"❌ Failed to reconcile event {event.id}")
            await db.rollback()
            raise

        logger.info(f"✅ Event {event.id}: {result.action} (applied={result.applied})")
        if notification:
            await self.notifier.send_payment_notification(db, **notification)
        return result

    @staticmethod
    def _audit_row(event: WebhookEvent) -> StripeWebhookCreate:
        subscription = event.subscription
        session = event.session
        return StripeWebhookCreate(
            event_id=event.id,
            event_type=event.type.value,
            customer_id=subscription.customer_id if subscription else (session.customer_id if session else None),
            subscription_id=subscription.id if subscription else None,
            session_id=session.id if session else None
        )

    # Subscription lineage

    async def _handle_subscription_event(
        self,
        db: AsyncSession,
        event_type: EventType,
        incoming: ProviderSubscription
    ) -> ReconciliationResult:
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            current = await payment_crud.get_by_subscription_id(db, incoming.id)
            transition = decide(event_type, current, incoming)

            if transition.is_skip:
                log = logger.info if transition.action in (SubscriptionAction.SKIP_DUPLICATE, SubscriptionAction.SKIP_STALE) else logger.warning
                log(f"Skipping {event_type.value} for subscription {incoming.id}: {transition.reason}")
                return _skip(transition.action.value, transition.reason)

            if transition.action == SubscriptionAction.INSERT:
                return await self._insert_subscription(db, incoming, transition)

            if transition.action == SubscriptionAction.CANCEL:
                await payment_crud.set_status_by_subscription_id(
                    db, subscription_id=incoming.id, status=transition.new_status
                )
                logger.info(f"Marked subscription {incoming.id} as canceled")
                return ReconciliationResult(action=transition.action.value, applied=True, payment_id=current.id)

            price_id = incoming.price_id or current.price_id
            period_start, period_end = incoming.period_start, incoming.period_end
            if period_start is None:
                # An event without a parseable period keeps the stored one
                period_start, period_end = current.period_start, current.period_end
            swapped = await payment_crud.compare_and_set_by_subscription_id(
                db,
                subscription_id=incoming.id,
                expected_period_start=current.period_start,
                values={
                    "price_id": price_id,
                    "interval": incoming.interval,
                    "status": transition.new_status,
                    "period_start": period_start,
                    "period_end": period_end,
                    "cancel_at_period_end": incoming.cancel_at_period_end,
                    "trial_start": incoming.trial_start,
                    "trial_end": incoming.trial_end,
                }
            )
            if not swapped:
                logger.info(f"Subscription {incoming.id} changed underneath us, re-reading (attempt {attempt})")
                continue

            granted: List[str] = []
            if transition.action == SubscriptionAction.RENEW:
                logger.info(f"Subscription {incoming.id} renewed for period starting {incoming.period_start}")
                granted = await self._grant_subscription_credits(
                    db,
                    user_id=current.user_id,
                    price_id=price_id,
                    payment_id=current.id,
                    subscription=incoming
                )
            return ReconciliationResult(
                action=transition.action.value,
                applied=True,
                payment_id=current.id,
                credit_transaction_ids=granted
            )

        raise ConcurrentUpdateError(f"Subscription {incoming.id} kept changing during {event_type.value}")

    async def _insert_subscription(
        self,
        db: AsyncSession,
        incoming: ProviderSubscription,
        transition: Transition
    ) -> ReconciliationResult:
        missing = incoming.metadata.missing("user_id")
        if not incoming.price_id:
            missing.append("price_id")
        if missing:
            logger.warning(f"⚠️ Subscription {incoming.id} is missing {', '.join(missing)}, not recorded")
            return _skip(SKIP_MISSING_METADATA, f"missing {', '.join(missing)}")

        user_id = incoming.metadata.user_id
        payment_id = await payment_crud.insert_by_subscription_id(
            db,
            obj_in=PaymentCreate(
                user_id=user_id,
                customer_id=incoming.customer_id,
                type=PaymentType.SUBSCRIPTION,
                price_id=incoming.price_id,
                status=transition.new_status,
                interval=incoming.interval,
                subscription_id=incoming.id,
                period_start=incoming.period_start,
                period_end=incoming.period_end,
                cancel_at_period_end=incoming.cancel_at_period_end,
                trial_start=incoming.trial_start,
                trial_end=incoming.trial_end
            )
        )
        if payment_id is None:
            logger.info(f"Subscription {incoming.id} was recorded concurrently, skipping")
            return _skip(SubscriptionAction.SKIP_DUPLICATE.value, "subscription already recorded")

        logger.info(f"✅ Recorded subscription {incoming.id} for user {user_id}")
        granted = await self._grant_subscription_credits(
            db,
            user_id=user_id,
            price_id=incoming.price_id,
            payment_id=payment_id,
            subscription=incoming
        )
        return ReconciliationResult(
            action=transition.action.value,
            applied=True,
            payment_id=payment_id,
            credit_transaction_ids=granted
        )

    async def _grant_subscription_credits(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        price_id: str,
        payment_id: str,
        subscription: ProviderSubscription
    ) -> List[str]:
        if not self.credits_enabled:
            return []
        try:
            transaction_id = await self.ledger.add_subscription_credits(
                db,
                user_id=user_id,
                price_id=price_id,
                payment_id=payment_id,
                subscription_id=subscription.id,
                period_start=subscription.period_start
            )
        except UnknownPriceError as e:
            logger.warning(f"⚠️ {e}, no credits granted")
            return []
        return [transaction_id] if transaction_id else []

    # Checkout sessions

    async def _handle_checkout_completed(
        self,
        db: AsyncSession,
        session: ProviderCheckoutSession
    ) -> Tuple[ReconciliationResult, Optional[Dict[str, Any]]]:
        if session.mode != "payment":
            logger.info(f"Checkout {session.id} is a {session.mode} checkout, handled by subscription events")
            return _skip(SKIP_SUBSCRIPTION_CHECKOUT, f"{session.mode} checkout"), None
        if session.is_credit_purchase:
            return await self._handle_credit_purchase(db, session), None
        return await self._handle_one_time_payment(db, session)

    async def _handle_one_time_payment(
        self,
        db: AsyncSession,
        session: ProviderCheckoutSession
    ) -> Tuple[ReconciliationResult, Optional[Dict[str, Any]]]:
        missing = session.metadata.missing("user_id", "price_id")
        if not session.customer_id:
            missing.append("customer_id")
        if missing:
            logger.warning(f"⚠️ Checkout {session.id} is missing {', '.join(missing)}, not recorded")
            return _skip(SKIP_MISSING_METADATA, f"missing {', '.join(missing)}"), None

        if await payment_crud.get_by_session_id(db, session.id):
            logger.info(f"One-time payment session {session.id} already processed")
            return _skip(SubscriptionAction.SKIP_DUPLICATE.value, "session already processed"), None

        user_id = session.metadata.user_id
        price_id = session.metadata.price_id
        payment_id = await self._insert_one_time_payment(db, session, user_id, price_id)
        if payment_id is None:
            return _skip(SubscriptionAction.SKIP_DUPLICATE.value, "session already processed"), None

        granted: List[str] = []
        if self.credits_enabled:
            try:
                transaction_id = await self.ledger.add_lifetime_credits(
                    db,
                    user_id=user_id,
                    price_id=price_id,
                    payment_id=payment_id,
                    session_id=session.id
                )
                if transaction_id:
                    granted.append(transaction_id)
            except UnknownPriceError as e:
                logger.warning(f"⚠️ {e}, no credits granted")

        notification = {
            "session_id": session.id,
            "customer_id": session.customer_id,
            "user_id": user_id,
            "amount": (session.amount_total or 0) / 100,
        }
        result = ReconciliationResult(
            action=ONE_TIME_PAYMENT,
            applied=True,
            payment_id=payment_id,
            credit_transaction_ids=granted
        )
        return result, notification

    async def _handle_credit_purchase(self, db: AsyncSession, session: ProviderCheckoutSession) -> ReconciliationResult:
        metadata = session.metadata
        missing = metadata.missing("user_id", "package_id", "credits")
        if not session.customer_id:
            missing.append("customer_id")
        if missing:
            logger.warning(f"⚠️ Credit purchase {session.id} is missing {', '.join(missing)}, not recorded")
            return _skip(SKIP_MISSING_METADATA, f"missing {', '.join(missing)}")

        package = self.catalog.get_credit_package_by_id(metadata.package_id)
        if package is None:
            logger.warning(f"⚠️ Credit package {metadata.package_id} not found, purchase {session.id} not recorded")
            return _skip(SKIP_UNKNOWN_PACKAGE, f"unknown package {metadata.package_id}")
        if metadata.credits != str(package.credits):
            logger.warning(
                f"⚠️ Session {session.id} claims {metadata.credits} credits, package {package.id} grants {package.credits}"
            )

        if await payment_crud.get_by_session_id(db, session.id):
            logger.info(f"Credit purchase session {session.id} already processed")
            return _skip(SubscriptionAction.SKIP_DUPLICATE.value, "session already processed")

        payment_id = await self._insert_one_time_payment(
            db, session, metadata.user_id, metadata.price_id or package.price.price_id
        )
        if payment_id is None:
            return _skip(SubscriptionAction.SKIP_DUPLICATE.value, "session already processed")

        transaction_id = await self.ledger.add_package_credits(
            db,
            user_id=metadata.user_id,
            package=package,
            payment_id=payment_id,
            session_id=session.id,
            amount_paid=session.amount_total
        )
        return ReconciliationResult(
            action=CREDIT_PURCHASE,
            applied=True,
            payment_id=payment_id,
            credit_transaction_ids=[transaction_id] if transaction_id else []
        )

    @staticmethod
    async def _insert_one_time_payment(
        db: AsyncSession,
        session: ProviderCheckoutSession,
        user_id: str,
        price_id: str
    ) -> Optional[str]:
        # One-time records are terminal at creation
        return await payment_crud.insert_by_session_id(
            db,
            obj_in=PaymentCreate(
                user_id=user_id,
                customer_id=session.customer_id,
                type=PaymentType.ONE_TIME,
                price_id=price_id,
                status=PaymentStatus.COMPLETED,
                interval=PlanInterval.NONE,
                session_id=session.id,
                period_start=utcnow()
            )
        )


reconciliation_service = ReconciliationService()
