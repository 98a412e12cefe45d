import stripe
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.core.exceptions import (
    MalformedEventError,
    PaymentProviderError,
    ProviderNotConfiguredError,
    UnknownPriceError,
    UnsupportedEventError,
    WebhookVerificationError,
)
from backoffice.core.price_plans import PlanCatalog, plan_catalog
from backoffice.crud import payment_crud
from backoffice.models.payment import Payment, PaymentType, PlanInterval
from backoffice.schemas.subscription import SubscriptionInfo
from backoffice.schemas.webhook import (
    CREDIT_PURCHASE_TYPE,
    METADATA_VERSION,
    CheckoutMetadata,
    EventType,
    ProviderCheckoutSession,
    ProviderSubscription,
    WebhookEvent,
)
from backoffice.services.customer_service import CustomerService
from backoffice.services.payment_provider import CheckoutResult, PaymentProvider

logger = logging.getLogger(__name__)

# https://stripe.com/docs/js/appendix/supported_locales
STRIPE_LOCALES = {
    "bg", "cs", "da", "de", "el", "en", "es", "et", "fi", "fil", "fr", "hr", "hu", "id",
    "it", "ja", "ko", "lt", "lv", "ms", "mt", "nb", "nl", "pl", "pt", "ro", "ru", "sk",
    "sl", "sv", "th", "tr", "vi", "zh",
}

INTERVAL_MAP = {
    "month": PlanInterval.MONTH,
    "year": PlanInterval.YEAR,
}


def map_locale(locale: Optional[str]) -> str:
    """Application locale -> Stripe checkout locale ('zh-CN' -> 'zh'), else 'auto'"""
    if not locale:
        return "auto"
    if locale in STRIPE_LOCALES:
        return locale
    base_locale = locale.split("-")[0]
    if base_locale in STRIPE_LOCALES:
        return base_locale
    return "auto"


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def _get_period_timestamps(stripe_sub: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    """current_period_start/end live on the subscription in older API versions and on items.data[0] in newer ones"""
    start = stripe_sub.get("current_period_start")
    end = stripe_sub.get("current_period_end")
    if start or end:
        return start, end
    try:
        item = stripe_sub["items"]["data"][0]
        return item.get("current_period_start"), item.get("current_period_end")
    except (KeyError, TypeError, IndexError):
        return None, None


def _first_item(stripe_sub: Dict[str, Any]) -> Dict[str, Any]:
    items = (stripe_sub.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _map_interval(item: Dict[str, Any]) -> PlanInterval:
    interval = (item.get("plan") or {}).get("interval")
    if not interval:
        interval = ((item.get("price") or {}).get("recurring") or {}).get("interval")
    return INTERVAL_MAP.get(interval, PlanInterval.MONTH)


def _customer_id(customer: Any) -> Optional[str]:
    # The customer is either an id or an expanded object
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


class StripeService(PaymentProvider):
    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
        catalog: PlanCatalog = plan_catalog
    ):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        self.tolerance = tolerance if tolerance is not None else settings.stripe_webhook_tolerance
        self.catalog = catalog
        self.customers = CustomerService(self)
        if self.api_key:
            stripe.api_key = self.api_key
        else:
            # Don't raise during startup, outbound calls fail with 503 instead
            logger.warning("⚠️ STRIPE_SECRET_KEY not set, checkout and portal are disabled")

    async def _call(self, fn: Callable[..., Any], **params) -> Any:
        """Run a blocking Stripe SDK call off the event loop"""
        if not self.api_key:
            raise ProviderNotConfiguredError()
        try:
            return await asyncio.to_thread(fn, **params)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe {getattr(fn, '__qualname__', fn)} failed: {e}")
            raise PaymentProviderError(str(e)) from e

    async def find_customer_by_email(self, email: str) -> Optional[str]:
        customers = await self._call(stripe.Customer.list, email=email, limit=1)
        if customers.data:
            return customers.data[0].id
        return None

    async def create_customer(self, email: str, name: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"email": email}
        if name:
            params["name"] = name
        customer = await self._call(stripe.Customer.create, **params)
        return customer.id

    def _base_session_params(
        self,
        *,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: Optional[str],
        cancel_url: Optional[str],
        metadata: Dict[str, str],
        allow_promotion_codes: bool,
        locale: Optional[str]
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "success_url": success_url or f"{settings.frontend_url}/settings/billing?success=true",
            "cancel_url": cancel_url or f"{settings.frontend_url}/settings/billing?canceled=true",
            "metadata": metadata,
            "allow_promotion_codes": allow_promotion_codes,
        }
        if locale:
            params["locale"] = map_locale(locale)
        if mode == "payment":
            # One-time payments: keep metadata on the intent and issue an invoice
            params["payment_intent_data"] = {"metadata": metadata}
            params["invoice_creation"] = {"enabled": True}
        return params

    @staticmethod
    def _merge_metadata(client_metadata: Optional[Dict[str, str]], correlation: CheckoutMetadata) -> Dict[str, str]:
        # Correlation keys always win over caller-supplied ones
        merged = {str(key): str(value) for key, value in (client_metadata or {}).items()}
        merged.update(correlation.to_provider())
        return merged

    async def create_checkout(
        self,
        db: AsyncSession,
        *,
        plan_id: str,
        price_id: str,
        customer_email: str,
        user_id: str,
        user_name: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        locale: Optional[str] = None
    ) -> CheckoutResult:
        """Checkout for a subscription or lifetime plan"""
        plan = self.catalog.find_plan_by_plan_id(plan_id)
        if not plan:
            raise UnknownPriceError(f"Plan {plan_id} not found")
        price = self.catalog.find_price_in_plan(plan_id, price_id)
        if not price:
            raise UnknownPriceError(f"Price {price_id} not found in plan {plan_id}")

        customer_id = await self.customers.resolve_or_create_customer(db, customer_email, user_name)

        session_metadata = self._merge_metadata(
            metadata,
            CheckoutMetadata(
                version=METADATA_VERSION,
                user_id=user_id,
                user_name=user_name,
                plan_id=plan_id,
                price_id=price_id
            )
        )

        is_subscription = price.type == PaymentType.SUBSCRIPTION
        params = self._base_session_params(
            customer_id=customer_id,
            price_id=price_id,
            mode="subscription" if is_subscription else "payment",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=session_metadata,
            allow_promotion_codes=price.allow_promotion_code,
            locale=locale
        )
        if is_subscription:
            # subscription.created only sees metadata stored on the subscription itself
            subscription_data: Dict[str, Any] = {"metadata": session_metadata}
            if price.trial_period_days > 0:
                subscription_data["trial_period_days"] = price.trial_period_days
            params["subscription_data"] = subscription_data

        session = await self._call(stripe.checkout.Session.create, **params)
        logger.info(f"✅ Created checkout session {session.id} for user {user_id} ({plan_id})")
        return CheckoutResult(id=session.id, url=session.url)

    async def create_credit_checkout(
        self,
        db: AsyncSession,
        *,
        package_id: str,
        customer_email: str,
        user_id: str,
        user_name: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        locale: Optional[str] = None
    ) -> CheckoutResult:
        """One-time checkout for a credit package"""
        package = self.catalog.get_credit_package_by_id(package_id)
        if not package:
            raise UnknownPriceError(f"Credit package {package_id} not found")

        customer_id = await self.customers.resolve_or_create_customer(db, customer_email, user_name)

        session_metadata = self._merge_metadata(
            metadata,
            CheckoutMetadata(
                version=METADATA_VERSION,
                type=CREDIT_PURCHASE_TYPE,
                user_id=user_id,
                user_name=user_name,
                package_id=package.id,
                price_id=package.price.price_id,
                credits=str(package.credits)
            )
        )

        params = self._base_session_params(
            customer_id=customer_id,
            price_id=package.price.price_id,
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=session_metadata,
            allow_promotion_codes=package.price.allow_promotion_code,
            locale=locale
        )

        session = await self._call(stripe.checkout.Session.create, **params)
        logger.info(f"✅ Created credit checkout session {session.id} for user {user_id} ({package.id})")
        return CheckoutResult(id=session.id, url=session.url)

    async def create_portal(self, customer_id: str, return_url: Optional[str] = None, locale: Optional[str] = None) -> str:
        """Create a billing portal session for customer to manage subscription"""
        params: Dict[str, Any] = {
            "customer": customer_id,
            "return_url": return_url or f"{settings.frontend_url}/settings/billing",
        }
        if locale:
            params["locale"] = map_locale(locale)
        session = await self._call(stripe.billing_portal.Session.create, **params)
        return session.url

    async def list_subscriptions(self, db: AsyncSession, user_id: str) -> List[SubscriptionInfo]:
        """Payment records of the user, newest first"""
        payments = await payment_crud.list_by_user(db, user_id)
        return [self._to_subscription_info(payment) for payment in payments]

    @staticmethod
    def _to_subscription_info(payment: Payment) -> SubscriptionInfo:
        return SubscriptionInfo(
            id=payment.subscription_id or payment.id,
            customer_id=payment.customer_id,
            price_id=payment.price_id,
            status=payment.status,
            type=payment.type,
            interval=payment.interval,
            current_period_start=payment.period_start,
            current_period_end=payment.period_end,
            cancel_at_period_end=payment.cancel_at_period_end,
            trial_start=payment.trial_start,
            trial_end=payment.trial_end,
            created_at=payment.created_at
        )

    def verify_and_parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify the stripe-signature header, then normalize the event"""
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEventError("Payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(str(e)) from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise MalformedEventError(f"Invalid JSON payload: {e}") from e

        return self.parse_event(event)

    def parse_event(self, event: Any) -> WebhookEvent:
        """Map a raw Stripe event dict to the provider-neutral envelope"""
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise MalformedEventError("Event is missing id or type")

        event_type = event["type"]
        try:
            typed = EventType(event_type)
        except ValueError:
            raise UnsupportedEventError(event_type)

        obj = (event.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise MalformedEventError(f"Event {event['id']} has no data.object")

        try:
            if typed == EventType.CHECKOUT_SESSION_COMPLETED:
                return WebhookEvent(
                    id=event["id"],
                    type=typed,
                    created=event.get("created"),
                    session=self._to_checkout_session(obj)
                )
            return WebhookEvent(
                id=event["id"],
                type=typed,
                created=event.get("created"),
                subscription=self._to_subscription(obj)
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedEventError(f"Event {event['id']} could not be parsed: {e}") from e

    @staticmethod
    def _to_subscription(obj: Dict[str, Any]) -> ProviderSubscription:
        item = _first_item(obj)
        period_start, period_end = _get_period_timestamps(obj)
        return ProviderSubscription(
            id=obj["id"],
            customer_id=_customer_id(obj["customer"]),
            status=obj.get("status") or "",
            price_id=(item.get("price") or {}).get("id"),
            interval=_map_interval(item),
            period_start=_from_timestamp(period_start),
            period_end=_from_timestamp(period_end),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            trial_start=_from_timestamp(obj.get("trial_start")),
            trial_end=_from_timestamp(obj.get("trial_end")),
            metadata=CheckoutMetadata.model_validate(obj.get("metadata") or {})
        )

    @staticmethod
    def _to_checkout_session(obj: Dict[str, Any]) -> ProviderCheckoutSession:
        return ProviderCheckoutSession(
            id=obj["id"],
            customer_id=_customer_id(obj.get("customer")),
            mode=obj.get("mode") or "",
            amount_total=obj.get("amount_total"),
            metadata=CheckoutMetadata.model_validate(obj.get("metadata") or {})
        )


stripe_service = StripeService()


def get_payment_provider() -> PaymentProvider:
    """FastAPI dependency for the configured payment provider"""
    return stripe_service
