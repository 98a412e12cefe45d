"""Shared fixtures: in-memory database, test catalog, event factories."""

import hashlib
import hmac
import itertools
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backoffice.core.config import Settings
from backoffice.core.price_plans import build_catalog
from backoffice.models import Base
from backoffice.schemas.webhook import (
    CheckoutMetadata,
    EventType,
    ProviderCheckoutSession,
    ProviderSubscription,
    WebhookEvent,
)
from backoffice.models.payment import PlanInterval
from backoffice.services.credit_service import CreditService
from backoffice.services.reconciliation_service import ReconciliationService

WEBHOOK_SECRET = "whsec_test_secret"

PERIOD_1 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def test_settings():
    return Settings(
        stripe_price_pro_monthly="price_pro_monthly",
        stripe_price_pro_yearly="price_pro_yearly",
        stripe_price_lifetime="price_lifetime",
        stripe_price_credits_basic="price_credits_basic",
        stripe_price_credits_standard="price_credits_standard",
        stripe_price_credits_premium="",
        stripe_price_credits_enterprise="",
    )


@pytest.fixture
def catalog(test_settings):
    return build_catalog(test_settings)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(catalog):
    return CreditService(catalog=catalog)


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send_payment_notification = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def reconciler(ledger, notifier, catalog):
    return ReconciliationService(ledger=ledger, notifier=notifier, catalog=catalog, credits_enabled=True)


_event_ids = itertools.count(1)


def _next_event_id() -> str:
    return f"evt_{next(_event_ids):06d}"


@pytest.fixture
def subscription_event():
    """Factory for verified subscription events"""
    def _make(
        event_type: EventType = EventType.SUBSCRIPTION_CREATED,
        *,
        subscription_id: str = "sub_123",
        status: str = "active",
        price_id: Optional[str] = "price_pro_monthly",
        period_start: Optional[datetime] = PERIOD_1,
        cancel_at_period_end: bool = False,
        interval: PlanInterval = PlanInterval.MONTH,
        user_id: Optional[str] = "user_1",
        event_id: Optional[str] = None,
    ) -> WebhookEvent:
        return WebhookEvent(
            id=event_id or _next_event_id(),
            type=event_type,
            subscription=ProviderSubscription(
                id=subscription_id,
                customer_id="cus_123",
                status=status,
                price_id=price_id,
                interval=interval,
                period_start=period_start,
                period_end=period_start + timedelta(days=30) if period_start else None,
                cancel_at_period_end=cancel_at_period_end,
                metadata=CheckoutMetadata(user_id=user_id) if user_id else CheckoutMetadata(),
            ),
        )
    return _make


@pytest.fixture
def checkout_event():
    """Factory for verified checkout.session.completed events"""
    def _make(
        *,
        session_id: str = "cs_123",
        mode: str = "payment",
        amount_total: Optional[int] = 19900,
        metadata: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> WebhookEvent:
        return WebhookEvent(
            id=event_id or _next_event_id(),
            type=EventType.CHECKOUT_SESSION_COMPLETED,
            session=ProviderCheckoutSession(
                id=session_id,
                customer_id="cus_123",
                mode=mode,
                amount_total=amount_total,
                metadata=CheckoutMetadata.model_validate(metadata or {}),
            ),
        )
    return _make


@pytest.fixture
def sign_payload():
    """Build a stripe-signature header the way Stripe does"""
    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp if timestamp is not None else int(time.time())
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"
    return _sign
