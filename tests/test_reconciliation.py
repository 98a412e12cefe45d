import logging
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from backoffice.core.exceptions import ConcurrentUpdateError, MalformedEventError
from backoffice.crud import credit_transaction_crud, payment_crud, stripe_webhook_crud
from backoffice.models import CreditTransaction, Payment, StripeWebhook
from backoffice.models.payment import PaymentStatus, PaymentType
from backoffice.schemas.webhook import EventType, WebhookEvent
from backoffice.services.credit_service import subscription_grant_key
from backoffice.services.reconciliation_service import (
    CREDIT_PURCHASE,
    ONE_TIME_PAYMENT,
    SKIP_DUPLICATE_EVENT,
    SKIP_MISSING_METADATA,
    SKIP_SUBSCRIPTION_CHECKOUT,
    SKIP_UNKNOWN_PACKAGE,
    ReconciliationService,
)

JAN = datetime(2026, 1, 1, tzinfo=timezone.utc)
FEB = datetime(2026, 2, 1, tzinfo=timezone.utc)

CREDIT_METADATA = {
    "type": "credit_purchase",
    "userId": "user_1",
    "packageId": "standard",
    "priceId": "price_credits_standard",
    "credits": "200",
    "metadataVersion": "1",
}

LIFETIME_METADATA = {
    "userId": "user_1",
    "planId": "lifetime",
    "priceId": "price_lifetime",
    "metadataVersion": "1",
}


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


# Subscription lineage

@pytest.mark.asyncio
async def test_created_inserts_record_and_grants(db, reconciler, subscription_event):
    result = await reconciler.handle_event(db, subscription_event())

    assert result.action == "insert"
    assert result.applied
    assert len(result.credit_transaction_ids) == 1

    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.id == result.payment_id
    assert payment.user_id == "user_1"
    assert payment.type == PaymentType.SUBSCRIPTION
    assert payment.status == PaymentStatus.ACTIVE
    assert await reconciler.ledger.get_balance(db, "user_1", now=JAN) == 1000


@pytest.mark.asyncio
async def test_replayed_event_id_is_skipped(db, reconciler, subscription_event):
    event = subscription_event(event_id="evt_replayed")

    await reconciler.handle_event(db, event)
    replay = await reconciler.handle_event(db, event)

    assert replay.action == SKIP_DUPLICATE_EVENT
    assert not replay.applied
    assert await _count(db, Payment) == 1
    assert await _count(db, CreditTransaction) == 1
    assert await _count(db, StripeWebhook) == 1


@pytest.mark.asyncio
async def test_created_twice_with_new_event_id_is_skipped(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())
    second = await reconciler.handle_event(db, subscription_event())

    assert second.action == "skip_duplicate"
    assert await _count(db, Payment) == 1
    assert await _count(db, CreditTransaction) == 1
    assert await _count(db, StripeWebhook) == 2


@pytest.mark.asyncio
async def test_cancel_flag_flip_grants_nothing(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())
    result = await reconciler.handle_event(
        db, subscription_event(EventType.SUBSCRIPTION_UPDATED, cancel_at_period_end=True)
    )

    assert result.action == "update"
    assert result.credit_transaction_ids == []
    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.cancel_at_period_end is True
    assert await _count(db, CreditTransaction) == 1


@pytest.mark.asyncio
async def test_period_advance_grants_once(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())
    renewal = subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB)

    result = await reconciler.handle_event(db, renewal)
    assert result.action == "renew"
    assert len(result.credit_transaction_ids) == 1
    assert await credit_transaction_crud.get_by_grant_key(db, subscription_grant_key("sub_123", FEB)) is not None

    # Same event redelivered, and the same period reported by a later event
    assert (await reconciler.handle_event(db, renewal)).action == SKIP_DUPLICATE_EVENT
    again = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))
    assert again.action == "update"

    assert await _count(db, CreditTransaction) == 2
    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.period_start.replace(tzinfo=timezone.utc) == FEB


@pytest.mark.asyncio
async def test_renewal_while_past_due_grants_nothing(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())
    result = await reconciler.handle_event(
        db, subscription_event(EventType.SUBSCRIPTION_UPDATED, status="past_due", period_start=FEB)
    )

    assert result.action == "update"
    assert await _count(db, CreditTransaction) == 1
    assert (await payment_crud.get_by_subscription_id(db, "sub_123")).status == PaymentStatus.PAST_DUE


@pytest.mark.asyncio
async def test_stale_update_is_ignored(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event(period_start=FEB))
    result = await reconciler.handle_event(
        db, subscription_event(EventType.SUBSCRIPTION_UPDATED, status="past_due", period_start=JAN)
    )

    assert result.action == "skip_stale"
    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.status == PaymentStatus.ACTIVE
    assert payment.period_start.replace(tzinfo=timezone.utc) == FEB


@pytest.mark.asyncio
async def test_update_for_unknown_subscription_is_skipped(db, reconciler, subscription_event):
    event = subscription_event(EventType.SUBSCRIPTION_UPDATED, subscription_id="sub_never_seen")

    result = await reconciler.handle_event(db, event)

    assert result.action == "skip_unknown"
    assert not result.applied
    assert await _count(db, Payment) == 0
    audit = await stripe_webhook_crud.get_by_event_id(db, event.id)
    assert audit.action == "skip_unknown"
    assert audit.subscription_id == "sub_never_seen"
    assert audit.processed_at is not None


@pytest.mark.asyncio
async def test_delete_keeps_row_as_canceled(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())

    deleted = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_DELETED, status="canceled"))
    assert deleted.action == "cancel"

    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.status == PaymentStatus.CANCELED
    assert await _count(db, Payment) == 1

    late_update = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))
    assert late_update.action == "skip_terminal"
    assert (await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_DELETED))).action == "skip_duplicate"
    assert await _count(db, CreditTransaction) == 1


@pytest.mark.asyncio
async def test_delete_for_unknown_subscription_is_skipped(db, reconciler, subscription_event):
    result = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_DELETED))

    assert result.action == "skip_unknown"
    assert await _count(db, Payment) == 0


@pytest.mark.asyncio
async def test_created_without_user_is_skipped(db, reconciler, subscription_event):
    result = await reconciler.handle_event(db, subscription_event(user_id=None))

    assert result.action == SKIP_MISSING_METADATA
    assert "user_id" in result.reason
    assert await _count(db, Payment) == 0
    assert await _count(db, StripeWebhook) == 1


@pytest.mark.asyncio
async def test_unknown_price_records_payment_without_credits(db, reconciler, subscription_event):
    result = await reconciler.handle_event(db, subscription_event(price_id="price_not_in_catalog"))

    assert result.action == "insert"
    assert result.credit_transaction_ids == []
    assert await _count(db, Payment) == 1
    assert await _count(db, CreditTransaction) == 0


@pytest.mark.asyncio
async def test_credits_disabled_records_without_grants(db, ledger, notifier, catalog, subscription_event):
    reconciler = ReconciliationService(ledger=ledger, notifier=notifier, catalog=catalog, credits_enabled=False)

    await reconciler.handle_event(db, subscription_event())
    await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))

    assert await _count(db, Payment) == 1
    assert await _count(db, CreditTransaction) == 0


@pytest.mark.asyncio
async def test_lost_compare_and_set_rereads_and_grants_once(db, reconciler, subscription_event, monkeypatch):
    created = await reconciler.handle_event(db, subscription_event())
    await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))

    # A second worker read the row before the renewal above was committed
    stale = SimpleNamespace(
        id=created.payment_id,
        user_id="user_1",
        price_id="price_pro_monthly",
        status=PaymentStatus.ACTIVE,
        period_start=JAN,
    )
    real_get = payment_crud.get_by_subscription_id
    calls = []

    async def racing_get(db, subscription_id):
        calls.append(subscription_id)
        if len(calls) == 1:
            return stale
        return await real_get(db, subscription_id)

    monkeypatch.setattr(payment_crud, "get_by_subscription_id", racing_get)

    result = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))

    assert len(calls) == 2
    assert result.action == "update"
    assert result.credit_transaction_ids == []
    assert await _count(db, CreditTransaction) == 2


@pytest.mark.asyncio
async def test_compare_and_set_gives_up_and_rolls_back(db, reconciler, subscription_event, monkeypatch):
    created = await reconciler.handle_event(db, subscription_event(period_start=FEB))
    stale = SimpleNamespace(
        id=created.payment_id,
        user_id="user_1",
        price_id="price_pro_monthly",
        status=PaymentStatus.ACTIVE,
        period_start=JAN,
    )

    async def always_stale(db, subscription_id):
        return stale

    monkeypatch.setattr(payment_crud, "get_by_subscription_id", always_stale)
    event = subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=datetime(2026, 3, 1, tzinfo=timezone.utc))

    with pytest.raises(ConcurrentUpdateError):
        await reconciler.handle_event(db, event)

    # Nothing from the failed event survives, so the provider's retry is processed normally
    assert await stripe_webhook_crud.get_by_event_id(db, event.id) is None
    assert await _count(db, CreditTransaction) == 1


@pytest.mark.asyncio
async def test_cancel_during_renewal_stays_canceled(db, reconciler, subscription_event, monkeypatch):
    created = await reconciler.handle_event(db, subscription_event())

    # The renewal worker read the row before the cancellation below was committed
    stale = SimpleNamespace(
        id=created.payment_id,
        user_id="user_1",
        price_id="price_pro_monthly",
        status=PaymentStatus.ACTIVE,
        period_start=JAN,
    )
    await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_DELETED, status="canceled"))

    real_get = payment_crud.get_by_subscription_id
    calls = []

    async def racing_get(db, subscription_id):
        calls.append(subscription_id)
        if len(calls) == 1:
            return stale
        return await real_get(db, subscription_id)

    monkeypatch.setattr(payment_crud, "get_by_subscription_id", racing_get)

    result = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))

    assert len(calls) == 2
    assert result.action == "skip_terminal"
    payment = await real_get(db, "sub_123")
    assert payment.status == PaymentStatus.CANCELED
    assert payment.period_start.replace(tzinfo=timezone.utc) == JAN
    assert await _count(db, CreditTransaction) == 1


@pytest.mark.asyncio
async def test_update_without_period_keeps_stored_period(db, reconciler, subscription_event):
    await reconciler.handle_event(db, subscription_event())

    result = await reconciler.handle_event(
        db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=None, cancel_at_period_end=True)
    )

    assert result.action == "update"
    payment = await payment_crud.get_by_subscription_id(db, "sub_123")
    assert payment.period_start.replace(tzinfo=timezone.utc) == JAN
    assert payment.period_end is not None
    assert payment.cancel_at_period_end is True

    # The next cycle is still recognised as a renewal
    renewal = await reconciler.handle_event(db, subscription_event(EventType.SUBSCRIPTION_UPDATED, period_start=FEB))
    assert renewal.action == "renew"
    assert await _count(db, CreditTransaction) == 2


@pytest.mark.asyncio
async def test_unknown_metadata_version_is_logged_and_processed(db, reconciler, checkout_event, caplog):
    caplog.set_level(logging.WARNING, logger="backoffice.services.reconciliation_service")

    await reconciler.handle_event(db, checkout_event(session_id="cs_v1", metadata=LIFETIME_METADATA))
    assert "metadata version" not in caplog.text

    result = await reconciler.handle_event(
        db, checkout_event(session_id="cs_v7", metadata=dict(LIFETIME_METADATA, metadataVersion="7"))
    )

    assert result.action == ONE_TIME_PAYMENT
    assert "metadata version 7" in caplog.text
    assert await _count(db, Payment) == 2


@pytest.mark.asyncio
async def test_event_without_object_is_malformed(db, reconciler):
    event = WebhookEvent(id="evt_empty", type=EventType.SUBSCRIPTION_UPDATED)

    with pytest.raises(MalformedEventError):
        await reconciler.handle_event(db, event)

    assert await _count(db, StripeWebhook) == 0


# Checkout sessions

@pytest.mark.asyncio
async def test_credit_purchase_grants_package(db, reconciler, notifier, checkout_event):
    result = await reconciler.handle_event(db, checkout_event(amount_total=1490, metadata=CREDIT_METADATA))

    assert result.action == CREDIT_PURCHASE
    payment = await payment_crud.get_by_session_id(db, "cs_123")
    assert payment.type == PaymentType.ONE_TIME
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.price_id == "price_credits_standard"

    grant = await credit_transaction_crud.get_by_grant_key(db, "purchase:cs_123")
    assert grant.amount == 200
    assert grant.payment_id == payment.id
    notifier.send_payment_notification.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_credit_checkout_grants_once(db, reconciler, checkout_event):
    await reconciler.handle_event(db, checkout_event(metadata=CREDIT_METADATA))
    second = await reconciler.handle_event(db, checkout_event(metadata=CREDIT_METADATA))

    assert second.action == "skip_duplicate"
    assert await _count(db, Payment) == 1
    assert await _count(db, CreditTransaction) == 1
    assert await reconciler.ledger.get_balance(db, "user_1") == 200


@pytest.mark.asyncio
async def test_credit_purchase_uses_catalog_amount(db, reconciler, checkout_event):
    tampered = dict(CREDIT_METADATA, credits="5000")

    await reconciler.handle_event(db, checkout_event(metadata=tampered))

    assert await reconciler.ledger.get_balance(db, "user_1") == 200


@pytest.mark.asyncio
async def test_credit_purchase_for_unknown_package_is_skipped(db, reconciler, checkout_event):
    result = await reconciler.handle_event(db, checkout_event(metadata=dict(CREDIT_METADATA, packageId="galactic")))

    assert result.action == SKIP_UNKNOWN_PACKAGE
    assert await _count(db, Payment) == 0


@pytest.mark.asyncio
async def test_credit_purchase_granted_when_credits_disabled(db, ledger, notifier, catalog, checkout_event):
    reconciler = ReconciliationService(ledger=ledger, notifier=notifier, catalog=catalog, credits_enabled=False)

    await reconciler.handle_event(db, checkout_event(metadata=CREDIT_METADATA))

    assert await ledger.get_balance(db, "user_1") == 200


@pytest.mark.asyncio
async def test_lifetime_payment_records_grants_and_notifies(db, reconciler, notifier, checkout_event):
    result = await reconciler.handle_event(db, checkout_event(amount_total=19900, metadata=LIFETIME_METADATA))

    assert result.action == ONE_TIME_PAYMENT
    assert len(result.credit_transaction_ids) == 1
    assert (await credit_transaction_crud.get_by_grant_key(db, "lifetime:cs_123")).amount == 1000
    notifier.send_payment_notification.assert_awaited_once_with(
        db,
        session_id="cs_123",
        customer_id="cus_123",
        user_id="user_1",
        amount=199.0,
    )

    replay = await reconciler.handle_event(db, checkout_event(metadata=LIFETIME_METADATA))
    assert replay.action == "skip_duplicate"
    assert notifier.send_payment_notification.await_count == 1
    assert await _count(db, Payment) == 1


@pytest.mark.asyncio
async def test_one_time_payment_without_price_is_skipped(db, reconciler, notifier, checkout_event):
    result = await reconciler.handle_event(db, checkout_event(metadata={"userId": "user_1"}))

    assert result.action == SKIP_MISSING_METADATA
    assert "price_id" in result.reason
    assert await _count(db, Payment) == 0
    notifier.send_payment_notification.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscription_checkout_is_left_to_subscription_events(db, reconciler, checkout_event):
    result = await reconciler.handle_event(
        db, checkout_event(mode="subscription", metadata={"userId": "user_1", "priceId": "price_pro_monthly"})
    )

    assert result.action == SKIP_SUBSCRIPTION_CHECKOUT
    assert await _count(db, Payment) == 0
