import json

import httpx
import pytest

from backoffice.core.cache import TTLCache
from backoffice.crud import setting_crud
from backoffice.services import settings_service
from backoffice.services.notification_service import NotificationService
from backoffice.services.settings_service import NOTIFICATION_WEBHOOK_URL, get_setting, update_setting

HOOK_URL = "https://hooks.example.test/payments"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    settings_service.settings_cache.invalidate()
    yield
    settings_service.settings_cache.invalidate()


@pytest.fixture
def hook(monkeypatch):
    """Route the notifier's httpx client through a MockTransport"""
    state = {"requests": [], "response": httpx.Response(200, json={"ok": True}), "error": None}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        if state["error"]:
            raise state["error"](request)
        return state["response"]

    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    return state


@pytest.mark.asyncio
async def test_notification_posts_payment(db, hook):
    await setting_crud.set_value(db, NOTIFICATION_WEBHOOK_URL, HOOK_URL)

    sent = await NotificationService(timeout=5).send_payment_notification(
        db, session_id="cs_1", customer_id="cus_1", user_id="user_1", amount=199.0
    )

    assert sent is True
    assert len(hook["requests"]) == 1
    request = hook["requests"][0]
    assert str(request.url) == HOOK_URL
    assert request.method == "POST"
    assert json.loads(request.content) == {
        "sessionId": "cs_1",
        "customerId": "cus_1",
        "userId": "user_1",
        "amount": 199.0,
    }


@pytest.mark.asyncio
async def test_notification_skipped_without_url(db, hook):
    sent = await NotificationService().send_payment_notification(
        db, session_id="cs_1", customer_id="cus_1", user_id="user_1", amount=9.9
    )

    assert sent is False
    assert hook["requests"] == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_raise(db, hook):
    await setting_crud.set_value(db, NOTIFICATION_WEBHOOK_URL, HOOK_URL)
    hook["response"] = httpx.Response(500)

    sent = await NotificationService().send_payment_notification(
        db, session_id="cs_1", customer_id="cus_1", user_id="user_1", amount=9.9
    )

    assert sent is False


@pytest.mark.asyncio
async def test_notification_timeout_does_not_raise(db, hook):
    await setting_crud.set_value(db, NOTIFICATION_WEBHOOK_URL, HOOK_URL)
    hook["error"] = lambda request: httpx.ReadTimeout("timed out", request=request)

    sent = await NotificationService().send_payment_notification(
        db, session_id="cs_1", customer_id="cus_1", user_id="user_1", amount=9.9
    )

    assert sent is False
    assert len(hook["requests"]) == 1


@pytest.mark.asyncio
async def test_get_setting_caches_found_values(db):
    cache = TTLCache(ttl_seconds=60)
    await setting_crud.set_value(db, "support_email", "help@example.test")

    assert await get_setting(db, "support_email", cache) == "help@example.test"
    # A direct write bypasses the cache until it expires or is invalidated
    await setting_crud.set_value(db, "support_email", "other@example.test")
    assert await get_setting(db, "support_email", cache) == "help@example.test"

    await update_setting(db, "support_email", "new@example.test", cache)
    assert await get_setting(db, "support_email", cache) == "new@example.test"


@pytest.mark.asyncio
async def test_missing_setting_is_not_cached(db):
    cache = TTLCache(ttl_seconds=60)

    assert await get_setting(db, "feature_banner", cache) is None
    await setting_crud.set_value(db, "feature_banner", "on")
    assert await get_setting(db, "feature_banner", cache) == "on"
    assert await settings_service.get_settings(db, ["feature_banner", "absent"], cache) == {
        "feature_banner": "on",
        "absent": None,
    }
