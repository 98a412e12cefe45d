from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional

from backoffice.core.cache import TTLCache
from backoffice.core.config import settings
from backoffice.crud import setting_crud

NOTIFICATION_WEBHOOK_URL = "notification_webhook_url"

settings_cache = TTLCache(ttl_seconds=settings.settings_cache_ttl_seconds)


async def get_setting(db: AsyncSession, key: str, cache: TTLCache = settings_cache) -> Optional[str]:
    """Admin setting by key. Only found values are cached, a missing key is re-queried next time."""
    cached = cache.get(key)
    if cached is not None:
        return cached

    value = await setting_crud.get_value(db, key)
    if value is not None:
        cache.set(key, value)
    return value


async def get_settings(db: AsyncSession, keys: List[str], cache: TTLCache = settings_cache) -> Dict[str, Optional[str]]:
    return {key: await get_setting(db, key, cache) for key in keys}


async def update_setting(db: AsyncSession, key: str, value: str, cache: TTLCache = settings_cache) -> None:
    await setting_crud.set_value(db, key, value)
    cache.invalidate(key)
