"""TTL cache with a pluggable backing store.

The in-memory backend is per-process; a multi-instance deployment swaps in a
shared backend implementing the same ``CacheBackend`` contract.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CacheEntry = Tuple[Any, float]


class CacheBackend(ABC):
    """Storage contract: key -> (value, expire_at epoch seconds)"""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, expire_at: float) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryCacheBackend(CacheBackend):
    def __init__(self):
        self._data: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any, expire_at: float) -> None:
        with self._lock:
            self._data[key] = (value, expire_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class TTLCache:
    """Expiring cache over a CacheBackend"""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend or InMemoryCacheBackend()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        entry = self.backend.get(key)
        if entry is None:
            return None
        value, expire_at = entry
        if expire_at <= self._clock():
            self.backend.delete(key)
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.backend.set(key, value, self._clock() + ttl)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything when no key is given"""
        if key is None:
            self.backend.clear()
            logger.info("Cache cleared")
        else:
            self.backend.delete(key)
