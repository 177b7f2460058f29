import threading
import time
from typing import Optional

from cachetools import TLRUCache


def _expires_at(_key, value, now):
    return now + value[1]


class TTLByteCache:
    """In-process byte cache with a TTL per entry."""

    def __init__(self, maxsize: int = 1024, timer=time.monotonic):
        self._cache: TLRUCache = TLRUCache(
            maxsize=maxsize, ttu=_expires_at, timer=timer
        )
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._cache.get(key)
        return entry[0] if entry else None

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        with self._lock:
            self._cache[key] = (value, ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
