"""Key/value caches with per-entry expiry

Two implementations of the same small interface:

- ``MemoryCache`` keeps values in process (cachetools ``TTLCache``). Used for
  resolved tenant credentials so secret material never leaves the process.
- ``RedisCache`` stores string values in Redis under a key prefix. Used for
  data that can be shared between workers, such as gateway pseudo-product ids.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)


class KeyValueCache(ABC):
    """Minimal cache contract used by the services"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryCache(KeyValueCache):
    """Thread-safe in-process TTL cache"""

    def __init__(self, maxsize: int = 1024, ttl: int = 300, timer=None):
        kwargs = {"timer": timer} if timer is not None else {}
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl, **kwargs)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class RedisCache(KeyValueCache):
    """Redis-backed cache for string values

    Redis errors are logged and treated as cache misses; the cache is never
    the source of truth.
    """

    def __init__(self, client_getter, prefix: str, ttl: int):
        self._client_getter = client_getter
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client_getter().get(self._key(key))
        except Exception as e:
            logger.warning(f"Redis cache read failed for {self._key(key)}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        try:
            self._client_getter().setex(self._key(key), self.ttl, value)
        except Exception as e:
            logger.warning(f"Redis cache write failed for {self._key(key)}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._client_getter().delete(self._key(key))
        except Exception as e:
            logger.warning(f"Redis cache delete failed for {self._key(key)}: {e}")

    def clear(self) -> None:
        try:
            client = self._client_getter()
            for key in client.scan_iter(match=f"{self.prefix}:*"):
                client.delete(key)
        except Exception as e:
            logger.warning(f"Redis cache clear failed for prefix {self.prefix}: {e}")
