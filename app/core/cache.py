from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Protocol

import orjson
from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class JsonCache(Protocol):
    async def get_json(self, key: str) -> Any | None: ...

    async def set_json(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def sweep(self) -> int: ...

    async def close(self) -> None: ...


class MemoryCache:
    """In-process LRU cache with per-entry expiry.

    Values are stored as orjson bytes so callers get a fresh copy on every
    read, the same as with Redis. Expired entries are dropped when read;
    ``sweep`` reclaims the rest. Once ``max_entries`` is reached the least
    recently used key is evicted.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        self.max_entries = max(1, max_entries)
        self.clock = clock
        self._data: OrderedDict[str, tuple[bytes, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    async def close(self) -> None:
        self._data.clear()

    async def get_json(self, key: str) -> Any | None:
        item = self._data.get(key)
        if item is None:
            return None
        raw, expires_at = item
        if expires_at <= self.clock():
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return orjson.loads(raw)

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        self._data[key] = (orjson.dumps(value), self.clock() + ttl)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("cache_evicted", extra={"event": "cache_evicted", "key": evicted})

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def sweep(self) -> int:
        now = self.clock()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)


class RedisCache:
    def __init__(self, redis_url: str) -> None:
        self.redis = Redis.from_url(redis_url, decode_responses=False)

    async def close(self) -> None:
        if hasattr(self.redis, "aclose"):
            await self.redis.aclose()  # type: ignore[attr-defined]
            return
        await self.redis.close()  # type: ignore[func-returns-value]

    async def get_json(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(key)
            if not raw:
                return None
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache_json_decode_error", extra={"key": key})
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_get_error", extra={"key": key, "error": str(exc)})
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.redis.set(key, orjson.dumps(value), ex=ttl)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_set_error", extra={"key": key, "error": str(exc)})

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys. Returns number of keys removed."""
        if not keys:
            return 0
        try:
            return int(await self.redis.delete(*keys))
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_delete_error", extra={"keys": keys, "error": str(exc)})
            return 0

    async def sweep(self) -> int:
        # Redis expires keys on its own.
        return 0


def build_cache(redis_url: str, max_entries: int) -> JsonCache:
    if redis_url:
        return RedisCache(redis_url)
    return MemoryCache(max_entries=max_entries)
