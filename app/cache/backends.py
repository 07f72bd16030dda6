"""
Cache backends with per-key versions.

Every key carries a version that changes whenever the cached payload
changes (rebuilt with different content, or invalidated). The HTTP layer
turns (key, version) into a weak ETag, so a client's token goes stale
exactly when the data does.
"""

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]

VERSION_KEY_PREFIX = "__v:"
FINGERPRINT_KEY_PREFIX = "__fp:"


def fingerprint(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()


class CacheBackend:
    """Interfaz común: lectura con loader, invalidación por key y por prefijo"""

    async def get_with_meta(self, key: str, loader: Loader, ttl_seconds: int) -> tuple[Any, int]:
        raise NotImplementedError

    async def get(self, key: str, loader: Loader, ttl_seconds: int) -> Any:
        value, _ = await self.get_with_meta(key, loader, ttl_seconds)
        return value

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def invalidate_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryCache(CacheBackend):
    """
    Cache en memoria del proceso (un solo worker o tests)

    Pasado max_entries se purgan las entradas vencidas junto con su versión
    y su lock. Una key purgada vuelve por encima de cualquier versión purgada,
    así un ETag viejo nunca coincide con contenido nuevo.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 5000):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, tuple[Any, float, str]] = {}  # key -> (value, expires_at, fingerprint)
        self._versions: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._version_floor = 0

    async def get_with_meta(self, key: str, loader: Loader, ttl_seconds: int) -> tuple[Any, int]:
        entry = self._entries.get(key)
        if entry and entry[1] > self._clock():
            return entry[0], self._versions[key]

        # Un solo loader por key a la vez
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._entries.get(key)
            if entry and entry[1] > self._clock():
                return entry[0], self._versions[key]

            value = await loader()
            fp = fingerprint(value)
            version = self._versions.get(key, self._version_floor)
            if entry is not None and entry[2] != fp:
                version += 1
            self._versions[key] = version
            self._entries[key] = (value, self._clock() + ttl_seconds, fp)

        if len(self._entries) > self._max_entries:
            self._purge_expired()
        return value, version

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry[1] <= now]
        for key in expired:
            del self._entries[key]

        for key in [key for key in self._versions if key not in self._entries]:
            lock = self._locks.get(key)
            if lock is not None and lock.locked():
                continue
            self._version_floor = max(self._version_floor, self._versions.pop(key) + 1)
            self._locks.pop(key, None)

        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    async def invalidate(self, key: str) -> None:
        # Una key que nunca se sirvió no tiene ETag que invalidar
        if key not in self._versions:
            return
        self._entries.pop(key, None)
        self._versions[key] += 1

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            await self.invalidate(key)
        return len(keys)


class RedisCache(CacheBackend):
    """Cache compartido entre workers; valores JSON y versiones en __v:<key>"""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, decode_responses=True))

    async def _version(self, key: str) -> int:
        raw = await self.client.get(f"{VERSION_KEY_PREFIX}{key}")
        return int(raw) if raw is not None else 0

    async def get_with_meta(self, key: str, loader: Loader, ttl_seconds: int) -> tuple[Any, int]:
        raw = await self.client.get(key)
        if raw is not None:
            return json.loads(raw), await self._version(key)

        value = await loader()
        fp = fingerprint(value)

        fp_key = f"{FINGERPRINT_KEY_PREFIX}{key}"
        previous_fp = await self.client.get(fp_key)
        if previous_fp is not None and previous_fp != fp:
            await self.client.incr(f"{VERSION_KEY_PREFIX}{key}")

        await self.client.set(key, json.dumps(value, default=str), ex=max(1, int(ttl_seconds)))
        await self.client.set(fp_key, fp)
        return value, await self._version(key)

    async def invalidate(self, key: str) -> None:
        await self.client.delete(key)
        await self.client.incr(f"{VERSION_KEY_PREFIX}{key}")

    async def invalidate_prefix(self, prefix: str) -> int:
        count = 0
        async for key in self.client.scan_iter(match=f"{prefix}*"):
            await self.invalidate(key)
            count += 1
        return count

    async def close(self) -> None:
        await self.client.aclose()


_cache: Optional[CacheBackend] = None


def get_cache() -> CacheBackend:
    """Cache de la app: Redis si hay URL configurada, memoria si no"""
    global _cache
    if _cache is None:
        from app.core.config import get_settings

        url = get_settings().cache_redis_url
        if url:
            _cache = RedisCache.from_url(url)
            logger.info("Using Redis cache backend")
        else:
            _cache = MemoryCache()
    return _cache


def set_cache(cache: Optional[CacheBackend]) -> None:
    global _cache
    _cache = cache
