"""
Cache Store
Redis-backed key/value store shared by the vehicle lookup, BMW intelligence
and chat services.

Every ordinary operation runs through `_execute`, which produces a
`CacheResult`. Public methods unwrap that result into a safe default
(None / False / 0 / []) so callers never see an exception from the store
itself. Only `connect()` raises.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from services.exceptions import DependencyUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a single store operation."""

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default


class CacheStore:
    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None):
        self.url = url or settings.redis_url
        self._client = client
        self._connected = client is not None

    async def connect(self) -> None:
        """Connect and ping. Raises DependencyUnavailableError on failure."""
        if self._connected and self._client is not None:
            return

        try:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=5,
                health_check_interval=30,
            )
            await self._client.ping()
            self._connected = True
            logger.info("Successfully connected to Redis")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis at {self.url}: {e}")
            self._connected = False
            self._client = None
            raise DependencyUnavailableError("redis", str(e)) from e

    async def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
            logger.info("Disconnected from Redis")
        except (RedisError, OSError) as e:
            logger.error(f"Error disconnecting from Redis: {e}")
        finally:
            self._client = None
            self._connected = False

    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def _execute(
        self,
        operation: str,
        key: str,
        call: Callable[[Any], Awaitable[Any]],
    ) -> CacheResult:
        if not self.is_connected():
            logger.warning(f"Redis not connected, cannot {operation}: {key}")
            return CacheResult(ok=False, error=DependencyUnavailableError("redis"))

        try:
            return CacheResult(ok=True, value=await call(self._client))
        except (RedisError, OSError) as e:
            logger.error(f"Redis {operation} failed for {key}: {e}")
            return CacheResult(ok=False, error=e)

    async def get(self, key: str) -> Optional[str]:
        result = await self._execute("get", key, lambda c: c.get(key))
        return result.unwrap_or(None)

    async def set(self, key: str, value: str) -> bool:
        result = await self._execute("set", key, lambda c: c.set(key, value))
        return bool(result.unwrap_or(False))

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> bool:
        result = await self._execute(
            "set with TTL", key, lambda c: c.setex(key, ttl_seconds, value)
        )
        return bool(result.unwrap_or(False))

    async def delete(self, key: str) -> bool:
        result = await self._execute("delete", key, lambda c: c.delete(key))
        return result.unwrap_or(0) > 0

    async def exists(self, key: str) -> bool:
        result = await self._execute("check existence", key, lambda c: c.exists(key))
        return result.unwrap_or(0) > 0

    async def ttl(self, key: str) -> Optional[int]:
        result = await self._execute("get TTL", key, lambda c: c.ttl(key))
        return result.unwrap_or(None)

    async def incr(self, key: str) -> Optional[int]:
        result = await self._execute("increment", key, lambda c: c.incr(key))
        return result.unwrap_or(None)

    async def keys(self, pattern: str) -> List[str]:
        result = await self._execute("list keys", pattern, lambda c: c.keys(pattern))
        return list(result.unwrap_or([]))

    async def lpush(self, key: str, value: str) -> Optional[int]:
        result = await self._execute("push to list", key, lambda c: c.lpush(key, value))
        return result.unwrap_or(None)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        result = await self._execute(
            "get list range", key, lambda c: c.lrange(key, start, stop)
        )
        return list(result.unwrap_or([]))

    async def expire(self, key: str, seconds: int) -> bool:
        result = await self._execute(
            "set expiration", key, lambda c: c.expire(key, seconds)
        )
        return bool(result.unwrap_or(False))

    async def zadd(self, key: str, score: float, member: str) -> Optional[int]:
        result = await self._execute(
            "add to sorted set", key, lambda c: c.zadd(key, {member: score})
        )
        return result.unwrap_or(None)

    async def zrange(self, key: str, start: int, stop: int) -> List[str]:
        result = await self._execute(
            "get sorted set range", key, lambda c: c.zrange(key, start, stop)
        )
        return list(result.unwrap_or([]))

    async def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching `pattern`, returning how many were removed."""

        async def _clear(client) -> int:
            matched = await client.keys(pattern)
            if not matched:
                return 0
            return await client.delete(*matched)

        result = await self._execute("clear cache pattern", pattern, _clear)
        removed = result.unwrap_or(0)
        if removed:
            logger.info(f"Cleared {removed} keys matching pattern: {pattern}")
        return removed

    async def info(self) -> Optional[Dict[str, Any]]:
        result = await self._execute("get info", "*", lambda c: c.info())
        return result.unwrap_or(None)

    async def health_check(self) -> Dict[str, Any]:
        if not self.is_connected():
            return {"status": "disconnected", "error": "Redis not connected"}

        start = time.perf_counter()
        result = await self._execute("ping", "*", lambda c: c.ping())
        if not result.ok:
            return {"status": "error", "error": str(result.error)}
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        return {"status": "healthy", "latency_ms": latency_ms}


cache_store = CacheStore()
