"""
Shared key/value + ordered-list state store for the automation control plane.

Two implementations behind one interface, picked once at startup by
`create_state_store()`:

  RedisStateStore     shared across replicas, durable as Redis is.
  InMemoryStateStore  process-local fallback with identical semantics.

Known limitation: the in-memory fallback is neither durable nor shared. It loses
history on restart, and two replicas each see their own copy (so each replica
schedules stages independently). It is only suitable for single-instance
deployments.

List indices follow Redis LRANGE/LTRIM rules: `stop` is inclusive and negative
indices count from the tail.
"""

from __future__ import annotations

import abc
import threading

import redis.asyncio as redis
from redis.exceptions import RedisError

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger

logger = get_logger(__name__)

# Atomic "set to now unless set less than interval ago".
# KEYS[1] = last-run key, ARGV[1] = now_ms, ARGV[2] = interval_ms
_CLAIM_SCRIPT = """
local last = redis.call('GET', KEYS[1])
if last and (tonumber(ARGV[1]) - tonumber(last)) < tonumber(ARGV[2]) then
    return 0
end
redis.call('SET', KEYS[1], ARGV[1])
return 1
"""


class StateStore(abc.ABC):
    backend: str

    @abc.abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abc.abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    async def list_push(self, key: str, value: str) -> None:
        """Prepend `value` (newest first)."""

    @abc.abstractmethod
    async def list_range(self, key: str, start: int, stop: int) -> list[str]: ...

    @abc.abstractmethod
    async def list_trim(self, key: str, start: int, stop: int) -> None: ...

    @abc.abstractmethod
    async def claim_interval(self, key: str, now_ms: int, interval_ms: int) -> bool:
        """Write `now_ms` to `key` iff it is unset or at least `interval_ms` old."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════════
class RedisStateStore(StateStore):
    backend = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._claim = client.register_script(_CLAIM_SCRIPT)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def list_push(self, key: str, value: str) -> None:
        await self._client.lpush(key, value)

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        return await self._client.lrange(key, start, stop)

    async def list_trim(self, key: str, start: int, stop: int) -> None:
        await self._client.ltrim(key, start, stop)

    async def claim_interval(self, key: str, now_ms: int, interval_ms: int) -> bool:
        result = await self._claim(keys=[key], args=[now_ms, interval_ms])
        return int(result) == 1

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


# ═══════════════════════════════════════════════════════════════
# In-process fallback
# ═══════════════════════════════════════════════════════════════
def _redis_bounds(length: int, start: int, stop: int) -> tuple[int, int] | None:
    """Translate Redis inclusive/negative indices into a Python slice, or None if empty."""
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    stop = min(stop, length - 1)
    if start > stop or start >= length:
        return None
    return start, stop + 1


class InMemoryStateStore(StateStore):
    backend = "memory"

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    async def list_push(self, key: str, value: str) -> None:
        with self._lock:
            self._lists.setdefault(key, []).insert(0, value)

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        with self._lock:
            items = self._lists.get(key, [])
            bounds = _redis_bounds(len(items), start, stop)
            if bounds is None:
                return []
            return items[bounds[0] : bounds[1]]

    async def list_trim(self, key: str, start: int, stop: int) -> None:
        with self._lock:
            items = self._lists.get(key)
            if items is None:
                return
            bounds = _redis_bounds(len(items), start, stop)
            if bounds is None:
                del self._lists[key]
            else:
                self._lists[key] = items[bounds[0] : bounds[1]]

    async def claim_interval(self, key: str, now_ms: int, interval_ms: int) -> bool:
        with self._lock:
            last = self._values.get(key)
            if last is not None and now_ms - int(last) < interval_ms:
                return False
            self._values[key] = str(now_ms)
            return True


# ═══════════════════════════════════════════════════════════════
# Backend selection
# ═══════════════════════════════════════════════════════════════
async def create_state_store(settings: Settings) -> StateStore:
    """Pick the backend once at startup. See module docstring for the fallback caveat."""
    if settings.state_backend == "memory":
        logger.info("state_store_selected", backend="memory", reason="configured")
        return InMemoryStateStore()

    client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_connect_timeout_seconds,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        if settings.state_backend == "redis":
            raise
        logger.warning(
            "state_store_fallback",
            backend="memory",
            error=str(e),
            note="history is process-local and lost on restart; single-instance deployments only",
        )
        return InMemoryStateStore()

    logger.info("state_store_selected", backend="redis")
    return RedisStateStore(client)
