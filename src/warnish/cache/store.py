"""
=============================================================================
KEY-VALUE STORE ACCESS
=============================================================================

CacheStore is the only place that talks to redis. It exposes the handful
of operations the filters need and turns every redis failure into a
StoreError, so callers decide the policy (miss, drop, abort) in one
place instead of catching driver exceptions all over the code.

=============================================================================
OPERATIONS
=============================================================================

    ┌────────────────────────────────────────────────────────────────────┐
    │  CacheStore method     │ redis command │ used by                   │
    │  ──────────────────────┼───────────────┼────────────────────────── │
    │  exists(key)           │ EXISTS        │ reader probe, writer      │
    │  read_headers(key)     │ HGETALL       │ reader replay             │
    │  record_headers(k, m)  │ HSET          │ writer, after each chunk  │
    │  append(key, chunk)    │ APPEND        │ writer, existing entry    │
    │  create(key, c, ttl)   │ SETEX         │ writer, first chunk       │
    │  read(key)             │ GET           │ stream adapter            │
    │  read_range(k, s, e)   │ GETRANGE      │ stream adapter (ranged)   │
    │  ping()                │ PING          │ startup check             │
    └────────────────────────────────────────────────────────────────────┘

=============================================================================
ERROR TAXONOMY
=============================================================================

    StoreConnectionError   store unreachable at startup. FATAL: the
                           server refuses to start.

    StoreError             one operation failed while serving a request.
                           Reader: treated as a miss.
                           Writer: the cache side effect is dropped, the
                           client still gets its bytes.

No operation is retried.

=============================================================================
"""

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..config import WarnishConfig


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A single store operation failed."""

    def __init__(self, op: str, key: Optional[str], cause: Exception):
        super().__init__(f"{op} {key or ''}: {cause}".strip())
        self.op = op
        self.key = key
        self.cause = cause


class StoreConnectionError(StoreError):
    """The store cannot be reached at all."""


class KeyValueStore(Protocol):
    """The subset of the redis.asyncio.Redis interface CacheStore relies on."""

    async def exists(self, *names: Any) -> int: ...
    async def hgetall(self, name: Any) -> Dict[Any, Any]: ...
    async def hset(self, name: Any, key: Any = None, value: Any = None,
                   mapping: Optional[Mapping[Any, Any]] = None) -> int: ...
    async def append(self, key: Any, value: Any) -> int: ...
    async def setex(self, name: Any, time: Any, value: Any) -> Any: ...
    async def get(self, name: Any) -> Optional[bytes]: ...
    async def getrange(self, key: Any, start: int, end: int) -> bytes: ...
    async def ping(self, **kwargs: Any) -> Any: ...


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class CacheStore:
    """
    Async wrapper around one shared redis client.

    All concurrent requests go through the same client. There is no
    locking around check-then-write sequences; see CompressMiddleware.
    """

    def __init__(self, client: KeyValueStore, description: str = "redis"):
        self.client = client
        self.description = description

    async def _call(self, op: str, key: Optional[str], coro):
        try:
            return await coro
        except RedisError as exc:
            raise StoreError(op, key, exc) from exc

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", key, self.client.exists(key)))

    async def read_headers(self, key: str) -> Dict[str, str]:
        """HGETALL with names and values decoded to str."""
        reply = await self._call("hgetall", key, self.client.hgetall(key))
        return {_text(name): _text(value) for name, value in (reply or {}).items()}

    async def read(self, key: str) -> bytes:
        """Whole value; a missing key reads as empty."""
        value = await self._call("get", key, self.client.get(key))
        if value is None:
            return b""
        return value if isinstance(value, bytes) else _text(value).encode("utf-8")

    async def read_range(self, key: str, start: int, end: int) -> bytes:
        """Bytes start..end inclusive (GETRANGE semantics)."""
        value = await self._call("getrange", key, self.client.getrange(key, start, end))
        if not value:
            return b""
        return value if isinstance(value, bytes) else _text(value).encode("utf-8")

    # =========================================================================
    # WRITE SIDE
    # =========================================================================

    async def append(self, key: str, chunk: bytes) -> None:
        """APPEND leaves the key's remaining time-to-live untouched."""
        await self._call("append", key, self.client.append(key, chunk))

    async def create(self, key: str, chunk: bytes, ttl: int) -> None:
        await self._call("setex", key, self.client.setex(key, ttl, chunk))

    async def record_headers(self, key: str, fields: Mapping[str, str]) -> None:
        await self._call("hset", key, self.client.hset(key, mapping=dict(fields)))

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def ping(self) -> None:
        """
        Check connectivity.

        Raises:
            StoreConnectionError: The store cannot be reached.
        """
        try:
            await self.client.ping()
        except RedisError as exc:
            raise StoreConnectionError("ping", None, exc) from exc
        logger.info(f"redis client is ready {self.description}")

    async def close(self) -> None:
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()


def connect(config: WarnishConfig) -> CacheStore:
    """
    Resolve the store client for a filter.

    A pre-built `config.client` wins; otherwise a redis.asyncio.Redis is
    built from `config.redis`. redis.asyncio connects lazily, so nothing
    touches the network until the first command.
    """
    if config.client is not None:
        logger.info("redis client supplied by caller")
        return CacheStore(config.client, description="caller-supplied client")

    redis_config = config.redis
    client = aioredis.Redis(**redis_config.client_kwargs())
    return CacheStore(client, description=f"{redis_config.host}:{redis_config.port}")
