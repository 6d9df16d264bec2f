"""
=============================================================================
WARNISH CONFIGURATION
=============================================================================

Centralized configuration for the compression/cache filters and for the
bundled HTTP server.

=============================================================================
WHAT IS CONFIGURED WHERE?
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION OBJECTS                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   WarnishConfig ──► both filters (compress + accelerate)            │
    │     ├── codec options   level, mem_level, window_bits,              │
    │     │                   strategy, chunk_size                        │
    │     ├── RedisConfig     host, port, password, db, options           │
    │     ├── client          pre-built redis client (wins over redis)    │
    │     ├── ignore_verbs    methods never written to the cache          │
    │     ├── cache_expires   TTL (seconds) of newly created entries      │
    │     └── filter          predicate(request, response) -> bool        │
    │                                                                      │
    │   ServerConfig ───► HTTPServer (host, port, keep-alive, logging)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The codec options are handed VERBATIM to the codec constructor. The same
WarnishConfig object is what the writer receives, so whatever the caller
puts in it is what zlib sees.

=============================================================================
RESOLVED ONCE
=============================================================================

The store client is resolved exactly once, when a filter is constructed
(see warnish.cache.store.connect). Nothing reads connection settings
from module-level state afterwards.

=============================================================================
"""

import os
import zlib
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, Optional


DEFAULT_IGNORE_VERBS = ("PUT", "DELETE", "HEAD", "POST")


@dataclass
class RedisConfig:
    """
    Connection descriptor for the key-value store.

    `options` is passed through to redis.asyncio.Redis. Whatever it says
    about `decode_responses`, the client is built with decode_responses=False
    so cached bodies always come back as raw bytes.
    """

    host: str = "127.0.0.1"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    options: Dict[str, Any] = field(default_factory=dict)

    def client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for redis.asyncio.Redis."""
        kwargs = dict(self.options)
        kwargs.update(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
        )
        # Binary-safe replies: the body key holds compressed bytes
        kwargs["decode_responses"] = False
        return kwargs


@dataclass
class WarnishConfig:
    """
    Options shared by CompressMiddleware and AccelerateMiddleware.

    =========================================================================
    DEFAULTS
    =========================================================================

        level=9, mem_level=9      Highest compression. Responses are
                                  compressed once and then served from the
                                  cache many times, so CPU spent here is
                                  amortized over every hit.

        ignore_verbs              PUT, DELETE, HEAD, POST
        cache_expires             3600 seconds
        filter                    None (compress everything)

    =========================================================================
    USAGE
    =========================================================================

        config = WarnishConfig(
            redis=RedisConfig(host="cache.internal", password="secret"),
            cache_expires=600,
            ignore_verbs=["post", "put"],   # normalized to uppercase
        )

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # CODEC OPTIONS (forwarded to the codec constructor)
    # ─────────────────────────────────────────────────────────────────────

    level: int = 9
    mem_level: int = 9
    window_bits: int = 15
    strategy: int = zlib.Z_DEFAULT_STRATEGY
    chunk_size: int = 16 * 1024

    # ─────────────────────────────────────────────────────────────────────
    # STORE
    # ─────────────────────────────────────────────────────────────────────

    redis: RedisConfig = field(default_factory=RedisConfig)
    client: Optional[Any] = None
    """Pre-built store client. When set, `redis` is ignored."""

    # ─────────────────────────────────────────────────────────────────────
    # CACHE POLICY
    # ─────────────────────────────────────────────────────────────────────

    ignore_verbs: Collection[str] = DEFAULT_IGNORE_VERBS
    cache_expires: int = 3600
    filter: Optional[Callable[[Any, Any], bool]] = None
    key_prefix: str = "warnish"
    powered_by: str = "Warnish"

    stream_chunk_size: Optional[int] = None
    """
    Replay cached bodies with ranged reads of this many bytes.
    None fetches the whole value with a single GET.
    """

    def __post_init__(self):
        self.ignore_verbs = frozenset(verb.upper() for verb in self.ignore_verbs)

    @classmethod
    def from_env(cls) -> "WarnishConfig":
        """
        Create configuration from environment variables.

        WARNISH_REDIS_HOST      Store host (default: 127.0.0.1)
        WARNISH_REDIS_PORT      Store port (default: 6379)
        WARNISH_REDIS_PASSWORD  Store password (default: none)
        WARNISH_REDIS_DB        Store database index (default: 0)
        WARNISH_CACHE_EXPIRES   TTL of new entries in seconds (default: 3600)
        WARNISH_IGNORE_VERBS    Comma separated verbs (default: PUT,DELETE,HEAD,POST)
        WARNISH_LEVEL           Compression level 0-9 (default: 9)
        """
        verbs = os.getenv("WARNISH_IGNORE_VERBS")
        return cls(
            level=int(os.getenv("WARNISH_LEVEL", "9")),
            redis=RedisConfig(
                host=os.getenv("WARNISH_REDIS_HOST", "127.0.0.1"),
                port=int(os.getenv("WARNISH_REDIS_PORT", "6379")),
                password=os.getenv("WARNISH_REDIS_PASSWORD") or None,
                db=int(os.getenv("WARNISH_REDIS_DB", "0")),
            ),
            cache_expires=int(os.getenv("WARNISH_CACHE_EXPIRES", "3600")),
            ignore_verbs=(
                [v.strip() for v in verbs.split(",") if v.strip()]
                if verbs is not None else DEFAULT_IGNORE_VERBS
            ),
        )

    def validate(self) -> None:
        """Fail fast on values zlib or the store would reject later."""
        if not 0 <= self.level <= 9:
            raise ValueError(f"Invalid level: {self.level}. Must be 0-9.")

        if not 1 <= self.mem_level <= 9:
            raise ValueError(f"Invalid mem_level: {self.mem_level}. Must be 1-9.")

        if not 9 <= self.window_bits <= 15:
            raise ValueError(f"Invalid window_bits: {self.window_bits}. Must be 9-15.")

        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        if self.cache_expires <= 0:
            raise ValueError("cache_expires must be > 0")

        if self.stream_chunk_size is not None and self.stream_chunk_size <= 0:
            raise ValueError("stream_chunk_size must be > 0")


@dataclass
class ServerConfig:
    """
    Configuration for the bundled asyncio HTTP server.

    Development:
        ServerConfig(port=8080, log_level="DEBUG")

    Production:
        ServerConfig(host="0.0.0.0", port=80, log_level="INFO")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080

    timeout: Optional[float] = 30.0
    """Seconds to wait for a request head. None waits forever."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # ORIGIN
    # ─────────────────────────────────────────────────────────────────────

    static_dir: Optional[str] = None

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"

    server_name: str = "Warnish/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        HTTP_HOST       Server host (default: 127.0.0.1)
        HTTP_PORT       Server port (default: 8080)
        HTTP_TIMEOUT    Request timeout in seconds (default: 30)
        HTTP_STATIC_DIR Static files directory (default: None)
        HTTP_LOG_LEVEL  Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            static_dir=os.getenv("HTTP_STATIC_DIR"),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Validate configuration values at startup."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.max_request_size < 1024:
            raise ValueError("max_request_size must be >= 1024")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format}")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. WarnishConfig: codec options, store descriptor, cache policy
# 2. RedisConfig: connection settings, always binary-safe replies
# 3. ServerConfig: settings for the bundled asyncio server
# 4. from_env() on both for 12-factor deployments, validate() to fail fast
# =============================================================================
