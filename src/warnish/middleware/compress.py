"""
=============================================================================
COMPRESS MIDDLEWARE (CACHE WRITER)
=============================================================================

Compresses response bodies with gzip/deflate on the fly and saves the
compressed bytes, plus a few headers, into redis so that
AccelerateMiddleware can serve the next identical request without
touching the origin.

=============================================================================
WHAT HAPPENS TO ONE RESPONSE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  CACHE MISS: GET /page, gzip                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   origin: write(b"<html>...")                                       │
    │        │                                                             │
    │        ▼  (first byte) PRE-SEND STAGE                                │
    │   gate ok? → Vary, X-Powered-By → negotiate "gzip"                  │
    │   → Content-Encoding: gzip, Content-Length removed → GzipCodec      │
    │        │                                                             │
    │        ▼  for every compressed piece the codec emits:               │
    │   ┌───────────────────────────────────────────────────────────┐     │
    │   │ 1. EXISTS warnish-cache:gzip:/page                        │     │
    │   │ 2a. yes → APPEND piece       (TTL untouched)              │     │
    │   │ 2b. no  → SETEX piece 3600   (creates the entry)          │     │
    │   │ 3. HSET warnish-headers:gzip:/page                        │     │
    │   │         Content-Type, Last-Modified                       │     │
    │   │ 4. forward piece to the client                            │     │
    │   └───────────────────────────────────────────────────────────┘     │
    │        │                                                             │
    │        ▼  origin: end()                                              │
    │   codec.flush() → trailing pieces through the same path → end()     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The store write for a piece finishes (or fails) BEFORE that piece is
forwarded, so a slow store slows delivery down, but a failing store
never stops it.

=============================================================================
KNOWN RACES (ACCEPTED)
=============================================================================

EXISTS-then-write is not atomic and nothing locks a key. Two concurrent
misses on the same URL can both see "absent", both SETEX, and then both
APPEND their later pieces into the same value, leaving a corrupt entry
until it expires. APPEND also never refreshes the TTL, so an entry
expires `cache_expires` seconds after its FIRST piece was written.

=============================================================================
"""

from datetime import datetime, timezone
from http import HTTPStatus
from typing import Dict, Optional
import logging

from .base import Filter, NextHandler
from .gate import PipelineGate
from .headers import ResponseHeaderPolicy
from .negotiation import EncodingNegotiator
from ..cache.keys import CacheKeyDeriver, CacheKeys
from ..cache.store import CacheStore, StoreError, connect
from ..codec import METHODS, CodecFactory, StreamCodec
from ..config import WarnishConfig
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, OutputSink, format_http_date


logger = logging.getLogger(__name__)


class CompressMiddleware(Filter):
    """
    Compression + cache-write filter.

    =========================================================================
    MIDDLEWARE POSITION
    =========================================================================

    Place it AFTER AccelerateMiddleware, directly in front of the origin:

        pipeline.add(AccelerateMiddleware(config, store=store))  # hit? done
        pipeline.add(CompressMiddleware(config, store=store))    # miss: record

    =========================================================================
    USAGE
    =========================================================================

        # Defaults: level 9, one hour TTL, PUT/DELETE/HEAD/POST not cached
        pipeline.add(CompressMiddleware())

        # Only compress text
        pipeline.add(CompressMiddleware(WarnishConfig(
            filter=lambda req, res: "text" in (res.get_header("Content-Type") or ""),
        )))

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[WarnishConfig] = None,
        store: Optional[CacheStore] = None,
        methods: Optional[Dict[str, CodecFactory]] = None,
    ):
        """
        Args:
            config: Options. The same object is passed to codec constructors.
            store: Shared CacheStore. Resolved from `config` when omitted.
            methods: Method name → codec factory, in negotiation order.
        """
        self.config = config or WarnishConfig()
        self.config.validate()

        self.store = store or connect(self.config)
        self.methods = dict(methods if methods is not None else METHODS)

        self.gate = PipelineGate(self.config.filter)
        self.negotiator = EncodingNegotiator(self.methods)
        self.policy = ResponseHeaderPolicy(self.config.powered_by)
        self.keys = CacheKeyDeriver(self.config.key_prefix)

    async def __call__(self, request: HTTPRequest, response: HTTPResponse, next: NextHandler) -> None:
        """
        Decorate the response's sink, then run the origin.

        Nothing is decided yet: eligibility depends on headers the origin
        has not set, so the decision waits for the pre-send stage.
        """
        sink = response.decorate(
            lambda downstream: CacheWriterSink(self, request, response, downstream)
        )
        response.on_headers(sink.prepare)

        await next(request, response)

    # =========================================================================
    # STORE WRITES
    # =========================================================================

    async def write_redis(self, key: str, chunk: bytes) -> bool:
        """
        Append-or-create one compressed piece.

        Returns:
            True if the caller should continue with the header record.
            False when the existence check failed: the piece is not
            stored and no header update follows.

        Store errors are logged and dropped here on purpose: the cache is
        a side effect and must never fail the response.
        """
        try:
            exists = await self.store.exists(key)
        except StoreError as exc:
            logger.warning(f"cache write dropped, existence check failed: {exc}")
            return False

        try:
            if exists:
                await self.store.append(key, chunk)
            else:
                await self.store.create(key, chunk, self.config.cache_expires)
        except StoreError as exc:
            logger.warning(f"cache write failed: {exc}")

        return True

    async def persist(self, keys: CacheKeys, chunk: bytes, content_type: Optional[str]) -> None:
        """Store one piece, then (re)record Content-Type and Last-Modified."""
        logger.debug(f"saving compressed response into redis. KEY: {keys.body}")

        if not await self.write_redis(keys.body, chunk):
            return

        fields = {}
        if content_type:
            fields["Content-Type"] = content_type.replace(" ", "")
        fields["Last-Modified"] = format_http_date(datetime.now(timezone.utc))

        try:
            await self.store.record_headers(keys.headers, fields)
        except StoreError as exc:
            logger.warning(f"header record failed: {exc}")


class CacheWriterSink(OutputSink):
    """
    Sink installed by CompressMiddleware for one response.

    Until prepare() picks a codec, writes pass straight through to the
    downstream sink unmodified.
    """

    def __init__(
        self,
        writer: CompressMiddleware,
        request: HTTPRequest,
        response: HTTPResponse,
        downstream: OutputSink,
    ):
        self.writer = writer
        self.request = request
        self.response = response
        self.downstream = downstream

        self.method: Optional[str] = None
        self.codec: Optional[StreamCodec] = None
        self.keys: Optional[CacheKeys] = None
        self.content_type: Optional[str] = None

    def prepare(self) -> None:
        """Pre-send stage: decide whether and how this body is compressed."""
        writer, request, response = self.writer, self.request, self.response

        if not writer.gate.allows(request, response):
            return

        writer.policy.apply_vary(response)
        writer.policy.stamp_powered_by(response, compose=True)

        method = writer.negotiator.negotiate(request.get_header("accept-encoding"))
        factory = writer.methods.get(method) if method else None
        if factory is None:
            return

        self.method = method
        self.content_type = response.get_header("Content-Type")
        self.codec = factory(writer.config)
        writer.policy.apply_encoding(response, method)

        # Stored entries are always replayed as 200
        if response.status != HTTPStatus.OK:
            return
        if request.method.upper() not in writer.config.ignore_verbs:
            self.keys = writer.keys.derive(method, request.url)

    async def write(self, chunk: bytes) -> None:
        if self.codec is None:
            await self.downstream.write(chunk)
            return

        for piece in self.codec.compress(chunk):
            await self._forward(piece)

    async def end(self) -> None:
        if self.codec is not None:
            for piece in self.codec.flush():
                await self._forward(piece)

        await self.downstream.end()

    async def _forward(self, piece: bytes) -> None:
        if self.keys is not None:
            await self.writer.persist(self.keys, piece, self.content_type)

        await self.downstream.write(piece)


def compress(
    config: Optional[WarnishConfig] = None,
    store: Optional[CacheStore] = None,
) -> CompressMiddleware:
    """Create the compress/cache-write filter."""
    return CompressMiddleware(config, store=store)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Decision at the pre-send stage: gate → Vary/X-Powered-By → negotiate
# 2. Codec output is persisted piece by piece (append-or-create), then
#    forwarded to the client
# 3. Store failures only lose the cache side effect
# 4. Ignored verbs and non-200 statuses are compressed but never cached
# =============================================================================
