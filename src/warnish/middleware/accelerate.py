"""
=============================================================================
ACCELERATE MIDDLEWARE (CACHE READER)
=============================================================================

Serves responses that CompressMiddleware stored earlier, straight from
redis, without running anything further down the pipeline.

=============================================================================
HIT / MISS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                 GET /page, Accept-Encoding: gzip                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   gate ok? ──no──► next()                                           │
    │      │ yes                                                           │
    │   Vary, X-Powered-By                                                │
    │   negotiate ──None──► next()                                        │
    │      │ "gzip"                                                        │
    │   EXISTS warnish-cache:gzip:/page ──0 or error──► next()   (MISS)   │
    │      │ 1                                                             │
    │   HGETALL warnish-headers:gzip:/page ──error──► next()              │
    │      │                                                               │
    │   copy every stored header onto the response                        │
    │   Content-Encoding: gzip, X-Powered-By: Warnish                     │
    │      │                                                               │
    │   StoreStream(body key).pipe(response)                     (HIT)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Read errors are never surfaced to the client: the request simply falls
through to the origin, which serves (and re-caches) it.

=============================================================================
"""

from typing import Dict, Optional
import logging

from .base import Filter, NextHandler
from .gate import PipelineGate
from .headers import ResponseHeaderPolicy
from .negotiation import EncodingNegotiator
from ..cache.keys import CacheKeyDeriver
from ..cache.store import CacheStore, StoreError, connect
from ..cache.stream import StoreStream
from ..codec import METHODS, CodecFactory
from ..config import WarnishConfig
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


class AccelerateMiddleware(Filter):
    """
    Cache-read filter. Must run BEFORE CompressMiddleware.

        store = connect(config)
        pipeline.add(AccelerateMiddleware(config, store=store))
        pipeline.add(CompressMiddleware(config, store=store))
    """

    def __init__(
        self,
        config: Optional[WarnishConfig] = None,
        store: Optional[CacheStore] = None,
        methods: Optional[Dict[str, CodecFactory]] = None,
    ):
        self.config = config or WarnishConfig()
        self.config.validate()

        self.store = store or connect(self.config)

        self.gate = PipelineGate()
        self.negotiator = EncodingNegotiator(methods if methods is not None else METHODS)
        self.policy = ResponseHeaderPolicy(self.config.powered_by)
        self.keys = CacheKeyDeriver(self.config.key_prefix)

    async def __call__(self, request: HTTPRequest, response: HTTPResponse, next: NextHandler) -> None:
        # ═══════════════════════════════════════════════════════════════════
        # ELIGIBILITY
        # ═══════════════════════════════════════════════════════════════════
        if not self.gate.allows(request, response):
            await next(request, response)
            return

        self.policy.apply_vary(response)
        self.policy.stamp_powered_by(response)

        method = self.negotiator.negotiate(request.get_header("accept-encoding"))
        if method is None:
            await next(request, response)
            return

        keys = self.keys.derive(method, request.url)

        # ═══════════════════════════════════════════════════════════════════
        # PROBE
        # ═══════════════════════════════════════════════════════════════════
        try:
            hit = await self.store.exists(keys.body)
        except StoreError as exc:
            logger.warning(f"cache probe failed, treating as miss: {exc}")
            await next(request, response)
            return

        if not hit:
            await next(request, response)
            return

        try:
            stored_headers = await self.store.read_headers(keys.headers)
        except StoreError as exc:
            logger.warning(f"header fetch failed, treating as miss: {exc}")
            await next(request, response)
            return

        # ═══════════════════════════════════════════════════════════════════
        # REPLAY
        # ═══════════════════════════════════════════════════════════════════
        original_headers = dict(response.headers)

        for name, value in stored_headers.items():
            response.set_header(name, value)

        self.policy.apply_encoding(response, method)
        self.policy.stamp_powered_by(response)

        logger.info(f"cache HIT {keys.body}")

        stream = StoreStream(self.store, keys.body, self.config.stream_chunk_size)
        try:
            await stream.pipe(response)
        except StoreError as exc:
            if response.headers_sent:
                raise
            # Nothing reached the client yet: undo the replay and let the
            # origin serve it.
            logger.warning(f"cached body unreadable, treating as miss: {exc}")
            response.headers = original_headers
            await next(request, response)


def accelerate(
    config: Optional[WarnishConfig] = None,
    store: Optional[CacheStore] = None,
) -> AccelerateMiddleware:
    """Create the cache-read filter."""
    return AccelerateMiddleware(config, store=store)
