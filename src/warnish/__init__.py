"""
=============================================================================
WARNISH - Compressing, Caching Response Filters
=============================================================================

Two filters that sit in front of a slow origin:

    AccelerateMiddleware   serves a previously compressed response
                           straight from redis (cache HIT)
    CompressMiddleware     compresses the origin's response with gzip or
                           deflate while it streams, and appends every
                           compressed piece to redis (cache MISS)

Both negotiate the method from Accept-Encoding the same way, so an entry
written for "gzip" is found again by the next gzip request for the same
URL.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    warnish/
    ├── __main__.py          # CLI (python -m warnish)
    ├── server.py            # asyncio HTTP/1.1 server
    ├── config.py            # WarnishConfig, RedisConfig, ServerConfig
    ├── codec.py             # streaming gzip/deflate codecs
    ├── cache/               # key derivation, redis wrapper, replay stream
    ├── http/                # request parsing, streaming response, MIME
    ├── middleware/          # pipeline, accelerate, compress, logging
    └── handlers/            # static file origin

=============================================================================
QUICK START
=============================================================================

    from warnish import (
        HTTPServer, WarnishConfig, connect,
        LoggingMiddleware, AccelerateMiddleware, CompressMiddleware,
        StaticFileHandler,
    )

    config = WarnishConfig(cache_expires=600)
    store = connect(config)

    server = HTTPServer()
    server.use(LoggingMiddleware())
    server.use(AccelerateMiddleware(config, store=store))
    server.use(CompressMiddleware(config, store=store))
    server.on_startup(store.ping)
    server.run(StaticFileHandler("./public"))

=============================================================================
"""

__version__ = "1.0.0"

from .config import WarnishConfig, RedisConfig, ServerConfig
from .cache import CacheStore, StoreError, StoreConnectionError, StoreStream, connect
from .codec import METHODS, GzipCodec, DeflateCodec, StreamCodec
from .http import HTTPRequest, HTTPResponse, OutputSink, BufferedSink
from .middleware import (
    Filter,
    FilterPipeline,
    AccelerateMiddleware,
    CompressMiddleware,
    LoggingMiddleware,
    accelerate,
    compress,
)
from .handlers import StaticFileHandler
from .server import HTTPServer, create_app

__all__ = [
    "__version__",
    "WarnishConfig",
    "RedisConfig",
    "ServerConfig",
    "CacheStore",
    "StoreError",
    "StoreConnectionError",
    "StoreStream",
    "connect",
    "METHODS",
    "GzipCodec",
    "DeflateCodec",
    "StreamCodec",
    "HTTPRequest",
    "HTTPResponse",
    "OutputSink",
    "BufferedSink",
    "Filter",
    "FilterPipeline",
    "AccelerateMiddleware",
    "CompressMiddleware",
    "LoggingMiddleware",
    "accelerate",
    "compress",
    "StaticFileHandler",
    "HTTPServer",
    "create_app",
]
