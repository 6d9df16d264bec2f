"""
=============================================================================
WARNISH CLI ENTRY POINT
=============================================================================

Runs a caching, compressing static file server:

    python -m warnish --static ./public
    python -m warnish --static ./public --port 3000 --redis-host cache.internal
    python -m warnish --static ./public --cache-expires 600 --ignore-verbs POST,PUT

Pipeline built here:

    LoggingMiddleware → AccelerateMiddleware → CompressMiddleware → StaticFileHandler
                              └─────────── one shared CacheStore ───────────┘

The store is pinged before the socket is bound. If it cannot be reached
the process exits with status 1.

=============================================================================
"""

import argparse
import logging
import os
import sys

from . import __version__
from .cache.store import StoreConnectionError, connect
from .config import DEFAULT_IGNORE_VERBS, RedisConfig, ServerConfig, WarnishConfig
from .handlers import StaticFileHandler
from .middleware import AccelerateMiddleware, CompressMiddleware, LoggingMiddleware
from .server import HTTPServer


logger = logging.getLogger("warnish")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warnish",
        description="Static file server with gzip/deflate compression cached in redis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m warnish --static ./public                 # Run with defaults
  python -m warnish --static ./public --port 3000     # Custom port
  python -m warnish --static ./public --host 0.0.0.0  # Listen on all interfaces
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", default="127.0.0.1",
                        help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=8080,
                        help="Port to listen on (default: 8080)")
    parser.add_argument("--static", "-s", default=os.getenv("HTTP_STATIC_DIR", "."),
                        help="Directory to serve (default: current directory)")

    # ─────────────────────────────────────────────────────────────────────
    # STORE
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--redis-host", default=os.getenv("WARNISH_REDIS_HOST", "127.0.0.1"),
                        help="Redis host (default: 127.0.0.1)")
    parser.add_argument("--redis-port", type=int, default=int(os.getenv("WARNISH_REDIS_PORT", "6379")),
                        help="Redis port (default: 6379)")
    parser.add_argument("--redis-password", default=os.getenv("WARNISH_REDIS_PASSWORD"),
                        help="Redis password (default: none)")

    # ─────────────────────────────────────────────────────────────────────
    # CACHE / COMPRESSION
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--cache-expires", type=int, default=3600,
                        help="Seconds a new cache entry lives (default: 3600)")
    parser.add_argument("--ignore-verbs", default=",".join(DEFAULT_IGNORE_VERBS),
                        help="Comma separated methods never cached (default: PUT,DELETE,HEAD,POST)")
    parser.add_argument("--level", type=int, default=9, choices=range(0, 10), metavar="0-9",
                        help="Compression level (default: 9)")

    # ─────────────────────────────────────────────────────────────────────
    # META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--log-level", "-l", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--version", "-v", action="version", version=f"warnish {__version__}")

    return parser


def build_server(args: argparse.Namespace) -> HTTPServer:
    """Wire config, store, filters and startup/shutdown hooks."""
    server_config = ServerConfig(
        host=args.host,
        port=args.port,
        static_dir=args.static,
        log_level=args.log_level,
    )

    config = WarnishConfig(
        level=args.level,
        redis=RedisConfig(
            host=args.redis_host,
            port=args.redis_port,
            password=args.redis_password,
        ),
        cache_expires=args.cache_expires,
        ignore_verbs=[verb.strip() for verb in args.ignore_verbs.split(",") if verb.strip()],
    )

    store = connect(config)

    server = HTTPServer(server_config)
    server.use(LoggingMiddleware())
    server.use(AccelerateMiddleware(config, store=store))
    server.use(CompressMiddleware(config, store=store))

    server.on_startup(store.ping)
    server.on_shutdown(store.close)
    return server


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        origin = StaticFileHandler(args.static)
        server = build_server(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        server.run(origin)
    except StoreConnectionError as e:
        logger.error(f"redis is unreachable, refusing to start: {e}")
        return 1
    except OSError as e:
        logger.error(f"Failed to bind to {args.host}:{args.port}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
