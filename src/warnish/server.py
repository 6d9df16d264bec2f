"""
=============================================================================
ASYNCIO HTTP/1.1 SERVER
=============================================================================

Hosts the filter pipeline in front of an origin handler.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     ONE CONNECTION (one task)                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   asyncio.start_server ──► _handle_connection(reader, writer)       │
    │                                   │                                  │
    │                                   ▼  keep-alive loop                 │
    │   readuntil(b"\\r\\n\\r\\n") + readexactly(Content-Length)              │
    │                                   │                                  │
    │   RequestParser.parse ──► HTTPRequest                               │
    │                                   │                                  │
    │   HTTPResponse(sink=ConnectionSink(writer))                         │
    │   await handler(request, response)   ← pipeline.wrap(origin)        │
    │                                   │                                  │
    │   Connection: close? ──► close : next request                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Everything runs on one event loop. Store round trips and socket writes
are awaits, so many requests interleave at those points, and nothing
else.

=============================================================================
FRAMING
=============================================================================

The head is written when the first body byte (or end()) reaches the
ConnectionSink, after every pre-send hook has run:

    HEAD, 1xx, 204, 304     head only, body bytes discarded
    Content-Length set      raw body
    HTTP/1.1, no length     Transfer-Encoding: chunked
    HTTP/1.0, no length     raw body, Connection: close

=============================================================================
"""

import asyncio
import logging
import re
import signal
from http import HTTPStatus
from typing import Awaitable, Callable, List, Optional

from .config import ServerConfig
from .http.request import HTTPRequest, RequestParser, HTTPParseError
from .http.response import HTTPResponse, OutputSink, send_error
from .middleware.base import Filter, FilterPipeline, NextHandler


logger = logging.getLogger(__name__)


Hook = Callable[[], Awaitable[None]]

_CONTENT_LENGTH = re.compile(rb"\r\ncontent-length:[ \t]*(\d+)", re.IGNORECASE)


class ConnectionSink(OutputSink):
    """Innermost sink: serializes the head and frames the body on the socket."""

    def __init__(
        self,
        writer: asyncio.StreamWriter,
        request: HTTPRequest,
        response: HTTPResponse,
        keep_alive: bool,
        server_name: str,
    ):
        self.writer = writer
        self.request = request
        self.response = response
        self.keep_alive = keep_alive
        self.server_name = server_name

        self.head_written = False
        self.chunked = False
        self.discard_body = False
        self.bytes_written = 0

    def _frame(self) -> dict:
        status = int(self.response.status)
        extra = {}

        if (self.request.method == "HEAD" or 100 <= status < 200
                or status in (HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED)):
            self.discard_body = True
        elif not self.response.has_header("Content-Length"):
            if self.request.version == "HTTP/1.1":
                self.chunked = True
                extra["Transfer-Encoding"] = "chunked"
            else:
                # End of body is signalled by closing the connection
                self.keep_alive = False

        extra["Connection"] = "keep-alive" if self.keep_alive else "close"
        return extra

    async def _write_head(self) -> None:
        if self.head_written:
            return
        self.head_written = True
        self.writer.write(self.response.head_bytes(self.server_name, extra=self._frame()))

    async def write(self, chunk: bytes) -> None:
        await self._write_head()
        if self.discard_body:
            return

        if self.chunked:
            self.writer.write(f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n")
        else:
            self.writer.write(chunk)
        self.bytes_written += len(chunk)

        # Backpressure: a slow client slows the producer down
        await self.writer.drain()

    async def end(self) -> None:
        await self._write_head()
        if self.chunked:
            self.writer.write(b"0\r\n\r\n")
        await self.writer.drain()


class HTTPServer:
    """
    Asyncio HTTP/1.1 server running a filter pipeline.

    =========================================================================
    USAGE
    =========================================================================

        server = HTTPServer(ServerConfig(port=8080))
        server.use(LoggingMiddleware())
        server.use(AccelerateMiddleware(config, store=store))
        server.use(CompressMiddleware(config, store=store))
        server.run(StaticFileHandler("./public"))

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._pipeline = FilterPipeline()
        self._handler: Optional[NextHandler] = None
        self._server: Optional[asyncio.base_events.Server] = None
        self._running = False

        self._startup: List[Hook] = []
        self._shutdown: List[Hook] = []

    def use(self, filter: Filter) -> "HTTPServer":
        """Add a filter. First added runs outermost."""
        self._pipeline.add(filter)
        return self

    def on_startup(self, hook: Hook) -> Hook:
        """Register an async callable awaited before the socket is bound."""
        self._startup.append(hook)
        return hook

    def on_shutdown(self, hook: Hook) -> Hook:
        """Register an async callable awaited after the server stopped."""
        self._shutdown.append(hook)
        return hook

    @property
    def sockets(self):
        return self._server.sockets if self._server is not None else ()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self, origin: NextHandler) -> None:
        """Start the server and block until SIGINT/SIGTERM."""
        self._setup_logging()
        try:
            asyncio.run(self.serve(origin))
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

    async def serve(self, origin: NextHandler, ready: Optional[asyncio.Event] = None) -> None:
        """
        Serve until stop() is called or a termination signal arrives.

        Startup hooks run first; an exception from one of them (for
        example StoreConnectionError) propagates and nothing is bound.
        """
        for hook in self._startup:
            await hook()

        self._handler = self._pipeline.wrap(origin)
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.config.host,
            self.config.port,
            limit=self.config.max_request_size,
        )
        self._running = True
        self._install_signal_handlers()

        address = self._server.sockets[0].getsockname() if self._server.sockets else None
        logger.info(f"Server listening on {address}")
        if ready is not None:
            ready.set()

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            for hook in self._shutdown:
                await hook()
            logger.info("Server stopped")

    def stop(self) -> None:
        """Stop accepting connections. Idempotent."""
        if self._server is not None and self._running:
            logger.info("Shutting down server...")
            self._running = False
            self._server.close()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or not in the main thread
                pass

    def _setup_logging(self) -> None:
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("warnish").setLevel(level)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername") or ("", 0)
        client_address = (str(peer[0]), int(peer[1]))
        first = True

        try:
            while self._running:
                timeout = self.config.timeout if first else self.config.keep_alive_timeout
                first = False

                try:
                    raw = await self._read_request(reader, timeout)
                except asyncio.TimeoutError:
                    break
                except HTTPParseError as e:
                    await self._send_error(writer, e.status_code, str(e))
                    break

                if raw is None:
                    break

                try:
                    request = self._parser.parse(raw, client_address)
                except HTTPParseError as e:
                    await self._send_error(writer, e.status_code, str(e))
                    break

                keep_alive = request.is_keep_alive and self.config.keep_alive
                sink = await self._process(request, writer, keep_alive)

                if not sink.keep_alive:
                    break
        except ConnectionError as e:
            logger.debug(f"Client {client_address[0]} went away: {e}")
        except Exception as e:
            logger.exception(f"Connection error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _read_request(self, reader: asyncio.StreamReader, timeout: Optional[float]) -> Optional[bytes]:
        """Read one request head and body. None when the client closed cleanly."""
        try:
            head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout)
        except asyncio.IncompleteReadError as e:
            if e.partial:
                raise HTTPParseError("Incomplete request: no header terminator")
            return None
        except asyncio.LimitOverrunError:
            raise HTTPParseError("Request header too large", status_code=431)

        match = _CONTENT_LENGTH.search(head)
        length = int(match.group(1)) if match else 0
        if len(head) + length > self.config.max_request_size:
            raise HTTPParseError(f"Request too large: {len(head) + length} bytes", status_code=413)

        body = b""
        if length:
            try:
                body = await asyncio.wait_for(reader.readexactly(length), timeout)
            except asyncio.IncompleteReadError:
                raise HTTPParseError(f"Incomplete body: expected {length} bytes")
        return head + body

    async def _process(self, request: HTTPRequest, writer: asyncio.StreamWriter, keep_alive: bool) -> ConnectionSink:
        response = HTTPResponse(version="HTTP/1.1")
        sink = ConnectionSink(writer, request, response, keep_alive, self.config.server_name)
        response.sink = sink

        try:
            await self._handler(request, response)
        except Exception as e:
            logger.exception(f"Handler error: {e}")
            if response.headers_sent:
                # Part of the body is out; the only honest signal left is
                # to drop the connection
                sink.keep_alive = False
                return sink
            error = HTTPResponse(version="HTTP/1.1")
            sink = ConnectionSink(writer, request, error, keep_alive, self.config.server_name)
            error.sink = sink
            await send_error(error, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
            return sink

        # Handlers that return without ending still get a complete response
        await response.end()
        return sink

    async def _send_error(self, writer: asyncio.StreamWriter, status: int, message: str) -> None:
        """Error for requests that never reached the pipeline."""
        request = HTTPRequest(method="GET", path="/", version="HTTP/1.1")
        response = HTTPResponse()
        response.sink = ConnectionSink(writer, request, response, False, self.config.server_name)
        await send_error(response, status, message)


def create_app(config: Optional[ServerConfig] = None) -> HTTPServer:
    """Create a server instance."""
    return HTTPServer(config)
