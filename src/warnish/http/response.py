"""
=============================================================================
STREAMING HTTP RESPONSE
=============================================================================

An HTTPResponse is written incrementally: headers are collected first,
then the body is pushed through a chain of OUTPUT SINKS, each of which
may transform the bytes before handing them to the next one.

=============================================================================
SINK CHAIN
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      RESPONSE OUTPUT PATH                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   handler                                                            │
    │     │  await response.write(b"...")                                  │
    │     ▼                                                                │
    │   ┌──────────────────────┐                                          │
    │   │ PRE-SEND STAGE       │  on_headers() hooks run exactly once,    │
    │   │ (first write or end) │  before the first body byte              │
    │   └──────────┬───────────┘                                          │
    │              ▼                                                       │
    │   ┌──────────────────────┐                                          │
    │   │ CacheWriterSink      │  compress, persist, forward              │
    │   └──────────┬───────────┘                                          │
    │              ▼                                                       │
    │   ┌──────────────────────┐                                          │
    │   │ AccessLogSink        │  count bytes, log on end()               │
    │   └──────────┬───────────┘                                          │
    │              ▼                                                       │
    │   ┌──────────────────────┐                                          │
    │   │ ConnectionSink       │  serialize head, chunked framing,        │
    │   │ (or BufferedSink)    │  socket writes                           │
    │   └──────────────────────┘                                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A filter never patches the response's methods. It builds its own sink
around the current one with `response.decorate(...)` and lets the
downstream handler write into the decorated chain.

=============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Callable, Dict, List, Optional, Union
import json


class OutputSink(ABC):
    """
    Destination of response body bytes.

    write() receives every body chunk in order; end() is called exactly
    once after the last chunk. Implementations await downstream I/O, which
    is how backpressure reaches the writer.
    """

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        """Deliver one body chunk."""

    @abstractmethod
    async def end(self) -> None:
        """Signal that no more chunks will follow."""


class BufferedSink(OutputSink):
    """Collects the body in memory. Default sink for in-process responses."""

    def __init__(self):
        self.chunks: List[bytes] = []
        self.ended = False

    async def write(self, chunk: bytes) -> None:
        if self.ended:
            raise RuntimeError("write after end")
        self.chunks.append(bytes(chunk))

    async def end(self) -> None:
        self.ended = True

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)


HeaderHook = Callable[[], None]


@dataclass
class HTTPResponse:
    """
    Response under construction.

    =========================================================================
    LIFECYCLE
    =========================================================================

        1. Headers are mutable (set_header / remove_header)
        2. First write() or end() runs the pre-send hooks, then locks
           the headers (headers_sent = True)
        3. Body chunks flow through `sink`
        4. end() finishes the sink; further writes raise

    Header names keep the case they were set with, but lookups are
    case-insensitive: set_header("content-type", ...) replaces an
    existing "Content-Type".

    =========================================================================
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    version: str = "HTTP/1.1"
    sink: OutputSink = field(default_factory=BufferedSink)

    headers_sent: bool = field(default=False, init=False)
    finished: bool = field(default=False, init=False)
    _header_hooks: List[HeaderHook] = field(default_factory=list, init=False, repr=False)

    @property
    def status_line(self) -> str:
        """Status line, e.g. "HTTP/1.1 200 OK"."""
        try:
            phrase = HTTPStatus(self.status).phrase
        except ValueError:
            phrase = "Unknown"
        return f"{self.version} {int(self.status)} {phrase}"

    # =========================================================================
    # HEADERS
    # =========================================================================

    def _find(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.headers:
            if key.lower() == lowered:
                return key
        return None

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a header value (case-insensitive lookup)."""
        key = self._find(name)
        return self.headers[key] if key is not None else default

    def has_header(self, name: str) -> bool:
        return self._find(name) is not None

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Set a response header, replacing any differently-cased duplicate.

        Raises:
            RuntimeError: If the headers were already sent.
        """
        if self.headers_sent:
            raise RuntimeError(f"Cannot set header {name!r} after headers are sent")
        key = self._find(name)
        if key is not None:
            del self.headers[key]
        self.headers[name] = str(value)
        return self

    def remove_header(self, name: str) -> "HTTPResponse":
        if self.headers_sent:
            raise RuntimeError(f"Cannot remove header {name!r} after headers are sent")
        key = self._find(name)
        if key is not None:
            del self.headers[key]
        return self

    # =========================================================================
    # PRE-SEND STAGE
    # =========================================================================

    def on_headers(self, hook: HeaderHook) -> None:
        """
        Register a callback for the pre-send stage.

        Hooks run in registration order, exactly once per response, right
        before the first body byte (or before end() for an empty body).
        They may still change headers.
        """
        if self.headers_sent:
            raise RuntimeError("Headers already sent")
        self._header_hooks.append(hook)

    def send_headers(self) -> None:
        """Run the pre-send hooks and lock the headers. Idempotent."""
        if self.headers_sent:
            return
        hooks, self._header_hooks = self._header_hooks, []
        for hook in hooks:
            hook()
        self.headers_sent = True

    def decorate(self, factory: Callable[[OutputSink], OutputSink]) -> OutputSink:
        """
        Wrap the current sink.

        `factory` receives the current sink (the downstream) and returns the
        sink every later write goes through.
        """
        if self.headers_sent:
            raise RuntimeError("Cannot decorate a response after headers are sent")
        self.sink = factory(self.sink)
        return self.sink

    # =========================================================================
    # BODY
    # =========================================================================

    async def write(self, chunk: Union[str, bytes]) -> None:
        """
        Write a body chunk. Strings are encoded as UTF-8.

        Empty chunks only trigger the pre-send stage.
        """
        if self.finished:
            raise RuntimeError("write after end")
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")

        self.send_headers()
        if chunk:
            await self.sink.write(chunk)

    async def end(self, chunk: Union[str, bytes, None] = None) -> None:
        """Write an optional final chunk and finish the response. Idempotent."""
        if self.finished:
            return
        if chunk:
            await self.write(chunk)

        self.send_headers()
        self.finished = True
        await self.sink.end()

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def head_bytes(
        self,
        server_name: str = "Warnish/1.0",
        extra: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """
        Serialize the status line and headers.

            HTTP/1.1 200 OK\\r\\n
            Content-Type: text/html\\r\\n
            Content-Encoding: gzip\\r\\n
            Date: Wed, 01 Jan 2026 ...\\r\\n   ← auto-added
            Server: Warnish/1.0\\r\\n          ← auto-added
            \\r\\n

        Args:
            extra: Connection-level headers (Transfer-Encoding, Connection)
                   decided by the server after the headers were locked.
        """
        response_headers = dict(self.headers)
        for name, value in (extra or {}).items():
            key = self._find(name)
            if key is not None:
                del response_headers[key]
            response_headers[name] = value

        if self._find("Date") is None:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if self._find("Server") is None:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        return "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Wed, 01 Jan 2026 12:00:00 GMT

    HTTP dates are ALWAYS in GMT, never local time.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


async def send_body(
    response: HTTPResponse,
    body: Union[str, bytes],
    status: Optional[int] = None,
    content_type: Optional[str] = None,
) -> None:
    """
    Send a complete body in one go with a known Content-Length.

    Filters that compress the body will drop Content-Length again.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
        if content_type is None:
            content_type = "text/plain; charset=utf-8"

    if status is not None:
        response.status = status
    if content_type is not None:
        response.set_header("Content-Type", content_type)
    response.set_header("Content-Length", str(len(body)))

    await response.end(body)


async def send_error(response: HTTPResponse, status: int, message: str) -> None:
    """Send a JSON error body: {"error": message}."""
    await send_body(
        response,
        json.dumps({"error": message}).encode("utf-8"),
        status=status,
        content_type="application/json; charset=utf-8",
    )
