"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

One log line per request, with timing, the number of body bytes that
actually left the server (compressed size on a cache hit or miss), and a
correlation ID.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - - [10/Jun/2026:10:55:36 +0000] "GET /" 200 512 3.10ms   │
    │ ───────────────────────────────────────────────────────────────────│
    │ IP          Timestamp          Method/Path   Status Size Duration  │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    {"request_id": "a1b2c3d4", "method": "GET", "path": "/",
     "status_code": 200, "content_length": 512, "content_encoding": "gzip",
     "duration_ms": 3.1, ...}

=============================================================================
WHEN IS THE LINE WRITTEN?
=============================================================================

The body is streamed, so the size is unknown when the handler returns.
The filter installs an AccessLogSink next to the connection and writes
the line when that sink sees end(), i.e. when the last byte has been
handed to the socket.

=============================================================================
"""

import time
import json
import uuid
import logging
from typing import Optional
from dataclasses import dataclass

from .base import Filter, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, OutputSink


# Namespaced so deployments can route access lines separately:
#   logging.getLogger("warnish.access").addHandler(file_handler)
logger = logging.getLogger("warnish.access")


@dataclass
class RequestLog:
    """Structured log entry for one request."""

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    content_encoding: str
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "query": self.query,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "content_length": self.content_length,
            "content_encoding": self.content_encoding,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        """Apache-style line."""
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class AccessLogSink(OutputSink):
    """Counts body bytes on their way to `downstream` and logs on end()."""

    def __init__(self, middleware: "LoggingMiddleware", request: HTTPRequest,
                 response: HTTPResponse, downstream: OutputSink, request_id: str):
        self.middleware = middleware
        self.request = request
        self.response = response
        self.downstream = downstream
        self.request_id = request_id
        self.started = time.time()
        self.bytes_sent = 0

    async def write(self, chunk: bytes) -> None:
        self.bytes_sent += len(chunk)
        await self.downstream.write(chunk)

    async def end(self) -> None:
        await self.downstream.end()
        self.middleware.emit(self)


class LoggingMiddleware(Filter):
    """
    Request logging filter. Add it FIRST so it sees every request,
    including the ones a cache hit answers without reaching the origin.

        pipeline.add(LoggingMiddleware(log_format="json"))
        pipeline.add(LoggingMiddleware(skip_paths=["/favicon.ico"]))
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[list[str]] = None,
    ):
        """
        Args:
            log_format: "text" or "json"
            include_request_id: Add X-Request-ID to the response
            log_level: Level of the access lines
            skip_paths: Paths that are never logged
        """
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    async def __call__(self, request: HTTPRequest, response: HTTPResponse, next: NextHandler) -> None:
        # 8 hex chars are enough to correlate lines within one deployment
        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        if self.include_request_id:
            response.set_header("X-Request-ID", request_id)

        if request.path not in self.skip_paths:
            response.decorate(
                lambda downstream: AccessLogSink(self, request, response, downstream, request_id)
            )

        try:
            await next(request, response)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

    def emit(self, sink: AccessLogSink) -> None:
        request, response = sink.request, sink.response

        log_entry = RequestLog(
            request_id=sink.request_id,
            method=request.method,
            path=request.path,
            query=request.query_string,
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=sink.bytes_sent,
            content_encoding=response.get_header("Content-Encoding") or "identity",
            duration_ms=(time.time() - sink.started) * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(log_entry.to_dict()))
        else:
            logger.log(self.log_level, log_entry.to_text())
