"""
Unit tests for the streaming HTTP response and its sinks.
"""

import json
from datetime import datetime, timezone
from http import HTTPStatus

import pytest

from warnish.http.response import (
    BufferedSink,
    HTTPResponse,
    OutputSink,
    format_http_date,
    send_body,
    send_error,
)


class UpperSink(OutputSink):
    """Test decorator: upper-cases every chunk."""

    def __init__(self, downstream):
        self.downstream = downstream

    async def write(self, chunk):
        await self.downstream.write(chunk.upper())

    async def end(self):
        await self.downstream.end()


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        assert HTTPResponse(status=HTTPStatus.OK).status_line == "HTTP/1.1 200 OK"
        assert HTTPResponse(status=HTTPStatus.NOT_FOUND).status_line == "HTTP/1.1 404 Not Found"

    def test_unknown_status_phrase(self):
        """A status outside the registry still renders."""
        assert HTTPResponse(status=599).status_line == "HTTP/1.1 599 Unknown"

    def test_set_header_chaining(self):
        """Test method chaining for headers."""
        response = (HTTPResponse()
            .set_header("X-One", "1")
            .set_header("X-Two", "2"))

        assert response.headers["X-One"] == "1"
        assert response.headers["X-Two"] == "2"

    def test_header_lookup_case_insensitive(self):
        """Setting a header with other casing replaces the existing one."""
        response = HTTPResponse()
        response.set_header("Content-Type", "text/html")
        response.set_header("content-type", "text/plain")

        assert response.get_header("CONTENT-TYPE") == "text/plain"
        assert list(response.headers) == ["content-type"]

    def test_remove_header(self):
        response = HTTPResponse(headers={"Content-Length": "10"})
        response.remove_header("content-length")

        assert not response.has_header("Content-Length")

    @pytest.mark.asyncio
    async def test_headers_locked_after_first_write(self):
        """Headers cannot change once the first body byte went out."""
        response = HTTPResponse()
        await response.write(b"x")

        assert response.headers_sent
        with pytest.raises(RuntimeError):
            response.set_header("X-Late", "1")

    @pytest.mark.asyncio
    async def test_write_after_end_raises(self):
        response = HTTPResponse()
        await response.end(b"done")

        with pytest.raises(RuntimeError):
            await response.write(b"more")

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)

        await response.end(b"once")
        await response.end(b"twice")
        assert sink.body == b"once"

    @pytest.mark.asyncio
    async def test_str_chunks_encoded(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        await response.end("héllo")

        assert sink.body == "héllo".encode("utf-8")


class TestPreSendStage:
    """Tests for on_headers hooks."""

    @pytest.mark.asyncio
    async def test_hooks_run_once_before_first_byte(self):
        """Hooks run in order, once, and may still change headers."""
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        seen = []

        def first():
            seen.append(("first", sink.chunks[:]))
            response.set_header("X-Hook", "1")

        response.on_headers(first)
        response.on_headers(lambda: seen.append(("second", None)))

        await response.write(b"a")
        await response.write(b"b")
        await response.end()

        assert seen == [("first", []), ("second", None)]
        assert response.get_header("X-Hook") == "1"

    @pytest.mark.asyncio
    async def test_hooks_run_for_empty_body(self):
        response = HTTPResponse()
        calls = []
        response.on_headers(lambda: calls.append(1))

        await response.end()

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_register_after_send_raises(self):
        response = HTTPResponse()
        await response.end()

        with pytest.raises(RuntimeError):
            response.on_headers(lambda: None)


class TestDecorate:
    """Tests for sink decoration."""

    @pytest.mark.asyncio
    async def test_decorated_sink_sees_every_chunk(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        response.decorate(UpperSink)

        await response.write(b"abc")
        await response.end(b"def")

        assert sink.body == b"ABCDEF"
        assert sink.ended

    @pytest.mark.asyncio
    async def test_empty_write_not_forwarded(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        await response.write(b"")

        assert sink.chunks == []
        assert response.headers_sent

    @pytest.mark.asyncio
    async def test_decorate_after_send_raises(self):
        response = HTTPResponse()
        await response.write(b"x")

        with pytest.raises(RuntimeError):
            response.decorate(UpperSink)


class TestSerialization:
    """Tests for head_bytes."""

    def test_head_includes_headers(self):
        response = HTTPResponse(headers={"X-Custom": "value"})
        head = response.head_bytes("Test/1.0")

        assert head.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"X-Custom: value\r\n" in head
        assert b"Server: Test/1.0\r\n" in head
        assert b"Date: " in head
        assert head.endswith(b"\r\n\r\n")

    def test_extra_headers_override(self):
        """Connection-level headers replace same-named response headers."""
        response = HTTPResponse(headers={"connection": "keep-alive"})
        head = response.head_bytes(extra={"Connection": "close"})

        assert b"Connection: close\r\n" in head
        assert b"connection: keep-alive" not in head


class TestHelpers:
    """Tests for send_body and send_error."""

    @pytest.mark.asyncio
    async def test_send_body_sets_length(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        await send_body(response, "hello world")

        assert response.get_header("Content-Length") == "11"
        assert response.get_header("Content-Type") == "text/plain; charset=utf-8"
        assert sink.body == b"hello world"
        assert response.finished

    @pytest.mark.asyncio
    async def test_send_error_json(self):
        sink = BufferedSink()
        response = HTTPResponse(sink=sink)
        await send_error(response, HTTPStatus.NOT_FOUND, "missing")

        assert response.status == 404
        assert json.loads(sink.body) == {"error": "missing"}


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        """Test HTTP date format."""
        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"
