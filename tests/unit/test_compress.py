"""
Unit tests for CompressMiddleware (compression + cache writes).
"""

import gzip
import logging
import zlib
from http import HTTPStatus

import pytest

from warnish.cache.store import CacheStore
from warnish.config import WarnishConfig
from warnish.http.request import parse_request
from warnish.http.response import BufferedSink, HTTPResponse, send_error
from warnish.middleware.base import FilterPipeline
from warnish.middleware.compress import CompressMiddleware, compress

from conftest import FixedBodyOrigin, build_request, exchange


BODY = b"<html><body>" + b"hello compressed world " * 200 + b"</body></html>"

BODY_KEY = "warnish-cache:gzip:/page"
HEADER_KEY = "warnish-headers:gzip:/page"


def make_handler(config, origin, store=None):
    pipeline = FilterPipeline()
    pipeline.add(CompressMiddleware(config, store=store))
    return pipeline.wrap(origin)


class TestCompression:
    """Client-visible behavior."""

    @pytest.mark.asyncio
    async def test_gzip_response(self, warnish_config):
        origin = FixedBodyOrigin(BODY, content_type="text/html", piece_size=100)
        handler = make_handler(warnish_config, origin)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip, deflate"})

        response, sink = await exchange(handler, request)

        assert response.get_header("Content-Encoding") == "gzip"
        assert not response.has_header("Content-Length")
        assert response.get_header("Vary") == "Accept-Encoding"
        assert response.get_header("X-Powered-By") == "Warnish"
        assert gzip.decompress(sink.body) == BODY
        assert sink.ended

    @pytest.mark.asyncio
    async def test_deflate_response(self, warnish_config):
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "deflate"})

        response, sink = await exchange(handler, request)

        assert response.get_header("Content-Encoding") == "deflate"
        assert zlib.decompress(sink.body) == BODY

    @pytest.mark.asyncio
    async def test_no_accept_encoding_passthrough(self, warnish_config, fake_redis):
        """Without Accept-Encoding nothing is touched, not even the store."""
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))

        response, sink = await exchange(handler, build_request(path="/page"))

        assert sink.body == BODY
        assert response.get_header("Content-Length") == str(len(BODY))
        assert not response.has_header("Content-Encoding")
        assert not response.has_header("Vary")
        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_unknown_encoding_passthrough(self, warnish_config, fake_redis):
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "br"})

        response, sink = await exchange(handler, request)

        assert sink.body == BODY
        assert not response.has_header("Content-Encoding")
        assert response.get_header("Vary") == "Accept-Encoding"
        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_already_encoded_passthrough(self, warnish_config, fake_redis):
        origin = FixedBodyOrigin(b"\x1f\x8bfake", headers={"Content-Encoding": "gzip"})
        handler = make_handler(warnish_config, origin)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        response, sink = await exchange(handler, request)

        assert sink.body == b"\x1f\x8bfake"
        assert not response.has_header("Vary")
        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_filter_predicate(self, fake_redis):
        config = WarnishConfig(
            client=fake_redis,
            filter=lambda req, res: "text" in (res.get_header("Content-Type") or ""),
        )
        handler = make_handler(config, FixedBodyOrigin(b"PNG...", content_type="image/png"))
        request = build_request(path="/logo.png", headers={"Accept-Encoding": "gzip"})

        response, sink = await exchange(handler, request)

        assert sink.body == b"PNG..."
        assert not response.has_header("Content-Encoding")

    @pytest.mark.asyncio
    async def test_existing_powered_by_composed(self, warnish_config):
        origin = FixedBodyOrigin(BODY, headers={"X-Powered-By": "Origin"})
        handler = make_handler(warnish_config, origin)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        response, _ = await exchange(handler, request)

        assert response.get_header("X-Powered-By") == "Origin, Warnish"


class TestCacheWrites:
    """Store side effects."""

    @pytest.mark.asyncio
    async def test_entry_written(self, warnish_config, fake_redis):
        origin = FixedBodyOrigin(BODY, content_type="text/html; charset=utf-8", piece_size=64)
        handler = make_handler(warnish_config, origin)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        _, sink = await exchange(handler, request)

        assert fake_redis.strings[BODY_KEY.encode()] == sink.body
        assert fake_redis.ttl(BODY_KEY) == 3600

        headers = fake_redis.hashes[HEADER_KEY.encode()]
        assert headers[b"Content-Type"] == b"text/html;charset=utf-8"
        assert headers[b"Last-Modified"].endswith(b"GMT")
        assert fake_redis.ttl(HEADER_KEY) is None

    @pytest.mark.asyncio
    async def test_first_piece_creates_rest_append(self, fake_redis):
        config = WarnishConfig(client=fake_redis, level=0, chunk_size=256)
        handler = make_handler(config, FixedBodyOrigin(BODY, piece_size=512))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        await exchange(handler, request)

        setex = fake_redis.commands("setex")
        appends = fake_redis.commands("append")
        assert len(setex) == 1
        assert len(appends) >= 1
        assert fake_redis.commands("exists") == [("exists", BODY_KEY)] * (len(setex) + len(appends))

    @pytest.mark.asyncio
    async def test_query_string_in_key(self, warnish_config, fake_redis):
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", query_string="a=1&b=2",
                                headers={"Accept-Encoding": "deflate"})

        await exchange(handler, request)

        assert b"warnish-cache:deflate:/page?a=1&b=2" in fake_redis.strings

    @pytest.mark.asyncio
    async def test_encoded_target_in_key(self, warnish_config, fake_redis):
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = parse_request(b"GET /a%2Fb HTTP/1.1\r\nAccept-Encoding: gzip\r\n\r\n")

        await exchange(handler, request)

        assert b"warnish-cache:gzip:/a%2Fb" in fake_redis.strings
        assert b"warnish-cache:gzip:/a/b" not in fake_redis.strings

    @pytest.mark.asyncio
    async def test_ignored_verbs_compressed_not_cached(self, warnish_config, fake_redis):
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request("POST", path="/page", headers={"Accept-Encoding": "gzip"})

        response, sink = await exchange(handler, request)

        assert response.get_header("Content-Encoding") == "gzip"
        assert gzip.decompress(sink.body) == BODY
        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_ignore_verbs_normalized(self, fake_redis):
        config = WarnishConfig(client=fake_redis, ignore_verbs=["get"])
        handler = make_handler(config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        await exchange(handler, request)

        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_ttl_not_refreshed_on_later_misses(self, warnish_config, fake_redis):
        """A second write to a live entry appends and leaves the TTL alone."""
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        await exchange(handler, request)
        fake_redis.advance(100)
        await exchange(handler, request)

        assert fake_redis.ttl(BODY_KEY) == 3500


class TestStoreFailures:
    """The client always gets its bytes."""

    @pytest.mark.asyncio
    async def test_exists_failure_drops_write(self, warnish_config, fake_redis, caplog):
        fake_redis.fail("exists")
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        with caplog.at_level(logging.WARNING):
            _, sink = await exchange(handler, request)

        assert gzip.decompress(sink.body) == BODY
        assert fake_redis.commands("setex") == []
        assert fake_redis.commands("hset") == []
        assert "existence check failed" in caplog.text

    @pytest.mark.asyncio
    async def test_setex_failure_still_records_headers(self, warnish_config, fake_redis):
        fake_redis.fail("setex")
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        _, sink = await exchange(handler, request)

        assert gzip.decompress(sink.body) == BODY
        assert BODY_KEY.encode() not in fake_redis.strings
        assert fake_redis.commands("hset") != []

    @pytest.mark.asyncio
    async def test_hset_failure_ignored(self, warnish_config, fake_redis):
        fake_redis.fail("hset")
        handler = make_handler(warnish_config, FixedBodyOrigin(BODY))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        _, sink = await exchange(handler, request)

        assert gzip.decompress(sink.body) == BODY
        assert BODY_KEY.encode() in fake_redis.strings


class TestFactory:
    def test_compress_factory(self, fake_redis):
        store = CacheStore(fake_redis)
        middleware = compress(WarnishConfig(cache_expires=60), store=store)

        assert isinstance(middleware, CompressMiddleware)
        assert middleware.store is store
        assert middleware.config.cache_expires == 60


class EventSink(BufferedSink):
    """Client sink that logs each write into a shared event list."""

    def __init__(self, events):
        super().__init__()
        self.events = events

    async def write(self, chunk):
        self.events.append(("write", len(chunk)))
        await super().write(chunk)


class TestWriteOrdering:
    """A piece reaches the client only after its store writes settled."""

    async def run_logged(self, config, fake_redis):
        events = []
        fake_redis.calls = events
        sink = EventSink(events)
        handler = make_handler(config, FixedBodyOrigin(BODY, piece_size=512))
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        await handler(request, HTTPResponse(sink=sink))
        return events, sink

    @staticmethod
    def split_by_write(events):
        rounds, current = [], []
        for event in events:
            if event[0] == "write":
                rounds.append((current, event))
                current = []
            else:
                current.append(event)
        return rounds, current

    @pytest.mark.asyncio
    async def test_store_round_precedes_each_piece(self, fake_redis):
        config = WarnishConfig(client=fake_redis, level=0, chunk_size=256)

        events, sink = await self.run_logged(config, fake_redis)
        rounds, trailing = self.split_by_write(events)

        assert len(rounds) == len(sink.chunks) > 2
        assert trailing == []
        for index, (commands, _) in enumerate(rounds):
            write_op = "setex" if index == 0 else "append"
            assert commands == [
                ("exists", BODY_KEY),
                (write_op, BODY_KEY),
                ("hset", HEADER_KEY),
            ]
        assert gzip.decompress(sink.body) == BODY

    @pytest.mark.asyncio
    async def test_failed_write_still_settles_first(self, fake_redis):
        fake_redis.fail("setex")
        config = WarnishConfig(client=fake_redis, level=0, chunk_size=256)

        events, sink = await self.run_logged(config, fake_redis)
        rounds, _ = self.split_by_write(events)

        for commands, _ in rounds:
            assert [name for name, _ in commands] == ["exists", "setex", "hset"]
        assert gzip.decompress(sink.body) == BODY


class TestStatusGate:
    """Only 200 responses become cache entries."""

    @pytest.mark.asyncio
    async def test_not_modified_not_cached(self, warnish_config, fake_redis):
        async def not_modified(request, response):
            response.status = HTTPStatus.NOT_MODIFIED
            await response.end()

        handler = make_handler(warnish_config, not_modified)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        response, _ = await exchange(handler, request)

        assert response.status == 304
        assert fake_redis.calls == []
        assert BODY_KEY.encode() not in fake_redis.strings

    @pytest.mark.asyncio
    async def test_error_body_compressed_not_cached(self, warnish_config, fake_redis):
        async def missing(request, response):
            await send_error(response, HTTPStatus.NOT_FOUND, "missing")

        handler = make_handler(warnish_config, missing)
        request = build_request(path="/page", headers={"Accept-Encoding": "gzip"})

        response, sink = await exchange(handler, request)

        assert response.get_header("Content-Encoding") == "gzip"
        assert b"missing" in gzip.decompress(sink.body)
        assert fake_redis.calls == []
