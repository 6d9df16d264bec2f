"""
pytest configuration and fixtures.
"""

from typing import Callable, Dict, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from redis.exceptions import ConnectionError as RedisConnectionError

from warnish.cache.store import CacheStore
from warnish.config import WarnishConfig
from warnish.http import HTTPRequest, HTTPResponse, BufferedSink


def _b(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class FakeRedis:
    """
    In-memory stand-in for redis.asyncio.Redis (decode_responses=False).

    Keys expire against a manual clock (`advance`). Any command can be made
    to fail with `fail(command)`; failures raise redis-py exceptions, just
    like a dropped connection would.
    """

    def __init__(self):
        self.now = 0.0
        self.strings: Dict[bytes, bytes] = {}
        self.hashes: Dict[bytes, Dict[bytes, bytes]] = {}
        self.expiry: Dict[bytes, float] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self.closed = False

    # ─────────────────────────────────────────────────────────────────────
    # TEST CONTROLS
    # ─────────────────────────────────────────────────────────────────────

    def fail(self, command: str, exc: Optional[Exception] = None) -> None:
        self.failures[command] = exc or RedisConnectionError(f"{command} unavailable")

    def heal(self, command: Optional[str] = None) -> None:
        if command is None:
            self.failures.clear()
        else:
            self.failures.pop(command, None)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ttl(self, key) -> Optional[float]:
        key = _b(key)
        if key not in self.expiry:
            return None
        return self.expiry[key] - self.now

    def commands(self, name: Optional[str] = None) -> List[Tuple[str, str]]:
        if name is None:
            return list(self.calls)
        return [call for call in self.calls if call[0] == name]

    def _record(self, command: str, key) -> bytes:
        key = _b(key) if key is not None else b""
        self.calls.append((command, key.decode("utf-8")))
        if command in self.failures:
            raise self.failures[command]
        if key in self.expiry and self.now >= self.expiry[key]:
            self.strings.pop(key, None)
            self.hashes.pop(key, None)
            del self.expiry[key]
        return key

    # ─────────────────────────────────────────────────────────────────────
    # REDIS COMMANDS
    # ─────────────────────────────────────────────────────────────────────

    async def exists(self, *names) -> int:
        count = 0
        for name in names:
            key = self._record("exists", name)
            if key in self.strings or key in self.hashes:
                count += 1
        return count

    async def hgetall(self, name) -> Dict[bytes, bytes]:
        key = self._record("hgetall", name)
        return dict(self.hashes.get(key, {}))

    async def hset(self, name, key=None, value=None, mapping=None) -> int:
        name = self._record("hset", name)
        fields = self.hashes.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = 0
        for field, field_value in items.items():
            if _b(field) not in fields:
                added += 1
            fields[_b(field)] = _b(field_value)
        return added

    async def append(self, key, value) -> int:
        key = self._record("append", key)
        self.strings[key] = self.strings.get(key, b"") + _b(value)
        return len(self.strings[key])

    async def setex(self, name, time, value) -> bool:
        key = self._record("setex", name)
        self.strings[key] = _b(value)
        self.expiry[key] = self.now + int(time)
        return True

    async def get(self, name) -> Optional[bytes]:
        key = self._record("get", name)
        return self.strings.get(key)

    async def getrange(self, key, start: int, end: int) -> bytes:
        key = self._record("getrange", key)
        return self.strings.get(key, b"")[start:end + 1]

    async def ping(self, **kwargs) -> bool:
        self._record("ping", None)
        return True

    async def aclose(self) -> None:
        self.closed = True


class FixedBodyOrigin:
    """
    Origin handler that streams a fixed buffer in `piece_size` pieces.

    Counts how often it ran, so tests can tell a cache hit (origin never
    called) from a miss.
    """

    def __init__(
        self,
        body: bytes,
        content_type: str = "text/plain",
        piece_size: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.body = body
        self.content_type = content_type
        self.piece_size = piece_size
        self.headers = dict(headers or {})
        self.calls = 0

    async def __call__(self, request: HTTPRequest, response: HTTPResponse) -> None:
        self.calls += 1
        response.set_header("Content-Type", self.content_type)
        response.set_header("Content-Length", str(len(self.body)))
        for name, value in self.headers.items():
            response.set_header(name, value)

        size = self.piece_size or len(self.body) or 1
        for start in range(0, len(self.body), size):
            await response.write(self.body[start:start + size])
        await response.end()


def build_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    query_string: str = "",
) -> HTTPRequest:
    return HTTPRequest(
        method=method,
        path=path,
        headers={name.lower(): value for name, value in (headers or {}).items()},
        query_string=query_string,
        client_address=("127.0.0.1", 50000),
    )


async def exchange(handler: Callable, request: HTTPRequest) -> Tuple[HTTPResponse, BufferedSink]:
    """Run one request through `handler` into an in-memory sink."""
    sink = BufferedSink()
    response = HTTPResponse(sink=sink)
    await handler(request, response)
    return response, sink


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> CacheStore:
    return CacheStore(fake_redis, description="fake")


@pytest.fixture
def warnish_config(fake_redis: FakeRedis) -> WarnishConfig:
    """Config whose store is the in-memory fake."""
    return WarnishConfig(client=fake_redis)


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept-Encoding: gzip, deflate\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
    ) + f"Content-Length: {len(body)}\r\n".encode() + (
        b"Connection: close\r\n"
        b"\r\n"
    ) + body
