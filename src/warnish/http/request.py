"""
=============================================================================
HTTP REQUEST
=============================================================================

Parses raw HTTP/1.x request bytes into an HTTPRequest and exposes the
pieces the filters care about.

=============================================================================
WHAT THE CACHE FILTERS READ FROM A REQUEST
=============================================================================

    ┌───────────────────────────────────────────────────────────────────┐
    │ GET /articles/42?lang=en HTTP/1.1                                 │
    │ ─┬─ ──────────┬───────── ────┬───                                 │
    │  │            │              └── version (keep-alive default)     │
    │  │            └── url: raw request target as sent   ◄── CACHE KEY │
    │  └── method: HEAD is never compressed, ignored verbs never cached │
    │                                                                   │
    │ Accept-Encoding: gzip, deflate   ◄── NEGOTIATION INPUT            │
    └───────────────────────────────────────────────────────────────────┘

The URL in the cache key is the request target exactly as the client
sent it (path plus raw query string), so "/a?x=1" and "/a?x=2" are two
different cache entries while the HTTP method is not part of the key.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code to return to the client:

        400 Bad Request                - Malformed request syntax
        405 Method Not Allowed         - Unknown method
        413 Payload Too Large          - Request exceeds size limit
        505 HTTP Version Not Supported - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Header names are stored LOWERCASE (HTTP headers are case-insensitive),
    so `request.headers["accept-encoding"]` and
    `request.get_header("Accept-Encoding")` find the same value.

    `target` keeps the request-URI exactly as sent and `query_string` the
    raw, undecoded query, so the cache key reproduces the request target
    byte for byte even though `path` is percent-decoded.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    query_string: str = ""
    target: str = ""
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)
    raw: bytes = b""

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def url(self) -> str:
        """Raw request target as received; path plus raw query otherwise."""
        if self.target:
            return self.target
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("text/html; charset=utf-8" → "text/html")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        """Content-Length as an integer, 0 when missing or invalid."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if this connection should be kept alive.

            HTTP/1.1: keep alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        connection = self.headers.get("connection", "").lower()

        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value (case-insensitive lookup)."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    ==========================================================================
    PARSER STEPS
    ==========================================================================

        1. Size check                  → HTTPParseError(413)
        2. Split head/body at \\r\\n\\r\\n → HTTPParseError("Incomplete")
        3. Request line                → HTTPParseError(400/405/505)
        4. Headers (lowercased names, repeated headers joined with ", ")
        5. Body by Content-Length

    ==========================================================================
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Args:
            data: Raw HTTP request bytes (head and body).
            client_address: Client's (ip, port) tuple for logging.

        Returns:
            Parsed HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")

        method, target, path, query_string, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        # Body length MUST match Content-Length (no request smuggling)
        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=parse_qs(query_string, keep_blank_values=True),
            query_string=query_string,
            target=target,
            body=body[:content_length],
            client_address=client_address,
            raw=data,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str, str, str]:
        """
        Parse "METHOD SP REQUEST-URI SP HTTP-VERSION".

        Returns:
            Tuple of (method, raw target, decoded path, raw query string, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505
            )

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"

        # "GET /../../../etc/passwd" - never let a path escape the root
        if ".." in path:
            raise HTTPParseError("Invalid path: contains ..", status_code=400)

        return method, uri, path, parsed.query, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Continuation lines (leading whitespace) extend the previous header;
        repeated headers are combined with ", " per RFC 7230.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed header lines

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse an HTTP request in one call."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
