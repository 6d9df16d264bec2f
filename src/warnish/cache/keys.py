"""
Cache key derivation.

Every cached response lives under two keys built from the same inputs:

    warnish-cache:gzip:/articles/42?lang=en      → compressed body (string)
    warnish-headers:gzip:/articles/42?lang=en    → replayed headers (hash)

The HTTP method is deliberately not part of the key; the negotiated
content-encoding is, because a gzip body cannot be served to a client
that asked for deflate.
"""

from dataclasses import dataclass
from typing import Optional


IDENTITY = "identity"


@dataclass(frozen=True)
class CacheKeys:
    """Body key and header key of one logical cache entry."""

    body: str
    headers: str


class CacheKeyDeriver:
    def __init__(self, prefix: str = "warnish"):
        self.prefix = prefix

    def derive(self, method: Optional[str], url: str) -> CacheKeys:
        """Both keys for (negotiated method or identity, request URL)."""
        encoding = method or IDENTITY
        return CacheKeys(
            body=f"{self.prefix}-cache:{encoding}:{url}",
            headers=f"{self.prefix}-headers:{encoding}:{url}",
        )
