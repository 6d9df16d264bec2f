"""
=============================================================================
ENCODING NEGOTIATION
=============================================================================

Picks a compression method from the client's Accept-Encoding header.

=============================================================================
THE RULES
=============================================================================

    Accept-Encoding (trimmed)      registered [gzip, deflate]   result
    ─────────────────────────────  ──────────────────────────   ────────
    "*"                                                         gzip
    "gzip, deflate, br"            gzip found first             gzip
    "deflate"                      gzip absent, deflate found   deflate
    "deflate;q=1, gzip;q=0.1"      gzip found first             gzip
    "br"                           nothing found                None

This is a SUBSTRING scan over the registered names in registration
order, not an RFC 7231 parse: quality values are ignored and the first
registered name that appears anywhere in the header wins. "*" always
means gzip, whatever the registration order.

The same negotiation runs on both sides (writer and reader), which is
what makes the cache keys line up.

=============================================================================
"""

from typing import Iterable, Optional


WILDCARD_METHOD = "gzip"


class EncodingNegotiator:
    def __init__(self, methods: Iterable[str]):
        self.methods = list(methods)

    def negotiate(self, accept_encoding: Optional[str]) -> Optional[str]:
        """
        Select a method name, or None for "no compression".

        Args:
            accept_encoding: Raw Accept-Encoding header value (may be None)
        """
        if not accept_encoding:
            return None

        if accept_encoding.strip() == "*":
            return WILDCARD_METHOD

        for name in self.methods:
            if name in accept_encoding:
                return name

        return None
