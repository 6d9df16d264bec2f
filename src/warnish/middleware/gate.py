"""
Eligibility checks shared by both cache filters.

A request/response pair is handed to the compression and cache logic
only if ALL of these hold; otherwise the filter passes it through
untouched:

    1. Response Content-Encoding is absent or "identity"  (don't double-encode)
    2. The optional filter predicate accepts it
    3. The request has an Accept-Encoding header          (else identity is required)
    4. The request method is not HEAD                     (no body to compress)
"""

from typing import Callable, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


Predicate = Callable[[HTTPRequest, HTTPResponse], bool]


class PipelineGate:
    def __init__(self, predicate: Optional[Predicate] = None):
        self.predicate = predicate

    def allows(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        """True when compression/cache logic should run. Never mutates anything."""
        encoding = response.get_header("Content-Encoding") or "identity"
        if encoding.strip().lower() != "identity":
            return False

        if self.predicate is not None and not self.predicate(request, response):
            return False

        if not request.get_header("accept-encoding"):
            return False

        if request.method.upper() == "HEAD":
            return False

        return True
