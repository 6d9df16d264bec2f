"""
Response header rules shared by the compress and accelerate filters.

    Vary            "Accept-Encoding" is added (once) to every eligible
                    response: the body differs per Accept-Encoding, and
                    downstream caches must know that.

    X-Powered-By    compress: appended to an existing value
                    accelerate: overwritten

    Content-Encoding / Content-Length
                    on a negotiated method, Content-Encoding is set and
                    Content-Length dropped: the compressed length is not
                    known until the last byte has left the codec.
"""

from ..http.response import HTTPResponse


VARY_TOKEN = "Accept-Encoding"


class ResponseHeaderPolicy:
    def __init__(self, powered_by: str = "Warnish"):
        self.powered_by = powered_by

    def apply_vary(self, response: HTTPResponse) -> None:
        vary = response.get_header("Vary")
        if not vary:
            response.set_header("Vary", VARY_TOKEN)
        elif VARY_TOKEN.lower() not in vary.lower():
            response.set_header("Vary", f"{vary}, {VARY_TOKEN}")

    def stamp_powered_by(self, response: HTTPResponse, compose: bool = False) -> None:
        """
        Mark the response.

        Args:
            compose: Keep an existing X-Powered-By and append the marker
                     (unless it is already there). False overwrites.
        """
        existing = response.get_header("X-Powered-By")
        if compose and existing:
            if self.powered_by not in existing:
                response.set_header("X-Powered-By", f"{existing}, {self.powered_by}")
            return
        response.set_header("X-Powered-By", self.powered_by)

    def apply_encoding(self, response: HTTPResponse, method: str) -> None:
        response.set_header("Content-Encoding", method)
        response.remove_header("Content-Length")
