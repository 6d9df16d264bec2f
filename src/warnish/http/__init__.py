"""
HTTP primitives: request parsing, the streaming response and its sinks.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    OutputSink,
    BufferedSink,
    format_http_date,
    send_body,
    send_error,
)
from .mime_types import get_content_type

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "HTTPResponse",
    "OutputSink",
    "BufferedSink",
    "format_http_date",
    "send_body",
    "send_error",
    "get_content_type",
]
