"""
Pipeline filters: the cache reader (accelerate), the compressing cache
writer (compress) and access logging.
"""

from .base import Filter, FilterPipeline, FunctionFilter, NextHandler, function_filter
from .accelerate import AccelerateMiddleware, accelerate
from .compress import CompressMiddleware, CacheWriterSink, compress
from .gate import PipelineGate
from .headers import ResponseHeaderPolicy
from .logging import LoggingMiddleware, AccessLogSink, RequestLog
from .negotiation import EncodingNegotiator

__all__ = [
    "Filter",
    "FilterPipeline",
    "FunctionFilter",
    "NextHandler",
    "function_filter",
    "AccelerateMiddleware",
    "accelerate",
    "CompressMiddleware",
    "CacheWriterSink",
    "compress",
    "PipelineGate",
    "ResponseHeaderPolicy",
    "LoggingMiddleware",
    "AccessLogSink",
    "RequestLog",
    "EncodingNegotiator",
]
