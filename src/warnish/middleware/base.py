"""
=============================================================================
FILTER PIPELINE
=============================================================================

A filter is an async callable of (request, response, next). It either
awaits `next(request, response)` to continue the chain, or finishes the
response itself to short-circuit (a cache hit does exactly that).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    PIPELINE - CACHE MISS                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌──────────┐    ┌────────────┐    ┌──────────┐    ┌──────────┐   │
    │   │ Logging  │───►│ Accelerate │───►│ Compress │───►│  Origin  │   │
    │   │          │    │  (probe)   │    │ (decor.) │    │ handler  │   │
    │   └──────────┘    └────────────┘    └──────────┘    └──────────┘   │
    │                                                                      │
    │   origin writes ──► CacheWriterSink ──► AccessLogSink ──► socket    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    PIPELINE - CACHE HIT                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌──────────┐    ┌────────────┐                                    │
    │   │ Logging  │───►│ Accelerate │──► replay headers + stored bytes   │
    │   └──────────┘    └────────────┘    (Compress and Origin never run) │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Unlike a request→response middleware, the body is not a return value: it
is streamed through the response's sink chain, so a filter that wants to
see the body decorates the sink before calling next.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# A handler (or "the rest of the pipeline") writes the response and
# returns once it has handed off the body.
NextHandler = Callable[[HTTPRequest, HTTPResponse], Awaitable[None]]


class Filter(ABC):
    """
    Abstract base class for pipeline filters.

        class MyFilter(Filter):
            async def __call__(self, request, response, next):
                response.set_header("X-Seen-By", self.name)
                await next(request, response)
    """

    @abstractmethod
    async def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        next: NextHandler,
    ) -> None:
        """
        Process the request.

        Args:
            request: The incoming HTTP request
            response: The response under construction
            next: The rest of the chain. Await it, or finish `response`
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FilterPipeline:
    """
    Chains filters around a final handler.

    First added = outermost:

        pipeline = FilterPipeline()
        pipeline.add(LoggingMiddleware())
        pipeline.add(AccelerateMiddleware(config, store=store))
        pipeline.add(CompressMiddleware(config, store=store))

        handler = pipeline.wrap(static_files)
        await handler(request, response)
    """

    def __init__(self):
        self._filters: List[Filter] = []

    def add(self, filter: Filter) -> "FilterPipeline":
        self._filters.append(filter)
        logger.debug(f"Added filter: {filter.name}")
        return self

    def use(self, *filters: Filter) -> "FilterPipeline":
        for f in filters:
            self.add(f)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Wrap a handler with every filter in the pipeline.

        Wrapping happens in reverse so the first filter added ends up
        outermost: [F1, F2, F3] + handler → F1(F2(F3(handler))).
        """
        current = handler
        for f in reversed(self._filters):
            current = self._create_wrapped_handler(f, current)
        return current

    def _create_wrapped_handler(self, filter: Filter, next_handler: NextHandler) -> NextHandler:
        async def wrapped(request: HTTPRequest, response: HTTPResponse) -> None:
            await filter(request, response, next_handler)

        return wrapped

    def __len__(self) -> int:
        return len(self._filters)

    def __iter__(self):
        return iter(self._filters)


# =============================================================================
# FUNCTION FILTERS
# =============================================================================

class FunctionFilter(Filter):
    """
    Wraps an async function as a filter.

        @function_filter
        async def no_store(request, response, next):
            response.set_header("Cache-Control", "no-store")
            await next(request, response)
    """

    def __init__(
        self,
        func: Callable[[HTTPRequest, HTTPResponse, NextHandler], Awaitable[None]],
        name: Optional[str] = None
    ):
        self._func = func
        self._name = name or func.__name__

    async def __call__(self, request: HTTPRequest, response: HTTPResponse, next: NextHandler) -> None:
        await self._func(request, response, next)

    @property
    def name(self) -> str:
        return self._name


def function_filter(
    func: Callable[[HTTPRequest, HTTPResponse, NextHandler], Awaitable[None]]
) -> FunctionFilter:
    """Decorator form of FunctionFilter."""
    return FunctionFilter(func)
