"""
Origin handlers. A handler is the innermost callable of the pipeline:
`async handler(request, response)` writes the response and ends it.
"""

from .static import StaticFileHandler, serve_static

__all__ = [
    "StaticFileHandler",
    "serve_static",
]
