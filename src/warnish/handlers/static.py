"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Origin handler that serves files from a directory. It is the "slow
backend" sitting behind the cache filters in the bundled server.

=============================================================================
FLOW
=============================================================================

    GET /css/site.css
        1. Strip the URL prefix, resolve under root_dir
        2. Security check: is the resolved path still inside root_dir?
        3. Directory → index file
        4. If-None-Match matches the ETag → 304, no body
        5. Otherwise stream the file in `read_size` pieces

The file is streamed, not loaded whole: every piece goes through the
response's sink chain, which is where CompressMiddleware compresses and
records it.

=============================================================================
"""

import asyncio
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from pathlib import Path

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, format_http_date, send_error
from ..http.mime_types import get_content_type


logger = logging.getLogger(__name__)


class StaticFileHandler:
    """
    Serve files below `root_dir`.

        static = StaticFileHandler("/var/www/site", cache_max_age=86400)
        handler = pipeline.wrap(static)
    """

    def __init__(
        self,
        root_dir: str,
        url_prefix: str = "",
        index_file: str = "index.html",
        cache_max_age: int = 3600,
        read_size: int = 64 * 1024,
    ):
        """
        Args:
            root_dir: Directory to serve. Every file served MUST be inside it.
            url_prefix: Stripped from the request path before resolving.
            index_file: Served for directory requests.
            cache_max_age: Cache-Control max-age in seconds.
            read_size: Bytes read from disk per body write.
        """
        self.root_dir = Path(root_dir).resolve()
        self.url_prefix = url_prefix.rstrip("/")
        self.index_file = index_file
        self.cache_max_age = cache_max_age
        self.read_size = read_size

        if not self.root_dir.is_dir():
            raise ValueError(f"Static root directory does not exist: {root_dir}")

    async def __call__(self, request: HTTPRequest, response: HTTPResponse) -> None:
        await self.handle(request, response)

    async def handle(self, request: HTTPRequest, response: HTTPResponse) -> None:
        file_path = request.path
        if self.url_prefix and file_path.startswith(self.url_prefix):
            file_path = file_path[len(self.url_prefix):]
        file_path = file_path.lstrip("/")

        full_path = (self.root_dir / file_path).resolve()

        # `..` and symlinks are resolved above, so anything outside
        # root_dir at this point is a traversal attempt
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            logger.warning(f"Path traversal attempt: {file_path}")
            await send_error(response, HTTPStatus.FORBIDDEN, "Access denied")
            return

        if full_path.is_dir():
            full_path = full_path / self.index_file

        if not full_path.is_file():
            await send_error(response, HTTPStatus.NOT_FOUND, f"File not found: {request.path}")
            return

        await self._serve_file(full_path, request, response)

    async def _serve_file(self, path: Path, request: HTTPRequest, response: HTTPResponse) -> None:
        try:
            stat = path.stat()
        except PermissionError:
            await send_error(response, HTTPStatus.FORBIDDEN, "Permission denied")
            return

        size = stat.st_size
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        etag = f'"{int(stat.st_mtime)}-{size}"'

        if request.get_header("if-none-match") == etag:
            response.status = HTTPStatus.NOT_MODIFIED
            response.set_header("ETag", etag)
            await response.end()
            return

        response.status = HTTPStatus.OK
        response.set_header("Content-Type", get_content_type(str(path)))
        response.set_header("Content-Length", str(size))
        response.set_header("ETag", etag)
        response.set_header("Last-Modified", format_http_date(mtime))
        response.set_header("Cache-Control", f"public, max-age={self.cache_max_age}")

        with open(path, "rb") as f:
            while True:
                piece = await asyncio.to_thread(f.read, self.read_size)
                if not piece:
                    break
                await response.write(piece)

        await response.end()


def serve_static(root_dir: str, **kwargs) -> StaticFileHandler:
    """Create a static file handler."""
    return StaticFileHandler(root_dir, **kwargs)
