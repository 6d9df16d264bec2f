"""
Content-Type lookup for the static origin handler.

The compress filter records whatever Content-Type the origin set (with
spaces stripped) next to the cached body, and the accelerate filter
replays it on every hit. A correct type here is therefore a correct type
for every cached copy.
"""

from pathlib import Path
from typing import Optional


MIME_TYPES = {
    # Text
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",

    # Structured data
    ".json": "application/json",
    ".map": "application/json",
    ".xml": "application/xml",
    ".svg": "image/svg+xml",
    ".wasm": "application/wasm",

    # Already compressed: compressing again mostly wastes CPU
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

TEXT_APPLICATION_TYPES = {
    "application/json",
    "application/xml",
    "image/svg+xml",
}


def get_mime_type(path: str | Path, default: Optional[str] = None) -> str:
    """Get the MIME type for a file based on its extension."""
    extension = Path(path).suffix.lower()
    return MIME_TYPES.get(extension, default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in TEXT_APPLICATION_TYPES


def get_content_type(path: str | Path, charset: str = "utf-8") -> str:
    """
    Full Content-Type header value for a file.

        >>> get_content_type("page.html")
        'text/html; charset=utf-8'

        >>> get_content_type("image.png")
        'image/png'
    """
    mime_type = get_mime_type(path)
    if is_text_type(mime_type):
        return f"{mime_type}; charset={charset}"
    return mime_type
