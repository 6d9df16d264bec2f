"""
Replaying a store-resident body as a byte stream.

The body key is a plain string value that the writer grew with APPEND,
one compressed chunk at a time. Concatenated, those chunks are exactly
the compressed stream the first client received, so replay is just
reading the value back in order:

    stream_chunk_size=None   GET once, emit one chunk, end
    stream_chunk_size=N      GETRANGE 0..N-1, N..2N-1, ... until a short
                             read, emitting each range as it arrives

A zero-length value emits nothing and still ends the response.
"""

from typing import AsyncIterator, Optional

from .store import CacheStore
from ..http.response import HTTPResponse


class StoreStream:
    def __init__(self, store: CacheStore, key: str, chunk_size: Optional[int] = None):
        self.store = store
        self.key = key
        self.chunk_size = chunk_size

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        if not self.chunk_size:
            data = await self.store.read(self.key)
            if data:
                yield data
            return

        offset = 0
        while True:
            piece = await self.store.read_range(
                self.key, offset, offset + self.chunk_size - 1
            )
            if piece:
                yield piece
            if len(piece) < self.chunk_size:
                return
            offset += len(piece)

    async def pipe(self, response: HTTPResponse) -> int:
        """
        Drain the stream into `response` and end it.

        Returns:
            Number of body bytes written.

        Raises:
            StoreError: A read failed. Bytes already written stay written.
        """
        sent = 0
        async for chunk in self:
            await response.write(chunk)
            sent += len(chunk)
        await response.end()
        return sent
