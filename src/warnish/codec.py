"""
=============================================================================
STREAMING CODECS
=============================================================================

One codec instance compresses exactly one response body, chunk by chunk,
without ever holding the whole body in memory.

=============================================================================
GZIP VS DEFLATE ON THE WIRE
=============================================================================

Both use the DEFLATE algorithm; they differ only in the wrapper zlib
puts around the compressed data, which is selected with `wbits`:

    ┌──────────────────────────────────────────────────────────────────┐
    │  Content-Encoding │ wbits              │ wrapper                   │
    │  ─────────────────┼────────────────────┼─────────────────────────  │
    │  gzip             │ 16 + window_bits   │ gzip header + CRC32       │
    │  deflate          │ window_bits        │ zlib header + Adler-32    │
    └──────────────────────────────────────────────────────────────────┘

"deflate" in HTTP means the zlib format (RFC 1950), not raw DEFLATE.

=============================================================================
OUTPUT CHUNKING
=============================================================================

zlib buffers input internally and only emits output when it has enough
to emit. The codec re-slices whatever zlib returns into pieces of at
most `chunk_size` bytes; every piece is one unit for the cache writer
(one store append, one client write). A small body typically yields no
output until flush().

=============================================================================
"""

import zlib
from typing import Callable, Dict, List

from .config import WarnishConfig


class StreamCodec:
    """
    Incremental compressor bound to one response body.

        codec = GzipCodec(config)
        for piece in codec.compress(b"hello "): ...
        for piece in codec.compress(b"world"): ...
        for piece in codec.flush(): ...      # trailing output, end of stream
    """

    encoding = ""
    wrapper_bits = 0

    def __init__(self, config: WarnishConfig):
        self.chunk_size = config.chunk_size
        self._compressor = zlib.compressobj(
            config.level,
            zlib.DEFLATED,
            self.wrapper_bits + config.window_bits,
            config.mem_level,
            config.strategy,
        )
        self._pending = bytearray()
        self.finished = False

    def compress(self, data: bytes) -> List[bytes]:
        """Feed body bytes; return the output pieces ready so far."""
        if self.finished:
            raise ValueError(f"{self.encoding} codec already flushed")
        self._pending += self._compressor.compress(data)
        return self._drain(final=False)

    def flush(self) -> List[bytes]:
        """Finish the stream; return the remaining output pieces."""
        if self.finished:
            return []
        self._pending += self._compressor.flush(zlib.Z_FINISH)
        self.finished = True
        return self._drain(final=True)

    def _drain(self, final: bool) -> List[bytes]:
        pieces = []
        while len(self._pending) >= self.chunk_size:
            pieces.append(bytes(self._pending[:self.chunk_size]))
            del self._pending[:self.chunk_size]
        if final and self._pending:
            pieces.append(bytes(self._pending))
            self._pending.clear()
        return pieces


class GzipCodec(StreamCodec):
    encoding = "gzip"
    wrapper_bits = 16


class DeflateCodec(StreamCodec):
    encoding = "deflate"
    wrapper_bits = 0


CodecFactory = Callable[[WarnishConfig], StreamCodec]

# Registration order is negotiation order.
METHODS: Dict[str, CodecFactory] = {
    "gzip": GzipCodec,
    "deflate": DeflateCodec,
}
