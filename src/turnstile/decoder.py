"""Incremental byte-stream to line splitter.

Transports hand over arbitrary byte buffers.  :class:`FrameDecoder`
turns them into complete text lines regardless of where the buffer
boundaries fall, including boundaries inside a multi-byte code point.
"""

from __future__ import annotations

import codecs


class FrameDecoder:
    """Decodes UTF-8 incrementally and splits on ``\\n``.

    Malformed bytes decode to U+FFFD instead of raising.  Empty lines
    are returned as-is; callers decide whether to drop them.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        """Consume one buffer and return the lines it completed."""
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.removesuffix("\r") for line in lines]

    def flush(self) -> list[str]:
        """Signal end of input and return any trailing partial line."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer.removesuffix("\r"), ""
        if remainder.strip():
            return [remainder]
        return []
