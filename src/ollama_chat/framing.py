"""Line framer — turns a chunked byte stream into complete text lines."""

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)


class LineFramer:
    """Incrementally split a byte stream on ``\\n``.

    Bytes are decoded with an incremental UTF-8 decoder, so a multi-byte
    character split across two reads is held back until its remaining
    bytes arrive. Text after the last newline stays pending until the
    next :meth:`feed` or :meth:`flush`.

    Args:
        max_line_length: Largest pending fragment (in characters) kept
            while waiting for a newline. An oversized line is discarded
            up to and including its terminating newline. ``None``
            disables the cap.
    """

    def __init__(self, max_line_length: int | None = None) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._discarding = False
        self._max_line_length = max_line_length

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume one chunk and return the lines it completed, in order.

        Lines are stripped; blank lines are skipped.
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        *complete, self._pending = (self._pending + text).split("\n")

        if self._discarding:
            if not complete:
                self._pending = ""
                return []
            # The first segment is the tail of the line we are dropping.
            complete = complete[1:]
            self._discarding = False

        lines = [s for s in (part.strip() for part in complete) if s]

        if self._max_line_length is not None and len(self._pending) > self._max_line_length:
            logger.warning(
                "Discarding oversized line fragment (%d chars, limit %d)",
                len(self._pending),
                self._max_line_length,
            )
            self._pending = ""
            self._discarding = True

        return lines

    def flush(self) -> list[str]:
        """Signal end of stream and return the unterminated last line, if any."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if self._discarding:
            self._discarding = False
            return []
        return [s for s in (part.strip() for part in tail.split("\n")) if s]


async def aiter_lines(
    chunks: AsyncIterable[bytes],
    max_line_length: int | None = None,
) -> AsyncIterator[str]:
    """Yield complete lines from an async byte stream as soon as they arrive."""
    framer = LineFramer(max_line_length)
    async for chunk in chunks:
        for line in framer.feed(chunk):
            yield line
    for line in framer.flush():
        yield line
