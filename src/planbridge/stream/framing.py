"""Line framing — split arbitrary stdout chunks into complete text lines."""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger(__name__)

#: Default maximum size of one line (1 MB).
DEFAULT_MAX_LINE_BYTES = 1_048_576


class LineFramer:
    """Incrementally turns byte chunks into trimmed, non-empty lines.

    Any trailing partial line is kept and prefixed to the next chunk, and
    UTF-8 sequences split across chunks are reassembled, so the line
    sequence does not depend on where the chunk boundaries fall.

    Lines longer than ``max_line_bytes`` are dropped with a warning; the
    framer resynchronises at the next newline.
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self._max_line_bytes = max_line_bytes
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._discarding = False
        self.dropped_lines = 0

    @property
    def pending(self) -> str:
        """Buffered text that has not been terminated by a newline yet."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Consume *chunk* and return the lines it completed."""
        text = self._decoder.decode(chunk)
        if self._discarding:
            newline = text.find("\n")
            if newline == -1:
                return []
            text = text[newline + 1 :]
            self._discarding = False

        parts = (self._buffer + text).split("\n")
        self._buffer = parts.pop()

        # Measured stripped, like a completed line.
        if _byte_len(self._buffer.strip()) > self._max_line_bytes:
            logger.warning(
                "stdout line exceeds %d bytes, skipping", self._max_line_bytes
            )
            self.dropped_lines += 1
            self._buffer = ""
            self._discarding = True

        return self._complete(parts)

    def flush(self) -> list[str]:
        """Return the unterminated final line at end of stream, if any."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if self._discarding:
            self._discarding = False
            return []
        return self._complete([tail])

    def _complete(self, parts: list[str]) -> list[str]:
        lines: list[str] = []
        for part in parts:
            line = part.strip()
            if not line:
                continue
            if _byte_len(line) > self._max_line_bytes:
                logger.warning(
                    "stdout line exceeds %d bytes, skipping", self._max_line_bytes
                )
                self.dropped_lines += 1
                continue
            lines.append(line)
        return lines


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8", errors="replace"))
