"""Line splitting for captured process output."""

from __future__ import annotations

import re
from collections.abc import Iterator

__all__ = ["split_lines", "LineBuffer"]

_EOL = re.compile(r"[\r\n]")


def split_lines(text: str) -> Iterator[str]:
    """Yield the lines of ``text`` without their terminators.

    ``\\r``, ``\\n`` and ``\\r\\n`` each end a line. Text with no terminator
    is yielded whole, a terminator at the very end does not produce an
    empty trailing line, and content after the last terminator is yielded
    as a final partial line.
    """
    start = 0
    length = len(text)
    match = _EOL.search(text)
    while match is not None:
        end = match.start()
        yield text[start:end]
        start = end + 1
        if text[end] == "\r" and start < length and text[start] == "\n":
            start += 1
        match = _EOL.search(text, start) if start < length else None

    if start == 0:
        yield text
    elif start < length:
        yield text[start:]


class LineBuffer:
    """Per-stream line assembler for chunked output.

    Holds back an unterminated tail until the next chunk so a line that
    straddles two reads is reported once. A chunk ending in ``\\r`` makes
    a leading ``\\n`` in the next chunk part of the same terminator.

    With ``chunk_local=True`` every chunk is split on its own and nothing
    is carried over.
    """

    def __init__(self, chunk_local: bool = False) -> None:
        self.chunk_local = chunk_local
        self._pending = ""
        self._skip_lf = False

    def feed(self, chunk: str) -> list[str]:
        """Return the complete lines made available by ``chunk``."""
        if not chunk:
            return []
        if self.chunk_local:
            return list(split_lines(chunk))

        if self._skip_lf:
            self._skip_lf = False
            if chunk.startswith("\n"):
                chunk = chunk[1:]
                if not chunk:
                    return []

        text = self._pending + chunk
        self._pending = ""
        lines = list(split_lines(text))

        last = text[-1]
        if last == "\r":
            self._skip_lf = True
        elif last != "\n":
            self._pending = lines.pop()
        return lines

    def flush(self) -> list[str]:
        """Return the unterminated tail, if any, and reset."""
        pending, self._pending = self._pending, ""
        self._skip_lf = False
        return [pending] if pending else []
