"""
Incremental decoding of newline-delimited JSON generation streams.

The server streams one JSON object per line, ``{"response": "...", "done": false}``,
but network chunks do not respect line boundaries: a chunk may end in the middle
of an object, or in the middle of a multi-byte UTF-8 character. The decoder keeps
a carry-over buffer, parses only complete lines, and holds the trailing partial
line until more bytes arrive or the stream ends.

Lines that fail to parse are dropped. That leniency is part of the protocol
contract, so drops are counted (per decoder and in the ``stream.malformed_lines``
metric) rather than raised.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from parallax.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    """One decoded stream object: an optional text fragment and/or completion."""

    fragment: str = ""
    done: bool = False


class NdjsonStreamDecoder:
    """Turns raw byte chunks into :class:`StreamEvent` objects.

    Events after the first ``done`` are ignored, so the accumulated text does
    not depend on how the payload was split into chunks.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self.malformed_lines = 0
        self.done = False
        self.finished = False

    @property
    def text(self) -> str:
        """All fragments received so far, untrimmed."""
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one raw chunk and return the events it completed."""
        if self.finished:
            raise RuntimeError("Decoder already finished")
        self._buffer += self._utf8.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: list[StreamEvent] = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the carry-over buffer once the stream has ended."""
        if self.finished:
            return []
        self.finished = True
        self._buffer += self._utf8.decode(b"", final=True)
        leftover, self._buffer = self._buffer, ""
        event = self._parse_line(leftover)
        return [event] if event is not None else []

    def completion_text(self) -> Optional[str]:
        """Return the final trimmed text, or None when completion cannot be signaled.

        Completion is signaled when the server sent ``done``, or when the stream
        ended without it but carried some text.
        """
        if self.done or self.text:
            return self.text.strip()
        return None

    def _parse_line(self, line: str) -> Optional[StreamEvent]:
        stripped = line.strip()
        if not stripped or self.done:
            return None
        try:
            data: Any = json.loads(stripped)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            self.malformed_lines += 1
            metrics.inc("stream.malformed_lines")
            logger.debug("stream.malformed_line", preview=stripped[:50])
            return None

        fragment = data.get("response")
        fragment = fragment if isinstance(fragment, str) else ""
        done = bool(data.get("done", False))
        if fragment:
            self._parts.append(fragment)
        if done:
            self.done = True
        if not fragment and not done:
            return None
        return StreamEvent(fragment=fragment, done=done)
