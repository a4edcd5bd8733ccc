"""Incremental decoding of newline-delimited JSON streams."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One decoded record of a streamed response."""

    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> Dict[str, Any]:
        message = self.data.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def content(self) -> str:
        return self.message.get("content") or ""

    @property
    def thinking(self) -> str:
        return self.message.get("thinking") or ""

    @property
    def done(self) -> bool:
        return self.data.get("done") is True

    @property
    def status(self) -> str | None:
        return self.data.get("status")

    @property
    def summary(self) -> Dict[str, Any]:
        """Everything except the message delta, e.g. durations and token counts."""
        return {key: value for key, value in self.data.items() if key != "message"}


def is_chat_terminal(event: StreamEvent) -> bool:
    return event.done


def is_pull_terminal(event: StreamEvent) -> bool:
    return event.status == "success"


class StreamDecoder:
    """Turns byte fragments into ``StreamEvent`` objects.

    A record may be split across fragments and a fragment may hold any number
    of records; the trailing partial line is buffered until the next
    ``feed``. Records that are not valid JSON objects are dropped with a
    warning. Once a terminal record has been decoded the decoder is finished
    and ignores further input.
    """

    def __init__(self, is_terminal: Callable[[StreamEvent], bool] = is_chat_terminal) -> None:
        self._is_terminal = is_terminal
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False

    def feed(self, fragment: bytes) -> List[StreamEvent]:
        if self.finished:
            return []
        self._buffer += self._utf8.decode(fragment)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def close(self) -> List[StreamEvent]:
        """Flush whatever is buffered once the transport reports end of data."""
        if self.finished:
            return []
        remaining = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        events = self._decode_lines([remaining])
        self.finished = True
        return events

    def _decode_lines(self, lines: Iterable[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            if self.finished:
                break
            line = line.strip()
            if not line:
                continue
            event = self._parse(line)
            if event is None:
                continue
            events.append(event)
            if self._is_terminal(event):
                self.finished = True
        return events

    @staticmethod
    def _parse(line: str) -> StreamEvent | None:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Failed to parse stream record %r: %s", line[:200], exc)
            return None
        if not isinstance(data, dict):
            LOGGER.warning("Ignoring stream record that is not an object: %r", line[:200])
            return None
        return StreamEvent(data)


def decode_stream(
    fragments: Iterable[bytes],
    is_terminal: Callable[[StreamEvent], bool] = is_chat_terminal,
) -> Iterator[StreamEvent]:
    """Yield events from ``fragments`` until a terminal event or end of data."""
    decoder = StreamDecoder(is_terminal)
    for fragment in fragments:
        yield from decoder.feed(fragment)
        if decoder.finished:
            return
    yield from decoder.close()
