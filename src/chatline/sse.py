"""Incremental decoder for server-sent event bodies.

The transport hands out text fragments with no alignment guarantee: a
fragment may end in the middle of a line, inside the ``data:`` prefix, or
between the CR and LF of a line terminator. ``FrameDecoder`` keeps the
unterminated tail in a carry buffer and only emits payloads of events that
were closed by a blank line, so its output never depends on where the
fragments were cut.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from dataclasses import dataclass

from loguru import logger

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"
EVENT_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class DecodedEvent:
    """One payload line, or the termination signal when ``terminal`` is set."""

    data: str
    terminal: bool = False


class FrameDecoder:
    """Turn boundary-unaligned text fragments into payload events.

    One decoder serves exactly one stream.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._held_cr = ""
        self._done = False
        self._consumed = False

    @property
    def done(self) -> bool:
        """Whether the termination sentinel has been seen."""
        return self._done

    @property
    def pending(self) -> str:
        """Text held back because its event is not terminated yet."""
        return "".join(self._parts) + self._held_cr

    def feed(self, chunk: str) -> list[DecodedEvent]:
        """Push one fragment and return the events it completed."""
        if self._done or not chunk:
            return []
        text = self._normalize(chunk)
        if not text:
            return []
        spans_parts = bool(self._parts) and self._parts[-1].endswith("\n") and text.startswith("\n")
        self._parts.append(text)
        if EVENT_SEPARATOR not in text and not spans_parts:
            return []

        buffer = "".join(self._parts)
        self._parts = []
        events: list[DecodedEvent] = []
        while not self._done:
            end = buffer.find(EVENT_SEPARATOR)
            if end < 0:
                if buffer:
                    self._parts.append(buffer)
                break
            block = buffer[:end]
            buffer = buffer[end + len(EVENT_SEPARATOR) :]
            events.extend(self._decode_block(block))
        return events

    def iter_events(self, chunks: Iterable[str]) -> Iterator[DecodedEvent]:
        """Lazily decode a whole stream, stopping after the terminal event."""
        self._claim()
        for chunk in chunks:
            for event in self.feed(chunk):
                yield event
                if event.terminal:
                    return
        self._drop_tail()

    async def aiter_events(self, chunks: AsyncIterable[str]) -> AsyncIterator[DecodedEvent]:
        """Async variant of :meth:`iter_events`."""
        self._claim()
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
                if event.terminal:
                    return
        self._drop_tail()

    def _decode_block(self, block: str) -> list[DecodedEvent]:
        events: list[DecodedEvent] = []
        for line in block.split("\n"):
            if not line.startswith(DATA_PREFIX):
                continue
            value = line[len(DATA_PREFIX) :]
            if value.startswith(" "):
                value = value[1:]
            if value.strip() == DONE_SENTINEL:
                self._done = True
                self._parts = []
                self._held_cr = ""
                events.append(DecodedEvent(data=DONE_SENTINEL, terminal=True))
                break
            events.append(DecodedEvent(data=value))
        return events

    def _normalize(self, chunk: str) -> str:
        # A trailing CR waits for the next fragment, which may start with its LF.
        text = self._held_cr + chunk
        self._held_cr = ""
        if text.endswith("\r"):
            text, self._held_cr = text[:-1], "\r"
        return text.replace("\r\n", "\n")

    def _claim(self) -> None:
        if self._consumed:
            raise RuntimeError("FrameDecoder instances decode a single stream")
        self._consumed = True

    def _drop_tail(self) -> None:
        tail = self.pending
        if tail.strip():
            logger.debug("sse.decoder.unterminated_tail chars={}", len(tail))
        self._parts = []
        self._held_cr = ""


def decode(chunks: Iterable[str]) -> list[DecodedEvent]:
    """Decode a complete stream with a fresh decoder."""
    return list(FrameDecoder().iter_events(chunks))
