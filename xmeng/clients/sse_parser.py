"""Incremental parser for the server-sent event stream of a message exchange."""

import codecs
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

from xmeng.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServerSentEvent:
    """A named event and its raw (still serialized) payload."""

    event: str
    data: str


class SSEParser:
    """Turns arbitrarily sliced byte chunks into complete events.

    Lines are separated by ``\\n`` (a trailing ``\\r`` is dropped). An ``event:``
    line names the current event, a ``data:`` line sets its payload, and an
    empty line ends it. Events missing either field are discarded, which also
    filters out keep-alive frames with an empty ``data:`` line.
    """

    def __init__(self, encoding: str = "utf-8"):
        """Initialize parser.

        Args:
            encoding: Text encoding of the stream
        """
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._event_name = ""
        self._event_data = ""

    def feed(self, chunk: bytes) -> list[ServerSentEvent]:
        """Consume one chunk and return the events it completed."""
        self._buffer += self._decoder.decode(chunk)

        *lines, self._buffer = self._buffer.split("\n")

        events: list[ServerSentEvent] = []
        for line in lines:
            event = self._process_line(line.removesuffix("\r"))
            if event:
                events.append(event)
        return events

    def close(self) -> list[ServerSentEvent]:
        """Signal end of stream and flush any pending event.

        The last frame of a stream may lack its terminating blank line (or even
        its final newline); whatever is complete enough to emit is emitted once.
        """
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""

        events: list[ServerSentEvent] = []
        if tail:
            event = self._process_line(tail.removesuffix("\r"))
            if event:
                events.append(event)

        pending = self._take_event()
        if pending:
            logger.debug(f"Flushing unterminated event at end of stream: {pending.event}")
            events.append(pending)
        return events

    def _process_line(self, line: str) -> ServerSentEvent | None:
        if line == "":
            return self._take_event()
        if line.startswith("event:"):
            self._event_name = line[6:].strip()
        elif line.startswith("data:"):
            self._event_data = line[5:].strip()
        return None

    def _take_event(self) -> ServerSentEvent | None:
        event = None
        if self._event_name and self._event_data:
            event = ServerSentEvent(event=self._event_name, data=self._event_data)
        self._event_name = ""
        self._event_data = ""
        return event


async def aiter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[ServerSentEvent]:
    """Lazily parse an async byte stream into events, in arrival order."""
    parser = SSEParser()
    chunk_count = 0

    async for chunk in chunks:
        chunk_count += 1
        for event in parser.feed(chunk):
            yield event

    logger.debug(f"Stream complete after {chunk_count} chunks")
    for event in parser.close():
        yield event
