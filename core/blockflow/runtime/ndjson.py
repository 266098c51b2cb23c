"""
NDJSON codec for workflow events.

One JSON object per line. The decoder is incremental: chunks may split a
line (or a multi-byte character) anywhere, and incomplete data is buffered
until the newline arrives.
"""

import codecs
import json
import logging

from blockflow.runtime.events import WorkflowEvent

logger = logging.getLogger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"


def encode_event(event: WorkflowEvent) -> bytes:
    """Serialize an event as one NDJSON line."""
    return (json.dumps(event.to_wire(), default=str) + "\n").encode("utf-8")


class NDJSONDecoder:
    """
    Incremental NDJSON event decoder.

    Example:
        decoder = NDJSONDecoder()
        events = decoder.feed(b'{"type":"start","blockId":"a"}\\n{"type":')
        events += decoder.feed(b'"complete","status":"completed"}\\n')
        events += decoder.flush()
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> list[WorkflowEvent]:
        """Add a chunk and return every event completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[WorkflowEvent]:
        """Parse whatever is left once the stream has ended."""
        remainder = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse_lines([remainder])

    def _parse_lines(self, lines: list[str]) -> list[WorkflowEvent]:
        events: list[WorkflowEvent] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("event is not an object")
                events.append(WorkflowEvent.from_wire(data))
            except ValueError as e:
                # json.JSONDecodeError is a ValueError too
                self.skipped += 1
                logger.debug(f"Skipping malformed NDJSON line: {e}")
        return events
