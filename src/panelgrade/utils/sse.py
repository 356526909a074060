"""Server-Sent Events framing.

Outbound: progress events are written as ``data: <json>\\n\\n`` frames.
Inbound: provider token streams arrive as SSE bytes split at arbitrary
points; SSEDecoder buffers until a full line is available and dispatches
one JSON payload per event (blank line).
"""

import json
import logging
from typing import Any

from panelgrade.schemas.stream import ProgressEvent

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: ProgressEvent) -> str:
    """Serialize one progress event as an SSE frame."""
    payload = event.model_dump_json(by_alias=True, exclude_none=True)
    return f"data: {payload}\n\n"


class SSEDecoder:
    """Incremental decoder for a provider's ``text/event-stream`` body.

    Feed raw bytes as they arrive; complete events come back as parsed JSON
    objects. Comments, keep-alives, ``[DONE]`` and non-JSON payloads are
    skipped without raising.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        self._buffer += chunk
        events: list[dict[str, Any]] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            line = raw_line.decode("utf-8", errors="replace").rstrip("\r")
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> list[dict[str, Any]]:
        """Flush a trailing event that was not terminated by a blank line."""
        events: list[dict[str, Any]] = []
        if self._buffer:
            line = self._buffer.decode("utf-8", errors="replace").rstrip("\r")
            self._buffer = b""
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, line: str) -> dict[str, Any] | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            # keep-alive comment
            return None
        field, _, value = line.partition(":")
        if field != "data":
            # event:, id:, retry: carry nothing we need
            return None
        self._data_lines.append(value[1:] if value.startswith(" ") else value)
        return None

    def _dispatch(self) -> dict[str, Any] | None:
        if not self._data_lines:
            return None
        data = "\n".join(self._data_lines)
        self._data_lines = []
        if data.strip() == DONE_SENTINEL:
            return None
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Dropping non-JSON SSE frame: %s", data[:100])
            return None
        if not isinstance(parsed, dict):
            logger.debug("Dropping non-object SSE frame: %s", data[:100])
            return None
        return parsed
