"""
Server-Sent Events parsing shared by every adapter.

Each SSE event has the form::

    event: <name>\\n
    data: {json}\\n
    \\n

The ``event:`` line is optional.  Chat-completions streams end with the
sentinel ``data: [DONE]``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    event: str | None
    data: dict | None
    done: bool = False


def _decode(event_name: str | None, data_lines: list[str]) -> SSEEvent | None:
    data_str = "\n".join(data_lines).strip()
    if not data_str:
        return None
    if data_str == DONE_SENTINEL:
        return SSEEvent(event=event_name, data=None, done=True)
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        logger.warning("Failed to parse SSE data: %s", data_str[:200])
        return None
    if not isinstance(data, dict):
        return None
    return SSEEvent(event=event_name or data.get("type"), data=data)


async def iter_sse(response: httpx.Response) -> AsyncIterator[SSEEvent]:
    """Yield decoded events from a streaming response, in arrival order."""
    buffer = ""
    event_name: str | None = None
    data_lines: list[str] = []

    # multi-byte characters may span chunks; aiter_text decodes incrementally
    async for text in response.aiter_text():
        buffer += text

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = line.rstrip("\r")

            if not line:
                # Empty line -- SSE event boundary.
                event = _decode(event_name, data_lines)
                event_name, data_lines = None, []
                if event is not None:
                    yield event
                    if event.done:
                        return
                continue

            if line.startswith(":"):
                continue
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].lstrip())

    if buffer.strip().startswith("data:"):
        data_lines.append(buffer.strip()[len("data:"):].lstrip())
    event = _decode(event_name, data_lines)
    if event is not None:
        yield event
