"""
Client event model.

The gateway reports progress to its caller as a stream of ``ClientEvent``
objects, serialized one JSON object per line.  Every event carries its
``type`` and the thread id (``None`` until the thread is persisted).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from agentgate.llm.types import CanonicalEvent, EventKind


# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------


@dataclass
class ClientEvent:
    """
    One event delivered to the client.

    Attributes
    ----------
    type:
        One of ``connection``, ``updates``, ``text``, ``done``, ``error``.
    thread_id:
        Thread the exchange belongs to.
    payload:
        Type-specific fields, flattened into the serialized object.
    """

    type: str
    thread_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "thread_id": self.thread_id, **self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientEvent:
        data = dict(data)
        return cls(type=data.pop("type"), thread_id=data.pop("thread_id", None), payload=data)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

EVENT_CONNECTION = "connection"
EVENT_UPDATES = "updates"
EVENT_TEXT = "text"
EVENT_DONE = "done"
EVENT_ERROR = "error"


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def connection_event(thread_id: str | None, message: str = "Connected") -> ClientEvent:
    return ClientEvent(EVENT_CONNECTION, thread_id, {"message": message})


def updates_event(thread_id: str | None, status: str, **extra: Any) -> ClientEvent:
    """Progress notice: ``{"text": {"type": "in_progress", "status": ...}}``."""
    text: dict[str, Any] = {"type": "in_progress", "status": status}
    text.update(extra)
    return ClientEvent(EVENT_UPDATES, thread_id, {"text": text})


def text_event(thread_id: str | None, text: str) -> ClientEvent:
    return ClientEvent(EVENT_TEXT, thread_id, {"text": text})


def done_event(thread_id: str | None, messages: list[dict]) -> ClientEvent:
    return ClientEvent(EVENT_DONE, thread_id, {"messages": messages})


def error_event(thread_id: str | None, message: str, code: str) -> ClientEvent:
    return ClientEvent(EVENT_ERROR, thread_id, {"message": message, "code": code})


_STATUS = {
    EventKind.TURN_STARTED: "Response created",
    EventKind.TEXT_DELTA: "Text delta",
    EventKind.TOOL_CALL_DELTA: "Tool call delta",
    EventKind.TOOL_CALL_COMPLETE: "Tool call complete",
    EventKind.USAGE: "Usage reported",
    EventKind.TURN_COMPLETE: "Response completed",
    EventKind.ERROR: "Error",
}


def status_for(event: CanonicalEvent) -> str:
    """Human-readable status line for the ``updates`` notice of *event*."""
    if event.kind == EventKind.PROGRESS:
        return event.status or "In progress"
    if event.kind == EventKind.TOOL_CALL_DELTA and event.delta is not None and event.delta.name_delta:
        return f"Tool call: {event.delta.name_delta}"
    return _STATUS.get(event.kind, event.kind.value)
