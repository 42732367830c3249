"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    attachments: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        if self.attachments:
            d["attachments"] = list(self.attachments)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        raw_calls = data.get("tool_calls") or None
        calls = None
        if raw_calls:
            calls = [
                ToolCall(
                    id=tc.get("id", ""),
                    index=tc.get("index", i),
                    name=tc.get("name") or tc.get("function", {}).get("name", ""),
                    arguments=tc.get("arguments")
                    or tc.get("function", {}).get("arguments", ""),
                )
                for i, tc in enumerate(raw_calls)
            ]
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=calls,
            tool_call_id=data.get("tool_call_id"),
            attachments=list(data.get("attachments") or []),
        )


@dataclass
class ToolCall:
    """
    A tool call requested by the model.

    ``arguments`` holds the raw argument text exactly as the provider
    streamed it; it is only parsed when the call is executed.
    """

    id: str
    index: int
    name: str = ""
    arguments: str = ""
    tool_id: str | None = None
    schema: dict | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "index": self.index,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Adapters emit these as tool-call fragments arrive.  The ToolCallAssembler
    accumulates them per ``call_index``.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""


class EventKind(str, Enum):
    TURN_STARTED = "turn-started"
    TEXT_DELTA = "text-delta"
    TOOL_CALL_DELTA = "tool-call-delta"
    TOOL_CALL_COMPLETE = "tool-call-complete"
    USAGE = "usage"
    TURN_COMPLETE = "turn-complete"
    PROGRESS = "progress"
    ERROR = "error"


@dataclass
class CanonicalEvent:
    """
    One provider-agnostic increment of model output.

    Only the fields relevant to ``kind`` are set:

    * ``TURN_STARTED``: ``response_id`` when the upstream assigns one.
    * ``TEXT_DELTA``: ``text``.
    * ``TOOL_CALL_DELTA``: ``delta``.
    * ``TOOL_CALL_COMPLETE``: ``call_index`` (the call is confirmed).
    * ``USAGE``: ``usage`` (raw provider counters).
    * ``PROGRESS``: ``status`` and, for provider-executed tools, ``output``.
    * ``TURN_COMPLETE``: ``finish_reason``.
    * ``ERROR``: ``error`` and an ``ErrorCode`` in ``code``.
    """

    kind: EventKind
    text: str = ""
    delta: RawToolDelta | None = None
    call_index: int | None = None
    usage: dict | None = None
    response_id: str | None = None
    status: str = ""
    output: dict | None = None
    finish_reason: str | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> CanonicalEvent:
        return cls(EventKind.TEXT_DELTA, text=text)

    @classmethod
    def tool_delta(
        cls,
        index: int,
        call_id: str | None = None,
        name: str = "",
        args: str = "",
    ) -> CanonicalEvent:
        return cls(
            EventKind.TOOL_CALL_DELTA,
            delta=RawToolDelta(call_index=index, id=call_id, name_delta=name, args_delta=args),
        )

    @classmethod
    def tool_complete(cls, index: int) -> CanonicalEvent:
        return cls(EventKind.TOOL_CALL_COMPLETE, call_index=index)


@dataclass
class AssembledAssistant:
    """The complete assistant side of one turn after the stream is consumed."""

    content: str
    tool_calls: list[ToolCall]
    usage: list[dict] = field(default_factory=list)
    builtin_outputs: list[dict] = field(default_factory=list)
    response_id: str | None = None
    finish_reason: str | None = None
