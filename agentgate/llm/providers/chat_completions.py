"""
Chat-completions protocol adapter.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol: OpenAI, DeepSeek, Gemini's OpenAI-compatible API, MiniMax,
Hugging Face router, AIML API, xAI without search, vLLM and friends.

Each streamed chunk carries a small delta against one evolving assistant
message.  Tool-call fragments are keyed by ``index``; the calls are
confirmed when a ``finish_reason`` arrives.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentgate.llm.providers.base import ProviderAdapter, is_image
from agentgate.llm.sse import SSEEvent
from agentgate.llm.types import CanonicalEvent, EventKind, Message
from agentgate.tools.catalog import AgentTool

if TYPE_CHECKING:
    from agentgate.session.session import Session

logger = logging.getLogger(__name__)


def _user_content(msg: Message) -> str | list[dict]:
    if not msg.attachments:
        return msg.content
    parts: list[dict] = [{"type": "text", "text": msg.content}]
    for url in msg.attachments:
        if is_image(url):
            parts.append({"type": "image_url", "image_url": {"url": url}})
        else:
            parts.append({"type": "file", "file": {"file_data": url} if url.startswith("data:") else {"file_url": url}})
    return parts


def render_chat_messages(messages: list[Message], instructions: str = "") -> list[dict]:
    wire: list[dict] = []
    if instructions:
        wire.append({"role": "system", "content": instructions})
    for msg in messages:
        if msg.role == "user":
            wire.append({"role": "user", "content": _user_content(msg)})
            continue
        m: dict = {"role": msg.role, "content": msg.content}
        if msg.tool_calls:
            m["content"] = msg.content or None
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            m["tool_call_id"] = msg.tool_call_id
        wire.append(m)
    return wire


class ChatCompletionsAdapter(ProviderAdapter):
    family = "chat"
    endpoint = "/chat/completions"

    def render_tool(self, tool: AgentTool) -> dict:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.summary,
                "parameters": tool.routed_parameters,
            },
        }

    def render_conversation(self, session: Session) -> dict:
        return {"messages": render_chat_messages(session.history, session.instructions)}

    def build_payload(self, session: Session) -> dict:
        payload = super().build_payload(session)
        if payload.get("tools"):
            payload.setdefault("tool_choice", "auto")
        if payload["stream"]:
            payload.setdefault("stream_options", {"include_usage": True})
        return payload

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def translate_event(self, sse: SSEEvent, state: dict) -> list[CanonicalEvent]:
        if sse.done or sse.data is None:
            return []
        data = sse.data
        events: list[CanonicalEvent] = []

        if "error" in data:
            state["completed"] = True
            err = data["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            return [self.error_event(message)]

        if not state.get("started"):
            state["started"] = True
            events.append(CanonicalEvent(EventKind.TURN_STARTED, response_id=data.get("id")))

        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            delta = choice.get("delta") or {}
            if delta.get("content"):
                events.append(CanonicalEvent.text_delta(delta["content"]))

            open_calls: list[int] = state.setdefault("open_calls", [])
            for raw_tc in delta.get("tool_calls") or []:
                idx = raw_tc.get("index", 0)
                if idx not in open_calls:
                    open_calls.append(idx)
                func = raw_tc.get("function") or {}
                events.append(
                    CanonicalEvent.tool_delta(
                        idx,
                        call_id=raw_tc.get("id"),
                        name=func.get("name") or "",
                        args=func.get("arguments") or "",
                    )
                )

            finish_reason = choice.get("finish_reason")
            if finish_reason is not None:
                state["finish_reason"] = finish_reason
                for idx in sorted(open_calls):
                    events.append(CanonicalEvent.tool_complete(idx))
                open_calls.clear()

        # include_usage sends counters on a final chunk with no choices
        if data.get("usage"):
            events.append(CanonicalEvent(EventKind.USAGE, usage=data["usage"]))
        return events

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    def translate_response(self, data: dict) -> list[CanonicalEvent]:
        events = [CanonicalEvent(EventKind.TURN_STARTED, response_id=data.get("id"))]
        choices = data.get("choices") or []
        finish_reason = None
        if choices:
            message = choices[0].get("message") or {}
            finish_reason = choices[0].get("finish_reason")
            if message.get("content"):
                events.append(CanonicalEvent.text_delta(message["content"]))
            for idx, raw_tc in enumerate(message.get("tool_calls") or []):
                func = raw_tc.get("function") or {}
                events.append(
                    CanonicalEvent.tool_delta(
                        idx,
                        call_id=raw_tc.get("id"),
                        name=func.get("name", ""),
                        args=func.get("arguments") or "",
                    )
                )
                events.append(CanonicalEvent.tool_complete(idx))
        if data.get("usage"):
            events.append(CanonicalEvent(EventKind.USAGE, usage=data["usage"]))
        events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=finish_reason))
        return events
