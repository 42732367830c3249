"""
Block-structured (``/messages``) adapter.

Content arrives as typed blocks, each with its own lifecycle::

    message_start
    content_block_start   (text | tool_use | server_tool_use | mcp_tool_use | ...)
    content_block_delta   (text_delta | input_json_delta)
    content_block_stop
    message_delta         (stop_reason, output usage)
    message_stop

``tool_use`` blocks become tool calls, confirmed on their
``content_block_stop``.  Input usage arrives on ``message_start`` and output
usage on ``message_delta``; they are merged into one ``USAGE`` event.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from agentgate.agent import BuiltinCapabilities
from agentgate.llm.providers.base import ProviderAdapter, is_image
from agentgate.llm.sse import SSEEvent
from agentgate.llm.types import CanonicalEvent, EventKind, Message
from agentgate.tools.catalog import AgentTool
from agentgate.types import UserIdentity

if TYPE_CHECKING:
    from agentgate.session.session import Session
    from agentgate.tools.remote import RemoteServerSpec

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
MCP_BETA = "mcp-client-2025-04-04"
DEFAULT_MAX_TOKENS = 4096

PROVIDER_EXECUTED_BLOCKS = (
    "server_tool_use",
    "web_search_tool_result",
    "mcp_tool_use",
    "mcp_tool_result",
    "code_execution_tool_result",
)


def _user_content(msg: Message) -> str | list[dict]:
    if not msg.attachments:
        return msg.content
    blocks: list[dict] = [{"type": "text", "text": msg.content}]
    for url in msg.attachments:
        kind = "image" if is_image(url) else "document"
        blocks.append({"type": kind, "source": {"type": "url", "url": url}})
    return blocks


def _tool_input(raw: str) -> dict:
    try:
        value = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def render_block_messages(messages: list[Message]) -> list[dict]:
    """
    Convert history to the block format.

    Tool results travel as ``tool_result`` blocks inside a user message;
    consecutive results are grouped into one message.
    """
    converted: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            continue

        if msg.role == "tool":
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content}
            prev = converted[-1] if converted else None
            if (
                prev is not None
                and prev["role"] == "user"
                and isinstance(prev["content"], list)
                and prev["content"]
                and prev["content"][0].get("type") == "tool_result"
            ):
                prev["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if msg.role == "assistant" and msg.tool_calls:
            content_blocks: list[dict] = []
            if msg.content:
                content_blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                content_blocks.append(
                    {"type": "tool_use", "id": tc.id, "name": tc.name, "input": _tool_input(tc.arguments)}
                )
            converted.append({"role": "assistant", "content": content_blocks})
            continue

        if msg.role == "user":
            converted.append({"role": "user", "content": _user_content(msg)})
            continue

        converted.append({"role": msg.role, "content": msg.content})
    return converted


def render_web_search(params: dict) -> dict:
    tool: dict = {
        "type": "web_search_20250305",
        "name": "web_search",
        "max_uses": params.get("max_uses") or 5,
    }
    for key in ("allowed_domains", "blocked_domains"):
        if params.get(key):
            tool[key] = params[key]
    location = params.get("user_location") or {}
    loc = {k: location[k] for k in ("city", "region", "country", "timezone") if location.get(k)}
    if loc:
        tool["user_location"] = {"type": "approximate", **loc}
    return tool


class MessagesAdapter(ProviderAdapter):
    family = "messages"
    endpoint = "/messages"
    hosts_remote_servers = True

    def render_tool(self, tool: AgentTool) -> dict:
        return {
            "name": tool.name,
            "description": tool.summary,
            "input_schema": tool.routed_parameters,
        }

    def render_builtin_tools(self, builtin: BuiltinCapabilities) -> list[dict]:
        if builtin.web_search:
            return [render_web_search(builtin.web_search)]
        return []

    def render_remote_servers(
        self,
        servers: list[RemoteServerSpec],
        identity: UserIdentity,
    ) -> dict:
        rendered = []
        for s in servers:
            entry = {"type": "url", "url": s.url, "name": s.name}
            token = s.bearer_for(identity)
            if token:
                entry["authorization_token"] = token
            rendered.append(entry)
        return {"mcp_servers": rendered, "betas": [MCP_BETA]}

    def render_conversation(self, session: Session) -> dict:
        fields: dict = {"messages": render_block_messages(session.history)}
        if session.instructions:
            fields["system"] = session.instructions
        return fields

    def build_payload(self, session: Session) -> dict:
        payload = super().build_payload(session)
        payload.setdefault("max_tokens", DEFAULT_MAX_TOKENS)
        return payload

    def build_headers(self, payload: dict) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": API_VERSION,
        }
        if payload.get("stream"):
            headers["Accept"] = "text/event-stream"
        if self._api_key:
            headers["x-api-key"] = self._api_key
        if payload.get("betas"):
            headers["anthropic-beta"] = ",".join(payload["betas"])
        return headers

    def prepare_body(self, payload: dict) -> dict:
        return {k: v for k, v in payload.items() if k != "betas"}

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def translate_event(self, sse: SSEEvent, state: dict) -> list[CanonicalEvent]:
        if sse.data is None:
            return []
        data = sse.data
        kind = sse.event or data.get("type", "")
        # block index -> (block type, call index)
        blocks: dict[int, tuple[str, int | None]] = state.setdefault("blocks", {})
        usage: dict = state.setdefault("usage", {})

        if kind == "message_start":
            message = data.get("message") or {}
            usage.update(message.get("usage") or {})
            return [CanonicalEvent(EventKind.TURN_STARTED, response_id=message.get("id"))]

        if kind == "content_block_start":
            block = data.get("content_block") or {}
            block_type = block.get("type", "")
            pos = data.get("index", len(blocks))
            label = block_type.replace("_", " ")
            if block.get("name"):
                label += " " + block["name"]
            events = [CanonicalEvent(EventKind.PROGRESS, status="Content block: " + label)]
            if block_type == "tool_use":
                idx = state.get("next_call", 0)
                state["next_call"] = idx + 1
                blocks[pos] = (block_type, idx)
                events.append(CanonicalEvent.tool_delta(idx, call_id=block.get("id"), name=block.get("name", "")))
            else:
                blocks[pos] = (block_type, None)
                if block_type in PROVIDER_EXECUTED_BLOCKS:
                    events[0].output = block
                elif block_type == "text" and block.get("text"):
                    events.append(CanonicalEvent.text_delta(block["text"]))
            return events

        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            block_type, idx = blocks.get(data.get("index", -1), ("", None))
            if delta.get("type") == "text_delta":
                return [CanonicalEvent.text_delta(delta.get("text", ""))]
            if delta.get("type") == "input_json_delta" and idx is not None:
                return [CanonicalEvent.tool_delta(idx, args=delta.get("partial_json", ""))]
            return []

        if kind == "content_block_stop":
            block_type, idx = blocks.get(data.get("index", -1), ("", None))
            if block_type == "tool_use" and idx is not None:
                return [CanonicalEvent.tool_complete(idx)]
            return []

        if kind == "message_delta":
            usage.update(data.get("usage") or {})
            stop_reason = (data.get("delta") or {}).get("stop_reason")
            if stop_reason:
                state["finish_reason"] = stop_reason
            return []

        if kind == "message_stop":
            state["completed"] = True
            events = []
            if usage:
                events.append(CanonicalEvent(EventKind.USAGE, usage=dict(usage)))
            events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=state.get("finish_reason")))
            return events

        if kind == "error":
            state["completed"] = True
            err = data.get("error") or {}
            message = err.get("message") if isinstance(err, dict) else str(err)
            return [self.error_event(message or "upstream stream error")]

        return []

    def finish_stream(self, state: dict) -> list[CanonicalEvent]:
        if not state.get("completed") and state.get("usage"):
            return [CanonicalEvent(EventKind.USAGE, usage=dict(state["usage"]))] + super().finish_stream(state)
        return super().finish_stream(state)

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    def translate_response(self, data: dict) -> list[CanonicalEvent]:
        events = [CanonicalEvent(EventKind.TURN_STARTED, response_id=data.get("id"))]
        idx = 0
        for block in data.get("content") or []:
            block_type = block.get("type")
            if block_type == "text" and block.get("text"):
                events.append(CanonicalEvent.text_delta(block["text"]))
            elif block_type == "tool_use":
                events.append(
                    CanonicalEvent.tool_delta(
                        idx,
                        call_id=block.get("id"),
                        name=block.get("name", ""),
                        args=json.dumps(block.get("input") or {}),
                    )
                )
                events.append(CanonicalEvent.tool_complete(idx))
                idx += 1
            elif block_type in PROVIDER_EXECUTED_BLOCKS:
                events.append(
                    CanonicalEvent(EventKind.PROGRESS, status="Content block: " + block_type.replace("_", " "), output=block)
                )
        if data.get("usage"):
            events.append(CanonicalEvent(EventKind.USAGE, usage=data["usage"]))
        events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=data.get("stop_reason")))
        return events
