"""
Event-protocol (``/responses``) adapter.

The stream is a sequence of typed lifecycle events::

    response.created
    response.in_progress
    response.output_item.added        (message | function_call | mcp_call | ...)
    response.output_text.delta
    response.function_call_arguments.delta
    response.output_item.done
    response.completed                (carries usage)

Function calls are keyed by ``output_index`` on the wire; they are mapped to
dense call indices in order of appearance and confirmed on
``output_item.done``.  Items executed by the provider itself (hosted remote
tool servers, web search) surface as ``PROGRESS`` events carrying the item.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from agentgate.agent import BuiltinCapabilities
from agentgate.llm.providers.base import ProviderAdapter, is_image
from agentgate.llm.sse import SSEEvent
from agentgate.llm.types import CanonicalEvent, EventKind, Message
from agentgate.tools.catalog import AgentTool, clean_parameters
from agentgate.types import UserIdentity

if TYPE_CHECKING:
    from agentgate.session.session import Session
    from agentgate.tools.remote import RemoteServerSpec

logger = logging.getLogger(__name__)

PROVIDER_EXECUTED_ITEMS = ("mcp_call", "mcp_list_tools", "web_search_call", "x_search_call")


def _user_content(msg: Message) -> list[dict]:
    parts: list[dict] = [{"type": "input_text", "text": msg.content}]
    for url in msg.attachments:
        if is_image(url):
            parts.append({"type": "input_image", "image_url": url})
        elif url.startswith("data:"):
            parts.append({"type": "input_file", "file_data": url})
        else:
            parts.append({"type": "input_file", "file_url": url})
    return parts


def render_input_items(messages: list[Message]) -> list[dict]:
    items: list[dict] = []
    for msg in messages:
        if msg.role == "user":
            items.append({"role": "user", "content": _user_content(msg)})
        elif msg.role == "tool":
            items.append(
                {"type": "function_call_output", "call_id": msg.tool_call_id, "output": msg.content}
            )
        elif msg.role == "assistant":
            if msg.content:
                items.append({"role": "assistant", "content": msg.content})
            for tc in msg.tool_calls or []:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": tc.id,
                        "name": tc.name,
                        "arguments": tc.arguments or "{}",
                    }
                )
        else:
            items.append({"role": msg.role, "content": msg.content})
    return items


def render_search_tools(search: dict) -> list[dict]:
    """Web and X search entries, enabled per ``search["sources"]``."""
    web: dict = {"type": "web_search"}
    web_cfg = search.get("web_search") or {}
    for key in ("allowed_domains", "excluded_domains"):
        if web_cfg.get(key):
            web[key] = web_cfg[key]
    if web_cfg.get("enable_image_understanding") is True:
        web["enable_image_understanding"] = True

    x: dict = {"type": "x_search"}
    x_cfg = search.get("x_search") or {}
    for key in ("allowed_x_handles", "excluded_x_handles", "from_date", "to_date"):
        if x_cfg.get(key):
            x[key] = x_cfg[key]
    for key in ("enable_image_understanding", "enable_video_understanding"):
        if x_cfg.get(key) is True:
            x[key] = True

    source_types = {
        (s.get("type") if isinstance(s, dict) else s) for s in search.get("sources") or []
    }
    tools = []
    if "web" in source_types:
        tools.append(web)
    if "x" in source_types:
        tools.append(x)
    if not tools:
        logger.warning("Search enabled but no web/x sources configured; no search tools added")
    return tools


class ResponsesAdapter(ProviderAdapter):
    """
    Parameters
    ----------
    hosts_remote_servers:
        When ``True`` remote tool servers are handed to the upstream as
        ``mcp`` tool entries instead of being connected locally.
    """

    family = "responses"
    endpoint = "/responses"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
        hosts_remote_servers: bool = True,
    ) -> None:
        super().__init__(base_url, api_key, timeout=timeout, client=client)
        self.hosts_remote_servers = hosts_remote_servers

    def render_tool(self, tool: AgentTool) -> dict:
        return {
            "type": "function",
            "name": tool.name,
            "description": tool.summary,
            "parameters": clean_parameters(tool.routed_parameters),
        }

    def render_builtin_tools(self, builtin: BuiltinCapabilities) -> list[dict]:
        tools: list[dict] = []
        if builtin.web_search:
            entry = {k: v for k, v in builtin.web_search.items() if k != "enabled"}
            entry.setdefault("type", "web_search_preview")
            tools.append(entry)
        if builtin.search:
            tools.extend(render_search_tools(builtin.search))
        return tools

    def render_remote_servers(
        self,
        servers: list[RemoteServerSpec],
        identity: UserIdentity,
    ) -> dict:
        return {
            "tools": [
                {
                    "type": "mcp",
                    "server_label": s.name,
                    "server_url": s.url,
                    "require_approval": "never",
                    "headers": s.request_headers(identity),
                }
                for s in servers
            ]
        }

    def render_conversation(self, session: Session) -> dict:
        fields: dict = {"input": render_input_items(session.history)}
        if session.instructions:
            fields["instructions"] = session.instructions
        return fields

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    @staticmethod
    def _item_label(item: dict) -> str:
        label = item.get("type", "item")
        if item.get("name"):
            label += " " + item["name"]
        return label

    def translate_event(self, sse: SSEEvent, state: dict) -> list[CanonicalEvent]:
        if sse.data is None:
            return []
        data = sse.data
        kind = sse.event or data.get("type", "")
        calls: dict[int, int] = state.setdefault("calls", {})
        streamed: set[int] = state.setdefault("streamed_args", set())

        if kind == "response.created":
            response = data.get("response") or {}
            return [CanonicalEvent(EventKind.TURN_STARTED, response_id=response.get("id"))]

        if kind == "response.in_progress":
            return [CanonicalEvent(EventKind.PROGRESS, status="In progress")]

        if kind == "response.output_item.added":
            item = data.get("item") or {}
            events = [CanonicalEvent(EventKind.PROGRESS, status="Output item added: " + self._item_label(item))]
            if item.get("type") == "function_call":
                idx = len(calls)
                calls[data.get("output_index", idx)] = idx
                events.append(
                    CanonicalEvent.tool_delta(
                        idx,
                        call_id=item.get("call_id") or item.get("id"),
                        name=item.get("name", ""),
                        args=item.get("arguments") or "",
                    )
                )
                if item.get("arguments"):
                    streamed.add(idx)
            return events

        if kind == "response.output_text.delta":
            return [CanonicalEvent.text_delta(data.get("delta") or "")]

        if kind == "response.function_call_arguments.delta":
            idx = calls.get(data.get("output_index", -1))
            if idx is None:
                logger.warning("Argument delta for unknown output_index %s", data.get("output_index"))
                return []
            streamed.add(idx)
            return [CanonicalEvent.tool_delta(idx, args=data.get("delta") or "")]

        if kind == "response.output_item.done":
            item = data.get("item") or {}
            events = [CanonicalEvent(EventKind.PROGRESS, status="Output item done: " + self._item_label(item))]
            if item.get("type") == "function_call":
                idx = calls.get(data.get("output_index", -1))
                if idx is not None:
                    if idx not in streamed and item.get("arguments"):
                        events.append(CanonicalEvent.tool_delta(idx, args=item["arguments"]))
                    events.append(CanonicalEvent.tool_complete(idx))
            elif item.get("type") in PROVIDER_EXECUTED_ITEMS:
                events[0].output = item
            return events

        if kind == "response.completed":
            state["completed"] = True
            response = data.get("response") or {}
            events = []
            if response.get("usage"):
                events.append(CanonicalEvent(EventKind.USAGE, usage=response["usage"]))
            events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=response.get("status")))
            return events

        if kind in ("response.failed", "response.incomplete", "error"):
            state["completed"] = True
            err = data.get("error") or (data.get("response") or {}).get("error") or {}
            message = err.get("message") if isinstance(err, dict) else str(err)
            if isinstance(err, dict) and err.get("type") == "external_connector_error":
                message = f"MCP server connection error: {message}"
            return [self.error_event(message or data.get("message") or kind)]

        return []

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    def translate_response(self, data: dict) -> list[CanonicalEvent]:
        events = [CanonicalEvent(EventKind.TURN_STARTED, response_id=data.get("id"))]
        idx = 0
        for item in data.get("output") or []:
            item_type = item.get("type")
            if item_type == "message":
                for part in item.get("content") or []:
                    if part.get("type") == "output_text" and part.get("text"):
                        events.append(CanonicalEvent.text_delta(part["text"]))
            elif item_type == "function_call":
                events.append(
                    CanonicalEvent.tool_delta(
                        idx,
                        call_id=item.get("call_id") or item.get("id"),
                        name=item.get("name", ""),
                        args=item.get("arguments") or "",
                    )
                )
                events.append(CanonicalEvent.tool_complete(idx))
                idx += 1
            elif item_type in PROVIDER_EXECUTED_ITEMS:
                events.append(
                    CanonicalEvent(EventKind.PROGRESS, status="Output item done: " + self._item_label(item), output=item)
                )
        if data.get("usage"):
            events.append(CanonicalEvent(EventKind.USAGE, usage=data["usage"]))
        events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=data.get("status")))
        return events
