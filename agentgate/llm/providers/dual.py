"""
Dual-mode adapter for upstreams that speak both chat-completions and the
event protocol.

The family is chosen once, when the adapter is built: an agent with search
enabled needs the event protocol (search tools only exist there); every
other agent uses chat-completions.  Remote tool servers are always
connected locally for this upstream.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from agentgate.agent import BuiltinCapabilities
from agentgate.llm.providers.base import ProviderAdapter
from agentgate.llm.providers.chat_completions import ChatCompletionsAdapter
from agentgate.llm.providers.responses import ResponsesAdapter
from agentgate.llm.sse import SSEEvent
from agentgate.llm.types import CanonicalEvent
from agentgate.tools.catalog import AgentTool

if TYPE_CHECKING:
    from agentgate.session.session import Session


class DualModeAdapter(ProviderAdapter):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        builtin: BuiltinCapabilities | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, api_key, timeout=timeout, client=client)
        builtin = builtin or BuiltinCapabilities()
        self.inner: ProviderAdapter
        if builtin.search_enabled:
            self.inner = ResponsesAdapter(
                base_url, api_key, timeout=timeout, client=client, hosts_remote_servers=False
            )
        else:
            self.inner = ChatCompletionsAdapter(base_url, api_key, timeout=timeout, client=client)
        self.family = self.inner.family
        self.endpoint = self.inner.endpoint
        self.hosts_remote_servers = False

    def render_tool(self, tool: AgentTool) -> dict:
        return self.inner.render_tool(tool)

    def render_builtin_tools(self, builtin: BuiltinCapabilities) -> list[dict]:
        return self.inner.render_builtin_tools(builtin)

    def render_conversation(self, session: Session) -> dict:
        return self.inner.render_conversation(session)

    def build_payload(self, session: Session) -> dict:
        return self.inner.build_payload(session)

    def build_headers(self, payload: dict) -> dict[str, str]:
        return self.inner.build_headers(payload)

    def prepare_body(self, payload: dict) -> dict:
        return self.inner.prepare_body(payload)

    def translate_event(self, sse: SSEEvent, state: dict) -> list[CanonicalEvent]:
        return self.inner.translate_event(sse, state)

    def finish_stream(self, state: dict) -> list[CanonicalEvent]:
        return self.inner.finish_stream(state)

    def translate_response(self, data: dict) -> list[CanonicalEvent]:
        return self.inner.translate_response(data)
