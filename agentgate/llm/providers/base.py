"""Abstract base class for provider adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

import httpx

from agentgate.agent import BuiltinCapabilities
from agentgate.llm.sse import SSEEvent, iter_sse
from agentgate.llm.types import CanonicalEvent, EventKind
from agentgate.tools.catalog import AgentTool
from agentgate.types import ErrorCode, RemoteToolServerError, UpstreamError, UserIdentity

if TYPE_CHECKING:
    from agentgate.session.session import Session
    from agentgate.tools.remote import RemoteServerSpec

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")

_TOOL_SERVER_MARKERS = ("external_connector_error", "MCP server", "mcp_server")


def is_image(url: str) -> bool:
    path = url.split("?", 1)[0].lower()
    return path.startswith("data:image/") or path.endswith(IMAGE_SUFFIXES)


def classify_upstream_error(message: str) -> str:
    """Distinguish tool-server connectivity rejections from other failures."""
    if any(marker in message for marker in _TOOL_SERVER_MARKERS):
        return ErrorCode.REMOTE_TOOL_SERVER
    return ErrorCode.UPSTREAM_ERROR


def raise_upstream(status: int, body: str) -> None:
    message = f"Upstream returned HTTP {status}: {body[:500]}"
    if classify_upstream_error(body) == ErrorCode.REMOTE_TOOL_SERVER:
        raise RemoteToolServerError(message, status=status)
    raise UpstreamError(message, status=status)


class ProviderAdapter(ABC):
    """
    Translates between sessions and one upstream wire protocol.

    ``build_payload`` renders the session into the wire envelope and is a
    pure function of the session, so it is re-applied before every turn.
    ``dispatch`` sends a payload and yields ``CanonicalEvent`` objects in
    arrival order; provider-specific shapes never leave the adapter.

    Parameters
    ----------
    base_url:
        API root, e.g. ``"https://api.openai.com/v1"``.
    api_key:
        Upstream credential.
    timeout:
        HTTP timeout in seconds.
    client:
        Shared ``httpx.AsyncClient``.  One is created per dispatch when
        omitted.
    """

    family: str = ""
    endpoint: str = ""
    hosts_remote_servers: bool = False

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @abstractmethod
    def render_tool(self, tool: AgentTool) -> dict:
        """Catalogue entry for *tool* in this family's shape."""
        ...

    def render_builtin_tools(self, builtin: BuiltinCapabilities) -> list[dict]:
        return []

    def render_remote_servers(
        self,
        servers: list[RemoteServerSpec],
        identity: UserIdentity,
    ) -> dict:
        """Payload fields that let the upstream connect to *servers* itself."""
        return {}

    @abstractmethod
    def render_conversation(self, session: Session) -> dict:
        """Payload fields carrying instructions and the message history."""
        ...

    def build_payload(self, session: Session) -> dict:
        agent = session.agent
        payload: dict = {"model": agent.model, **agent.params}
        payload.update(self.render_conversation(session))

        tools = [self.render_tool(t) for t in session.tools]
        tools.extend(self.render_builtin_tools(agent.builtin))
        remote = {}
        if self.hosts_remote_servers and session.hosted_servers:
            remote = self.render_remote_servers(session.hosted_servers, session.identity)
            tools.extend(remote.pop("tools", []))
        if tools:
            payload["tools"] = tools
        payload.update(remote)

        payload.update(agent.extra_fields())
        payload["stream"] = session.stream
        return payload

    def build_headers(self, payload: dict) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if payload.get("stream"):
            headers["Accept"] = "text/event-stream"
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                yield client

    def prepare_body(self, payload: dict) -> dict:
        """Final wire body; adapters strip fields that travel as headers."""
        return payload

    async def dispatch(self, payload: dict) -> AsyncIterator[CanonicalEvent]:
        """
        Send *payload* and yield canonical events.

        Raises ``UpstreamError`` (or ``RemoteToolServerError``) when the
        upstream rejects the request.  No retry is attempted.
        """
        url = f"{self._url}{self.endpoint}"
        headers = self.build_headers(payload)
        body = self.prepare_body(payload)
        logger.info(
            "REQUEST: family=%s model=%s tools=%d stream=%s",
            self.family,
            payload.get("model"),
            len(payload.get("tools") or []),
            bool(payload.get("stream")),
        )

        async with self._http() as client:
            if payload.get("stream"):
                async with client.stream("POST", url, json=body, headers=headers) as response:
                    if response.is_error:
                        raw = await response.aread()
                        raise_upstream(response.status_code, raw.decode("utf-8", errors="replace"))
                    state: dict = {}
                    async for sse in iter_sse(response):
                        for event in self.translate_event(sse, state):
                            yield event
                    for event in self.finish_stream(state):
                        yield event
            else:
                response = await client.post(url, json=body, headers=headers)
                if response.is_error:
                    raise_upstream(response.status_code, response.text)
                for event in self.translate_response(response.json()):
                    yield event

    @abstractmethod
    def translate_event(self, sse: SSEEvent, state: dict) -> list[CanonicalEvent]:
        """Map one stream event to canonical events.  *state* lives for one dispatch."""
        ...

    def finish_stream(self, state: dict) -> list[CanonicalEvent]:
        """Events owed after the stream closed without an explicit end."""
        if state.get("completed"):
            return []
        return [CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason=state.get("finish_reason"))]

    @abstractmethod
    def translate_response(self, data: dict) -> list[CanonicalEvent]:
        """Map a complete (non-streaming) response to canonical events."""
        ...

    @staticmethod
    def error_event(message: str) -> CanonicalEvent:
        return CanonicalEvent(EventKind.ERROR, error=message, code=classify_upstream_error(message))
