"""
Remote tool-protocol clients.

A remote tool server advertises tools and executes them on request.  The
default client speaks MCP over the streamable-HTTP transport; tests and
embedders may provide any ``RemoteToolClient``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any

from mcp.client.session import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from agentgate.tools.catalog import AgentTool
from agentgate.types import UserIdentity

logger = logging.getLogger(__name__)


@dataclass
class RemoteServerSpec:
    """
    A configured remote tool server.

    ``kind`` is ``"connect"`` for servers with their own credential, or
    ``"public"``/``"private"`` for servers that accept the caller's token.
    """

    name: str
    url: str
    kind: str = "public"
    auth_token: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> RemoteServerSpec:
        return cls(
            name=raw.get("name") or raw["server_name"],
            url=raw.get("url") or raw["server_url"],
            kind=raw.get("kind") or raw.get("type", "public"),
            auth_token=raw.get("auth_token", ""),
            headers=dict(raw.get("headers") or {}),
        )

    def bearer_for(self, identity: UserIdentity | None) -> str:
        if self.kind == "connect" and self.auth_token:
            return self.auth_token
        if self.kind in ("public", "private") and identity is not None:
            return identity.token
        return self.auth_token

    def request_headers(self, identity: UserIdentity | None) -> dict[str, str]:
        headers = dict(self.headers)
        token = self.bearer_for(identity)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers


@dataclass
class RemoteCallResult:
    text: str
    is_error: bool = False


class RemoteToolClient(ABC):
    """A live connection to one remote tool server, owned by one session."""

    name: str

    @abstractmethod
    async def list_tools(self) -> list[AgentTool]:
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict) -> RemoteCallResult:
        ...

    async def aclose(self) -> None:
        return None


class MCPToolClient(RemoteToolClient):
    """
    MCP client over streamable HTTP.

    The transport and ``ClientSession`` live in an owner task that enters
    them on connect and exits them on ``aclose``, so the client may be
    connected and closed from different tasks.

    Usage::

        client = await MCPToolClient.connect(spec, identity)
        tools = await client.list_tools()
        result = await client.call_tool("search", {"q": "x"})
        await client.aclose()
    """

    def __init__(
        self,
        name: str,
        session: ClientSession,
        closing: asyncio.Event,
        owner: asyncio.Task,
    ) -> None:
        self.name = name
        self._session = session
        self._closing = closing
        self._owner = owner

    @classmethod
    async def connect(
        cls,
        spec: RemoteServerSpec,
        identity: UserIdentity | None = None,
    ) -> MCPToolClient:
        ready: asyncio.Future[ClientSession] = asyncio.get_running_loop().create_future()
        closing = asyncio.Event()
        owner = asyncio.create_task(_hold_session(spec, identity, ready, closing), name=f"mcp:{spec.name}")
        try:
            session = await ready
        except asyncio.CancelledError:
            owner.cancel()
            raise
        logger.info("Connected remote tool server %s (%s)", spec.name, spec.url)
        return cls(spec.name, session, closing, owner)

    async def list_tools(self) -> list[AgentTool]:
        result = await self._session.list_tools()
        tools: list[AgentTool] = []
        for tool in getattr(result, "tools", []) or []:
            schema = getattr(tool, "inputSchema", None)
            tools.append(
                AgentTool(
                    name=tool.name,
                    tool_id=self.name,
                    description=tool.description or "",
                    parameters=dict(schema) if isinstance(schema, dict) else {},
                )
            )
        return tools

    async def call_tool(self, name: str, arguments: dict) -> RemoteCallResult:
        result = await self._session.call_tool(name, arguments=arguments)
        is_error = bool(getattr(result, "isError", False))

        structured = getattr(result, "structuredContent", None)
        if isinstance(structured, dict) and structured:
            return RemoteCallResult(json.dumps(structured), is_error)

        parts: list[str] = []
        for block in getattr(result, "content", None) or []:
            text = getattr(block, "text", None)
            if isinstance(text, str):
                parts.append(text)
            else:
                parts.append(json.dumps(block.model_dump(mode="json")))
        return RemoteCallResult("\n".join(parts), is_error)

    async def aclose(self) -> None:
        self._closing.set()
        await self._owner


async def _hold_session(
    spec: RemoteServerSpec,
    identity: UserIdentity | None,
    ready: asyncio.Future,
    closing: asyncio.Event,
) -> None:
    try:
        async with AsyncExitStack() as stack:
            read_stream, write_stream, _ = await stack.enter_async_context(
                streamablehttp_client(spec.url, headers=spec.request_headers(identity))
            )
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
            ready.set_result(session)
            await closing.wait()
    except Exception as exc:
        if not ready.done():
            ready.set_exception(exc)
        else:
            logger.warning("Remote tool server %s closed with error: %s", spec.name, exc)
    finally:
        if not ready.done():
            ready.cancel()


def unwrap_remote_text(text: str) -> tuple[Any, list[dict] | None]:
    """
    Decode a remote tool's text output.

    Billable servers wrap results as ``{"result": ..., "usage": [...]}``.
    Returns ``(result, usage)``; anything else is returned as-is with no
    usage.
    """
    try:
        decoded = json.loads(text)
    except (json.JSONDecodeError, ValueError, TypeError):
        return text, None
    if isinstance(decoded, dict) and "result" in decoded:
        return decoded["result"], _usage_list(decoded.get("usage"))
    return decoded, None


def _usage_list(usage: Any) -> list[dict] | None:
    if isinstance(usage, dict):
        return [usage]
    if isinstance(usage, list):
        return [u for u in usage if isinstance(u, dict)]
    return None
