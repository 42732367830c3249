"""Mock tools, remote tool clients and agents for testing."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx

from agentgate.agent import AgentConfig
from agentgate.tools.catalog import AgentTool
from agentgate.tools.directory import StaticToolDirectory, ToolEndpoint
from agentgate.tools.remote import RemoteCallResult, RemoteServerSpec, RemoteToolClient
from agentgate.types import UserIdentity

ECHO_PARAMS = {
    "type": "object",
    "properties": {
        "message": {"type": "string", "description": "Message to echo"},
        "volume": {"type": "string", "default": "normal"},
    },
    "required": ["message", "volume"],
}

ECHO_TOOL = AgentTool(name="echo", tool_id="echo-v1", description="Echoes the input message back.", parameters=ECHO_PARAMS)

ECHO_ENDPOINT = ToolEndpoint(tool_id="echo-v1", url="http://tools.invalid/echo", public=True)


class FakeRemoteClient(RemoteToolClient):
    """
    In-memory remote tool server.

    Parameters
    ----------
    name:
        Server name; also the routing id of its tools.
    tools:
        ``{tool_name: handler}`` where a handler maps arguments to the text
        the server returns.
    delay:
        Seconds to sleep before answering (for timeout tests).
    """

    def __init__(
        self,
        name: str,
        tools: dict[str, Callable[[dict], str]] | None = None,
        *,
        is_error: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self._tools = tools or {}
        self._is_error = is_error
        self._delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    async def list_tools(self) -> list[AgentTool]:
        return [
            AgentTool(name=n, tool_id=self.name, description=f"{n} on {self.name}", parameters={"type": "object"})
            for n in self._tools
        ]

    async def call_tool(self, name: str, arguments: dict) -> RemoteCallResult:
        self.calls.append((name, arguments))
        if self._delay:
            await asyncio.sleep(self._delay)
        return RemoteCallResult(self._tools[name](arguments), is_error=self._is_error)

    async def aclose(self) -> None:
        self.closed = True


def billed(result, usage: dict) -> str:
    """Text of a billable remote result envelope."""
    return json.dumps({"result": result, "usage": [usage]})


class FakeClientFactory:
    """Client factory for ``SessionBuilder``; unknown servers fail to connect."""

    def __init__(self, clients: dict[str, FakeRemoteClient]) -> None:
        self.clients = clients
        self.connected: list[tuple[str, UserIdentity]] = []

    async def __call__(self, spec: RemoteServerSpec, identity: UserIdentity) -> RemoteToolClient:
        if spec.name not in self.clients:
            raise ConnectionError(f"cannot reach {spec.url}")
        self.connected.append((spec.name, identity))
        return self.clients[spec.name]


def echo_tool_transport(calls: list[httpx.Request] | None = None) -> httpx.MockTransport:
    """HTTP tool upstream that echoes its JSON body back with usage."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={"result": {"echo": body}, "usage": {"total_cost": 0.002, "name": "echo"}},
        )

    return httpx.MockTransport(handler)


def echo_directory() -> StaticToolDirectory:
    return StaticToolDirectory([ECHO_ENDPOINT])


def make_agent(**overrides) -> AgentConfig:
    raw = {
        "name": "tester",
        "brand": "deepseek",
        "model": "deepseek-chat",
        "instructions": "Be brief.",
        "tools": [
            {
                "name": ECHO_TOOL.name,
                "tool_id": ECHO_TOOL.tool_id,
                "description": ECHO_TOOL.description,
                "parameters": ECHO_PARAMS,
            }
        ],
    }
    raw.update(overrides)
    return AgentConfig.from_dict(raw)
