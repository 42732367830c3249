"""Tests for the MCP remote tool client against a live streamable-HTTP server."""

from __future__ import annotations

import asyncio
import logging
import socket
import subprocess
import sys
import time

import pytest

from agentgate.agent import InboundRequest
from agentgate.config import GatewayConfig
from agentgate.session.builder import SessionBuilder
from agentgate.tools.remote import MCPToolClient, RemoteServerSpec
from agentgate.types import UserIdentity
from tests.mock_tools import make_agent

ENV = {"DEEPSEEK_API_KEY": "sk-gateway"}

SERVER_SCRIPT = """
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("docs", host="127.0.0.1", port=__PORT__, log_level="WARNING")

@mcp.tool()
def lookup(q: str) -> str:
    \"\"\"Look up a document.\"\"\"
    return "found " + q

if __name__ == "__main__":
    mcp.run("streamable-http")
"""


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for_port(port: int, proc: subprocess.Popen, timeout: float = 15.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            pytest.fail(f"MCP server exited with code {proc.returncode}")
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.2):
                return
        except OSError:
            time.sleep(0.1)
    pytest.fail("MCP server did not start")


@pytest.fixture(scope="module")
def server_url(tmp_path_factory):
    port = _free_port()
    script = tmp_path_factory.mktemp("mcp") / "server.py"
    script.write_text(SERVER_SCRIPT.replace("__PORT__", str(port)), encoding="utf-8")
    proc = subprocess.Popen(
        [sys.executable, str(script)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        _wait_for_port(port, proc)
        yield f"http://127.0.0.1:{port}/mcp"
    finally:
        proc.terminate()
        proc.wait(timeout=10)


def _owner_tasks(name: str) -> list[asyncio.Task]:
    return [t for t in asyncio.all_tasks() if t.get_name() == f"mcp:{name}" and not t.done()]


class TestMCPToolClient:
    async def test_list_call_close(self, server_url):
        client = await MCPToolClient.connect(RemoteServerSpec("docs", server_url))
        try:
            tools = await client.list_tools()
            assert [t.name for t in tools] == ["lookup"]
            assert tools[0].tool_id == "docs"
            assert "q" in tools[0].parameters["properties"]

            result = await client.call_tool("lookup", {"q": "x"})
            assert not result.is_error
            assert "found x" in result.text
        finally:
            await client.aclose()
        assert _owner_tasks("docs") == []

    async def test_close_from_another_task(self, server_url, caplog):
        client = await asyncio.create_task(MCPToolClient.connect(RemoteServerSpec("docs", server_url)))
        assert "found y" in (await client.call_tool("lookup", {"q": "y"})).text

        with caplog.at_level(logging.WARNING):
            await client.aclose()

        assert [r for r in caplog.records if r.name.startswith("agentgate") and r.levelno >= logging.WARNING] == []
        assert _owner_tasks("docs") == []


class TestSessionLifecycle:
    async def test_session_releases_connected_clients(self, server_url, caplog):
        builder = SessionBuilder(GatewayConfig(), env=ENV)
        agent = make_agent(remote_servers=[{"name": "docs", "url": server_url}])
        session, _ = await builder.build(InboundRequest(prompt="hi", identity=UserIdentity("u1", token="t")), agent)

        assert list(session.remote_clients) == ["docs"]
        assert "lookup" in [t.name for t in session.tools]
        result = await session.remote_clients["docs"].call_tool("lookup", {"q": "z"})
        assert "found z" in result.text

        with caplog.at_level(logging.WARNING):
            await session.aclose()

        assert [r for r in caplog.records if r.name.startswith("agentgate") and r.levelno >= logging.WARNING] == []
        assert _owner_tasks("docs") == []
