"""
Tool execution for one turn.

For every confirmed tool call the executor:
1. Resolves the call against the session's current tool catalogue
2. Parses the raw arguments (malformed JSON degrades to ``{}``)
3. Fills schema defaults for missing required arguments
4. Routes to an attached remote tool server or to a directory HTTP tool
5. Bounds the call with a hard timeout
6. Normalizes the outcome into exactly one ``ToolResult``

Failures never escape ``execute``; they become error-carrying results so the
next upstream payload always pairs every call with a result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from agentgate.llm.types import ToolCall
from agentgate.tools.directory import ToolDirectory
from agentgate.tools.http_tool import HttpToolError, call_http_tool
from agentgate.tools.remote import unwrap_remote_text
from agentgate.tools.resolver import resolve_tool
from agentgate.types import ErrorCode, ToolNotFoundError, ToolResult

if TYPE_CHECKING:
    from agentgate.session.session import Session

logger = logging.getLogger(__name__)


class RemoteToolError(Exception):
    """A remote tool server reported ``isError`` for a call."""


def parse_arguments(raw: str | dict | None) -> dict:
    """Decode tool arguments, substituting ``{}`` for anything unusable."""
    if isinstance(raw, dict):
        return dict(raw)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, ValueError, TypeError):
        logger.warning("Failed to parse tool call arguments: %s", str(raw)[:200])
        return {}
    if not isinstance(value, dict):
        logger.warning("Tool call arguments are not an object: %s", str(raw)[:200])
        return {}
    return value


def fill_defaults(arguments: dict, schema: dict | None) -> dict:
    """Substitute schema defaults for required arguments that are missing."""
    if not schema:
        return arguments
    props = schema.get("properties") or {}
    completed = dict(arguments)
    for name in schema.get("required") or []:
        if completed.get(name) is not None:
            continue
        prop = props.get(name)
        if isinstance(prop, dict) and "default" in prop:
            completed[name] = prop["default"]
    return completed


def _as_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _error_result(call: ToolCall, code: str, message: str) -> ToolResult:
    return ToolResult(
        call_id=call.id,
        name=call.name,
        content=json.dumps({"error": message}),
        success=False,
        error_code=code,
    )


class ToolExecutor:
    """
    Executes tool calls concurrently with per-call failure isolation.

    Parameters
    ----------
    directory : ToolDirectory
        Authorization and lookup service for HTTP tools.
    timeout : float
        Hard wall-clock ceiling for a single tool call, in seconds.
    http_client : httpx.AsyncClient, optional
        Client used for HTTP tools.  One is created per call when omitted.
    """

    def __init__(
        self,
        directory: ToolDirectory,
        timeout: float = 300.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.directory = directory
        self.timeout = timeout
        self._http_client = http_client

    async def execute_all(self, calls: list[ToolCall], session: Session) -> list[ToolResult]:
        """Run *calls* concurrently; results follow call order."""
        return list(await asyncio.gather(*(self.execute(c, session) for c in calls)))

    async def execute(self, call: ToolCall, session: Session) -> ToolResult:
        info = resolve_tool(call.name, session.payload.get("tools"))
        if info is None:
            logger.warning("Unknown tool requested: %s", call.name)
            return _error_result(call, ErrorCode.UNKNOWN_TOOL, f"Unknown tool: {call.name}")

        call.tool_id = info.tool_id
        call.schema = info.schema
        arguments = fill_defaults(parse_arguments(call.arguments), info.schema)

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._dispatch(call, arguments, session),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, self.timeout)
            return _error_result(
                call,
                ErrorCode.TIMEOUT,
                "Request timeout - the operation took too long to complete",
            )
        except ToolNotFoundError as e:
            logger.warning("Tool %s not available to user: %s", call.name, e)
            return _error_result(call, ErrorCode.NOT_AUTHORIZED, str(e))
        except RemoteToolError as e:
            logger.warning("Remote tool %s failed: %s", call.name, e)
            return _error_result(call, ErrorCode.REMOTE_ERROR, str(e))
        except HttpToolError as e:
            logger.warning("HTTP tool %s returned %s: %s", call.name, e.status, e)
            return _error_result(call, ErrorCode.HTTP_ERROR, str(e))
        except httpx.HTTPError as e:
            logger.warning("HTTP tool %s unreachable: %s", call.name, e)
            return _error_result(call, ErrorCode.HTTP_ERROR, str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("Tool %s raised", call.name)
            return _error_result(call, ErrorCode.TOOL_EXCEPTION, str(e) or type(e).__name__)

        result.metadata["duration_ms"] = int((time.monotonic() - start) * 1000)
        return result

    def absorb_builtin_outputs(self, outputs: list[dict]) -> list[dict]:
        """
        Extract usage from tools the provider executed itself.

        Those calls already ran upstream; only their reported usage is
        billable here.
        """
        usage: list[dict] = []
        for item in outputs:
            text: Any = None
            if item.get("type") == "mcp_call":
                text = item.get("output")
            elif item.get("type") == "mcp_tool_result":
                content = item.get("content") or []
                if content and isinstance(content[0], dict):
                    text = content[0].get("text")
            if not isinstance(text, str):
                continue
            _, reported = unwrap_remote_text(text)
            if reported:
                usage.extend(reported)
        return usage

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, call: ToolCall, arguments: dict, session: Session) -> ToolResult:
        remote = session.remote_clients.get(call.tool_id or "")
        if remote is not None:
            outcome = await remote.call_tool(call.name, arguments)
            if outcome.is_error:
                raise RemoteToolError(outcome.text or "remote tool error")
            value, usage = unwrap_remote_text(outcome.text)
            return ToolResult(call_id=call.id, name=call.name, content=_as_content(value), usage=usage)

        endpoint = await self.directory.resolve(call.tool_id or "", session.identity.user_id)
        if self._http_client is not None:
            response = await call_http_tool(self._http_client, endpoint, arguments, session.identity)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await call_http_tool(client, endpoint, arguments, session.identity)
        return ToolResult(
            call_id=call.id,
            name=call.name,
            content=_as_content(response.result),
            usage=response.usage,
        )
