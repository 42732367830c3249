"""Direct HTTP tool invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from agentgate.tools.catalog import TOOL_ID_PROPERTY
from agentgate.tools.directory import INTERNAL_TOKEN, ToolEndpoint
from agentgate.types import UserIdentity

logger = logging.getLogger(__name__)


class HttpToolError(Exception):
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class HttpToolResponse:
    result: Any
    usage: list[dict] | None = None


def build_headers(endpoint: ToolEndpoint, identity: UserIdentity | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    token = endpoint.auth_token
    if token == INTERNAL_TOKEN:
        token = identity.token if identity else ""
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def call_http_tool(
    client: httpx.AsyncClient,
    endpoint: ToolEndpoint,
    arguments: dict,
    identity: UserIdentity | None = None,
) -> HttpToolResponse:
    """
    POST *arguments* to the tool endpoint and return its decoded response.

    The routing ``tool_id`` argument is stripped before sending.  A non-2xx
    response raises ``HttpToolError`` carrying the server's ``error`` field.
    A top-level ``usage`` key in the response is split out as billable usage.
    """
    body = {k: v for k, v in arguments.items() if k != TOOL_ID_PROPERTY}
    resp = await client.post(endpoint.url, json=body, headers=build_headers(endpoint, identity))

    if resp.is_error:
        try:
            detail = resp.json().get("error")
        except (ValueError, AttributeError):
            detail = None
        raise HttpToolError(detail or f"Failed to call tool (HTTP {resp.status_code})", resp.status_code)

    try:
        data = resp.json()
    except ValueError:
        return HttpToolResponse(result=resp.text)

    if isinstance(data, dict) and "usage" in data and "result" in data:
        usage = data["usage"]
        if isinstance(usage, dict):
            usage = [usage]
        return HttpToolResponse(result=data["result"], usage=usage or None)
    return HttpToolResponse(result=data)
