"""Tool authorization and lookup."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from agentgate.types import ToolNotFoundError

# Tools registered with this token authenticate as the calling user.
INTERNAL_TOKEN = "internal"


@dataclass
class ToolEndpoint:
    tool_id: str
    url: str
    schema: dict = field(default_factory=dict)
    auth_token: str = ""
    owner: str | None = None
    public: bool = False


class ToolDirectory(ABC):
    @abstractmethod
    async def resolve(self, tool_id: str, user_id: str) -> ToolEndpoint:
        """
        Return the endpoint for *tool_id* if *user_id* may call it.

        Raises ``ToolNotFoundError`` when the tool is unknown or is private to
        another user.  Both cases look identical to the caller.
        """
        ...


class StaticToolDirectory(ToolDirectory):
    """
    Directory backed by a fixed list of endpoints (usually from config).

    Public tools are callable by everyone; private tools only by their owner.
    """

    def __init__(self, endpoints: list[ToolEndpoint] | None = None) -> None:
        self._endpoints: dict[str, ToolEndpoint] = {}
        for ep in endpoints or []:
            self.register(ep)

    @classmethod
    def from_config(cls, entries: list[dict]) -> StaticToolDirectory:
        endpoints = []
        for entry in entries:
            token = entry.get("auth_token", "")
            if entry.get("auth_token_env"):
                token = os.environ.get(entry["auth_token_env"], "")
            endpoints.append(
                ToolEndpoint(
                    tool_id=str(entry["id"]),
                    url=entry["url"],
                    schema=entry.get("schema", {}),
                    auth_token=token,
                    owner=entry.get("owner"),
                    public=bool(entry.get("public", False)),
                )
            )
        return cls(endpoints)

    def register(self, endpoint: ToolEndpoint) -> None:
        self._endpoints[endpoint.tool_id] = endpoint

    async def resolve(self, tool_id: str, user_id: str) -> ToolEndpoint:
        ep = self._endpoints.get(tool_id)
        if ep is None or not (ep.public or ep.owner == user_id):
            raise ToolNotFoundError(f"Tool not found: {tool_id}")
        return ep
