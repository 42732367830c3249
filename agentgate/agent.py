"""
Agent descriptions and inbound requests.

An agent binds a brand and model to a tool catalogue, remote tool servers,
built-in provider capabilities and generation parameters.  Agents are
described in YAML::

    name: researcher
    brand: openai
    model: gpt-4.1
    instructions: You are a careful research assistant.
    params: {temperature: 0.2}
    tools:
      - name: lookup_order
        tool_id: orders-v1
        parameters: {type: object, properties: {order_id: {type: string}}}
    remote_servers:
      - {name: docs, url: "https://mcp.example.com/docs", kind: public}
    builtin:
      web_search: {enabled: true}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from agentgate.tools.catalog import AgentTool
from agentgate.tools.remote import RemoteServerSpec
from agentgate.types import ConfigurationError, UserIdentity


@dataclass
class BuiltinCapabilities:
    """
    Provider-executed tools.

    ``web_search`` configures the hosted web search of the responses and
    messages families.  ``search`` holds search parameters for the dual-mode
    upstream (``sources``, ``web_search``, ``x_search``); setting it forces
    the event protocol.
    """

    web_search: dict | None = None
    search: dict | None = None

    @classmethod
    def from_dict(cls, raw: dict | None) -> BuiltinCapabilities:
        raw = raw or {}
        web = raw.get("web_search")
        if isinstance(web, dict) and web.get("enabled") is False:
            web = None
        return cls(web_search=web, search=raw.get("search") or None)

    @property
    def search_enabled(self) -> bool:
        return bool(self.search)


@dataclass
class AgentConfig:
    name: str
    brand: str
    model: str
    family: str | None = None
    stream: bool = True
    instructions: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    tools: list[AgentTool] = field(default_factory=list)
    remote_servers: list[RemoteServerSpec] = field(default_factory=list)
    builtin: BuiltinCapabilities = field(default_factory=BuiltinCapabilities)
    api_key: str = ""
    optional_fields: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict) -> AgentConfig:
        missing = [k for k in ("brand", "model") if not raw.get(k)]
        if missing:
            raise ConfigurationError(f"Agent is missing required field(s): {', '.join(missing)}")
        return cls(
            name=raw.get("name", raw["model"]),
            brand=str(raw["brand"]).lower(),
            model=raw["model"],
            family=raw.get("family"),
            stream=bool(raw.get("stream", True)),
            instructions=raw.get("instructions", ""),
            params=dict(raw.get("params") or {}),
            tools=[AgentTool.from_dict(t) for t in raw.get("tools") or []],
            remote_servers=[RemoteServerSpec.from_dict(s) for s in raw.get("remote_servers") or []],
            builtin=BuiltinCapabilities.from_dict(raw.get("builtin")),
            api_key=raw.get("api_key", ""),
            optional_fields=list(raw.get("optional_fields") or []),
        )

    def extra_fields(self) -> dict:
        """Merge optional payload fields (JSON snippets or dicts), later wins."""
        merged: dict = {}
        for item in self.optional_fields:
            if isinstance(item, str):
                try:
                    item = json.loads(item)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid optional field JSON: {e}") from e
            if not isinstance(item, dict):
                raise ConfigurationError("Optional fields must be JSON objects")
            merged.update(item)
        return merged


def load_agent(path: str | Path) -> AgentConfig:
    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigurationError(f"Agent file not found: {p}")
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Agent file must contain a mapping: {p}")
    return AgentConfig.from_dict(raw)


@dataclass
class InboundRequest:
    prompt: str
    identity: UserIdentity
    thread_id: str | None = None
    files: list[str] = field(default_factory=list)
    stream: bool | None = None
