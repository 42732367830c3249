"""
Tool catalogue entries and schema helpers.

An ``AgentTool`` is the provider-neutral description of a callable tool.
Every tool's schema carries a hidden ``tool_id`` property whose single enum
value routes the call back to its owner: the id of an HTTP tool in the
directory, or the name of the remote tool server that advertised it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

import jsonschema

TOOL_ID_PROPERTY = "tool_id"


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


def with_tool_id(schema: dict | None, tool_id: str) -> dict:
    """Return a copy of *schema* with the routing ``tool_id`` property set."""
    s = normalize_schema(copy.deepcopy(schema))
    s["properties"] = {
        **s["properties"],
        TOOL_ID_PROPERTY: {
            "type": "string",
            "description": "Internal tool identifier",
            "enum": [tool_id],
        },
    }
    return s


def clean_parameters(schema: dict) -> dict:
    """
    Flatten enum entries given as ``{"value": ...}`` objects to plain values.

    The flattened catalogue shape rejects object-valued enums.
    """
    if not isinstance(schema, dict):
        return schema
    cleaned = dict(schema)
    props = cleaned.get("properties")
    if isinstance(props, dict):
        cleaned["properties"] = dict(props)
        for key, prop in props.items():
            enum = prop.get("enum") if isinstance(prop, dict) else None
            if isinstance(enum, list) and any(
                isinstance(item, dict) and "value" in item for item in enum
            ):
                cleaned["properties"][key] = {
                    **prop,
                    "enum": [
                        item["value"] if isinstance(item, dict) and "value" in item else item
                        for item in enum
                    ],
                }
    return cleaned


def check_schema(schema: dict) -> str | None:
    """Return an error message if *schema* is not a valid JSON schema."""
    try:
        jsonschema.Draft202012Validator.check_schema(schema)
    except jsonschema.SchemaError as e:
        return str(e.message)
    return None


@dataclass
class AgentTool:
    name: str
    tool_id: str
    description: str = ""
    parameters: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> AgentTool:
        return cls(
            name=raw["name"],
            tool_id=str(raw.get("tool_id") or raw.get("id") or raw["name"]),
            description=raw.get("description", ""),
            parameters=raw.get("parameters") or raw.get("input_schema") or {},
        )

    @property
    def routed_parameters(self) -> dict:
        return with_tool_id(self.parameters, self.tool_id)

    @property
    def summary(self) -> str:
        return self.description or f"Tool: {self.name}"


def merge_tools(existing: list[AgentTool], incoming: list[AgentTool]) -> list[AgentTool]:
    """Append *incoming* tools whose names are not already present."""
    seen = {t.name for t in existing}
    added: list[AgentTool] = []
    for tool in incoming:
        if tool.name in seen:
            continue
        seen.add(tool.name)
        added.append(tool)
    existing.extend(added)
    return added
