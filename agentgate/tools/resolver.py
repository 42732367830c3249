"""Catalogue lookup for tool calls, tolerant of every catalogue shape."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ToolInfo:
    name: str
    tool_id: str
    schema: dict


def _entry_name(entry: dict) -> str | None:
    if entry.get("name"):
        return entry["name"]
    func = entry.get("function")
    if isinstance(func, dict):
        return func.get("name")
    return None


def _entry_schema(entry: dict) -> dict:
    func = entry.get("function")
    if isinstance(func, dict) and "parameters" in func:
        return func.get("parameters") or {}
    # flattened function entries use "parameters", block-style "input_schema"
    return entry.get("parameters") or entry.get("input_schema") or {}


def tool_id_from_schema(schema: dict) -> str:
    enum = (schema.get("properties") or {}).get("tool_id", {}).get("enum") or []
    return enum[0] if enum else ""


def resolve_tool(name: str, catalogue: list[dict] | None) -> ToolInfo | None:
    """
    Find *name* in *catalogue* and return its id and schema.

    Entries may be nested (``{"type": "function", "function": {...}}``),
    flattened (``{"type": "function", "name": ..., "parameters": ...}``) or
    block-style (``{"name": ..., "input_schema": ...}``).  Returns ``None``
    when no entry carries the name.
    """
    if not name or not catalogue:
        return None
    for entry in catalogue:
        if not isinstance(entry, dict) or _entry_name(entry) != name:
            continue
        schema = _entry_schema(entry)
        return ToolInfo(name=name, tool_id=tool_id_from_schema(schema), schema=schema)
    return None
