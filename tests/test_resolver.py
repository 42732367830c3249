"""Tests for tool catalogue helpers and the tool resolver."""

from __future__ import annotations

from agentgate.tools.catalog import (
    AgentTool,
    check_schema,
    clean_parameters,
    merge_tools,
    with_tool_id,
)
from agentgate.tools.resolver import resolve_tool, tool_id_from_schema

PARAMS = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}


def _routed(tool_id: str = "search-v1") -> dict:
    return with_tool_id(PARAMS, tool_id)


class TestResolveTool:
    def test_nested_entry(self):
        catalogue = [{"type": "function", "function": {"name": "search", "parameters": _routed()}}]
        info = resolve_tool("search", catalogue)
        assert info is not None
        assert info.tool_id == "search-v1"
        assert info.schema["required"] == ["q"]

    def test_flattened_entry(self):
        catalogue = [{"type": "function", "name": "search", "parameters": _routed()}]
        assert resolve_tool("search", catalogue).tool_id == "search-v1"

    def test_block_style_entry(self):
        catalogue = [{"name": "search", "description": "", "input_schema": _routed("blk")}]
        assert resolve_tool("search", catalogue).tool_id == "blk"

    def test_picks_matching_name_among_many(self):
        catalogue = [
            {"type": "web_search_preview"},
            {"type": "mcp", "server_label": "docs", "server_url": "https://x"},
            {"type": "function", "name": "other", "parameters": _routed("other-v1")},
            {"type": "function", "name": "search", "parameters": _routed()},
        ]
        assert resolve_tool("search", catalogue).tool_id == "search-v1"

    def test_not_found(self):
        assert resolve_tool("missing", [{"name": "search", "input_schema": _routed()}]) is None
        assert resolve_tool("search", None) is None
        assert resolve_tool("", [{"name": ""}]) is None

    def test_schema_without_tool_id(self):
        assert tool_id_from_schema(PARAMS) == ""


class TestCatalog:
    def test_with_tool_id_does_not_mutate(self):
        routed = with_tool_id(PARAMS, "t1")
        assert routed["properties"]["tool_id"]["enum"] == ["t1"]
        assert "tool_id" not in PARAMS["properties"]

    def test_with_tool_id_normalizes_empty_schema(self):
        routed = with_tool_id(None, "t1")
        assert routed["type"] == "object"
        assert list(routed["properties"]) == ["tool_id"]

    def test_clean_parameters_flattens_object_enums(self):
        schema = {
            "type": "object",
            "properties": {"unit": {"type": "string", "enum": [{"value": "c"}, {"value": "f"}, "k"]}},
        }
        cleaned = clean_parameters(schema)
        assert cleaned["properties"]["unit"]["enum"] == ["c", "f", "k"]
        # original untouched
        assert schema["properties"]["unit"]["enum"][0] == {"value": "c"}

    def test_check_schema(self):
        assert check_schema(PARAMS) is None
        assert check_schema({"type": 12}) is not None

    def test_agent_tool_from_dict(self):
        tool = AgentTool.from_dict({"name": "search", "id": 7, "input_schema": PARAMS})
        assert tool.tool_id == "7"
        assert tool.parameters == PARAMS
        assert tool.summary == "Tool: search"
        assert tool.routed_parameters["properties"]["tool_id"]["enum"] == ["7"]

    def test_merge_tools_skips_duplicate_names(self):
        existing = [AgentTool("search", "a")]
        added = merge_tools(existing, [AgentTool("search", "b"), AgentTool("fetch", "b"), AgentTool("fetch", "c")])
        assert [t.name for t in added] == ["fetch"]
        assert [(t.name, t.tool_id) for t in existing] == [("search", "a"), ("fetch", "b")]
