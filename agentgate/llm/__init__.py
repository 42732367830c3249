"""LLM subsystem -- provider adapters, canonical events and tool-call assembly."""

from agentgate.llm.types import (
    AssembledAssistant,
    CanonicalEvent,
    EventKind,
    Message,
    RawToolDelta,
    ToolCall,
)
from agentgate.llm.router import provider_for, select_adapter
from agentgate.llm.tool_call_assembler import ToolCallAssembler

__all__ = [
    "AssembledAssistant",
    "CanonicalEvent",
    "EventKind",
    "Message",
    "RawToolDelta",
    "ToolCall",
    "ToolCallAssembler",
    "provider_for",
    "select_adapter",
]
