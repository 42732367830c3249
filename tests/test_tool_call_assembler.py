"""Tests for agentgate.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

from agentgate.llm.tool_call_assembler import ToolCallAssembler
from agentgate.llm.types import RawToolDelta


class TestSingleToolCall:
    """Assemble a single tool call from incremental deltas."""

    def test_basic_assembly(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="call_1", name_delta="read_"))
        asm.feed(RawToolDelta(call_index=0, name_delta="file"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"path": '))
        asm.feed(RawToolDelta(call_index=0, args_delta='"/etc/hosts"}'))

        # nothing is handed out before confirmation
        assert asm.confirmed_calls() == []

        asm.confirm(0)
        calls = asm.confirmed_calls()
        assert len(calls) == 1
        tc = calls[0]
        assert tc.id == "call_1"
        assert tc.name == "read_file"
        assert tc.arguments == '{"path": "/etc/hosts"}'

    def test_feed_returns_the_evolving_call(self):
        asm = ToolCallAssembler()
        first = asm.feed(RawToolDelta(call_index=0, id="c", name_delta="pi"))
        second = asm.feed(RawToolDelta(call_index=0, name_delta="ng"))
        assert first is second
        assert second.name == "ping"

    def test_later_id_does_not_overwrite(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="call_a", name_delta="x"))
        asm.feed(RawToolDelta(call_index=0, id="call_b"))
        asm.confirm(0)
        assert asm.confirmed_calls()[0].id == "call_a"

    def test_missing_id_gets_positional_default(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=3, name_delta="ping"))
        asm.confirm(3)
        assert asm.confirmed_calls()[0].id == "call_3"

    def test_name_whitespace_is_stripped(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="c", name_delta=" lookup\n"))
        asm.confirm(0)
        assert asm.confirmed_calls()[0].name == "lookup"

    def test_malformed_arguments_are_kept_raw(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="bad", name_delta="broken", args_delta='{"key": INVALID'))
        asm.confirm(0)
        assert asm.confirmed_calls()[0].arguments == '{"key": INVALID'


class TestMultipleToolCalls:
    def test_interleaved_fragments_do_not_mix(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="a", name_delta="first"))
        asm.feed(RawToolDelta(call_index=1, id="b", name_delta="second"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"n":'))
        asm.feed(RawToolDelta(call_index=1, args_delta='{"m":'))
        asm.feed(RawToolDelta(call_index=1, args_delta="2}"))
        asm.feed(RawToolDelta(call_index=0, args_delta="1}"))
        asm.confirm(1)
        asm.confirm(0)

        calls = asm.confirmed_calls()
        assert [c.index for c in calls] == [0, 1]
        assert calls[0].arguments == '{"n":1}'
        assert calls[1].arguments == '{"m":2}'

    def test_only_confirmed_calls_are_returned(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="a", name_delta="kept"))
        asm.feed(RawToolDelta(call_index=1, id="b", name_delta="dropped"))
        asm.confirm(0)

        assert [c.name for c in asm.confirmed_calls()] == ["kept"]
        assert asm.pending_indices() == [1]

    def test_confirm_without_deltas_creates_empty_call(self):
        asm = ToolCallAssembler()
        asm.confirm(0)
        calls = asm.confirmed_calls()
        assert calls[0].name == ""
        assert calls[0].arguments == ""


class TestReset:
    def test_reset_discards_everything(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="a", name_delta="x"))
        asm.confirm(0)
        asm.reset()
        assert asm.confirmed_calls() == []
        assert asm.pending_indices() == []
