"""
Assembles streaming tool-call deltas into ``ToolCall`` objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index`` so that
    interleaved streams for different calls never mix their argument text.
  - Only calls that were *confirmed* (the adapter saw the provider finish
    them) are handed to the executor.  Fragments for a call that is never
    confirmed are discarded with the turn.
  - Arguments stay as raw text; JSON parsing happens at execution time so a
    malformed payload degrades a single call instead of the whole turn.
"""

from __future__ import annotations

from agentgate.llm.types import RawToolDelta, ToolCall


class ToolCallAssembler:
    """Buffers raw tool-call deltas for a single turn."""

    def __init__(self) -> None:
        self._buf: dict[int, ToolCall] = {}
        self._confirmed: set[int] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> ToolCall:
        """Merge *delta* into the call at its index and return that call."""
        call = self._buf.get(delta.call_index)
        if call is None:
            call = ToolCall(id="", index=delta.call_index)
            self._buf[delta.call_index] = call

        if delta.id and not call.id:
            call.id = delta.id
        if delta.name_delta:
            call.name += delta.name_delta
        if delta.args_delta:
            call.arguments += delta.args_delta
        return call

    def confirm(self, call_index: int) -> None:
        """Mark the call at *call_index* as finished by the provider."""
        if call_index not in self._buf:
            self._buf[call_index] = ToolCall(id="", index=call_index)
        self._confirmed.add(call_index)

    def confirmed_calls(self) -> list[ToolCall]:
        """Return confirmed calls ordered by index, with ids filled in."""
        calls: list[ToolCall] = []
        for idx in sorted(self._confirmed):
            call = self._buf[idx]
            call.name = call.name.strip()
            if not call.id:
                call.id = f"call_{idx}"
            calls.append(call)
        return calls

    def pending_indices(self) -> list[int]:
        return sorted(set(self._buf) - self._confirmed)

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self._confirmed.clear()
