"""
Mock provider adapters and SSE helpers for testing.

``ScriptedAdapter`` renders payloads exactly like the chat-completions
adapter but replays canned ``CanonicalEvent`` sequences instead of calling
an upstream, so the orchestrator can be exercised without HTTP.  The SSE
helpers build ``httpx.MockTransport`` upstreams for the real adapters.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Callable

import httpx

from agentgate.llm.providers.chat_completions import ChatCompletionsAdapter
from agentgate.llm.types import CanonicalEvent, EventKind
from agentgate.types import ErrorCode


class ScriptedAdapter(ChatCompletionsAdapter):
    """
    An adapter that replays one scripted turn per dispatch.

    Usage::

        adapter = ScriptedAdapter([
            tool_turn([("lookup", {"q": "x"}, "call_1")]),
            text_turn("Done."),
        ])

    Parameters
    ----------
    turns:
        One list of events per expected dispatch.  When the script runs out
        the last turn is repeated.
    """

    def __init__(self, turns: list[list[CanonicalEvent]]) -> None:
        super().__init__("http://mock.invalid/v1", "test-key")
        self._turns = turns
        self.payloads: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.payloads)

    async def dispatch(self, payload: dict) -> AsyncIterator[CanonicalEvent]:
        self.payloads.append(json.loads(json.dumps(payload)))
        turn = self._turns[min(len(self.payloads) - 1, len(self._turns) - 1)]
        for event in turn:
            yield event


def text_turn(
    text: str,
    usage: dict | None = None,
    response_id: str = "resp_1",
) -> list[CanonicalEvent]:
    """A turn that streams *text* one word at a time."""
    events = [CanonicalEvent(EventKind.TURN_STARTED, response_id=response_id)]
    words = text.split(" ")
    for i, word in enumerate(words):
        suffix = " " if i < len(words) - 1 else ""
        events.append(CanonicalEvent.text_delta(word + suffix))
    if usage:
        events.append(CanonicalEvent(EventKind.USAGE, usage=usage))
    events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason="stop"))
    return events


def tool_turn(
    calls: list[tuple[str, dict | str, str]],
    content_prefix: str = "",
    usage: dict | None = None,
    confirm: bool = True,
) -> list[CanonicalEvent]:
    """
    A turn that streams tool calls with names and arguments split across
    several deltas.

    *calls* is a list of ``(tool_name, tool_args, call_id)``; string args are
    sent verbatim (useful for malformed JSON).
    """
    events = [CanonicalEvent(EventKind.TURN_STARTED, response_id="resp_tools")]
    if content_prefix:
        events.append(CanonicalEvent.text_delta(content_prefix))

    for idx, (name, _, call_id) in enumerate(calls):
        half = len(name) // 2
        events.append(CanonicalEvent.tool_delta(idx, call_id=call_id, name=name[:half]))
        events.append(CanonicalEvent.tool_delta(idx, name=name[half:]))

    # argument fragments of different calls interleave
    fragments: list[list[str]] = []
    for _, args, _ in calls:
        text = args if isinstance(args, str) else json.dumps(args)
        third = max(1, len(text) // 3)
        fragments.append([text[:third], text[third:2 * third], text[2 * third:]])
    for part in range(3):
        for idx, frags in enumerate(fragments):
            if frags[part]:
                events.append(CanonicalEvent.tool_delta(idx, args=frags[part]))

    if confirm:
        for idx in range(len(calls)):
            events.append(CanonicalEvent.tool_complete(idx))
    if usage:
        events.append(CanonicalEvent(EventKind.USAGE, usage=usage))
    events.append(CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason="tool_calls"))
    return events


def error_turn(message: str, code: str = ErrorCode.UPSTREAM_ERROR) -> list[CanonicalEvent]:
    return [
        CanonicalEvent(EventKind.TURN_STARTED),
        CanonicalEvent(EventKind.ERROR, error=message, code=code),
    ]


# ---------------------------------------------------------------------------
# SSE upstreams
# ---------------------------------------------------------------------------


def sse_body(events: list[dict | str], named: bool = False) -> bytes:
    """
    Encode *events* as an SSE stream.

    Dict events are JSON-encoded; with *named* each gets an ``event:`` line
    taken from its ``type``.  Strings are sent as raw ``data:`` payloads
    (e.g. ``"[DONE]"``).
    """
    lines: list[str] = []
    for ev in events:
        if isinstance(ev, str):
            lines.append(f"data: {ev}\n\n")
            continue
        if named:
            lines.append(f"event: {ev['type']}\n")
        lines.append(f"data: {json.dumps(ev)}\n\n")
    return "".join(lines).encode("utf-8")


class RecordingUpstream:
    """
    ``httpx.MockTransport`` handler that records requests and answers each
    with the next canned response.
    """

    def __init__(self, responses: list[httpx.Response | Callable[[httpx.Request], httpx.Response]]) -> None:
        self._responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._responses[min(len(self.requests) - 1, len(self._responses) - 1)]
        if not isinstance(response, httpx.Response):
            return response(request)
        # fresh copy: a response body can only be consumed once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def json_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def sse_response(events: list[dict | str], named: bool = False) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Type": "text/event-stream"},
        content=sse_body(events, named=named),
    )
