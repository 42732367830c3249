"""
Turn orchestrator -- the loop that drives one exchange to completion.

The orchestrator is an explicit state machine::

    BUILDING -> DISPATCHING -> TOOL_EXECUTING -> BUILDING -> ...
                            \\-> TERMINAL
    (any) -> FAILED

1. BUILDING renders the session into the adapter's wire payload
2. DISPATCHING consumes the canonical event stream, relaying progress to
   the client, accumulating text, assembling tool calls and recording usage
3. TOOL_EXECUTING runs the confirmed calls and appends their results
4. The loop repeats until the model answers without tool calls (TERMINAL)
   or the tool-round ceiling is reached (FAILED)

The exchange is persisted once, on TERMINAL.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator

import httpx

from agentgate.llm.providers.base import ProviderAdapter
from agentgate.llm.tool_call_assembler import ToolCallAssembler
from agentgate.llm.types import AssembledAssistant, CanonicalEvent, EventKind, Message
from agentgate.session.events import (
    EVENT_DONE,
    EVENT_ERROR,
    ClientEvent,
    connection_event,
    done_event,
    error_event,
    status_for,
    text_event,
    updates_event,
)
from agentgate.session.session import Session
from agentgate.session.store import ThreadStore
from agentgate.tools.executor import ToolExecutor
from agentgate.types import (
    ErrorCode,
    GatewayError,
    RecursionLimitError,
    RemoteToolServerError,
    UpstreamError,
)
from agentgate.usage.ledger import UsageLedger, summarize

logger = logging.getLogger(__name__)

TITLE_LENGTH = 100


class TurnState(str, Enum):
    BUILDING = "building"
    DISPATCHING = "dispatching"
    TOOL_EXECUTING = "tool_executing"
    TERMINAL = "terminal"
    FAILED = "failed"


def _raise_for(event: CanonicalEvent) -> None:
    message = event.error or "upstream error"
    if event.code == ErrorCode.REMOTE_TOOL_SERVER:
        raise RemoteToolServerError(message)
    raise UpstreamError(message)


class TurnOrchestrator:
    """
    Drives one exchange of a session.

    Parameters
    ----------
    session : Session
        Built session; owned by this orchestrator until ``run`` finishes.
    adapter : ProviderAdapter
        Adapter for the session's protocol family.
    executor : ToolExecutor
        Executes confirmed tool calls.
    ledger : UsageLedger
        Converts raw usage counters into billing records.
    store : ThreadStore, optional
        Where the finished exchange is persisted.  Without one the exchange
        is not persisted and ``thread_id`` stays as requested.
    max_tool_rounds : int
        Ceiling on tool rounds (and therefore upstream calls) per exchange.
    keep_text_with_tool_calls : bool
        Keep assistant text that accompanies tool calls in the history.
    """

    def __init__(
        self,
        session: Session,
        adapter: ProviderAdapter,
        executor: ToolExecutor,
        ledger: UsageLedger,
        store: ThreadStore | None = None,
        max_tool_rounds: int = 10,
        keep_text_with_tool_calls: bool = False,
    ) -> None:
        self.session = session
        self.adapter = adapter
        self.executor = executor
        self.ledger = ledger
        self.store = store
        self.max_tool_rounds = max_tool_rounds
        self.keep_text_with_tool_calls = keep_text_with_tool_calls
        self.state = TurnState.BUILDING
        self.final_message = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> AsyncIterator[ClientEvent]:
        """
        Run the exchange, yielding client events.

        Always starts with ``connection`` and ends with exactly one ``done``
        or ``error``.  Remote tool clients are released on exit.
        """
        s = self.session
        yield connection_event(s.thread_id)
        yield updates_event(s.thread_id, "Stream connected successfully")
        try:
            async for event in self._loop():
                yield event
        except GatewayError as e:
            self.state = TurnState.FAILED
            logger.warning("Exchange failed (%s): %s", e.code, e)
            yield error_event(s.thread_id, str(e), e.code)
        except httpx.HTTPError as e:
            self.state = TurnState.FAILED
            logger.warning("Upstream unreachable: %s", e)
            yield error_event(s.thread_id, str(e) or type(e).__name__, ErrorCode.UPSTREAM_ERROR)
        except Exception as e:
            self.state = TurnState.FAILED
            logger.exception("Exchange failed unexpectedly")
            yield error_event(s.thread_id, str(e) or type(e).__name__, ErrorCode.INTERNAL_ERROR)
        finally:
            await s.aclose()

    async def respond(self) -> dict:
        """Run the exchange to completion and return a synchronous response."""
        done: ClientEvent | None = None
        failure: ClientEvent | None = None
        async for event in self.run():
            if event.type == EVENT_DONE:
                done = event
            elif event.type == EVENT_ERROR:
                failure = event

        usage = summarize(self.session.usage)
        if failure is not None or done is None:
            payload = failure.payload if failure is not None else {}
            return {
                "success": False,
                "thread_id": self.session.thread_id,
                "error": payload.get("message", "exchange did not complete"),
                "code": payload.get("code", ErrorCode.INTERNAL_ERROR),
                "usage": usage,
            }
        return {
            "success": True,
            "thread_id": done.thread_id,
            "message": self.final_message,
            "messages": done.payload["messages"],
            "usage": usage,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(self) -> AsyncIterator[ClientEvent]:
        s = self.session
        while True:
            self.state = TurnState.BUILDING
            s.payload = self.adapter.build_payload(s)

            self.state = TurnState.DISPATCHING
            turn = AssembledAssistant(content="", tool_calls=[])
            assembler = ToolCallAssembler()
            async for event in self._dispatch_turn(turn, assembler):
                yield event

            for reported in self.executor.absorb_builtin_outputs(turn.builtin_outputs):
                s.usage.append(self.ledger.record_tool(reported.get("name", "remote_tool"), reported))

            turn.tool_calls = assembler.confirmed_calls()
            pending = assembler.pending_indices()
            if pending:
                logger.warning("Discarding unconfirmed tool call(s) at index %s", pending)

            if not turn.tool_calls:
                async for event in self._finish(turn):
                    yield event
                return

            self.state = TurnState.TOOL_EXECUTING
            s.append(
                Message(
                    role="assistant",
                    content=turn.content if self.keep_text_with_tool_calls else "",
                    tool_calls=turn.tool_calls,
                )
            )
            names = ", ".join(c.name for c in turn.tool_calls)
            yield updates_event(s.thread_id, f"Executing tools: {names}")

            results = await self.executor.execute_all(turn.tool_calls, s)
            for result in results:
                s.append(Message(role="tool", content=result.content, tool_call_id=result.call_id))
                for reported in result.usage or []:
                    s.usage.append(self.ledger.record_tool(result.name, reported))

            s.turn_count += 1
            logger.info("Tool round %d finished (%d call(s))", s.turn_count, len(results))
            if s.turn_count >= self.max_tool_rounds:
                raise RecursionLimitError(
                    f"Reached maximum of {self.max_tool_rounds} tool call rounds"
                )

    async def _dispatch_turn(
        self,
        turn: AssembledAssistant,
        assembler: ToolCallAssembler,
    ) -> AsyncIterator[ClientEvent]:
        """Consume one upstream stream in arrival order, filling *turn*."""
        s = self.session
        parts: list[str] = []
        async with aclosing(self.adapter.dispatch(s.payload)) as stream:
            async for event in stream:
                if event.kind == EventKind.ERROR:
                    _raise_for(event)
                yield updates_event(s.thread_id, status_for(event))

                if event.kind == EventKind.TEXT_DELTA:
                    if event.text:
                        parts.append(event.text)
                        yield text_event(s.thread_id, event.text)
                elif event.kind == EventKind.TOOL_CALL_DELTA and event.delta is not None:
                    assembler.feed(event.delta)
                elif event.kind == EventKind.TOOL_CALL_COMPLETE and event.call_index is not None:
                    assembler.confirm(event.call_index)
                elif event.kind == EventKind.USAGE and event.usage:
                    turn.usage.append(event.usage)
                    s.usage.append(
                        self.ledger.record(
                            event.usage,
                            s.agent.brand,
                            s.agent.model,
                            own_credentials=s.own_credentials,
                        )
                    )
                elif event.kind == EventKind.TURN_STARTED and event.response_id:
                    turn.response_id = event.response_id
                    s.response_id = event.response_id
                elif event.kind == EventKind.PROGRESS and event.output:
                    turn.builtin_outputs.append(event.output)
                elif event.kind == EventKind.TURN_COMPLETE:
                    turn.finish_reason = event.finish_reason
        turn.content = "".join(parts)

    async def _finish(self, turn: AssembledAssistant) -> AsyncIterator[ClientEvent]:
        s = self.session
        s.append(Message(role="assistant", content=turn.content))
        self.final_message = turn.content
        messages = [m.to_dict() for m in s.exchange_messages()]

        if self.store is not None:
            s.thread_id = await self.store.persist(
                messages,
                [u.to_dict() for u in s.usage],
                {
                    "response_id": s.response_id,
                    "agent": s.agent.name,
                    "brand": s.agent.brand,
                    "model": s.agent.model,
                    "family": s.family,
                },
                thread_id=s.thread_id,
                user_id=s.identity.user_id,
                title=s.prompt[:TITLE_LENGTH],
            )

        self.state = TurnState.TERMINAL
        yield done_event(s.thread_id, messages)
