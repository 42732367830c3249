"""Tests for the turn orchestrator."""

from __future__ import annotations

import json

import httpx
import pytest

from agentgate.llm.types import CanonicalEvent, EventKind, Message
from agentgate.orchestrator.core import TurnOrchestrator, TurnState
from agentgate.session.events import EVENT_DONE, EVENT_ERROR, EVENT_TEXT, EVENT_UPDATES
from agentgate.session.session import Session
from agentgate.session.store import SqliteThreadStore
from agentgate.tools.executor import ToolExecutor
from agentgate.types import ErrorCode, UserIdentity
from agentgate.usage.ledger import UsageLedger
from agentgate.usage.pricing import PricingTable
from tests.mock_providers import ScriptedAdapter, error_turn, text_turn, tool_turn
from tests.mock_tools import FakeRemoteClient, billed, echo_directory, echo_tool_transport, make_agent

PRICING = {"deepseek": {"deepseek-chat": {"input_per_1k": 0.00056, "output_per_1k": 0.00168}}}
USAGE = {"prompt_tokens": 1000, "completion_tokens": 1000, "total_tokens": 2000}


@pytest.fixture
async def store(tmp_path):
    async with SqliteThreadStore(str(tmp_path / "threads.db")) as s:
        yield s


@pytest.fixture
async def executor():
    async with httpx.AsyncClient(transport=echo_tool_transport()) as client:
        yield ToolExecutor(echo_directory(), http_client=client)


@pytest.fixture
def ledger():
    return UsageLedger(PricingTable.from_dict(PRICING))


def _session(prompt: str = "hello", thread_id: str | None = None, **kwargs) -> Session:
    session = Session(
        make_agent(),
        UserIdentity("u1", token="user-token"),
        api_key="k",
        family="chat",
        thread_id=thread_id,
        prompt=prompt,
        **kwargs,
    )
    session.instructions = session.agent.instructions
    session.append(Message(role="user", content=prompt))
    return session


async def _run(orchestrator: TurnOrchestrator) -> list:
    return [e async for e in orchestrator.run()]


def _of_type(events, event_type):
    return [e for e in events if e.type == event_type]


class TestTextOnly:
    async def test_single_turn(self, executor, ledger, store):
        session = _session()
        adapter = ScriptedAdapter([text_turn("Hello there.", usage=USAGE)])
        orch = TurnOrchestrator(session, adapter, executor, ledger, store)
        events = await _run(orch)

        assert events[0].type == "connection"
        assert events[1].payload["text"]["status"] == "Stream connected successfully"
        assert events[-1].type == EVENT_DONE
        assert len(_of_type(events, EVENT_DONE)) == 1
        assert not _of_type(events, EVENT_ERROR)
        assert "".join(e.payload["text"] for e in _of_type(events, EVENT_TEXT)) == "Hello there."

        done = events[-1]
        assert done.thread_id is not None
        assert [m["role"] for m in done.payload["messages"]] == ["user", "assistant"]
        assert done.payload["messages"][1]["content"] == "Hello there."
        assert orch.state == TurnState.TERMINAL
        assert orch.final_message == "Hello there."
        assert adapter.call_count == 1

    async def test_every_canonical_event_produces_an_update(self, executor, ledger):
        turn = text_turn("a b", usage=USAGE)
        events = await _run(TurnOrchestrator(_session(), ScriptedAdapter([turn]), executor, ledger))
        statuses = [e.payload["text"]["status"] for e in _of_type(events, EVENT_UPDATES)]
        assert statuses == [
            "Stream connected successfully",
            "Response created",
            "Text delta",
            "Text delta",
            "Usage reported",
            "Response completed",
        ]

    async def test_exchange_is_persisted(self, executor, ledger, store):
        session = _session("What is the weather like today?")
        orch = TurnOrchestrator(session, ScriptedAdapter([text_turn("Sunny.", usage=USAGE)]), executor, ledger, store)
        events = await _run(orch)
        thread_id = events[-1].thread_id

        thread = await store.get_thread(thread_id)
        assert thread["user_id"] == "u1"
        assert thread["name"] == "What is the weather like today?"
        [exchange] = thread["exchanges"]
        assert [m["role"] for m in exchange["messages"]] == ["user", "assistant"]
        assert exchange["metadata"]["response_id"] == "resp_1"
        assert exchange["metadata"]["family"] == "chat"
        assert exchange["usage"][0]["costs"]["total_cost"] == pytest.approx(0.0023)

    async def test_resumed_thread_appends_only_new_exchange(self, executor, ledger, store):
        first = await _run(
            TurnOrchestrator(_session("one"), ScriptedAdapter([text_turn("1")]), executor, ledger, store)
        )
        thread_id = first[-1].thread_id

        session = Session(make_agent(), UserIdentity("u1"), api_key="k", family="chat", thread_id=thread_id)
        session.load_history([Message.from_dict(m) for m in await store.load(thread_id, "u1")])
        session.append(Message(role="user", content="two"))

        second = await _run(TurnOrchestrator(session, ScriptedAdapter([text_turn("2")]), executor, ledger, store))
        assert second[-1].thread_id == thread_id
        assert [m["content"] for m in second[-1].payload["messages"]] == ["two", "2"]
        assert [m["content"] for m in await store.load(thread_id, "u1")] == ["one", "1", "two", "2"]

    async def test_without_store_thread_id_is_unchanged(self, executor, ledger):
        events = await _run(TurnOrchestrator(_session(), ScriptedAdapter([text_turn("x")]), executor, ledger))
        assert events[-1].type == EVENT_DONE
        assert events[-1].thread_id is None


class TestToolRounds:
    async def test_tool_round_then_answer(self, executor, ledger, store):
        session = _session()
        adapter = ScriptedAdapter([
            tool_turn([("echo", {"message": "hi"}, "call_1")], usage=USAGE),
            text_turn("All done.", usage=USAGE),
        ])
        events = await _run(TurnOrchestrator(session, adapter, executor, ledger, store))

        assert adapter.call_count == 2
        assert events[-1].type == EVENT_DONE
        statuses = [e.payload["text"]["status"] for e in _of_type(events, EVENT_UPDATES)]
        assert "Tool call: ec" in statuses
        assert "Executing tools: echo" in statuses

        second = adapter.payloads[1]["messages"]
        assert second[2]["tool_calls"][0]["function"] == {"name": "echo", "arguments": '{"message": "hi"}'}
        assert second[3]["role"] == "tool"
        assert second[3]["tool_call_id"] == "call_1"
        assert json.loads(second[3]["content"]) == {"echo": {"message": "hi", "volume": "normal"}}

        roles = [m["role"] for m in events[-1].payload["messages"]]
        assert roles == ["user", "assistant", "tool", "assistant"]

        tool_records = [u for u in session.usage if u.source == "tool"]
        assert [(r.model, r.total_cost) for r in tool_records] == [("echo", 0.002)]
        assert len([u for u in session.usage if u.source == "model"]) == 2

    async def test_parallel_calls_keep_order(self, executor, ledger):
        adapter = ScriptedAdapter([
            tool_turn([("echo", {"message": "a"}, "c_a"), ("echo", {"message": "b"}, "c_b")]),
            text_turn("ok"),
        ])
        await _run(TurnOrchestrator(_session(), adapter, executor, ledger))
        tool_msgs = [m for m in adapter.payloads[1]["messages"] if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_msgs] == ["c_a", "c_b"]
        assert json.loads(tool_msgs[1]["content"])["echo"]["message"] == "b"

    async def test_unknown_tool_is_reported_back_to_the_model(self, executor, ledger):
        adapter = ScriptedAdapter([tool_turn([("nope", {}, "c1")]), text_turn("Sorry.")])
        events = await _run(TurnOrchestrator(_session(), adapter, executor, ledger))

        assert events[-1].type == EVENT_DONE
        tool_msg = adapter.payloads[1]["messages"][3]
        assert json.loads(tool_msg["content"]) == {"error": "Unknown tool: nope"}

    async def test_text_with_tool_calls_dropped_by_default(self, executor, ledger):
        adapter = ScriptedAdapter([
            tool_turn([("echo", {"message": "x"}, "c1")], content_prefix="Checking."),
            text_turn("ok"),
        ])
        events = await _run(TurnOrchestrator(_session(), adapter, executor, ledger))
        # still streamed to the client
        assert _of_type(events, EVENT_TEXT)[0].payload["text"] == "Checking."
        assert adapter.payloads[1]["messages"][2]["content"] is None

    async def test_text_with_tool_calls_kept_when_enabled(self, executor, ledger):
        adapter = ScriptedAdapter([
            tool_turn([("echo", {"message": "x"}, "c1")], content_prefix="Checking."),
            text_turn("ok"),
        ])
        orch = TurnOrchestrator(_session(), adapter, executor, ledger, keep_text_with_tool_calls=True)
        await _run(orch)
        assert adapter.payloads[1]["messages"][2]["content"] == "Checking."

    async def test_unconfirmed_calls_are_discarded(self, executor, ledger):
        adapter = ScriptedAdapter([tool_turn([("echo", {"message": "x"}, "c1")], confirm=False)])
        orch = TurnOrchestrator(_session(), adapter, executor, ledger)
        events = await _run(orch)
        assert adapter.call_count == 1
        assert events[-1].type == EVENT_DONE
        assert orch.state == TurnState.TERMINAL

    async def test_recursion_limit(self, executor, ledger, store):
        adapter = ScriptedAdapter([tool_turn([("echo", {"message": "again"}, "c")])])
        orch = TurnOrchestrator(_session(), adapter, executor, ledger, store, max_tool_rounds=10)
        events = await _run(orch)

        assert adapter.call_count == 10
        assert events[-1].type == EVENT_ERROR
        assert events[-1].payload["code"] == ErrorCode.RECURSION_LIMIT
        assert not _of_type(events, EVENT_DONE)
        assert orch.state == TurnState.FAILED
        assert await store.list_threads() == []

    async def test_remote_tool_usage(self, executor, ledger):
        docs = FakeRemoteClient("docs", {"lookup": lambda a: billed("found", {"total_cost": 0.05})})
        session = _session()
        session.attach_client(docs)
        session.tools.extend(await docs.list_tools())
        adapter = ScriptedAdapter([tool_turn([("lookup", {"q": "x"}, "c1")]), text_turn("ok")])
        await _run(TurnOrchestrator(session, adapter, executor, ledger))

        assert docs.calls == [("lookup", {"q": "x"})]
        assert adapter.payloads[1]["messages"][3]["content"] == "found"
        assert [r.total_cost for r in session.usage if r.source == "tool"] == [0.05]

    async def test_provider_executed_tool_usage(self, executor, ledger):
        output = {"type": "mcp_call", "name": "lookup", "output": billed("r", {"total_cost": 0.03, "name": "lookup"})}
        turn = [
            CanonicalEvent(EventKind.TURN_STARTED, response_id="r"),
            CanonicalEvent(EventKind.PROGRESS, status="Output item done: mcp_call lookup", output=output),
            CanonicalEvent.text_delta("answer"),
            CanonicalEvent(EventKind.TURN_COMPLETE, finish_reason="completed"),
        ]
        session = _session()
        events = await _run(TurnOrchestrator(session, ScriptedAdapter([turn]), executor, ledger))

        statuses = [e.payload["text"]["status"] for e in _of_type(events, EVENT_UPDATES)]
        assert "Output item done: mcp_call lookup" in statuses
        [record] = session.usage
        assert (record.source, record.model, record.total_cost) == ("tool", "lookup", 0.03)


class TestFailures:
    async def test_upstream_error_event(self, executor, ledger):
        session = _session(thread_id="thread-x")
        orch = TurnOrchestrator(session, ScriptedAdapter([error_turn("rate limited")]), executor, ledger)
        events = await _run(orch)

        error = events[-1]
        assert error.type == EVENT_ERROR
        assert error.thread_id == "thread-x"
        assert error.payload == {"message": "rate limited", "code": ErrorCode.UPSTREAM_ERROR}
        assert orch.state == TurnState.FAILED

    async def test_remote_tool_server_rejection(self, executor, ledger):
        adapter = ScriptedAdapter([error_turn("MCP server connection error", code=ErrorCode.REMOTE_TOOL_SERVER)])
        events = await _run(TurnOrchestrator(_session(), adapter, executor, ledger))
        assert events[-1].payload["code"] == ErrorCode.REMOTE_TOOL_SERVER

    async def test_unreachable_upstream(self, executor, ledger):
        class Unreachable(ScriptedAdapter):
            async def dispatch(self, payload):
                raise httpx.ConnectError("connection refused")
                yield

        events = await _run(TurnOrchestrator(_session(), Unreachable([]), executor, ledger))
        assert events[-1].payload == {"message": "connection refused", "code": ErrorCode.UPSTREAM_ERROR}

    async def test_remote_clients_closed_on_success_and_failure(self, executor, ledger):
        for turn in (text_turn("fine"), error_turn("boom")):
            client = FakeRemoteClient("docs")
            session = _session()
            session.attach_client(client)
            await _run(TurnOrchestrator(session, ScriptedAdapter([turn]), executor, ledger))
            assert client.closed
            assert session.remote_clients == {}


class TestRespond:
    async def test_success_shape(self, executor, ledger, store):
        orch = TurnOrchestrator(_session(), ScriptedAdapter([text_turn("Hi.", usage=USAGE)]), executor, ledger, store)
        response = await orch.respond()

        assert response["success"] is True
        assert response["message"] == "Hi."
        assert response["thread_id"] is not None
        assert len(response["messages"]) == 2
        assert response["usage"]["total_tokens"] == 2000
        assert response["usage"]["total_cost"] == pytest.approx(0.0023)

    async def test_failure_shape(self, executor, ledger):
        orch = TurnOrchestrator(_session(), ScriptedAdapter([error_turn("nope")]), executor, ledger)
        response = await orch.respond()
        assert response["success"] is False
        assert response["error"] == "nope"
        assert response["code"] == ErrorCode.UPSTREAM_ERROR
        assert response["usage"]["records"] == 0

    async def test_own_credentials_are_not_billed(self, executor, ledger):
        session = _session(own_credentials=True)
        orch = TurnOrchestrator(session, ScriptedAdapter([text_turn("Hi.", usage=USAGE)]), executor, ledger)
        response = await orch.respond()
        assert response["usage"]["total_tokens"] == 2000
        assert response["usage"]["total_cost"] == 0.0
