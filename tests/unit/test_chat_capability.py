import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import StructuredTool
from pydantic import BaseModel

from journal_agent.agent.messages import (
    AssistantTurn,
    SystemTurn,
    ToolCall,
    ToolResultTurn,
    UserTurn,
    dump_transcript,
    load_transcript,
    to_langchain_messages,
)
from journal_agent.config import AgentConfig
from journal_agent.errors import UpstreamFailure, UpstreamTimeout
from journal_agent.llm import DeterministicChatCapability, LangChainChatCapability, NO_EVIDENCE_MESSAGE


class _Verdict(BaseModel):
    label: str


class _FakeModel:
    """Minimal chat model double exposing bind_tools/with_structured_output/ainvoke."""

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.bound_tools = None

    def bind_tools(self, tools):
        self.bound_tools = tools
        return self

    def with_structured_output(self, schema):
        return self

    async def ainvoke(self, messages):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(10)
        return outcome


def _retrieve_tool() -> StructuredTool:
    async def _retrieve(scope: str = "entries") -> dict:
        return {}

    return StructuredTool.from_function(name="retrieve", description="retrieve", coroutine=_retrieve)


_FAST = AgentConfig(retry_attempts=3, retry_max_wait_seconds=0, chat_timeout_seconds=0.05)


@pytest.mark.asyncio
async def test_langchain_capability_converts_tool_calls() -> None:
    model = _FakeModel(
        [AIMessage(content="", tool_calls=[{"id": "c1", "name": "retrieve", "args": {"scope": "entries"}}])]
    )
    capability = LangChainChatCapability(model, _FAST)

    reply = await capability.achat_with_tools([UserTurn(content="hi")], [_retrieve_tool()])

    assert reply.text == ""
    assert reply.tool_calls == [ToolCall(id="c1", name="retrieve", arguments={"scope": "entries"})]
    assert [tool.name for tool in model.bound_tools] == ["retrieve"]


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    model = _FakeModel([ConnectionError("reset"), AIMessage(content="done")])
    capability = LangChainChatCapability(model, _FAST)

    reply = await capability.achat_with_tools([UserTurn(content="hi")], [])

    assert reply.text == "done"
    assert model.calls == 2


@pytest.mark.asyncio
async def test_non_transient_error_becomes_upstream_failure() -> None:
    model = _FakeModel([ValueError("bad request"), AIMessage(content="never")])
    capability = LangChainChatCapability(model, _FAST)

    with pytest.raises(UpstreamFailure):
        await capability.achat_with_tools([UserTurn(content="hi")], [])
    assert model.calls == 1


@pytest.mark.asyncio
async def test_slow_model_times_out() -> None:
    capability = LangChainChatCapability(_FakeModel(["hang"]), _FAST)

    with pytest.raises(UpstreamTimeout):
        await capability.achat_with_tools([UserTurn(content="hi")], [])


@pytest.mark.asyncio
async def test_structured_output_is_validated() -> None:
    capability = LangChainChatCapability(_FakeModel([{"label": "ok"}]), _FAST)

    verdict = await capability.astructured(_Verdict, [UserTurn(content="classify")])

    assert verdict == _Verdict(label="ok")


@pytest.mark.asyncio
async def test_deterministic_capability_uses_date_sort_for_temporal_questions() -> None:
    capability = DeterministicChatCapability()

    latest = await capability.achat_with_tools([UserTurn(content="What was my last entry?")], [_retrieve_tool()])
    topical = await capability.achat_with_tools([UserTurn(content="When did I feel anxious about work")], [_retrieve_tool()])

    assert latest.tool_calls[0].arguments == {"scope": "entries", "sort": "date_desc", "limit": 5}
    assert "filter" not in latest.tool_calls[0].arguments
    assert topical.tool_calls[0].arguments["filter"] == {"similar_to": "When did I feel anxious about work"}


@pytest.mark.asyncio
async def test_deterministic_capability_answers_from_tool_results() -> None:
    capability = DeterministicChatCapability()
    call = ToolCall(id="call_1", name="retrieve", arguments={})
    found = [
        UserTurn(content="latest?"),
        AssistantTurn(tool_calls=[call]),
        ToolResultTurn(
            call_id="call_1",
            name="retrieve",
            content='{"items": [{"id": "entry-9", "date": "2025-10-26T09:00:00+00:00", "text": "Quiet Sunday."}]}',
        ),
    ]
    empty = [*found[:2], ToolResultTurn(call_id="call_1", name="retrieve", content='{"items": []}')]

    answer = await capability.achat_with_tools(found, [_retrieve_tool()])
    nothing = await capability.achat_with_tools(empty, [_retrieve_tool()])

    assert "2025-10-26: Quiet Sunday. [entry-9]" in answer.text
    assert nothing.text == NO_EVIDENCE_MESSAGE


def test_transcript_validation_and_langchain_conversion() -> None:
    raw = [
        {"role": "user", "content": "How was October?"},
        {"role": "assistant", "tool_calls": [{"id": "c1", "name": "retrieve", "arguments": {"scope": "summaries"}}]},
        {"role": "tool", "call_id": "c1", "name": "retrieve", "content": "{}"},
        {"role": "assistant", "content": "Mostly calm."},
    ]

    turns = load_transcript(raw)
    messages = to_langchain_messages([SystemTurn(content="sys"), *turns])

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, ToolMessage, AIMessage]
    assert messages[2].tool_calls[0]["args"] == {"scope": "summaries"}
    assert messages[3].tool_call_id == "c1"
    assert dump_transcript(turns)[0] == {"role": "user", "content": "How was October?"}
