"""ReAct-style reasoning loop over the tool registry."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from journal_agent.agent.messages import (
    AssistantTurn,
    SystemTurn,
    ToolCall,
    ToolResultTurn,
    Turn,
    UserTurn,
    dump_transcript,
)
from journal_agent.agent.prompts import build_system_prompt
from journal_agent.agent.registry import ToolRegistry
from journal_agent.cache import ResultCache, serialize
from journal_agent.config import AgentConfig
from journal_agent.errors import QueryValidationError, UpstreamFailure
from journal_agent.llm import ChatCapability
from journal_agent.obs.tracing import Timer, TraceStore, estimate_token_count
from journal_agent.types import Confidence, ToolTrace

logger = logging.getLogger(__name__)

LIMIT_REACHED_MESSAGE = (
    "I apologize, but I've reached my processing limit for this question. "
    "Could you try rephrasing it or asking about a narrower time period?"
)


class TurnStatus(str, Enum):
    ANSWERED = "answered"
    NO_DATA = "no_data"
    LIMIT_REACHED = "limit_reached"


@dataclass(slots=True)
class AgentResponse:
    answer: str
    status: TurnStatus
    tools_used: list[str]
    confidence: Confidence
    provenance: list[dict[str, Any]]
    iterations: int
    latency_ms: float
    input_tokens: int
    output_tokens: int
    transcript: list[Turn]
    trace_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "status": self.status.value,
            "tools_used": list(self.tools_used),
            "confidence": self.confidence.value,
            "provenance": self.provenance,
            "iterations": self.iterations,
            "latency_ms": round(self.latency_ms, 2),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "transcript": dump_transcript(self.transcript),
            "trace_id": self.trace_id,
        }


@dataclass(slots=True)
class _TurnState:
    tools_used: list[str] = field(default_factory=list)
    traces: list[ToolTrace] = field(default_factory=list)
    retrievals: list[tuple[Confidence, int]] = field(default_factory=list)
    provenance: dict[str, list[str]] = field(default_factory=dict)
    analyses: int = 0

    def record_evidence(self, name: str, payload: dict[str, Any]) -> None:
        if name == "analyze":
            self.analyses += 1
            return
        if name == "context_bundle":
            recent = payload.get("recent") or {}
            count = len(payload.get("items") or []) + int(recent.get("entry_count", 0))
            self.retrievals.append((Confidence(recent.get("confidence", "low")), count))
        elif name == "retrieve":
            metadata = payload.get("metadata") or {}
            count = int(metadata.get("count", 0))
            self.retrievals.append((Confidence(metadata.get("confidence", "low")), count))
        else:
            return
        for item in payload.get("items") or []:
            source = (item.get("provenance") or {}).get("source") or payload.get("scope", "unknown")
            ids = self.provenance.setdefault(source, [])
            if item.get("id") not in ids:
                ids.append(item.get("id"))

    @property
    def confidence(self) -> Confidence:
        tiers = [tier for tier, count in self.retrievals if count > 0]
        return max(tiers, key=lambda tier: tier.rank, default=Confidence.LOW)

    @property
    def found_nothing(self) -> bool:
        return bool(self.retrievals) and not self.analyses and all(c == 0 for _, c in self.retrievals)


class AgentKernel:
    """Alternates model reasoning and tool execution until an answer or the limit.

    Tool failures never abort the loop: each one becomes a tool result the
    model can read. Chat capability failures do abort it, with
    `UpstreamFailure` or `UpstreamTimeout`.
    """

    def __init__(
        self,
        *,
        chat: ChatCapability,
        registry: ToolRegistry,
        cache: ResultCache,
        trace_store: TraceStore,
        config: AgentConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.chat = chat
        self.registry = registry
        self.cache = cache
        self.trace_store = trace_store
        self.config = config or AgentConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def run_conversation_turn(
        self,
        user_text: str,
        prior_transcript: list[Turn] | None = None,
    ) -> AgentResponse:
        if not user_text or not user_text.strip():
            raise QueryValidationError("Question must not be empty")

        history = [turn for turn in (prior_transcript or []) if not isinstance(turn, SystemTurn)]
        system = SystemTurn(content=build_system_prompt(self.registry.specs(), self.clock().date()))
        messages: list[Turn] = [system, *history, UserTurn(content=user_text)]
        tools = self.registry.as_langchain_tools()
        state = _TurnState()
        answer: str | None = None
        iterations = 0
        input_tokens = 0
        output_tokens = 0

        with Timer() as timer:
            while iterations < self.config.max_iterations:
                iterations += 1
                input_tokens += sum(estimate_token_count(turn.content) for turn in messages)
                reply = await self.chat.achat_with_tools(messages, tools)
                if reply.is_empty:
                    raise UpstreamFailure("Chat model returned neither text nor tool calls")
                output_tokens += estimate_token_count(reply.text)

                if not reply.tool_calls:
                    answer = reply.text
                    break

                logger.info(
                    "iteration=%d tool_calls=%s",
                    iterations,
                    [call.name for call in reply.tool_calls],
                )
                messages.append(AssistantTurn(content=reply.text, tool_calls=reply.tool_calls))
                state.tools_used.extend(call.name for call in reply.tool_calls)
                results = await asyncio.gather(*(self._run_tool(call, state) for call in reply.tool_calls))
                messages.extend(results)

        if answer is None:
            logger.warning("processing limit reached after %d iterations", iterations)
            answer = LIMIT_REACHED_MESSAGE
            status = TurnStatus.LIMIT_REACHED
        elif state.found_nothing:
            status = TurnStatus.NO_DATA
        else:
            status = TurnStatus.ANSWERED
        messages.append(AssistantTurn(content=answer))

        provenance = [{"scope": scope, "ids": ids} for scope, ids in state.provenance.items()]
        record = self.trace_store.create_record(
            question=user_text,
            answer=answer,
            status=status.value,
            confidence=state.confidence.value,
            tools_used=state.tools_used,
            tool_traces=state.traces,
            iterations=iterations,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=timer.elapsed_ms,
            provenance=[item_id for entry in provenance for item_id in entry["ids"]],
        )
        logger.info(
            "turn finished status=%s iterations=%d tools=%d latency=%.0fms trace=%s",
            status.value,
            iterations,
            len(state.tools_used),
            timer.elapsed_ms,
            record.trace_id,
        )
        return AgentResponse(
            answer=answer,
            status=status,
            tools_used=state.tools_used,
            confidence=state.confidence,
            provenance=provenance,
            iterations=iterations,
            latency_ms=timer.elapsed_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            transcript=messages[1:],
            trace_id=record.trace_id,
        )

    async def _run_tool(self, call: ToolCall, state: _TurnState) -> ToolResultTurn:
        if call.name not in self.registry:
            return _error_result(call, f"Unknown tool: {call.name}")
        try:
            payload = await asyncio.wait_for(
                self.registry.execute(call.name, call.arguments, observer=state.traces.append),
                timeout=self.config.tool_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return _error_result(call, f"Tool timed out after {self.config.tool_timeout_seconds:.0f}s")
        except Exception as exc:
            logger.warning("tool %s failed: %s", call.name, exc)
            return _error_result(call, f"{type(exc).__name__}: {exc}")

        state.record_evidence(call.name, payload)
        content = serialize(payload)
        if self.cache.should_cache(content):
            result_id = self.cache.put(payload)
            content = serialize(self.cache.summarize(payload, result_id))
            logger.info("tool %s result cached as %s", call.name, result_id)
        return ToolResultTurn(call_id=call.id, name=call.name, content=content)


def _error_result(call: ToolCall, message: str) -> ToolResultTurn:
    return ToolResultTurn(
        call_id=call.id,
        name=call.name,
        content=json.dumps({"error": message, "tool": call.name}),
        is_error=True,
    )