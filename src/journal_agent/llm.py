"""Chat model capabilities: a LangChain-backed adapter and an offline fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import openai
from langchain_core.tools import BaseTool
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from journal_agent.agent.messages import (
    AssistantTurn,
    ToolCall,
    ToolResultTurn,
    Turn,
    UserTurn,
    to_langchain_messages,
)
from journal_agent.config import AgentConfig
from journal_agent.errors import UpstreamFailure, UpstreamTimeout

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
T = TypeVar("T")

# Provider errors worth another attempt; anything else fails fast.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
    ConnectionError,
)

_TEMPORAL_PATTERN = re.compile(
    r"\b(latest|recent|recently|last|yesterday|today|this week|most recent|newest)\b",
    flags=re.IGNORECASE,
)


@dataclass(slots=True)
class ChatReply:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.tool_calls


class ChatCapability(Protocol):
    async def achat_with_tools(self, messages: Sequence[Turn], tools: Sequence[BaseTool]) -> ChatReply:
        ...

    async def astructured(self, schema: type[ModelT], messages: Sequence[Turn]) -> ModelT:
        ...


class LangChainChatCapability:
    """Wraps a LangChain chat model (e.g. `ChatOpenAI`) with retries and timeouts."""

    def __init__(self, model: Any, config: AgentConfig | None = None) -> None:
        self.model = model
        self.config = config or AgentConfig()

    async def achat_with_tools(self, messages: Sequence[Turn], tools: Sequence[BaseTool]) -> ChatReply:
        runnable = self.model.bind_tools(list(tools)) if tools else self.model
        lc_messages = to_langchain_messages(list(messages))
        response = await self._call(lambda: runnable.ainvoke(lc_messages))
        return ChatReply(
            text=_content_text(getattr(response, "content", "")),
            tool_calls=[
                ToolCall(id=call.get("id") or f"call_{index}", name=call["name"], arguments=call.get("args") or {})
                for index, call in enumerate(getattr(response, "tool_calls", None) or [], start=1)
            ],
        )

    async def astructured(self, schema: type[ModelT], messages: Sequence[Turn]) -> ModelT:
        runnable = self.model.with_structured_output(schema)
        lc_messages = to_langchain_messages(list(messages))
        result = await self._call(lambda: runnable.ainvoke(lc_messages))
        if isinstance(result, schema):
            return result
        return schema.model_validate(result)

    async def _call(self, factory: Callable[[], Awaitable[T]]) -> T:
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.config.retry_max_wait_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("chat call retry attempt=%d", attempt.retry_state.attempt_number)
                    return await asyncio.wait_for(factory(), timeout=self.config.chat_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout(
                f"chat model did not answer within {self.config.chat_timeout_seconds:.0f}s"
            ) from exc
        except Exception as exc:
            logger.exception("chat call failed")
            raise UpstreamFailure(f"chat model call failed: {exc}") from exc
        raise UpstreamFailure("chat model call made no attempts")


class DeterministicChatCapability:
    """Offline stand-in used when no model is configured.

    It issues a single `retrieve` call (newest-first for temporal questions,
    similarity search otherwise) and then answers with cited items, or says
    plainly that no evidence was found. Structured analysis is unavailable.
    """

    def __init__(self, *, limit: int = 5, max_cited: int = 3) -> None:
        self.limit = limit
        self.max_cited = max_cited

    async def achat_with_tools(self, messages: Sequence[Turn], tools: Sequence[BaseTool]) -> ChatReply:
        question, results = _last_question_and_results(messages)
        if results:
            return ChatReply(text=self._compose_answer(results))

        if not any(tool.name == "retrieve" for tool in tools):
            return ChatReply(text=NO_EVIDENCE_MESSAGE)
        return ChatReply(tool_calls=[ToolCall(id="call_1", name="retrieve", arguments=self.plan(question))])

    async def astructured(self, schema: type[ModelT], messages: Sequence[Turn]) -> ModelT:
        raise UpstreamFailure(
            f"{schema.__name__} requires a configured language model (set OPENAI_API_KEY)"
        )

    def plan(self, question: str) -> dict[str, Any]:
        if _TEMPORAL_PATTERN.search(question):
            return {"scope": "entries", "sort": "date_desc", "limit": self.limit}
        return {
            "scope": "entries",
            "sort": "similarity_desc",
            "limit": self.limit,
            "filter": {"similar_to": question},
        }

    def _compose_answer(self, results: list[ToolResultTurn]) -> str:
        errors: list[str] = []
        lines: list[str] = []
        for result in results:
            payload = result.payload()
            if not isinstance(payload, dict):
                continue
            if "error" in payload:
                errors.append(str(payload["error"]))
                continue
            for item in (payload.get("items") or payload.get("preview") or [])[: self.max_cited - len(lines)]:
                date = str(item.get("date") or "")[:10]
                text = " ".join(str(item.get("text") or "").split())
                if len(text) > 200:
                    text = text[:200].rstrip() + "..."
                lines.append(f"{len(lines) + 1}. {date}: {text} [{item.get('id')}]")

        if lines:
            return "Here is what your journal shows:\n" + "\n".join(lines)
        if errors:
            return "I couldn't read your journal right now: " + "; ".join(errors)
        return NO_EVIDENCE_MESSAGE


NO_EVIDENCE_MESSAGE = "I couldn't find any journal entries that answer this question."


def _last_question_and_results(messages: Sequence[Turn]) -> tuple[str, list[ToolResultTurn]]:
    results: list[ToolResultTurn] = []
    for turn in reversed(messages):
        if isinstance(turn, ToolResultTurn):
            results.append(turn)
        elif isinstance(turn, UserTurn):
            return turn.content, list(reversed(results))
        elif isinstance(turn, AssistantTurn) and not turn.tool_calls:
            break
    return "", list(reversed(results))


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts).strip()
    if isinstance(content, dict):
        return json.dumps(content)
    return str(content or "")
