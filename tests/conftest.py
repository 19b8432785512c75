from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date, datetime, time, timezone
from typing import Any

import pytest

from journal_agent.llm import ChatReply
from journal_agent.types import Scope, SearchableItem

NOW = datetime(2025, 10, 27, 12, 0, tzinfo=timezone.utc)


def _make_item(
    item_id: str,
    day: date | str,
    text: str | None = None,
    *,
    scope: Scope = Scope.ENTRIES,
    metrics: dict[str, float] | None = None,
    embedding: Sequence[float] | None = None,
    tags: Sequence[str] = (),
) -> SearchableItem:
    if isinstance(day, str):
        day = date.fromisoformat(day)
    return SearchableItem(
        item_id=item_id,
        scope=scope,
        timestamp=datetime.combine(day, time(9, 0), tzinfo=timezone.utc),
        text=text,
        embedding=tuple(embedding) if embedding is not None else None,
        metrics=metrics or {},
        tags=tuple(tags),
    )


class ScriptedChat:
    """Chat capability double that replays scripted replies and structured outputs."""

    def __init__(
        self,
        replies: Sequence[ChatReply] | Callable[[list[Any]], ChatReply] = (),
        structured: dict[type, Any] | None = None,
    ) -> None:
        self._replies = replies
        self._index = 0
        self.structured = structured or {}
        self.calls: list[list[Any]] = []
        self.structured_calls: list[tuple[type, list[Any]]] = []

    async def achat_with_tools(self, messages, tools) -> ChatReply:
        self.calls.append(list(messages))
        if callable(self._replies):
            return self._replies(list(messages))
        reply = self._replies[min(self._index, len(self._replies) - 1)]
        self._index += 1
        return reply

    async def astructured(self, schema, messages):
        self.structured_calls.append((schema, list(messages)))
        return self.structured[schema]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def make_item() -> Callable[..., SearchableItem]:
    return _make_item


@pytest.fixture
def scripted_chat() -> type[ScriptedChat]:
    return ScriptedChat
