from datetime import date

import pytest

from journal_agent.agent.registry import ToolRegistry
from journal_agent.agent.tools import months_back, register_builtin_tools
from journal_agent.analysis.router import AnalysisRouter
from journal_agent.cache import ResultCache
from journal_agent.retrieval.embedder import HashingEmbedder
from journal_agent.retrieval.gateway import RetrievalGateway
from journal_agent.retrieval.store import InMemoryDocumentStore
from journal_agent.types import Scope


@pytest.fixture
def journal(make_item):
    analytics = [
        make_item(
            f"a{day:02d}",
            f"2025-10-{day:02d}",
            scope=Scope.ANALYTICS,
            metrics={"happiness": 38 + 2 * day, "stress": 30},
        )
        for day in range(1, 21)
    ]
    return analytics + [
        make_item("a-old", "2025-06-01", scope=Scope.ANALYTICS, metrics={"happiness": 10, "stress": 90}),
        make_item("sum-2025-09", "2025-09-01", "September was busy but good", scope=Scope.SUMMARIES),
        make_item("sum-2024-01", "2024-01-01", "A slow start to the year", scope=Scope.SUMMARIES),
        make_item("sum-2023-09", "2023-09-01", "Too old for the bundle", scope=Scope.SUMMARIES),
        make_item("m1", "2025-10-12", "Wants to run twice a week", scope=Scope.MEMORY, tags=["commitment"]),
    ]


def _registry(journal, clock, scopes, chat) -> ToolRegistry:
    store = InMemoryDocumentStore(journal)
    gateway = RetrievalGateway({scope: store for scope in scopes}, HashingEmbedder(), clock=clock)
    registry = ToolRegistry()
    cache = ResultCache()
    register_builtin_tools(registry, gateway, AnalysisRouter(chat, cache))
    return registry


@pytest.mark.asyncio
async def test_bundle_combines_recent_metrics_summaries_and_memories(journal, clock, scripted_chat) -> None:
    registry = _registry(journal, clock, list(Scope), scripted_chat())

    bundle = await registry.execute("context_bundle", {})

    recent = bundle["recent"]
    assert recent["date_from"] == "2025-08-28"
    assert recent["entry_count"] == 20
    assert recent["confidence"] == "low"
    assert recent["metrics"]["happiness"] == {"avg": 59.0, "trend": "increasing"}
    assert recent["metrics"]["stress"] == {"avg": 30.0, "trend": "stable"}
    assert [item["id"] for item in bundle["items"]] == ["sum-2025-09", "sum-2024-01", "m1"]
    assert bundle["counts"] == {"summaries": 2, "memories": 1}
    assert bundle["skipped_scopes"] == []


@pytest.mark.asyncio
async def test_bundle_windows_and_memory_toggle(journal, clock, scripted_chat) -> None:
    registry = _registry(journal, clock, [Scope.ANALYTICS, Scope.SUMMARIES, Scope.MEMORY], scripted_chat())

    bundle = await registry.execute(
        "context_bundle", {"recent_days": 10, "history_months": 3, "include_memory": False}
    )

    assert bundle["recent"]["entry_count"] == 4
    assert [item["id"] for item in bundle["items"]] == ["sum-2025-09"]
    assert bundle["counts"] == {"summaries": 1, "memories": 0}


@pytest.mark.asyncio
async def test_bundle_skips_scopes_without_stores(journal, clock, scripted_chat) -> None:
    registry = _registry(journal, clock, [Scope.ENTRIES, Scope.MEMORY], scripted_chat())

    bundle = await registry.execute("context_bundle", {})

    assert bundle["recent"] is None
    assert bundle["skipped_scopes"] == ["analytics", "summaries"]
    assert [item["id"] for item in bundle["items"]] == ["m1"]


def test_bundle_is_not_offered_without_any_context_store(journal, clock, scripted_chat) -> None:
    registry = _registry(journal, clock, [Scope.ENTRIES], scripted_chat())

    assert "context_bundle" not in registry


def test_months_back_crosses_year_boundaries() -> None:
    assert months_back(date(2025, 10, 27), 23) == date(2023, 11, 1)
    assert months_back(date(2025, 1, 31), 1) == date(2024, 12, 1)
    assert months_back(date(2025, 3, 5), 0) == date(2025, 3, 1)
