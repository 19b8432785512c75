"""Built-in tools exposed to the reasoning loop."""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field

from journal_agent.agent.registry import ToolRegistry, ToolSpec
from journal_agent.analysis import transforms
from journal_agent.analysis.requests import AnalyzeArgs, TrendConfig
from journal_agent.analysis.router import AnalysisRouter
from journal_agent.errors import QueryValidationError
from journal_agent.retrieval.gateway import RetrievalGateway
from journal_agent.retrieval.query import RetrieveQuery
from journal_agent.types import Scope, SearchableItem

MemoryKind = Literal["insight", "decision", "todo", "rule", "value", "commitment"]

RETRIEVE_DESCRIPTION = (
    "Retrieve journal entries, fragments, analytics rows, summaries or saved memories. "
    "For 'latest', 'recent', 'yesterday' or 'last entry' questions use sort=date_desc with a "
    "small limit and no similar_to. Use filter.similar_to only for topical questions. "
    "Use view=timeline/stats/histogram with filter.metric for aggregates instead of raw items. "
    "Large results come back as a summary with a result_id you can pass to analyze."
)

ANALYZE_DESCRIPTION = (
    "Run a structured analysis over previously retrieved data. inputs are result_ids from "
    "retrieve or literal retrieve results. Operations: lifelong_patterns (recurring themes, "
    "retrieve with a long recency half-life first), decision_matrix (config.options and "
    "config.criteria), action_synthesis (recent current-state data), trend (config.metric) and "
    "correlation (config.metric_a, config.metric_b)."
)

MEMORY_DESCRIPTION = (
    "Save a durable insight, decision, todo, rule, value or commitment the user stated or agreed "
    "to, so later conversations can retrieve it with scope=memory."
)

CONTEXT_BUNDLE_DESCRIPTION = (
    "Load warm-start context in one call: metric averages and trends over the recent analytics "
    "window, period summaries for the last months and saved memories. Call it once at the start "
    "of a broad conversation (\"how have I been?\") before narrower retrievals."
)


class MemoryWriteArgs(BaseModel):
    kind: MemoryKind
    content: str = Field(min_length=1, max_length=2000)
    tags: list[str] = Field(default_factory=list)
    related_ids: list[str] = Field(default_factory=list, description="Ids of items this memory refers to.")
    confidence: Literal["low", "medium", "high"] = "medium"


class ContextBundleArgs(BaseModel):
    recent_days: int = Field(default=60, ge=1, le=366, description="Days of analytics rows to summarize.")
    history_months: int = Field(default=24, ge=1, le=120, description="Months of period summaries to include.")
    include_memory: bool = True
    memory_limit: int = Field(default=20, ge=1, le=100)


def months_back(day: date, months: int) -> date:
    """First day of the month `months` before the month of `day`."""
    index = day.year * 12 + day.month - 1 - months
    return date(index // 12, index % 12 + 1, 1)


def register_builtin_tools(
    registry: ToolRegistry,
    gateway: RetrievalGateway,
    router: AnalysisRouter,
) -> None:
    """Register the default tool set used by the agent kernel.

    Tools:
    - `retrieve`: structured retrieval through the gateway.
    - `analyze`: typed analysis operations over retrieved data.
    - `memory_write`: persist a memory item when a memory store is configured.
    - `context_bundle`: recent analytics, period summaries and memories in one call,
      registered when any of those scopes has a store.
    """

    async def _retrieve(query: RetrieveQuery) -> dict[str, Any]:
        result = await gateway.retrieve(query)
        return result.to_payload()

    async def _analyze(args: AnalyzeArgs) -> dict[str, Any]:
        result = await router.analyze(args.to_request())
        return result.to_payload()

    async def _memory_write(args: MemoryWriteArgs) -> dict[str, Any]:
        store = gateway.stores.get(Scope.MEMORY)
        if store is None:
            raise QueryValidationError("No memory store is configured")
        vectors = await asyncio.to_thread(gateway.embedder.embed_documents, [args.content])
        item = SearchableItem(
            item_id=f"memory-{uuid.uuid4().hex[:12]}",
            scope=Scope.MEMORY,
            timestamp=gateway.clock(),
            text=args.content,
            embedding=tuple(vectors[0]) if vectors else None,
            metrics={"confidence": {"low": 0.3, "medium": 0.6, "high": 0.9}[args.confidence]},
            parent_id=args.related_ids[0] if args.related_ids else None,
            tags=(args.kind, *args.tags, *(f"ref:{item_id}" for item_id in args.related_ids)),
        )
        await asyncio.to_thread(store.add, [item])
        return {"id": item.item_id, "kind": args.kind, "stored": True, "date": item.timestamp.isoformat()}

    async def _context_bundle(args: ContextBundleArgs) -> dict[str, Any]:
        today = gateway.clock().date()
        recent_from = today - timedelta(days=args.recent_days)
        cap = min(gateway.config.max_limit, 200)
        wanted = {
            Scope.ANALYTICS: {"sort": "date_desc", "limit": cap, "filter": {"date_from": recent_from.isoformat()}},
            Scope.SUMMARIES: {
                "sort": "date_desc",
                "limit": min(args.history_months, cap),
                "filter": {"date_from": months_back(today, args.history_months - 1).isoformat()},
            },
        }
        if args.include_memory:
            wanted[Scope.MEMORY] = {"sort": "date_desc", "limit": min(args.memory_limit, cap)}

        scopes = [scope for scope in wanted if scope in gateway.stores]
        if not scopes:
            raise QueryValidationError("No analytics, summaries or memory store is configured")
        results = await asyncio.gather(
            *(gateway.retrieve({"scope": scope.value, **wanted[scope]}) for scope in scopes)
        )
        payloads = {scope: result.to_payload() for scope, result in zip(scopes, results)}

        recent = None
        if Scope.ANALYTICS in payloads:
            rows = payloads[Scope.ANALYTICS]["items"]
            recent = {
                "days": args.recent_days,
                "date_from": recent_from.isoformat(),
                "date_to": today.isoformat(),
                "entry_count": len(rows),
                "confidence": payloads[Scope.ANALYTICS]["metadata"]["confidence"],
                "metrics": {
                    name: {"avg": avg, "trend": transforms.fit_trend(rows, TrendConfig(metric=name)).direction}
                    for name, avg in transforms.metric_averages(rows).items()
                },
            }
        summaries = payloads.get(Scope.SUMMARIES, {}).get("items", [])
        memories = payloads.get(Scope.MEMORY, {}).get("items", [])
        return {
            "date": today.isoformat(),
            "recent": recent,
            "counts": {"summaries": len(summaries), "memories": len(memories)},
            "skipped_scopes": [scope.value for scope in wanted if scope not in gateway.stores],
            "items": [*summaries, *memories],
        }

    registry.register(
        ToolSpec(
            name="retrieve",
            description=RETRIEVE_DESCRIPTION,
            args_schema=RetrieveQuery,
            handler=_retrieve,
            tags=["retrieval"],
        )
    )
    registry.register(
        ToolSpec(
            name="analyze",
            description=ANALYZE_DESCRIPTION,
            args_schema=AnalyzeArgs,
            handler=_analyze,
            tags=["analysis"],
        )
    )
    if Scope.MEMORY in gateway.stores:
        registry.register(
            ToolSpec(
                name="memory_write",
                description=MEMORY_DESCRIPTION,
                args_schema=MemoryWriteArgs,
                handler=_memory_write,
                tags=["memory"],
            )
        )
    if any(scope in gateway.stores for scope in (Scope.ANALYTICS, Scope.SUMMARIES, Scope.MEMORY)):
        registry.register(
            ToolSpec(
                name="context_bundle",
                description=CONTEXT_BUNDLE_DESCRIPTION,
                args_schema=ContextBundleArgs,
                handler=_context_bundle,
                tags=["retrieval"],
            )
        )
