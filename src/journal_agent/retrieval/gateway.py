"""Single retrieval entry point: validate, fetch, filter, rank, describe."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

from journal_agent.config import RankingConfig, RetrievalConfig
from journal_agent.errors import QueryValidationError, UpstreamFailure, UpstreamTimeout
from journal_agent.retrieval.embedder import Embedder
from journal_agent.retrieval.keyword import KeywordIndexAdapter
from journal_agent.retrieval.metadata import RetrieveMetadata, build_metadata, detect_gaps
from journal_agent.retrieval.query import RetrieveQuery, TimeGranularity, View
from journal_agent.retrieval.ranking import HybridRanker, select_preset, select_weights
from journal_agent.retrieval.store import DocumentStore
from journal_agent.retrieval.views import histogram_view, stats_view, timeline_view
from journal_agent.types import RankedItem, Scope, SearchableItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetrieveResult:
    """Ranked items (raw view) or an aggregate (other views) plus metadata."""

    query: RetrieveQuery
    items: list[RankedItem]
    metadata: RetrieveMetadata
    preset: str
    aggregate: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "scope": self.query.scope.value,
            "view": self.query.view.value,
            "sort": self.query.sort.value,
            "preset": self.preset,
            "items": [item.to_dict() for item in self.items],
            "metadata": self.metadata.to_dict(),
        }
        if self.aggregate is not None:
            payload["aggregate"] = self.aggregate
        return payload


class RetrievalGateway:
    """Fetches candidates from the scope's store and ranks them.

    Filtering always happens before ranking, so the ranker only ever sees
    the bounded candidate set for the requested scope, dates and ids.
    Store and embedding calls are off-loaded to threads/awaited under
    timeouts; a timeout surfaces as `UpstreamTimeout`.
    """

    def __init__(
        self,
        stores: Mapping[Scope, DocumentStore],
        embedder: Embedder,
        *,
        ranker: HybridRanker | None = None,
        config: RetrievalConfig | None = None,
        ranking_config: RankingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.stores = dict(stores)
        self.embedder = embedder
        self.ranking_config = ranking_config or RankingConfig()
        self.ranker = ranker or HybridRanker(self.ranking_config)
        self.config = config or RetrievalConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def retrieve(self, query: RetrieveQuery | dict[str, Any]) -> RetrieveResult:
        query = RetrieveQuery.parse(query)
        if query.limit > self.config.max_limit:
            raise QueryValidationError(
                f"limit {query.limit} exceeds the maximum of {self.config.max_limit}"
            )
        store = self.stores.get(query.scope)
        if store is None:
            raise QueryValidationError(f"Unsupported scope: {query.scope.value}")

        logger.info(
            "retrieve scope=%s sort=%s limit=%d view=%s",
            query.scope.value,
            query.sort.value,
            query.limit,
            query.view.value,
        )

        candidates = await self._call_store(
            store.fetch,
            query.scope,
            date_from=query.date_from,
            date_to=query.date_to,
            ids=query.filter.ids if query.filter else None,
        )
        candidates = _apply_filters(candidates, query)

        gaps = detect_gaps(
            [item.timestamp for item in candidates],
            requested_from=query.date_from,
            requested_to=query.date_to,
            min_gap_days=self.config.min_gap_days,
        )
        preset = select_preset(query)

        if query.view is not View.RAW:
            return self._aggregate(query, candidates, gaps, preset.value)

        query_embedding = None
        if query.similarity_phrase and candidates:
            query_embedding = await self._embed(query.similarity_phrase)

        keyword_scores = None
        if query.keyword and candidates:
            adapter = KeywordIndexAdapter(store, self.ranking_config.keyword_saturation)
            keyword_scores = await self._call_store(
                adapter.score_batch, query.keyword, [item.item_id for item in candidates]
            )

        ranked = self.ranker.rank(
            candidates,
            query,
            now=self.clock(),
            weights=select_weights(query),
            query_embedding=query_embedding,
            keyword_scores=keyword_scores,
            truncate=False,
        )
        if query_embedding is not None and query.filter and query.filter.min_similarity is not None:
            floor = query.filter.min_similarity
            ranked = [item for item in ranked if item.components.similarity >= floor]
        ranked = ranked[: query.limit]
        for index, item in enumerate(ranked, start=1):
            item.rank = index

        metadata = build_metadata(
            [item.timestamp for item in ranked],
            [item.components.similarity for item in ranked] if query_embedding is not None else None,
            gaps=gaps,
            requested_from=query.date_from,
            requested_to=query.date_to,
            config=self.config,
        )
        logger.info(
            "retrieve scope=%s returned %d/%d candidates (confidence=%s, gaps=%d)",
            query.scope.value,
            metadata.count,
            len(candidates),
            metadata.confidence.value,
            len(metadata.gaps),
        )
        return RetrieveResult(query=query, items=ranked, metadata=metadata, preset=preset.value)

    def _aggregate(
        self,
        query: RetrieveQuery,
        candidates: list[SearchableItem],
        gaps: list,
        preset: str,
    ) -> RetrieveResult:
        metric = (query.filter.metric if query.filter else None) or self.ranking_config.default_metric
        if query.view is View.TIMELINE:
            granularity = (
                query.filter.time_granularity if query.filter and query.filter.time_granularity else None
            ) or TimeGranularity.MONTH
            aggregate = timeline_view(candidates, metric=metric, granularity=granularity)
        elif query.view is View.STATS:
            aggregate = stats_view(candidates, metric=metric)
        else:
            aggregate = histogram_view(
                candidates,
                metric=metric,
                value_range=self.ranking_config.metric_ranges.get(metric, (0.0, 100.0)),
                bins=query.histogram_bins or self.config.default_histogram_bins,
            )

        metadata = build_metadata(
            [item.timestamp for item in candidates],
            None,
            gaps=gaps,
            requested_from=query.date_from,
            requested_to=query.date_to,
            config=self.config,
        )
        logger.info(
            "retrieve scope=%s view=%s aggregated %d items",
            query.scope.value,
            query.view.value,
            len(candidates),
        )
        return RetrieveResult(query=query, items=[], metadata=metadata, preset=preset, aggregate=aggregate)

    async def _embed(self, text: str) -> list[float]:
        return await self._guard(
            self.embedder.aembed_query(text),
            self.config.embedding_timeout_seconds,
            "embedding",
        )

    async def _call_store(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await self._guard(
            asyncio.to_thread(func, *args, **kwargs),
            self.config.store_timeout_seconds,
            "store",
        )

    @staticmethod
    async def _guard(awaitable: Awaitable[T], timeout: float, what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout(f"{what} call timed out after {timeout:.1f}s") from exc
        except (QueryValidationError, UpstreamTimeout, UpstreamFailure):
            raise
        except Exception as exc:
            raise UpstreamFailure(f"{what} call failed: {exc}") from exc


def _apply_filters(items: Sequence[SearchableItem], query: RetrieveQuery) -> list[SearchableItem]:
    if query.filter is None:
        return list(items)
    filtered = list(items)
    if query.filter.metric:
        filtered = [item for item in filtered if item.metric(query.filter.metric) is not None]
    for needles in (query.filter.entities, query.filter.topics):
        if needles:
            lowered = [needle.lower() for needle in needles]
            filtered = [item for item in filtered if _mentions(item, lowered)]
    return filtered


def _mentions(item: SearchableItem, needles: Sequence[str]) -> bool:
    haystack = (item.text or "").lower()
    tags = {tag.lower() for tag in item.tags}
    return any(needle in haystack or needle in tags for needle in needles)
