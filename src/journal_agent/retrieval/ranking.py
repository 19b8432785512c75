"""Hybrid multi-signal ranking for retrieval candidates."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from journal_agent.config import RankingConfig
from journal_agent.retrieval.query import RankingPreset, RetrieveQuery, SortMode
from journal_agent.types import Provenance, RankedItem, ScoreComponents, SearchableItem

_LN2 = math.log(2.0)
_SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True, slots=True)
class RankingWeights:
    """Weights of the four ranking signals plus the recency half-life in days."""

    similarity: float
    recency: float
    keyword: float
    magnitude: float
    half_life_days: float


PRESETS: dict[RankingPreset, RankingWeights] = {
    RankingPreset.DEFAULT: RankingWeights(0.4, 0.3, 0.2, 0.1, 30.0),
    RankingPreset.LATEST: RankingWeights(0.0, 0.8, 0.2, 0.0, 21.0),
    RankingPreset.CURRENT_STATE: RankingWeights(0.2, 0.5, 0.1, 0.2, 30.0),
    RankingPreset.LIFELONG: RankingWeights(0.5, 0.0, 0.3, 0.2, math.inf),
    RankingPreset.SEMANTIC: RankingWeights(0.6, 0.2, 0.1, 0.1, 60.0),
}


def select_preset(query: RetrieveQuery) -> RankingPreset:
    """Pick a weight preset from the query's sort mode and filters."""
    if query.preset is not None:
        return query.preset

    half_life = query.filter.recency_half_life_days if query.filter else None
    if half_life is not None:
        if half_life > 1000:
            return RankingPreset.LIFELONG
        if half_life < 25:
            return RankingPreset.LATEST

    if query.sort.is_recency_based:
        return RankingPreset.LATEST

    if query.similarity_phrase and not query.keyword:
        return RankingPreset.SEMANTIC

    return RankingPreset.DEFAULT


def select_weights(query: RetrieveQuery) -> RankingWeights:
    weights = PRESETS[select_preset(query)]
    half_life = query.filter.recency_half_life_days if query.filter else None
    if half_life is not None:
        weights = replace(weights, half_life_days=half_life)
    return weights


def recency_decay(age_days: float, half_life_days: float) -> float:
    """exp(-ln2 * age / half_life); halves every half-life and never goes negative."""
    if math.isinf(half_life_days):
        return 1.0
    return math.exp(-_LN2 * max(age_days, 0.0) / half_life_days)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


class HybridRanker:
    """Combines similarity, recency, keyword and magnitude into one score.

    The combined score is a sparse weighted sum: a signal that was not
    requested (no similarity phrase, no keyword) or cannot be computed for an
    item (no embedding, no metric value) contributes 0 rather than being
    renormalized away. Weights therefore need not sum to 1.
    """

    def __init__(self, config: RankingConfig | None = None) -> None:
        self.config = config or RankingConfig()

    def rank(
        self,
        candidates: Sequence[SearchableItem],
        query: RetrieveQuery,
        *,
        now: datetime,
        weights: RankingWeights | None = None,
        query_embedding: Sequence[float] | None = None,
        keyword_scores: Mapping[str, float] | None = None,
        truncate: bool = True,
    ) -> list[RankedItem]:
        if not candidates:
            return []

        weights = weights or select_weights(query)
        metric_name = self._metric_name(query)
        use_similarity = bool(query.similarity_phrase) and query_embedding is not None
        use_keyword = bool(query.keyword)

        scored = [
            self._score_item(
                item,
                weights=weights,
                now=now,
                metric_name=metric_name,
                query_embedding=query_embedding if use_similarity else None,
                keyword_scores=(keyword_scores or {}) if use_keyword else None,
            )
            for item in candidates
        ]
        ordered = sorted(scored, key=lambda pair: _sort_key(pair, query.sort))
        if truncate:
            ordered = ordered[: query.limit]

        return [
            RankedItem(
                item=item,
                components=components,
                provenance=Provenance(
                    source=item.scope.value,
                    parent_id=item.parent_id,
                    fragment_id=item.fragment_id,
                ),
                rank=index + 1,
            )
            for index, (item, components) in enumerate(ordered)
        ]

    def _score_item(
        self,
        item: SearchableItem,
        *,
        weights: RankingWeights,
        now: datetime,
        metric_name: str,
        query_embedding: Sequence[float] | None,
        keyword_scores: Mapping[str, float] | None,
    ) -> tuple[SearchableItem, ScoreComponents]:
        components = ScoreComponents()

        if query_embedding is not None:
            components.has_similarity = True
            if item.embedding:
                components.similarity = max(0.0, cosine_similarity(query_embedding, item.embedding))

        age_days = (now - item.timestamp).total_seconds() / _SECONDS_PER_DAY
        components.recency_decay = recency_decay(age_days, weights.half_life_days)

        if keyword_scores is not None:
            components.has_keyword = True
            components.keyword_match = _clamp(keyword_scores.get(item.item_id, 0.0))

        value = item.metric(metric_name)
        if value is not None:
            components.has_magnitude = True
            components.magnitude = self.normalize_metric(metric_name, value)

        components.score = (
            weights.similarity * components.similarity
            + weights.recency * components.recency_decay
            + weights.keyword * components.keyword_match
            + weights.magnitude * components.magnitude
        )
        return item, components

    def normalize_metric(self, metric_name: str, value: float) -> float:
        low, high = self.config.metric_ranges.get(metric_name, (0.0, 100.0))
        if high <= low:
            return 0.0
        return _clamp((value - low) / (high - low))

    def _metric_name(self, query: RetrieveQuery) -> str:
        if query.filter and query.filter.metric:
            return query.filter.metric
        return self.config.default_metric


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _sort_key(
    pair: tuple[SearchableItem, ScoreComponents], sort: SortMode
) -> tuple[float, float, str]:
    item, components = pair
    newest_first = -item.timestamp.timestamp()
    if sort is SortMode.DATE_DESC:
        return (newest_first, 0.0, item.item_id)
    if sort is SortMode.DATE_ASC:
        return (item.timestamp.timestamp(), 0.0, item.item_id)
    if sort is SortMode.SIMILARITY_DESC:
        return (-components.similarity, newest_first, item.item_id)
    if sort is SortMode.MAGNITUDE_DESC:
        return (-components.magnitude, newest_first, item.item_id)
    return (-components.score, newest_first, item.item_id)
