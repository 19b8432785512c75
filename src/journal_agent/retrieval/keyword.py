"""Keyword relevance normalized from the store's full-text index."""

from __future__ import annotations

from collections.abc import Sequence

from journal_agent.retrieval.store import DocumentStore


class KeywordIndexAdapter:
    """Maps raw BM25 scores into [0, 1] with a fixed saturation constant.

    A raw score at or above `saturation` maps to 1.0, so normalized values
    stay comparable across calls regardless of which candidates were scored.
    """

    def __init__(self, store: DocumentStore, saturation: float = 20.0) -> None:
        if saturation <= 0:
            raise ValueError("saturation must be positive")
        self.store = store
        self.saturation = saturation

    def score(self, keyword: str, item_id: str) -> float:
        return self.score_batch(keyword, [item_id]).get(item_id, 0.0)

    def score_batch(self, keyword: str, item_ids: Sequence[str]) -> dict[str, float]:
        if not keyword or not keyword.strip() or not item_ids:
            return {item_id: 0.0 for item_id in item_ids}
        raw = self.store.keyword_scores(keyword, item_ids)
        return {item_id: self.normalize(raw.get(item_id, 0.0)) for item_id in item_ids}

    def normalize(self, raw_score: float) -> float:
        return min(max(raw_score, 0.0) / self.saturation, 1.0)
