import pytest

from journal_agent.retrieval.keyword import KeywordIndexAdapter
from journal_agent.retrieval.store import InMemoryDocumentStore, build_match_query


class _FixedScoreStore:
    def __init__(self, scores: dict[str, float]) -> None:
        self.scores = scores
        self.calls = 0

    def keyword_scores(self, keyword, item_ids):
        self.calls += 1
        return {item_id: self.scores[item_id] for item_id in item_ids if item_id in self.scores}


def test_normalization_saturates_at_constant() -> None:
    adapter = KeywordIndexAdapter(_FixedScoreStore({"a": 5.0, "b": 40.0, "c": -3.0}), saturation=20.0)

    scores = adapter.score_batch("therapy", ["a", "b", "c", "missing"])

    assert scores == {"a": pytest.approx(0.25), "b": 1.0, "c": 0.0, "missing": 0.0}


def test_empty_keyword_scores_zero_without_store_call() -> None:
    store = _FixedScoreStore({"a": 10.0})
    adapter = KeywordIndexAdapter(store)

    assert adapter.score("  ", "a") == 0.0
    assert store.calls == 0


def test_in_memory_bm25_prefers_matching_items(make_item) -> None:
    store = InMemoryDocumentStore(
        [
            make_item("a", "2025-01-01", "Therapy helped me think about therapy goals."),
            make_item("b", "2025-01-02", "Went to the gym after work."),
            make_item("c", "2025-01-03", "Short therapy check-in."),
        ]
    )

    raw = store.keyword_scores("therapy", ["a", "b", "c"])

    assert set(raw) == {"a", "c"}
    assert raw["a"] > raw["c"] > 0


def test_match_query_quotes_terms() -> None:
    assert build_match_query(["work", 'say "hi"']) == '"work" OR "say ""hi"""'
