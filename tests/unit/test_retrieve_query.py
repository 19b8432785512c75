from datetime import date

import pytest

from journal_agent.errors import QueryValidationError
from journal_agent.retrieval.query import RetrieveQuery, SortMode, View
from journal_agent.types import Scope


def test_defaults_and_typed_fields() -> None:
    query = RetrieveQuery.parse(
        {"scope": "entries", "filter": {"date_from": "2025-01-01", "date_to": "2025-01-31", "keyword": "run"}}
    )

    assert query.scope is Scope.ENTRIES
    assert query.sort is SortMode.HYBRID
    assert query.view is View.RAW
    assert query.limit == 10
    assert query.date_from == date(2025, 1, 1)
    assert query.keyword == "run"
    assert query.similarity_phrase is None


@pytest.mark.parametrize(
    "payload",
    [
        {"scope": "diary"},
        {"scope": "entries", "limit": 0},
        {"scope": "entries", "limit": 201},
        {"scope": "entries", "sort": "random"},
        {"scope": "entries", "filter": {"date_from": "2025-02-01", "date_to": "2025-01-01"}},
        {"scope": "entries", "filter": {"similar_to": ""}},
        {"scope": "entries", "filter": {"min_similarity": 1.5}},
        {"scope": "entries", "unexpected": True},
    ],
)
def test_invalid_queries_are_rejected(payload) -> None:
    with pytest.raises(QueryValidationError):
        RetrieveQuery.parse(payload)


def test_parse_passes_through_existing_query() -> None:
    query = RetrieveQuery.parse({"scope": "memory"})

    assert RetrieveQuery.parse(query) is query
