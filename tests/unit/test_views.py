from journal_agent.retrieval.query import TimeGranularity
from journal_agent.retrieval.views import histogram_view, stats_view, timeline_view


def test_timeline_groups_by_month(make_item) -> None:
    items = [
        make_item("a", "2025-01-05", metrics={"happiness": 60}),
        make_item("b", "2025-01-20", metrics={"happiness": 80}),
        make_item("c", "2025-02-02"),
    ]

    view = timeline_view(items, metric="happiness", granularity=TimeGranularity.MONTH)

    assert [row["bucket"] for row in view["buckets"]] == ["2025-01-01", "2025-02-01"]
    january, february = view["buckets"]
    assert january["count"] == 2 and january["avg"] == 70.0
    assert february["count"] == 1 and february["avg"] is None
    assert set(january) == {"bucket", "count", "metric_count", "avg", "min", "max"}


def test_week_buckets_start_on_monday(make_item) -> None:
    view = timeline_view([make_item("a", "2025-10-26")], metric="happiness", granularity=TimeGranularity.WEEK)

    assert view["buckets"][0]["bucket"] == "2025-10-20"


def test_stats_ignore_items_without_metric(make_item) -> None:
    items = [
        make_item("a", "2025-01-05", metrics={"stress": 20}),
        make_item("b", "2025-01-06", metrics={"stress": 40}),
        make_item("c", "2025-01-07"),
    ]

    stats = stats_view(items, metric="stress")

    assert stats == {"metric": "stress", "items_considered": 3, "count": 2, "avg": 30.0, "min": 20.0, "max": 40.0}


def test_histogram_clamps_edges(make_item) -> None:
    items = [make_item(str(v), "2025-01-01", metrics={"energy": v}) for v in (0, 49, 50, 100, 130)]

    view = histogram_view(items, metric="energy", value_range=(0.0, 100.0), bins=2)

    assert [b["count"] for b in view["bins"]] == [2, 3]
    assert view["bins"][0] == {"lower": 0.0, "upper": 50.0, "count": 2}
