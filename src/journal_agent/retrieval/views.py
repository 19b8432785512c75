"""Aggregate output views: time buckets, scalar statistics and histograms."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Sequence
from datetime import date, datetime, timedelta
from typing import Any

from journal_agent.retrieval.query import TimeGranularity
from journal_agent.types import SearchableItem


def bucket_start(timestamp: datetime, granularity: TimeGranularity) -> date:
    day = timestamp.date()
    if granularity is TimeGranularity.DAY:
        return day
    if granularity is TimeGranularity.WEEK:
        return day - timedelta(days=day.weekday())
    if granularity is TimeGranularity.MONTH:
        return day.replace(day=1)
    return day.replace(month=1, day=1)


def _summarize(values: Sequence[float]) -> dict[str, float | int | None]:
    if not values:
        return {"count": 0, "avg": None, "min": None, "max": None}
    return {
        "count": len(values),
        "avg": round(sum(values) / len(values), 3),
        "min": round(min(values), 3),
        "max": round(max(values), 3),
    }


def timeline_view(
    items: Sequence[SearchableItem], *, metric: str, granularity: TimeGranularity
) -> dict[str, Any]:
    """Group items into chronological buckets with per-bucket metric stats."""
    buckets: OrderedDict[date, list[SearchableItem]] = OrderedDict()
    for item in sorted(items, key=lambda it: (it.timestamp, it.item_id)):
        buckets.setdefault(bucket_start(item.timestamp, granularity), []).append(item)

    rows = []
    for start, members in buckets.items():
        values = [v for v in (m.metric(metric) for m in members) if v is not None]
        stats = _summarize(values)
        rows.append(
            {
                "bucket": start.isoformat(),
                "count": len(members),
                "metric_count": stats["count"],
                "avg": stats["avg"],
                "min": stats["min"],
                "max": stats["max"],
            }
        )
    return {"granularity": granularity.value, "metric": metric, "buckets": rows}


def stats_view(items: Sequence[SearchableItem], *, metric: str) -> dict[str, Any]:
    """Scalar statistics over the metric without enumerating items."""
    values = [v for v in (item.metric(metric) for item in items) if v is not None]
    return {"metric": metric, "items_considered": len(items), **_summarize(values)}


def histogram_view(
    items: Sequence[SearchableItem],
    *,
    metric: str,
    value_range: tuple[float, float],
    bins: int,
) -> dict[str, Any]:
    """Equal-width histogram of metric values over a fixed range."""
    low, high = value_range
    width = (high - low) / bins if high > low else 1.0
    counts = [0] * bins
    values = [v for v in (item.metric(metric) for item in items) if v is not None]
    for value in values:
        index = int((value - low) / width) if width else 0
        counts[min(max(index, 0), bins - 1)] += 1

    return {
        "metric": metric,
        "count": len(values),
        "bins": [
            {
                "lower": round(low + i * width, 3),
                "upper": round(low + (i + 1) * width, 3),
                "count": counts[i],
            }
            for i in range(bins)
        ],
    }
