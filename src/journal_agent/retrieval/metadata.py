"""Result metadata: coverage, similarity distribution, confidence and data gaps."""

from __future__ import annotations

import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from journal_agent.config import RetrievalConfig
from journal_agent.types import Confidence


@dataclass(frozen=True, slots=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def span_days(self) -> int:
        return (self.end.date() - self.start.date()).days

    @classmethod
    def from_timestamps(cls, timestamps: Sequence[datetime]) -> "DateRange | None":
        if not timestamps:
            return None
        return cls(start=min(timestamps), end=max(timestamps))

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "span_days": self.span_days,
        }


@dataclass(frozen=True, slots=True)
class SimilarityStats:
    median: float
    iqr_lower: float
    iqr_upper: float
    min: float
    max: float

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "SimilarityStats | None":
        if not values:
            return None
        ordered = sorted(values)
        if len(ordered) >= 2:
            lower, _, upper = statistics.quantiles(ordered, n=4, method="inclusive")
        else:
            lower = upper = ordered[0]
        return cls(
            median=statistics.median(ordered),
            iqr_lower=lower,
            iqr_upper=upper,
            min=ordered[0],
            max=ordered[-1],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "median": round(self.median, 3),
            "iqr": [round(self.iqr_lower, 3), round(self.iqr_upper, 3)],
            "min": round(self.min, 3),
            "max": round(self.max, 3),
        }


@dataclass(frozen=True, slots=True)
class DataGap:
    """An inclusive span of calendar days with no data."""

    start: date
    end: date
    reason: str = "No entries in this period"

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "span_days": self.span_days,
            "reason": self.reason,
        }


@dataclass(slots=True)
class RetrieveMetadata:
    count: int
    date_range: DateRange | None
    similarity: SimilarityStats | None
    confidence: Confidence
    gaps: list[DataGap] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"count": self.count, "confidence": self.confidence.value}
        if self.date_range is not None:
            data["date_range"] = self.date_range.to_dict()
        if self.similarity is not None:
            data["similarity"] = self.similarity.to_dict()
        data["gaps"] = [gap.to_dict() for gap in self.gaps]
        return data


def detect_gaps(
    timestamps: Sequence[datetime],
    *,
    requested_from: date | None,
    requested_to: date | None,
    min_gap_days: int,
) -> list[DataGap]:
    """Report runs of empty days longer than `min_gap_days`.

    The window is the requested range where given, falling back to the
    observed range. With no data at all the whole requested window is one gap,
    whatever its length.
    """
    days = sorted({ts.date() for ts in timestamps})
    window_start = requested_from or (days[0] if days else None)
    window_end = requested_to or (days[-1] if days else None)
    if window_start is None or window_end is None or window_start > window_end:
        return []

    days = [day for day in days if window_start <= day <= window_end]
    if not days:
        return [DataGap(window_start, window_end, reason="No data in the requested range")]

    gaps: list[DataGap] = []
    one_day = timedelta(days=1)
    boundaries = [window_start - one_day, *days, window_end + one_day]
    for previous, current in zip(boundaries, boundaries[1:]):
        empty_days = (current - previous).days - 1
        if empty_days > min_gap_days:
            gaps.append(DataGap(previous + one_day, current - one_day))
    return gaps


def compute_confidence(
    *,
    count: int,
    similarity: SimilarityStats | None,
    covers_requested_range: bool,
    config: RetrievalConfig,
) -> Confidence:
    """Tier a result by size and similarity distribution; text is never consulted."""
    if count < config.medium_confidence_count:
        return Confidence.LOW

    if similarity is not None:
        if count >= config.high_confidence_count and similarity.median >= config.high_confidence_similarity:
            return Confidence.HIGH
        if similarity.median >= config.medium_confidence_similarity:
            return Confidence.MEDIUM
        return Confidence.LOW

    if count >= config.high_confidence_count and covers_requested_range:
        return Confidence.HIGH
    return Confidence.LOW


def build_metadata(
    timestamps: Sequence[datetime],
    similarities: Sequence[float] | None,
    *,
    gaps: list[DataGap],
    requested_from: date | None,
    requested_to: date | None,
    config: RetrievalConfig,
) -> RetrieveMetadata:
    date_range = DateRange.from_timestamps(timestamps)
    similarity = SimilarityStats.from_values(similarities) if similarities is not None else None

    if requested_from is not None or requested_to is not None:
        covers = date_range is not None and not gaps
    else:
        covers = date_range is not None and date_range.span_days > 0

    confidence = compute_confidence(
        count=len(timestamps),
        similarity=similarity,
        covers_requested_range=covers,
        config=config,
    )
    return RetrieveMetadata(
        count=len(timestamps),
        date_range=date_range,
        similarity=similarity,
        confidence=confidence,
        gaps=gaps,
    )
