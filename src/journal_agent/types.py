"""Shared domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Scope(str, Enum):
    """Data domains a retrieval can target."""

    ENTRIES = "entries"
    CHUNKS = "chunks"
    ANALYTICS = "analytics"
    SUMMARIES = "summaries"
    MEMORY = "memory"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class SearchableItem:
    """A retrievable unit produced by a store: entry, fragment, analytics row or summary."""

    item_id: str
    scope: Scope
    timestamp: datetime
    text: str | None = None
    embedding: tuple[float, ...] | None = None
    metrics: Mapping[str, float] = field(default_factory=dict)
    parent_id: str | None = None
    fragment_id: str | None = None
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    def metric(self, name: str) -> float | None:
        value = self.metrics.get(name)
        return float(value) if value is not None else None


@dataclass(slots=True)
class ScoreComponents:
    """Per-item sub-scores in [0, 1] and their weighted combination."""

    similarity: float = 0.0
    recency_decay: float = 0.0
    keyword_match: float = 0.0
    magnitude: float = 0.0
    score: float = 0.0
    has_similarity: bool = False
    has_keyword: bool = False
    has_magnitude: bool = False

    def to_dict(self) -> dict[str, float]:
        data = {"recency_decay": round(self.recency_decay, 3)}
        if self.has_similarity:
            data["similarity"] = round(self.similarity, 3)
        if self.has_keyword:
            data["keyword_match"] = round(self.keyword_match, 3)
        if self.has_magnitude:
            data["magnitude"] = round(self.magnitude, 3)
        return data


@dataclass(frozen=True, slots=True)
class Provenance:
    source: str
    parent_id: str | None = None
    fragment_id: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"source": self.source}
        if self.parent_id:
            data["parent_id"] = self.parent_id
        if self.fragment_id:
            data["fragment_id"] = self.fragment_id
        return data


@dataclass(slots=True)
class RankedItem:
    """A searchable item with its score breakdown and provenance."""

    item: SearchableItem
    components: ScoreComponents
    provenance: Provenance
    rank: int = 0

    @property
    def item_id(self) -> str:
        return self.item.item_id

    @property
    def timestamp(self) -> datetime:
        return self.item.timestamp

    @property
    def text(self) -> str | None:
        return self.item.text

    @property
    def score(self) -> float:
        return self.components.score

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.item.item_id,
            "date": self.item.timestamp.isoformat(),
            "score": round(self.components.score, 3),
            "score_components": self.components.to_dict(),
            "provenance": self.provenance.to_dict(),
        }
        if self.item.text is not None:
            data["text"] = self.item.text
        if self.item.metrics:
            data["metrics"] = {k: round(float(v), 3) for k, v in self.item.metrics.items()}
        if self.item.tags:
            data["tags"] = list(self.item.tags)
        return data


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None
