"""Structured retrieval query accepted by the gateway and the `retrieve` tool."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from journal_agent.errors import QueryValidationError
from journal_agent.types import Scope


class SortMode(str, Enum):
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    SIMILARITY_DESC = "similarity_desc"
    MAGNITUDE_DESC = "magnitude_desc"
    HYBRID = "hybrid"

    @property
    def is_recency_based(self) -> bool:
        return self in (SortMode.DATE_DESC, SortMode.DATE_ASC)


class View(str, Enum):
    RAW = "raw"
    TIMELINE = "timeline"
    STATS = "stats"
    HISTOGRAM = "histogram"


class TimeGranularity(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class RankingPreset(str, Enum):
    DEFAULT = "default"
    LATEST = "latest"
    CURRENT_STATE = "current_state"
    LIFELONG = "lifelong"
    SEMANTIC = "semantic"


class RetrieveFilter(BaseModel):
    """Optional narrowing applied before ranking."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_from: date | None = Field(
        default=None, description="Inclusive start date (ISO 8601, e.g. '2025-01-01')."
    )
    date_to: date | None = Field(default=None, description="Inclusive end date (ISO 8601).")
    ids: list[str] | None = Field(default=None, description="Specific item ids to include.")
    entities: list[str] | None = Field(
        default=None, description="Keep items mentioning any of these people, places or projects."
    )
    topics: list[str] | None = Field(
        default=None, description="Keep items mentioning any of these topics."
    )
    similar_to: str | None = Field(
        default=None,
        min_length=1,
        description=(
            "Natural-language phrase for semantic search. Do NOT use for 'latest', "
            "'recent', 'yesterday' or 'last entry' questions; use sort=date_desc instead."
        ),
    )
    keyword: str | None = Field(default=None, min_length=1, description="Keyword for full-text search.")
    metric: str | None = Field(
        default=None, description="Metric used for magnitude, stats and histograms (happiness, stress, energy)."
    )
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    time_granularity: TimeGranularity | None = Field(
        default=None, description="Bucket size for the timeline view."
    )
    recency_half_life_days: float | None = Field(
        default=None, gt=0.0, description="Recency half-life in days (30 typical, 9999 for lifelong)."
    )

    @model_validator(mode="after")
    def _check_range(self) -> "RetrieveFilter":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class RetrieveQuery(BaseModel):
    """A validated, immutable retrieval request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scope: Scope = Field(description="Data domain: entries, chunks, analytics, summaries or memory.")
    filter: RetrieveFilter | None = None
    sort: SortMode = Field(
        default=SortMode.HYBRID,
        description="Use date_desc for 'latest' or 'recent' questions.",
    )
    limit: int = Field(default=10, ge=1, le=200)
    view: View = View.RAW
    preset: RankingPreset | None = Field(
        default=None, description="Explicit ranking preset; inferred from sort and filter when omitted."
    )
    histogram_bins: int | None = Field(default=None, ge=1, le=100)

    @classmethod
    def parse(cls, payload: dict[str, Any] | "RetrieveQuery") -> "RetrieveQuery":
        """Validate a raw payload, raising `QueryValidationError` on bad input."""
        if isinstance(payload, cls):
            return payload
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise QueryValidationError(f"Invalid retrieve query: {exc}") from exc

    @property
    def similarity_phrase(self) -> str | None:
        return self.filter.similar_to if self.filter else None

    @property
    def keyword(self) -> str | None:
        return self.filter.keyword if self.filter else None

    @property
    def date_from(self) -> date | None:
        return self.filter.date_from if self.filter else None

    @property
    def date_to(self) -> date | None:
        return self.filter.date_to if self.filter else None
