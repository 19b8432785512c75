"""Structured outputs of the analysis operations."""

from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

Level = Literal["low", "medium", "high"]


class FlareUp(BaseModel):
    start: date
    end: date
    note: str = ""


class PatternCandidate(BaseModel):
    name: str
    description: str = ""
    first_seen: date
    last_seen: date
    occurrences: int = Field(ge=0)
    flare_ups: list[FlareUp] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)
    protective_factors: list[str] = Field(default_factory=list)
    evidence_ids: list[str] = Field(default_factory=list, description="Ids of supporting items.")
    supporting_evidence_count: int = 0
    span_months: int = 0


class PatternReport(BaseModel):
    """Recurring themes across the whole corpus."""

    patterns: list[PatternCandidate] = Field(default_factory=list)
    summary: str = ""


class CriterionScore(BaseModel):
    criterion: str
    score: float = Field(ge=0.0, le=10.0)
    reasoning: str = ""
    evidence_ids: list[str] = Field(default_factory=list)


class OptionEvaluation(BaseModel):
    option: str
    scores: list[CriterionScore] = Field(default_factory=list)
    aggregate_score: float = 0.0
    counterfactual: str | None = Field(
        default=None, description="What likely happens if this option is chosen."
    )


class DecisionReport(BaseModel):
    """Per-option, per-criterion scores grounded in journal evidence."""

    question: str | None = None
    options: list[OptionEvaluation] = Field(default_factory=list)
    recommendation: str | None = None
    counterfactual: str | None = None


class ActionItem(BaseModel):
    title: str
    category: str
    first_step: str | None = None
    estimated_minutes: int = Field(default=15, ge=1)
    impact: Level = "medium"
    urgency: Level = "medium"
    rationale: str = ""
    evidence_ids: list[str] = Field(default_factory=list)


class ActionPlan(BaseModel):
    """Concrete next steps derived from the current state."""

    actions: list[ActionItem] = Field(default_factory=list)
    summary: str = ""


class TrendReport(BaseModel):
    metric: str
    points: int
    slope_per_day: float | None = None
    first_half_mean: float | None = None
    second_half_mean: float | None = None
    change: float | None = None
    direction: Literal["increasing", "decreasing", "stable", "insufficient_data"] = "insufficient_data"


class CorrelationReport(BaseModel):
    metric_a: str
    metric_b: str
    points: int
    coefficient: float | None = None
    strength: Literal["strong", "moderate", "weak", "negligible", "insufficient_data", "undefined"] = (
        "insufficient_data"
    )
