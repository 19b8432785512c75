"""Analysis requests: a closed set of operations, each with its own config."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from journal_agent.errors import QueryValidationError

DEFAULT_CRITERIA = ["wellbeing", "growth", "financial", "values", "risk"]
DEFAULT_BALANCE = ["health", "work", "relationships"]

# A cached result id ("result_3") or a literal result payload / item.
AnalysisInput = Union[str, dict[str, Any]]


class AnalysisOperation(str, Enum):
    LIFELONG_PATTERNS = "lifelong_patterns"
    DECISION_MATRIX = "decision_matrix"
    ACTION_SYNTHESIS = "action_synthesis"
    TREND = "trend"
    CORRELATION = "correlation"

    @property
    def is_statistical(self) -> bool:
        return self in (AnalysisOperation.TREND, AnalysisOperation.CORRELATION)


class PatternsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_occurrences: int = Field(default=4, ge=1)
    min_span_months: int = Field(default=12, ge=0)
    require_recurring: bool = True
    focus: str | None = Field(default=None, description="Optional theme to concentrate on.")
    max_patterns: int = Field(default=10, ge=1, le=25)


class DecisionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str | None = Field(default=None, description="The decision being weighed.")
    options: list[str] = Field(default_factory=list, max_length=6)
    criteria: list[str] = Field(default_factory=lambda: list(DEFAULT_CRITERIA), min_length=1)
    criterion_weights: dict[str, float] | None = Field(
        default=None, description="Relative weight per criterion; unlisted criteria weigh 1."
    )
    include_counterfactuals: bool = True


class ActionsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_items: int = Field(default=7, ge=5, le=10)
    balance_categories: list[str] = Field(default_factory=lambda: list(DEFAULT_BALANCE))
    include_first_step: bool = True
    timeframe_days: int = Field(default=14, ge=1, le=365)


class TrendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric: str = "happiness"
    change_threshold: float = Field(default=5.0, ge=0.0)


class CorrelationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric_a: str = "stress"
    metric_b: str = "happiness"
    min_points: int = Field(default=5, ge=3)


class _BaseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    inputs: list[AnalysisInput] = Field(
        min_length=1,
        description="Cached result ids (e.g. 'result_1') and/or literal retrieve results.",
    )


class PatternsRequest(_BaseRequest):
    op: Literal["lifelong_patterns"] = "lifelong_patterns"
    config: PatternsConfig = Field(default_factory=PatternsConfig)


class DecisionRequest(_BaseRequest):
    op: Literal["decision_matrix"] = "decision_matrix"
    config: DecisionConfig = Field(default_factory=DecisionConfig)


class ActionsRequest(_BaseRequest):
    op: Literal["action_synthesis"] = "action_synthesis"
    config: ActionsConfig = Field(default_factory=ActionsConfig)


class TrendRequest(_BaseRequest):
    op: Literal["trend"] = "trend"
    config: TrendConfig = Field(default_factory=TrendConfig)


class CorrelationRequest(_BaseRequest):
    op: Literal["correlation"] = "correlation"
    config: CorrelationConfig = Field(default_factory=CorrelationConfig)


AnalysisRequest = Annotated[
    Union[PatternsRequest, DecisionRequest, ActionsRequest, TrendRequest, CorrelationRequest],
    Field(discriminator="op"),
]

_REQUEST_ADAPTER: TypeAdapter[AnalysisRequest] = TypeAdapter(AnalysisRequest)


def parse_analysis_request(payload: Any) -> AnalysisRequest:
    """Validate an `{op, inputs, config}` payload into its typed request."""
    if isinstance(payload, _BaseRequest):
        return payload
    try:
        return _REQUEST_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise QueryValidationError(f"Invalid analyze request: {exc}") from exc


class AnalyzeArgs(BaseModel):
    """Flat tool-facing shape of an analysis request."""

    op: AnalysisOperation = Field(
        description=(
            "lifelong_patterns, decision_matrix, action_synthesis (model-backed) or "
            "trend, correlation (statistical)."
        )
    )
    inputs: list[AnalysisInput] = Field(
        min_length=1,
        description="Cached result ids returned by retrieve (e.g. 'result_1') or literal retrieve results.",
    )
    config: dict[str, Any] = Field(
        default_factory=dict, description="Operation-specific options; defaults apply when omitted."
    )

    def to_request(self) -> AnalysisRequest:
        return parse_analysis_request(
            {"op": self.op.value, "inputs": self.inputs, "config": self.config}
        )
