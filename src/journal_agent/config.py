"""Configuration models for the journal agent."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RankingConfig(BaseModel):
    """Configures signal normalization for hybrid ranking."""

    keyword_saturation: float = Field(default=20.0, gt=0.0)
    default_metric: str = "happiness"
    metric_ranges: dict[str, tuple[float, float]] = Field(
        default_factory=lambda: {
            "happiness": (0.0, 100.0),
            "stress": (0.0, 100.0),
            "energy": (0.0, 100.0),
        }
    )


class RetrievalConfig(BaseModel):
    """Configures the retrieval gateway, confidence tiers and gap detection."""

    max_limit: int = Field(default=200, ge=1)
    min_gap_days: int = Field(default=7, ge=1)
    store_timeout_seconds: float = Field(default=10.0, gt=0.0)
    embedding_timeout_seconds: float = Field(default=15.0, gt=0.0)
    high_confidence_count: int = Field(default=50, ge=1)
    medium_confidence_count: int = Field(default=10, ge=1)
    high_confidence_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    medium_confidence_similarity: float = Field(default=0.4, ge=0.0, le=1.0)
    default_histogram_bins: int = Field(default=10, ge=1, le=100)


class BudgetConfig(BaseModel):
    """Configures how much retrieved evidence each operation may send to a model."""

    max_tokens: int = Field(default=30_000, ge=1)
    chars_per_token: int = Field(default=4, ge=1)
    item_overhead_tokens: int = Field(default=50, ge=0)
    fractions: dict[str, float] = Field(
        default_factory=lambda: {
            "lifelong_patterns": 0.9,
            "decision_matrix": 0.8,
            "action_synthesis": 0.4,
        }
    )
    default_fraction: float = Field(default=0.7, gt=0.0, le=1.0)
    prompt_reserve_tokens: dict[str, int] = Field(
        default_factory=lambda: {
            "lifelong_patterns": 1500,
            "decision_matrix": 1200,
            "action_synthesis": 800,
        }
    )


class CacheConfig(BaseModel):
    """Configures when tool results are replaced by cached summaries."""

    threshold_chars: int = Field(default=4000, ge=256)
    preview_items: int = Field(default=2, ge=0, le=10)
    preview_chars: int = Field(default=150, ge=10)
    carry_field_chars: int = Field(default=1000, ge=0)


class AgentConfig(BaseModel):
    """Configures agent execution limits and timeouts."""

    max_iterations: int = Field(default=10, ge=1)
    model: str = "gpt-4o"
    chat_timeout_seconds: float = Field(default=60.0, gt=0.0)
    tool_timeout_seconds: float = Field(default=45.0, gt=0.0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_max_wait_seconds: float = Field(default=8.0, ge=0.0)
