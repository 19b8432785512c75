"""Journal agent package."""

from .config import AgentConfig, BudgetConfig, CacheConfig, RankingConfig, RetrievalConfig

__all__ = ["AgentConfig", "BudgetConfig", "CacheConfig", "RankingConfig", "RetrievalConfig"]
