"""Token budgeting for evidence sent to model-backed analyses."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from journal_agent.config import BudgetConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BudgetSelection:
    items: list[Mapping[str, Any]]
    estimated_tokens: int
    budget: int
    reserve_tokens: int = 0
    dropped: int = 0
    notes: list[str] = field(default_factory=list)

    @property
    def utilization(self) -> float:
        return self.estimated_tokens / self.budget if self.budget else 0.0


class TokenBudgetManager:
    """Selects the ranked prefix of evidence that fits an operation's budget.

    Costs are estimated from character counts only, so selection is pure and
    reproducible: the same candidates, kind and limit give the same prefix.
    """

    def __init__(self, config: BudgetConfig | None = None) -> None:
        self.config = config or BudgetConfig()

    def budget_for(self, operation_kind: str, max_tokens: int | None = None) -> int:
        limit = max_tokens if max_tokens is not None else self.config.max_tokens
        fraction = self.config.fractions.get(operation_kind, self.config.default_fraction)
        return int(limit * fraction)

    def estimate_tokens(self, item: Mapping[str, Any]) -> int:
        per = self.config.chars_per_token
        text = item.get("text") or ""
        stamp = item.get("date") or ""
        return self.config.item_overhead_tokens + math.ceil(len(text) / per) + math.ceil(len(stamp) / per)

    def select(
        self,
        candidates: Sequence[Mapping[str, Any]],
        operation_kind: str,
        max_tokens: int | None = None,
    ) -> BudgetSelection:
        budget = self.budget_for(operation_kind, max_tokens)
        reserve = self.config.prompt_reserve_tokens.get(operation_kind, 0)
        if reserve > budget:
            logger.warning(
                "budget %s: prompt reserve %d exceeds budget %d, no evidence selected",
                operation_kind,
                reserve,
                budget,
            )
            return BudgetSelection(
                items=[],
                estimated_tokens=0,
                budget=budget,
                reserve_tokens=reserve,
                dropped=len(candidates),
                notes=["Prompt reserve exceeds budget"],
            )

        used = reserve
        selected: list[Mapping[str, Any]] = []
        for item in candidates:
            cost = self.estimate_tokens(item)
            if used + cost > budget:
                break
            selected.append(item)
            used += cost

        dropped = len(candidates) - len(selected)
        notes = []
        if dropped:
            notes.append(f"{dropped} lower-ranked items omitted to fit the token budget")
        selection = BudgetSelection(
            items=selected,
            estimated_tokens=used,
            budget=budget,
            reserve_tokens=reserve,
            dropped=dropped,
            notes=notes,
        )
        logger.info(
            "budget %s: selected %d/%d items, %d/%d tokens (%.0f%%)",
            operation_kind,
            len(selected),
            len(candidates),
            used,
            budget,
            selection.utilization * 100,
        )
        return selection
