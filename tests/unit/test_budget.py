import pytest

from journal_agent.budget import TokenBudgetManager
from journal_agent.config import BudgetConfig


def _items(count: int, text_length: int) -> list[dict]:
    return [
        {"id": f"e{i}", "date": "2025-10-26T09:00:00+00:00", "text": "x" * text_length}
        for i in range(count)
    ]


@pytest.mark.parametrize("kind", ["lifelong_patterns", "decision_matrix", "action_synthesis", "other"])
def test_selection_never_exceeds_budget(kind) -> None:
    manager = TokenBudgetManager(BudgetConfig(max_tokens=5000))

    selection = manager.select(_items(200, 400), kind)

    assert selection.estimated_tokens <= 5000 * manager.config.fractions.get(kind, 0.7)
    assert selection.budget == manager.budget_for(kind, 5000)
    assert selection.dropped == 200 - len(selection.items)


def test_item_cost_counts_overhead_text_and_date() -> None:
    manager = TokenBudgetManager()

    cost = manager.estimate_tokens({"text": "a" * 401, "date": "2025-10-26"})

    assert cost == 50 + 101 + 3


def test_greedy_prefix_stops_at_first_item_that_does_not_fit() -> None:
    manager = TokenBudgetManager(
        BudgetConfig(max_tokens=1000, default_fraction=1.0, prompt_reserve_tokens={})
    )
    items = [
        {"id": "a", "text": "x" * 800},
        {"id": "b", "text": "x" * 3000},
        {"id": "c", "text": "x"},
    ]

    selection = manager.select(items, "other")

    assert [item["id"] for item in selection.items] == ["a"]
    assert selection.estimated_tokens == 250


def test_prompt_reserve_counts_inside_budget() -> None:
    manager = TokenBudgetManager(BudgetConfig(max_tokens=2000))

    selection = manager.select(_items(10, 40), "action_synthesis")

    assert selection.budget == 800
    assert selection.reserve_tokens == 800
    assert selection.items == []
    assert selection.estimated_tokens <= selection.budget


def test_selection_is_reproducible() -> None:
    manager = TokenBudgetManager(BudgetConfig(max_tokens=8000))
    items = _items(50, 300)

    assert manager.select(items, "decision_matrix") == manager.select(items, "decision_matrix")
