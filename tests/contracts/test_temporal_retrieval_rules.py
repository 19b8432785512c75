from datetime import date

import pytest

from journal_agent.agent.prompts import build_system_prompt
from journal_agent.agent.registry import ToolSpec
from journal_agent.agent.tools import RETRIEVE_DESCRIPTION
from journal_agent.llm import DeterministicChatCapability
from journal_agent.retrieval.query import RetrieveQuery


async def _noop(args):
    return {}


def test_prompt_routes_temporal_questions_to_date_sort() -> None:
    spec = ToolSpec(name="retrieve", description=RETRIEVE_DESCRIPTION, args_schema=RetrieveQuery, handler=_noop)

    prompt = build_system_prompt([spec], date(2025, 10, 27))

    assert "sort=date_desc" in prompt
    assert "Never use filter.similar_to for them" in prompt
    assert "Today is October 27, 2025." in prompt
    assert "- retrieve: " in prompt


def test_retrieve_schema_warns_against_similarity_for_recency() -> None:
    schema = RetrieveQuery.model_json_schema()
    similar_to = schema["$defs"]["RetrieveFilter"]["properties"]["similar_to"]

    assert "sort=date_desc" in RETRIEVE_DESCRIPTION
    assert "Do NOT use" in similar_to["description"]


@pytest.mark.parametrize(
    "question",
    ["What was my last entry?", "Show my most recent entries", "How did I feel yesterday?"],
)
def test_offline_planner_uses_date_sort_for_recency(question) -> None:
    plan = DeterministicChatCapability().plan(question)

    assert plan["sort"] == "date_desc"
    assert "filter" not in plan
