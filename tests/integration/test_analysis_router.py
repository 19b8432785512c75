import pytest

from journal_agent.analysis.router import AnalysisRouter
from journal_agent.analysis.schemas import (
    ActionItem,
    ActionPlan,
    CriterionScore,
    DecisionReport,
    OptionEvaluation,
    PatternCandidate,
    PatternReport,
)
from journal_agent.cache import ResultCache
from journal_agent.errors import NotFoundError, QueryValidationError
from journal_agent.types import Confidence


def _retrieve_payload(values: list[float], metric: str = "happiness") -> dict:
    return {
        "scope": "entries",
        "items": [
            {
                "id": f"entry-{index}",
                "date": f"2025-{index // 28 + 1:02d}-{index % 28 + 1:02d}T09:00:00+00:00",
                "text": "Felt tired after work" if index % 2 else "Grateful for a calm morning",
                "metrics": {metric: value, "stress": 100 - value},
            }
            for index, value in enumerate(values)
        ],
    }


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache()


@pytest.mark.asyncio
async def test_trend_resolves_cached_ids_and_is_memoized(cache, scripted_chat) -> None:
    result_id = cache.put(_retrieve_payload([40 + i for i in range(12)]))
    router = AnalysisRouter(scripted_chat(), cache)

    first = await router.analyze({"op": "trend", "inputs": [result_id], "config": {"metric": "happiness"}})
    second = await router.analyze({"op": "trend", "inputs": [result_id], "config": {"metric": "happiness"}})

    assert first.payload["direction"] == "increasing"
    assert first.confidence is Confidence.MEDIUM
    assert first.metadata.memoized is False
    assert second.metadata.memoized is True
    assert second.payload == first.payload
    second.payload["direction"] = "tampered"
    third = await router.analyze({"op": "trend", "inputs": [result_id], "config": {"metric": "happiness"}})
    assert third.payload["direction"] == "increasing"


@pytest.mark.asyncio
async def test_first_result_does_not_share_state_with_the_memo(cache, scripted_chat) -> None:
    router = AnalysisRouter(scripted_chat(), cache)
    request = {"op": "trend", "inputs": [_retrieve_payload([40 + i for i in range(12)])]}

    first = await router.analyze(request)
    first.payload["direction"] = "tampered"
    first.metadata.notes.append("edited by caller")
    second = await router.analyze(request)

    assert second.metadata.memoized is True
    assert second.payload["direction"] == "increasing"
    assert "edited by caller" not in second.metadata.notes


@pytest.mark.asyncio
async def test_duplicate_inputs_are_counted_once(cache, scripted_chat) -> None:
    payload = _retrieve_payload([50, 60, 70, 80, 90, 95])
    result_id = cache.put(payload)
    router = AnalysisRouter(scripted_chat(), cache)

    result = await router.analyze({"op": "correlation", "inputs": [result_id, payload, payload["items"][0]]})

    assert result.metadata.input_count == 6
    assert result.payload["coefficient"] == pytest.approx(-1.0)


@pytest.mark.asyncio
async def test_missing_cached_id_is_an_error(cache, scripted_chat) -> None:
    router = AnalysisRouter(scripted_chat(), cache)

    with pytest.raises(NotFoundError):
        await router.analyze({"op": "trend", "inputs": ["result_99"]})


@pytest.mark.asyncio
async def test_unknown_operation_is_rejected(cache, scripted_chat) -> None:
    router = AnalysisRouter(scripted_chat(), cache)

    with pytest.raises(QueryValidationError):
        await router.analyze({"op": "horoscope", "inputs": [{"id": "a"}]})


@pytest.mark.asyncio
async def test_patterns_are_enforced_after_the_model_call(cache, scripted_chat) -> None:
    items = [
        {"id": "jan", "date": "2023-01-10T09:00:00+00:00", "text": "Dark mornings again"},
        {"id": "dec", "date": "2024-12-10T09:00:00+00:00", "text": "Winter blues"},
    ]
    report = PatternReport(
        patterns=[
            PatternCandidate(
                name="winter low mood",
                first_seen="2023-01-01",
                last_seen="2024-12-31",
                occurrences=5,
                evidence_ids=["jan", "dec"],
            ),
            PatternCandidate(
                name="single bad week",
                first_seen="2024-03-01",
                last_seen="2024-03-07",
                occurrences=1,
                evidence_ids=["jan"],
            ),
        ]
    )
    chat = scripted_chat(structured={PatternReport: report})
    router = AnalysisRouter(chat, cache)

    result = await router.analyze({"op": "lifelong_patterns", "inputs": [{"items": items}]})

    assert [p["name"] for p in result.payload["patterns"]] == ["winter low mood"]
    assert result.confidence is Confidence.LOW
    assert any("dropped" in note for note in result.metadata.notes)
    _, messages = chat.structured_calls[0]
    assert "[jan] 2023-01-10: Dark mornings again" in messages[-1].content


@pytest.mark.asyncio
async def test_decision_without_options_skips_the_model(cache, scripted_chat) -> None:
    chat = scripted_chat()
    router = AnalysisRouter(chat, cache)

    result = await router.analyze(
        {"op": "decision_matrix", "inputs": [{"id": "a", "text": "x"}], "config": {"question": "Move?"}}
    )

    assert result.payload["options"] == []
    assert result.payload["question"] == "Move?"
    assert result.confidence is Confidence.LOW
    assert chat.structured_calls == []


@pytest.mark.asyncio
async def test_decision_scores_requested_options(cache, scripted_chat) -> None:
    report = DecisionReport(
        options=[
            OptionEvaluation(option="stay", scores=[CriterionScore(criterion="wellbeing", score=4)]),
            OptionEvaluation(option="move", scores=[CriterionScore(criterion="wellbeing", score=9)]),
            OptionEvaluation(option="quit everything", scores=[CriterionScore(criterion="wellbeing", score=10)]),
        ]
    )
    router = AnalysisRouter(scripted_chat(structured={DecisionReport: report}), cache)

    result = await router.analyze(
        {
            "op": "decision_matrix",
            "inputs": [_retrieve_payload([50] * 12)],
            "config": {"options": ["stay", "move"], "criteria": ["wellbeing"]},
        }
    )

    assert [o["option"] for o in result.payload["options"]] == ["stay", "move"]
    assert result.payload["recommendation"] == "move"
    assert result.confidence is Confidence.MEDIUM


@pytest.mark.asyncio
async def test_actions_are_balanced_and_carry_signals(cache, scripted_chat) -> None:
    plan = ActionPlan(
        actions=[ActionItem(title=f"focus block {i}", category="work") for i in range(8)]
        + [ActionItem(title="walk", category="health"), ActionItem(title="call a friend", category="relationships")]
    )
    router = AnalysisRouter(scripted_chat(structured={ActionPlan: plan}), cache)

    result = await router.analyze({"op": "action_synthesis", "inputs": [_retrieve_payload([60] * 6)]})

    categories = [action["category"] for action in result.payload["actions"]]
    assert len(categories) == 7
    assert categories[:3] == ["health", "work", "relationships"]
    assert result.payload["signals"]["emotional_themes"]["tired"] == 3
    assert result.confidence is Confidence.MEDIUM


@pytest.mark.asyncio
async def test_model_backed_operation_needs_evidence(cache, scripted_chat) -> None:
    router = AnalysisRouter(scripted_chat(), cache)

    with pytest.raises(QueryValidationError):
        await router.analyze({"op": "action_synthesis", "inputs": [{"items": []}]})


@pytest.mark.asyncio
async def test_aggregate_views_cannot_feed_item_analysis(cache, scripted_chat) -> None:
    result_id = cache.put({"scope": "entries", "view": "timeline", "items": [], "aggregate": {"buckets": []}})
    router = AnalysisRouter(scripted_chat(), cache)

    with pytest.raises(QueryValidationError, match="timeline view holds no items"):
        await router.analyze({"op": "trend", "inputs": [result_id]})
