"""Routes typed analysis requests to their transforms."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from time import perf_counter
from typing import Any, assert_never

from pydantic import BaseModel

from journal_agent.agent.messages import SystemTurn, UserTurn
from journal_agent.analysis import transforms
from journal_agent.analysis.requests import (
    ActionsRequest,
    AnalysisInput,
    AnalysisOperation,
    AnalysisRequest,
    CorrelationRequest,
    DecisionRequest,
    PatternsRequest,
    TrendRequest,
    parse_analysis_request,
)
from journal_agent.analysis.schemas import ActionPlan, DecisionReport, PatternReport
from journal_agent.budget import TokenBudgetManager
from journal_agent.cache import ResultCache
from journal_agent.errors import QueryValidationError
from journal_agent.llm import ChatCapability
from journal_agent.obs.tracing import estimate_token_count
from journal_agent.types import Confidence

logger = logging.getLogger(__name__)

_PATTERNS_PROMPT = """
You analyze a person's journal across their whole history to find recurring life patterns.
Only report a pattern when the evidence shows it recurring over time. For each pattern give
first and last occurrence dates, how often it occurred, flare-up windows, likely triggers,
protective factors and the ids of the supporting items. Never invent ids or dates.
""".strip()

_DECISION_PROMPT = """
You help a person weigh a decision using their own journal as evidence. Score every option
against every criterion from 0 to 10, explain each score briefly and cite supporting item ids.
When asked, describe the likely counterfactual for each option. Never invent ids.
""".strip()

_ACTIONS_PROMPT = """
You turn a person's current state into small, concrete actions. Each action needs a category,
a first step that can be started today, an estimated time in minutes, impact and urgency
(low/medium/high) and a rationale that cites supporting item ids. Never invent ids.
""".strip()


@dataclass(slots=True)
class AnalysisMetadata:
    elapsed_ms: float = 0.0
    estimated_tokens: int = 0
    input_count: int = 0
    evidence_count: int = 0
    memoized: bool = False
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "elapsed_ms": round(self.elapsed_ms, 2),
            "estimated_tokens": self.estimated_tokens,
            "input_count": self.input_count,
            "evidence_count": self.evidence_count,
            "memoized": self.memoized,
            "notes": list(self.notes),
        }


@dataclass(slots=True)
class AnalysisResult:
    operation: AnalysisOperation
    payload: dict[str, Any]
    confidence: Confidence
    metadata: AnalysisMetadata = field(default_factory=AnalysisMetadata)

    def to_payload(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "result": self.payload,
            "confidence": self.confidence.value,
            "metadata": self.metadata.to_dict(),
        }


def _tier(count: int, high: int, medium: int) -> Confidence:
    if count >= high:
        return Confidence.HIGH
    if count >= medium:
        return Confidence.MEDIUM
    return Confidence.LOW


class AnalysisRouter:
    """Resolves inputs, dispatches on the request variant and enforces output rules.

    Statistical operations are deterministic and memoized by a SHA-256 of
    the operation, the resolved inputs and the config. Model-backed
    operations always call the chat capability.
    """

    def __init__(
        self,
        chat: ChatCapability,
        cache: ResultCache,
        budget: TokenBudgetManager | None = None,
    ) -> None:
        self.chat = chat
        self.cache = cache
        self.budget = budget or TokenBudgetManager()
        self._memo: dict[str, AnalysisResult] = {}
        self._lock = threading.Lock()

    async def analyze(self, request: AnalysisRequest | dict[str, Any]) -> AnalysisResult:
        request = parse_analysis_request(request)
        operation = AnalysisOperation(request.op)
        start = perf_counter()
        items = self.resolve_inputs(request.inputs)
        logger.info("analyze op=%s inputs=%d items=%d", operation.value, len(request.inputs), len(items))

        if operation.is_statistical:
            key = memo_key(operation, items, request.config)
            with self._lock:
                cached = self._memo.get(key)
            if cached is not None:
                logger.debug("analyze op=%s memo hit", operation.value)
                return replace(
                    cached,
                    payload=copy.deepcopy(cached.payload),
                    metadata=replace(copy.deepcopy(cached.metadata), memoized=True, elapsed_ms=0.0),
                )

        match request:
            case PatternsRequest():
                result = await self._patterns(request, items)
            case DecisionRequest():
                result = await self._decision(request, items)
            case ActionsRequest():
                result = await self._actions(request, items)
            case TrendRequest():
                report = transforms.fit_trend(items, request.config)
                result = AnalysisResult(
                    operation=operation,
                    payload=report.model_dump(mode="json"),
                    confidence=_tier(report.points, 30, 10),
                    metadata=AnalysisMetadata(evidence_count=report.points),
                )
            case CorrelationRequest():
                report = transforms.correlate(items, request.config)
                result = AnalysisResult(
                    operation=operation,
                    payload=report.model_dump(mode="json"),
                    confidence=_tier(report.points, 30, 10) if report.coefficient is not None else Confidence.LOW,
                    metadata=AnalysisMetadata(evidence_count=report.points),
                )
            case _:
                assert_never(request)

        result.metadata.input_count = len(items)
        result.metadata.elapsed_ms = (perf_counter() - start) * 1000.0
        if operation.is_statistical:
            with self._lock:
                self._memo[key] = copy.deepcopy(result)
        logger.info(
            "analyze op=%s confidence=%s elapsed=%.1fms",
            operation.value,
            result.confidence.value,
            result.metadata.elapsed_ms,
        )
        return result

    def resolve_inputs(self, inputs: Sequence[AnalysisInput]) -> list[dict[str, Any]]:
        """Expand cached ids and literal payloads into a de-duplicated item list.

        A missing cached id raises `NotFoundError`; it is never read as empty.
        """
        items: list[dict[str, Any]] = []
        seen: set[str] = set()
        for entry in inputs:
            payload = self.cache.get(entry) if isinstance(entry, str) else entry
            for item in _items_of(payload):
                item_id = str(item.get("id"))
                if item_id in seen:
                    continue
                seen.add(item_id)
                items.append(item)
        return items

    async def _patterns(self, request: PatternsRequest, items: list[dict[str, Any]]) -> AnalysisResult:
        config = request.config
        selection = self.budget.select(items, AnalysisOperation.LIFELONG_PATTERNS.value)
        instructions = (
            f"Report at most {config.max_patterns} patterns. A pattern needs at least "
            f"{config.min_occurrences} occurrences spanning at least {config.min_span_months} months."
        )
        if config.focus:
            instructions += f" Focus on: {config.focus}."
        report = await self._structured(PatternReport, _PATTERNS_PROMPT, instructions, selection.items)
        enforced = transforms.enforce_patterns(report, selection.items, config)

        dropped = len(report.patterns) - len(enforced.patterns)
        notes = list(selection.notes)
        if dropped:
            notes.append(f"{dropped} candidate patterns below the occurrence or span minimum were dropped")
        points = len(selection.items)
        if len(enforced.patterns) >= 3 and points >= 50:
            confidence = Confidence.HIGH
        elif enforced.patterns and points >= 20:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return AnalysisResult(
            operation=AnalysisOperation.LIFELONG_PATTERNS,
            payload=enforced.model_dump(mode="json"),
            confidence=confidence,
            metadata=AnalysisMetadata(
                estimated_tokens=selection.estimated_tokens, evidence_count=points, notes=notes
            ),
        )

    async def _decision(self, request: DecisionRequest, items: list[dict[str, Any]]) -> AnalysisResult:
        config = request.config
        if not config.options:
            return AnalysisResult(
                operation=AnalysisOperation.DECISION_MATRIX,
                payload=DecisionReport(question=config.question).model_dump(mode="json"),
                confidence=Confidence.LOW,
                metadata=AnalysisMetadata(notes=["No options were given to evaluate"]),
            )

        selection = self.budget.select(items, AnalysisOperation.DECISION_MATRIX.value)
        instructions = (
            f"Decision: {config.question or 'unspecified'}\n"
            f"Options: {', '.join(config.options)}\n"
            f"Criteria: {', '.join(config.criteria)}\n"
            f"Include counterfactuals: {'yes' if config.include_counterfactuals else 'no'}"
        )
        report = await self._structured(DecisionReport, _DECISION_PROMPT, instructions, selection.items)
        scored = transforms.score_decision(report, selection.items, config)
        return AnalysisResult(
            operation=AnalysisOperation.DECISION_MATRIX,
            payload=scored.model_dump(mode="json"),
            confidence=_tier(len(selection.items), 30, 10),
            metadata=AnalysisMetadata(
                estimated_tokens=selection.estimated_tokens,
                evidence_count=len(selection.items),
                notes=list(selection.notes),
            ),
        )

    async def _actions(self, request: ActionsRequest, items: list[dict[str, Any]]) -> AnalysisResult:
        config = request.config
        selection = self.budget.select(items, AnalysisOperation.ACTION_SYNTHESIS.value)
        signals = {
            "emotional_themes": transforms.emotional_themes(selection.items),
            "metric_averages": transforms.metric_averages(selection.items),
        }
        instructions = (
            f"Suggest between 5 and {config.max_items} actions for the next {config.timeframe_days} days, "
            f"balanced across: {', '.join(config.balance_categories)}.\n"
            f"Current signals: {json.dumps(signals)}"
        )
        plan = await self._structured(ActionPlan, _ACTIONS_PROMPT, instructions, selection.items)
        balanced = transforms.balance_actions(plan, selection.items, config)

        notes = list(selection.notes)
        if len(balanced.actions) < 5:
            notes.append(f"Only {len(balanced.actions)} actions could be grounded in the evidence")
        payload = balanced.model_dump(mode="json")
        payload["signals"] = signals
        return AnalysisResult(
            operation=AnalysisOperation.ACTION_SYNTHESIS,
            payload=payload,
            confidence=_tier(len(selection.items), 20, 5),
            metadata=AnalysisMetadata(
                estimated_tokens=selection.estimated_tokens,
                evidence_count=len(selection.items),
                notes=notes,
            ),
        )

    async def _structured(
        self,
        schema: type[BaseModel],
        system_prompt: str,
        instructions: str,
        evidence: Sequence[dict[str, Any]],
    ) -> Any:
        if not evidence:
            raise QueryValidationError("No evidence to analyze; retrieve data first")
        user_text = f"{instructions}\n\nEvidence:\n{format_evidence(evidence)}"
        logger.debug("structured call %s (~%d tokens)", schema.__name__, estimate_token_count(user_text))
        return await self.chat.astructured(
            schema, [SystemTurn(content=system_prompt), UserTurn(content=user_text)]
        )


def format_evidence(items: Sequence[dict[str, Any]]) -> str:
    lines = []
    for item in items:
        date = str(item.get("date") or "")[:10]
        text = " ".join(str(item.get("text") or "").split())
        metrics = item.get("metrics") or {}
        suffix = f" ({', '.join(f'{k}={v}' for k, v in sorted(metrics.items()))})" if metrics else ""
        lines.append(f"[{item.get('id')}] {date}: {text}{suffix}")
    return "\n".join(lines)


def memo_key(operation: AnalysisOperation, items: Sequence[dict[str, Any]], config: BaseModel) -> str:
    material = {
        "op": operation.value,
        "items": [[item.get("id"), item.get("date"), item.get("metrics") or {}] for item in items],
        "config": config.model_dump(mode="json"),
    }
    encoded = json.dumps(material, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _items_of(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        if "aggregate" in payload and not payload.get("items"):
            raise QueryValidationError(
                f"A {payload.get('view', 'aggregate')} view holds no items to analyze; retrieve with view 'raw' instead"
            )
        if isinstance(payload.get("items"), list):
            return [item for item in payload["items"] if isinstance(item, dict)]
        if "id" in payload:
            return [payload]
    raise QueryValidationError("Analysis input must be a cached result id, a retrieve result or an item")
