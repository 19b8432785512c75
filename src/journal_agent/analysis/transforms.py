"""Pure transforms over resolved evidence items.

Items are the serialized form of ranked items: dicts with at least `id` and
`date` (ISO 8601) and optionally `text`, `metrics` and `tags`.
"""

from __future__ import annotations

import statistics
from collections import Counter, OrderedDict
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from journal_agent.analysis.requests import (
    ActionsConfig,
    CorrelationConfig,
    DecisionConfig,
    PatternsConfig,
    TrendConfig,
)
from journal_agent.analysis.schemas import (
    ActionPlan,
    CorrelationReport,
    DecisionReport,
    PatternReport,
    TrendReport,
)

EMOTIONAL_KEYWORDS = (
    "stress",
    "anxious",
    "tired",
    "happy",
    "grateful",
    "frustrated",
    "overwhelmed",
    "lonely",
    "excited",
    "worried",
)

Item = Mapping[str, Any]


def item_date(item: Item) -> date | None:
    raw = item.get("date")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw)).date()
    except ValueError:
        return None


def item_metric(item: Item, name: str) -> float | None:
    metrics = item.get("metrics") or {}
    value = metrics.get(name)
    return float(value) if value is not None else None


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


# -- statistical -----------------------------------------------------------


def fit_trend(items: Sequence[Item], config: TrendConfig) -> TrendReport:
    points = sorted(
        (d, v)
        for d, v in ((item_date(item), item_metric(item, config.metric)) for item in items)
        if d is not None and v is not None
    )
    if len(points) < 2:
        return TrendReport(metric=config.metric, points=len(points))

    origin = points[0][0]
    xs = [float((d - origin).days) for d, _ in points]
    ys = [v for _, v in points]
    slope = statistics.linear_regression(xs, ys).slope if len(set(xs)) > 1 else 0.0

    middle = len(ys) // 2
    first_mean = statistics.fmean(ys[:middle])
    second_mean = statistics.fmean(ys[middle:])
    change = second_mean - first_mean
    if abs(change) < config.change_threshold:
        direction = "stable"
    else:
        direction = "increasing" if change > 0 else "decreasing"

    return TrendReport(
        metric=config.metric,
        points=len(points),
        slope_per_day=round(slope, 4),
        first_half_mean=round(first_mean, 3),
        second_half_mean=round(second_mean, 3),
        change=round(change, 3),
        direction=direction,
    )


def correlate(items: Sequence[Item], config: CorrelationConfig) -> CorrelationReport:
    pairs = [
        (a, b)
        for a, b in ((item_metric(item, config.metric_a), item_metric(item, config.metric_b)) for item in items)
        if a is not None and b is not None
    ]
    report = CorrelationReport(metric_a=config.metric_a, metric_b=config.metric_b, points=len(pairs))
    if len(pairs) < config.min_points:
        return report

    xs, ys = zip(*pairs)
    try:
        coefficient = statistics.correlation(xs, ys)
    except statistics.StatisticsError:
        report.strength = "undefined"
        return report

    magnitude = abs(coefficient)
    if magnitude >= 0.7:
        strength = "strong"
    elif magnitude >= 0.4:
        strength = "moderate"
    elif magnitude >= 0.2:
        strength = "weak"
    else:
        strength = "negligible"
    report.coefficient = round(coefficient, 4)
    report.strength = strength
    return report


# -- current-state signals -------------------------------------------------


def emotional_themes(items: Sequence[Item]) -> dict[str, int]:
    counts: Counter[str] = Counter()
    for item in items:
        text = str(item.get("text") or "").lower()
        for keyword in EMOTIONAL_KEYWORDS:
            if keyword in text:
                counts[keyword] += 1
    return dict(counts.most_common())


def metric_averages(items: Sequence[Item]) -> dict[str, float]:
    values: dict[str, list[float]] = {}
    for item in items:
        for name, value in (item.get("metrics") or {}).items():
            if value is not None:
                values.setdefault(name, []).append(float(value))
    return {name: round(statistics.fmean(series), 2) for name, series in sorted(values.items())}


# -- enforcement over model output -----------------------------------------


def enforce_patterns(report: PatternReport, items: Sequence[Item], config: PatternsConfig) -> PatternReport:
    """Drop noise: too few occurrences, too short a span or not recurring."""
    dates_by_id = {str(item.get("id")): item_date(item) for item in items}
    kept = []
    for pattern in report.patterns:
        cited = [i for i in dict.fromkeys(pattern.evidence_ids) if i in dates_by_id]
        cited_months = {(d.year, d.month) for d in (dates_by_id[i] for i in cited) if d is not None}
        span = months_between(pattern.first_seen, pattern.last_seen)

        if pattern.occurrences < config.min_occurrences or span < config.min_span_months:
            continue
        if config.require_recurring and len(pattern.flare_ups) < 2 and len(cited_months) < 2:
            continue
        kept.append(
            pattern.model_copy(
                update={"evidence_ids": cited, "supporting_evidence_count": len(cited), "span_months": span}
            )
        )

    kept.sort(key=lambda p: (-p.occurrences, p.name))
    return report.model_copy(update={"patterns": kept[: config.max_patterns]})


def _fold(label: str) -> str:
    return label.strip().lower()


def score_decision(report: DecisionReport, items: Sequence[Item], config: DecisionConfig) -> DecisionReport:
    """Keep requested options and criteria, then compute weighted aggregates."""
    known_ids = {str(item.get("id")) for item in items}
    # Criteria and options are matched on their folded form, reported under the configured label.
    labels = {_fold(criterion): criterion for criterion in config.criteria}
    weights = {key: 1.0 for key in labels}
    weights.update({_fold(k): v for k, v in (config.criterion_weights or {}).items() if _fold(k) in weights})
    by_option = {_fold(evaluation.option): evaluation for evaluation in report.options}

    options = []
    for option in config.options:
        evaluation = by_option.get(_fold(option))
        if evaluation is None:
            continue
        scored = [(_fold(score.criterion), score) for score in evaluation.scores if _fold(score.criterion) in weights]
        scores = [
            score.model_copy(
                update={
                    "criterion": labels[key],
                    "evidence_ids": [i for i in score.evidence_ids if i in known_ids],
                }
            )
            for key, score in scored
        ]
        total_weight = sum(weights[key] for key, _ in scored)
        aggregate = (
            sum(weights[key] * score.score for key, score in scored) / total_weight
            if total_weight > 0
            else 0.0
        )
        options.append(
            evaluation.model_copy(
                update={
                    "option": option,
                    "scores": scores,
                    "aggregate_score": round(aggregate, 2),
                    "counterfactual": evaluation.counterfactual if config.include_counterfactuals else None,
                }
            )
        )

    best = max(options, key=lambda e: e.aggregate_score, default=None)
    return report.model_copy(
        update={
            "question": config.question or report.question,
            "options": options,
            "recommendation": best.option if best is not None else None,
            "counterfactual": report.counterfactual if config.include_counterfactuals else None,
        }
    )


def balance_actions(plan: ActionPlan, items: Sequence[Item], config: ActionsConfig) -> ActionPlan:
    """Bound the plan to `max_items`, taking requested categories round-robin.

    Actions in categories outside `balance_categories` only fill slots left
    over once every requested category has run dry.
    """
    known_ids = {str(item.get("id")) for item in items}
    requested: OrderedDict[str, list] = OrderedDict(
        (_fold(category), []) for category in config.balance_categories
    )
    others: OrderedDict[str, list] = OrderedDict()
    for action in plan.actions:
        action = action.model_copy(
            update={
                "category": _fold(action.category),
                "evidence_ids": [i for i in action.evidence_ids if i in known_ids],
                "first_step": action.first_step if config.include_first_step else None,
            }
        )
        groups = requested if action.category in requested else others
        groups.setdefault(action.category, []).append(action)

    selected: list = []
    for groups in (requested, others):
        while len(selected) < config.max_items and any(groups.values()):
            for queue in groups.values():
                if queue and len(selected) < config.max_items:
                    selected.append(queue.pop(0))
    return plan.model_copy(update={"actions": selected})
