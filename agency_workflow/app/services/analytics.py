from __future__ import annotations

from typing import Any, Iterable, Protocol

from agency_workflow.app.models import Stage, StageAnalytics
from agency_workflow.app.services.transitions import coerce_stage

SHORTLIST_REACHED = (
    Stage.shortlisted,
    Stage.interview_scheduled,
    Stage.interview_rescheduled,
    Stage.interview_passed,
    Stage.interview_failed,
)
INTERVIEW_REACHED = (
    Stage.interview_scheduled,
    Stage.interview_rescheduled,
    Stage.interview_passed,
    Stage.interview_failed,
)


class HasStage(Protocol):
    stage: Stage


def _percent(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round((numerator / denominator) * 100, 1)


def displayed_counts(by_stage: dict[Stage, int]) -> dict[str, int]:
    displayed = {
        stage.value: by_stage.get(stage, 0)
        for stage in Stage
        if stage is not Stage.interview_rescheduled
    }
    displayed[Stage.interview_scheduled.value] += by_stage.get(Stage.interview_rescheduled, 0)
    return displayed


def conversion_rates(by_stage: dict[Stage, int], total: int) -> dict[str, float]:
    shortlisted = sum(by_stage.get(stage, 0) for stage in SHORTLIST_REACHED)
    interviewed = sum(by_stage.get(stage, 0) for stage in INTERVIEW_REACHED)
    passed = by_stage.get(Stage.interview_passed, 0)
    return {
        "applied_to_shortlisted": _percent(shortlisted, total),
        "shortlisted_to_interview": _percent(interviewed, shortlisted),
        "interview_to_passed": _percent(passed, interviewed),
        "overall_success_rate": _percent(passed, total),
    }


def _build(by_stage: dict[Stage, int], total: int) -> StageAnalytics:
    rates = conversion_rates(by_stage, total)
    return StageAnalytics(
        by_stage=by_stage,
        displayed=displayed_counts(by_stage),
        total_candidates=total,
        overall_success_rate=rates["overall_success_rate"],
        conversion_rates=rates,
    )


def aggregate(applications: Iterable[HasStage]) -> StageAnalytics:
    by_stage = {stage: 0 for stage in Stage}
    for application in applications:
        by_stage[application.stage] += 1
    return _build(by_stage, sum(by_stage.values()))


def from_summary(payload: dict[str, Any]) -> StageAnalytics:
    """Reads a backend analytics summary into the same read-model ``aggregate`` builds."""
    by_stage = {stage: 0 for stage in Stage}
    for raw_stage, raw_count in (payload.get("by_stage") or {}).items():
        stage = coerce_stage(raw_stage)
        if stage is None:
            continue
        try:
            by_stage[stage] = max(0, int(raw_count))
        except (TypeError, ValueError):
            continue
    total = payload.get("total_candidates")
    if not isinstance(total, int) or total < 0:
        total = sum(by_stage.values())
    return _build(by_stage, total)
