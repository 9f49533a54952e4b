from __future__ import annotations

from typing import Optional, Union

from agency_workflow.app.models import Stage

TRANSITION_TABLE_VERSION = 1

INTERVIEW_BRANCH = "interview"
INTERVIEW_STAGES = frozenset({Stage.interview_scheduled, Stage.interview_rescheduled})

# Both interview stages share the branch row.
ALLOWED_TRANSITIONS: dict[str, frozenset[Stage]] = {
    Stage.applied.value: frozenset({Stage.shortlisted}),
    Stage.shortlisted.value: frozenset({Stage.interview_scheduled}),
    INTERVIEW_BRANCH: frozenset({Stage.interview_passed, Stage.interview_failed}),
    Stage.interview_passed.value: frozenset(),
    Stage.interview_failed.value: frozenset(),
}

StageLike = Union[Stage, str]


def coerce_stage(value: Optional[StageLike]) -> Optional[Stage]:
    if value is None:
        return None
    if isinstance(value, Stage):
        return value
    try:
        return Stage(value.strip().lower())
    except (AttributeError, ValueError):
        return None


def transition_key(stage: Stage) -> str:
    if stage in INTERVIEW_STAGES:
        return INTERVIEW_BRANCH
    return stage.value


def in_interview_branch(stage: Optional[StageLike]) -> bool:
    return coerce_stage(stage) in INTERVIEW_STAGES


def valid_next_stages(current: Optional[StageLike]) -> frozenset[Stage]:
    stage = coerce_stage(current)
    if stage is None:
        return frozenset()
    return ALLOWED_TRANSITIONS[transition_key(stage)]


def is_legal_transition(current: Optional[StageLike], target: Optional[StageLike]) -> bool:
    target_stage = coerce_stage(target)
    if target_stage is None:
        return False
    return target_stage in valid_next_stages(current)


def is_terminal(stage: Optional[StageLike]) -> bool:
    resolved = coerce_stage(stage)
    return resolved is not None and not valid_next_stages(resolved)


def requires_confirmation(current: Optional[StageLike], target: Optional[StageLike]) -> bool:
    # Reschedules never go through the table, so every legal move here is a pipeline advance.
    return is_legal_transition(current, target)


def transition_table() -> dict:
    """Versioned, JSON-ready export of the adjacency table.

    The reference backend serves this alongside the stage list so that any client
    can check it is enforcing the same rules as the server.
    """
    return {
        "version": TRANSITION_TABLE_VERSION,
        "branches": {
            INTERVIEW_BRANCH: sorted(stage.value for stage in INTERVIEW_STAGES),
        },
        "transitions": {
            key: sorted(stage.value for stage in targets)
            for key, targets in ALLOWED_TRANSITIONS.items()
        },
    }
