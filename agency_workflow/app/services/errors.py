from __future__ import annotations

from typing import Optional


class TransitionError(Exception):
    pass


class InvalidTransition(TransitionError):
    def __init__(self, current_stage: str, target_stage: str) -> None:
        self.current_stage = current_stage
        self.target_stage = target_stage
        super().__init__(f"invalid transition {current_stage} -> {target_stage}")


class MissingInterviewDetails(TransitionError):
    def __init__(self, application_id: str) -> None:
        self.application_id = application_id
        super().__init__(f"interview details are required for application {application_id}")


class InterviewValidationError(TransitionError):
    """Field-keyed validation failure of an interview form."""

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"invalid interview details: {fields}")


class BackendRejected(TransitionError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransitionInFlight(TransitionError):
    def __init__(self, application_id: str) -> None:
        self.application_id = application_id
        super().__init__(f"a stage update is already in progress for {application_id}")
