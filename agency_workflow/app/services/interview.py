from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import BaseModel

from agency_workflow.app.models import (
    DEFAULT_REQUIRED_DOCUMENTS,
    DocumentTag,
    Interview,
    InterviewPayload,
)
from agency_workflow.app.services.errors import (
    BackendRejected,
    InterviewValidationError,
    TransitionInFlight,
)

logger = logging.getLogger("agency_workflow.interview")

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
DEFAULT_DURATION_MINUTES = 60
DEFAULT_LOCATION = "Office"
DEFAULT_TIME = dt.time(10, 0)

T = TypeVar("T")


@dataclass
class InterviewForm:
    """Editable interview details, as collected before a schedule or reschedule."""

    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    location: str = DEFAULT_LOCATION
    interviewer_id: Optional[str] = None
    interviewer_name: str = ""
    duration: Any = DEFAULT_DURATION_MINUTES
    required_documents: Optional[list[Any]] = None
    notes: str = ""
    interview_id: Optional[str] = None

    @classmethod
    def for_schedule(cls, today: Optional[dt.date] = None) -> "InterviewForm":
        start = today or dt.date.today()
        return cls(
            date=start + dt.timedelta(days=1),
            time=DEFAULT_TIME,
            required_documents=list(DEFAULT_REQUIRED_DOCUMENTS),
        )

    @classmethod
    def for_reschedule(cls, interview: Interview) -> "InterviewForm":
        return cls(
            date=interview.date,
            time=interview.time,
            location=interview.location,
            interviewer_name=interview.interviewer,
            duration=interview.duration_minutes,
            required_documents=list(interview.required_documents),
            notes=interview.notes,
            interview_id=interview.id,
        )

    @property
    def is_reschedule(self) -> bool:
        return self.interview_id is not None

    def documents(self) -> list[DocumentTag]:
        if self.required_documents is None:
            return list(DEFAULT_REQUIRED_DOCUMENTS)
        return [DocumentTag(value) for value in self.required_documents]

    def to_payload(self, now: Optional[dt.datetime] = None) -> InterviewPayload:
        errors = validate_interview(self, now=now)
        if errors:
            raise InterviewValidationError(errors)
        return InterviewPayload(
            date=self.date,
            time=self.time,
            location=self.location.strip(),
            interviewer=(self.interviewer_name or "").strip() or str(self.interviewer_id),
            duration=self.duration,
            requirements=self.documents(),
            notes=(self.notes or "").strip(),
        )


def validate_interview(form: InterviewForm, now: Optional[dt.datetime] = None) -> dict[str, str]:
    errors: dict[str, str] = {}

    if form.date is None:
        errors["date"] = "interview date is required"
    if form.time is None:
        errors["time"] = "interview time is required"
    if form.date is not None and form.time is not None:
        # The form works in whole minutes, so "now" is compared at minute precision.
        reference = (now or dt.datetime.now()).replace(second=0, microsecond=0)
        if dt.datetime.combine(form.date, form.time) < reference:
            errors["date"] = "interview date must not be in the past"

    if form.location is not None and not isinstance(form.location, str):
        errors["location"] = "interview location must be text"
    elif not (form.location or "").strip():
        errors["location"] = "interview location is required"

    if form.interviewer_name is not None and not isinstance(form.interviewer_name, str):
        errors["interviewer"] = "interviewer name must be text"
    elif not form.interviewer_id and not (form.interviewer_name or "").strip():
        errors["interviewer"] = "select an interviewer or enter a name"

    if form.notes is not None and not isinstance(form.notes, str):
        errors["notes"] = "notes must be text"

    duration = form.duration
    if (
        isinstance(duration, bool)
        or not isinstance(duration, int)
        or not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES
    ):
        errors["duration"] = (
            f"duration must be between {MIN_DURATION_MINUTES} and "
            f"{MAX_DURATION_MINUTES} minutes"
        )

    if form.required_documents is not None:
        allowed = {tag.value for tag in DocumentTag}
        unknown = [
            str(value)
            for value in form.required_documents
            if (value.value if isinstance(value, DocumentTag) else value) not in allowed
        ]
        if unknown:
            errors["required_documents"] = f"unknown document types: {', '.join(unknown)}"

    return errors


def _parse_date(value: Any) -> Optional[dt.date]:
    if value is None or isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value))


def _parse_time(value: Any) -> Optional[dt.time]:
    if value is None or isinstance(value, dt.time):
        return value
    return dt.time.fromisoformat(str(value))


def coerce_interview_form(
    details: Union[InterviewForm, InterviewPayload, dict[str, Any]],
) -> InterviewForm:
    """Accepts a form, a wire payload, or a raw dict of wire fields."""
    if isinstance(details, InterviewForm):
        return details
    if isinstance(details, BaseModel):
        details = details.model_dump()
    errors: dict[str, str] = {}
    try:
        date_value = _parse_date(details.get("date"))
    except ValueError:
        date_value = None
        errors["date"] = "interview date must be YYYY-MM-DD"
    try:
        time_value = _parse_time(details.get("time"))
    except ValueError:
        time_value = None
        errors["time"] = "interview time must be HH:MM"
    if errors:
        raise InterviewValidationError(errors)
    requirements = details.get("requirements")
    return InterviewForm(
        date=date_value,
        time=time_value,
        location=details.get("location") or "",
        interviewer_id=details.get("interviewer_id"),
        interviewer_name=details.get("interviewer") or "",
        duration=details.get("duration", DEFAULT_DURATION_MINUTES),
        required_documents=list(requirements) if requirements is not None else None,
        notes=details.get("notes") or "",
        interview_id=details.get("interview_id"),
    )


@dataclass
class InterviewScheduler:
    """Form state for one schedule or reschedule attempt.

    ``submit`` never raises for user-correctable problems: field errors land in
    ``errors`` and a backend rejection lands in ``submit_error``, with ``form``
    left as the user typed it so they can retry.
    """

    form: InterviewForm
    errors: dict[str, str] = field(default_factory=dict)
    submit_error: Optional[str] = None
    is_submitting: bool = False

    @classmethod
    def schedule(cls, today: Optional[dt.date] = None) -> "InterviewScheduler":
        return cls(form=InterviewForm.for_schedule(today))

    @classmethod
    def reschedule(cls, interview: Interview) -> "InterviewScheduler":
        return cls(form=InterviewForm.for_reschedule(interview))

    def update(self, **changes: Any) -> None:
        self.form = replace(self.form, **changes)

    def validate(self, now: Optional[dt.datetime] = None) -> bool:
        self.errors = validate_interview(self.form, now=now)
        return not self.errors

    async def submit(
        self,
        send: Callable[[InterviewForm], Awaitable[T]],
        now: Optional[dt.datetime] = None,
    ) -> Optional[T]:
        self.submit_error = None
        if not self.validate(now):
            return None
        self.is_submitting = True
        try:
            return await send(self.form)
        except InterviewValidationError as exc:
            self.errors = exc.errors
        except (BackendRejected, TransitionInFlight) as exc:
            logger.info(
                "interview_submit_failed reschedule=%s error=%s", self.form.is_reschedule, exc
            )
            self.submit_error = str(exc)
        finally:
            self.is_submitting = False
        return None
