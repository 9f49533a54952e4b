from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Stage(str, Enum):
    applied = "applied"
    shortlisted = "shortlisted"
    interview_scheduled = "interview_scheduled"
    interview_rescheduled = "interview_rescheduled"
    interview_passed = "interview_passed"
    interview_failed = "interview_failed"


class DocumentTag(str, Enum):
    cv = "cv"
    citizenship = "citizenship"
    education = "education"
    photo = "photo"
    hardcopy = "hardcopy"
    passport = "passport"
    experience_letters = "experience_letters"


DEFAULT_REQUIRED_DOCUMENTS: tuple[DocumentTag, ...] = (
    DocumentTag.cv,
    DocumentTag.citizenship,
    DocumentTag.education,
    DocumentTag.photo,
    DocumentTag.hardcopy,
)


class StageDefinition(BaseModel):
    id: str
    label: str
    order: int


class InterviewPayload(BaseModel):
    """Wire shape of the interview details sent with a schedule or reschedule."""

    date: dt.date
    time: dt.time
    location: str
    interviewer: str
    duration: int = 60
    requirements: list[DocumentTag] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRED_DOCUMENTS)
    )
    notes: str = ""


class Interview(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    date: dt.date
    time: dt.time
    duration_minutes: int = Field(default=60, ge=15, le=480, alias="duration")
    location: str = Field(min_length=1)
    interviewer: str = Field(min_length=1)
    required_documents: list[DocumentTag] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRED_DOCUMENTS),
        alias="requirements",
    )
    notes: str = ""
    reschedule_count: int = 0


class Application(BaseModel):
    """Engine-side view of one candidate's application, as returned by the backend."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    candidate_id: str
    job_id: str
    stage: Stage = Field(alias="status")
    candidate_name: Optional[str] = None
    phone: Optional[str] = None
    interview: Optional[Interview] = None


class StageUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Stage
    note: Optional[str] = Field(default=None, max_length=500)
    interview_details: Optional[InterviewPayload] = Field(
        default=None, alias="interviewDetails"
    )


class ApplicationCreateRequest(BaseModel):
    candidate_id: str = Field(min_length=1, max_length=120)
    job_id: str = Field(min_length=1, max_length=120)
    candidate_name: str = Field(min_length=2, max_length=120)
    phone: Optional[str] = Field(default=None, min_length=8, max_length=20)


class StageAnalytics(BaseModel):
    by_stage: dict[Stage, int]
    displayed: dict[str, int]
    total_candidates: int
    overall_success_rate: float
    conversion_rates: dict[str, float]


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class CandidatePage(BaseModel):
    candidates: list[Application]
    analytics: StageAnalytics
    pagination: Pagination


class StageListData(BaseModel):
    stages: list[StageDefinition]
    transitions: dict


class StageListResponse(BaseModel):
    success: bool = True
    data: StageListData


class CandidatePageResponse(BaseModel):
    success: bool = True
    data: CandidatePage


class ApplicationResponse(BaseModel):
    success: bool = True
    data: Application


class AnalyticsResponse(BaseModel):
    success: bool = True
    data: StageAnalytics


class ApplicationRecord(BaseModel):
    id: str
    job_id: str
    candidate_id: str
    candidate_name: str
    phone: Optional[str] = None
    stage: Stage = Stage.applied
    interview_id: Optional[str] = None
    created_at_utc: dt.datetime
    updated_at_utc: dt.datetime


class InterviewRecord(BaseModel):
    id: str
    application_id: str
    date: dt.date
    time: dt.time
    duration_minutes: int
    location: str
    interviewer: str
    required_documents: list[DocumentTag]
    notes: str = ""
    reschedule_count: int = 0
    created_at_utc: dt.datetime
    updated_at_utc: dt.datetime


class AuditEventRecord(BaseModel):
    id: str
    application_id: str
    from_stage: Optional[Stage]
    to_stage: Stage
    reason: str
    created_at_utc: dt.datetime
