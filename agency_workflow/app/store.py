from __future__ import annotations

import math
from threading import RLock
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from agency_workflow.app.models import (
    Application,
    ApplicationCreateRequest,
    ApplicationRecord,
    AuditEventRecord,
    Interview,
    InterviewPayload,
    InterviewRecord,
    Pagination,
    Stage,
    StageAnalytics,
    utc_now,
)
from agency_workflow.app.services.analytics import aggregate
from agency_workflow.app.services.interview import coerce_interview_form
from agency_workflow.app.services.transitions import (
    INTERVIEW_STAGES,
    in_interview_branch,
    is_legal_transition,
)

if TYPE_CHECKING:
    from agency_workflow.app.persistence import SqlitePersistence


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


def _stage_filter(stage: Optional[Stage]) -> Optional[frozenset[Stage]]:
    if stage is None:
        return None
    # Filtering on scheduled interviews also lists rescheduled ones.
    if stage is Stage.interview_scheduled:
        return INTERVIEW_STAGES
    return frozenset({stage})


class InMemoryStore:
    def __init__(self, persistence: Optional["SqlitePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.applications: dict[str, ApplicationRecord] = {}
        self.interviews: dict[str, InterviewRecord] = {}
        self.audit_events: list[AuditEventRecord] = []

        if self.persistence:
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)
            else:
                self.audit_events = self.persistence.list_audit_events(limit=500)

    def get_application(self, application_id: str) -> ApplicationRecord:
        application = self.applications.get(application_id)
        if not application:
            raise StoreNotFoundError(f"application not found: {application_id}")
        return application

    def get_interview(self, interview_id: str) -> InterviewRecord:
        interview = self.interviews.get(interview_id)
        if not interview:
            raise StoreNotFoundError(f"interview not found: {interview_id}")
        return interview

    def create_application(self, request: ApplicationCreateRequest) -> ApplicationRecord:
        with self._lock:
            for application in self.applications.values():
                if (
                    application.job_id == request.job_id
                    and application.candidate_id == request.candidate_id
                ):
                    return application

            now = utc_now()
            application = ApplicationRecord(
                id=new_id("app"),
                job_id=request.job_id.strip(),
                candidate_id=request.candidate_id.strip(),
                candidate_name=request.candidate_name.strip(),
                phone=request.phone.strip() if request.phone else None,
                stage=Stage.applied,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.applications[application.id] = application
            self._add_audit_event(
                application_id=application.id,
                from_stage=None,
                to_stage=Stage.applied,
                reason="application_created",
            )
            self._persist_state()
            return application

    def transition_application(
        self,
        application_id: str,
        to_stage: Stage,
        *,
        note: Optional[str] = None,
        interview: Optional[InterviewPayload] = None,
    ) -> ApplicationRecord:
        with self._lock:
            application = self.get_application(application_id)
            if not is_legal_transition(application.stage, to_stage):
                raise StoreConflictError(
                    f"invalid transition {application.stage.value} -> {to_stage.value}"
                )

            if to_stage is Stage.interview_scheduled:
                if interview is not None:
                    payload = coerce_interview_form(interview).to_payload()
                    record = self._upsert_interview(application, payload)
                    application.interview_id = record.id
                elif application.interview_id is None:
                    raise StoreConflictError(
                        f"interview details are required for application {application_id}"
                    )

            from_stage = application.stage
            application.stage = to_stage
            application.updated_at_utc = utc_now()
            self.applications[application.id] = application
            self._add_audit_event(
                application_id=application.id,
                from_stage=from_stage,
                to_stage=to_stage,
                reason=note or "stage_updated",
            )
            self._persist_state()
            return application

    def reschedule_interview(
        self, interview_id: str, payload: InterviewPayload
    ) -> ApplicationRecord:
        with self._lock:
            interview = self.get_interview(interview_id)
            application = self.get_application(interview.application_id)
            if not in_interview_branch(application.stage):
                raise StoreConflictError(
                    f"cannot reschedule interview for application in {application.stage.value}"
                )
            validated = coerce_interview_form(payload).to_payload()
            interview.date = validated.date
            interview.time = validated.time
            interview.duration_minutes = validated.duration
            interview.location = validated.location
            interview.interviewer = validated.interviewer
            interview.required_documents = list(validated.requirements)
            interview.notes = validated.notes
            interview.reschedule_count += 1
            interview.updated_at_utc = utc_now()
            self.interviews[interview.id] = interview

            from_stage = application.stage
            application.stage = Stage.interview_rescheduled
            application.updated_at_utc = interview.updated_at_utc
            self.applications[application.id] = application
            self._add_audit_event(
                application_id=application.id,
                from_stage=from_stage,
                to_stage=Stage.interview_rescheduled,
                reason="interview_rescheduled",
            )
            self._persist_state()
            return application

    def list_candidates(
        self,
        *,
        stage: Optional[Stage] = None,
        search: Optional[str] = None,
        job_id: Optional[str] = None,
        page: int = 1,
        limit: int = 15,
    ) -> tuple[list[ApplicationRecord], Pagination]:
        records = self._filtered(stage=stage, search=search, job_id=job_id)
        records.sort(key=lambda item: item.created_at_utc, reverse=True)
        safe_limit = max(1, min(limit, 100))
        total_pages = max(1, math.ceil(len(records) / safe_limit))
        current_page = max(1, page)
        start = (current_page - 1) * safe_limit
        pagination = Pagination(
            current_page=current_page,
            total_pages=total_pages,
            total_items=len(records),
            items_per_page=safe_limit,
        )
        return records[start : start + safe_limit], pagination

    def analytics(
        self, *, stage: Optional[Stage] = None, job_id: Optional[str] = None
    ) -> StageAnalytics:
        return aggregate(self._filtered(stage=stage, job_id=job_id))

    def to_application(self, record: ApplicationRecord) -> Application:
        interview = None
        if record.interview_id and record.interview_id in self.interviews:
            stored = self.interviews[record.interview_id]
            interview = Interview(
                id=stored.id,
                date=stored.date,
                time=stored.time,
                duration_minutes=stored.duration_minutes,
                location=stored.location,
                interviewer=stored.interviewer,
                required_documents=stored.required_documents,
                notes=stored.notes,
                reschedule_count=stored.reschedule_count,
            )
        return Application(
            id=record.id,
            candidate_id=record.candidate_id,
            job_id=record.job_id,
            stage=record.stage,
            candidate_name=record.candidate_name,
            phone=record.phone,
            interview=interview,
        )

    def list_audit_events(self, application_id: str) -> list[AuditEventRecord]:
        return [event for event in self.audit_events if event.application_id == application_id]

    def _filtered(
        self,
        *,
        stage: Optional[Stage] = None,
        search: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> list[ApplicationRecord]:
        with self._lock:
            records = list(self.applications.values())
        stages = _stage_filter(stage)
        if stages is not None:
            records = [item for item in records if item.stage in stages]
        if job_id:
            records = [item for item in records if item.job_id == job_id]
        if search:
            term = search.strip().lower()
            records = [
                item
                for item in records
                if (
                    term in item.candidate_name.lower()
                    or (item.phone and term in item.phone.lower())
                    or term in item.id.lower()
                    or term in item.candidate_id.lower()
                    or term in item.job_id.lower()
                )
            ]
        return records

    def _upsert_interview(
        self, application: ApplicationRecord, payload: InterviewPayload
    ) -> InterviewRecord:
        now = utc_now()
        existing = self.interviews.get(application.interview_id or "")
        interview = InterviewRecord(
            id=existing.id if existing else new_id("int"),
            application_id=application.id,
            date=payload.date,
            time=payload.time,
            duration_minutes=payload.duration,
            location=payload.location,
            interviewer=payload.interviewer,
            required_documents=list(payload.requirements),
            notes=payload.notes,
            reschedule_count=existing.reschedule_count if existing else 0,
            created_at_utc=existing.created_at_utc if existing else now,
            updated_at_utc=now,
        )
        self.interviews[interview.id] = interview
        return interview

    def _add_audit_event(
        self,
        *,
        application_id: str,
        from_stage: Optional[Stage],
        to_stage: Stage,
        reason: str,
    ) -> None:
        event = AuditEventRecord(
            id=new_id("aud"),
            application_id=application_id,
            from_stage=from_stage,
            to_stage=to_stage,
            reason=reason,
            created_at_utc=utc_now(),
        )
        self.audit_events.append(event)
        if self.persistence:
            self.persistence.insert_audit_event(event)

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(self._snapshot_data())

    def _snapshot_data(self) -> dict:
        return {
            "applications": [
                record.model_dump(mode="json") for record in self.applications.values()
            ],
            "interviews": [record.model_dump(mode="json") for record in self.interviews.values()],
            "audit_events": [record.model_dump(mode="json") for record in self.audit_events],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.applications = {
            record["id"]: ApplicationRecord.model_validate(record)
            for record in snapshot.get("applications", [])
        }
        self.interviews = {
            record["id"]: InterviewRecord.model_validate(record)
            for record in snapshot.get("interviews", [])
        }
        self.audit_events = [
            AuditEventRecord.model_validate(record) for record in snapshot.get("audit_events", [])
        ]
