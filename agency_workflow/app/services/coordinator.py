from __future__ import annotations

import datetime as dt
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import httpx
from pydantic import ValidationError

from agency_workflow.app.client import WorkflowApiClient
from agency_workflow.app.models import (
    Application,
    CandidatePage,
    InterviewPayload,
    Stage,
    StageAnalytics,
)
from agency_workflow.app.services.analytics import aggregate
from agency_workflow.app.services.cache import (
    INTERVIEW_RESCHEDULED_EVENT,
    STAGE_TRANSITION_EVENT,
    ResultCache,
    build_cache_policies,
)
from agency_workflow.app.services.catalog import StageCatalog, load_catalog
from agency_workflow.app.services.errors import (
    BackendRejected,
    InvalidTransition,
    MissingInterviewDetails,
    TransitionInFlight,
)
from agency_workflow.app.services.interview import (
    InterviewForm,
    InterviewScheduler,
    coerce_interview_form,
)
from agency_workflow.app.services.transitions import (
    INTERVIEW_STAGES,
    StageLike,
    coerce_stage,
    in_interview_branch,
    is_legal_transition,
    requires_confirmation,
)
from agency_workflow.app.settings import Settings

logger = logging.getLogger("agency_workflow.coordinator")

InterviewDetails = Union[InterviewForm, InterviewPayload, dict[str, Any]]


@dataclass(frozen=True)
class ConfirmationRequest:
    application_id: str
    current_stage: Stage
    target_stage: Stage
    message: str


ConfirmFn = Callable[[ConfirmationRequest], Union[bool, Awaitable[bool]]]


@dataclass
class TransitionExtras:
    note: Optional[str] = None
    interview: Optional[InterviewDetails] = None


@dataclass(frozen=True)
class TransitionResult:
    application: Optional[Application]
    cancelled: bool = False


def _stage_tags(stages: Iterable[Stage]) -> set[str]:
    tags: set[str] = set()
    for stage in stages:
        tags.add(stage.value)
        # The scheduled bucket is displayed together with the rescheduled one.
        if stage in INTERVIEW_STAGES:
            tags.update(item.value for item in INTERVIEW_STAGES)
    return tags


class ApplicationRegistry:
    """Local copy of applications keyed by id.

    Entries are only ever written from backend responses, so a stage that the
    backend did not commit is never visible here.
    """

    def __init__(self) -> None:
        self._items: dict[str, Application] = {}

    def __contains__(self, application_id: str) -> bool:
        return application_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, application_id: str) -> Optional[Application]:
        return self._items.get(application_id)

    def values(self) -> list[Application]:
        return list(self._items.values())

    def load(self, applications: Iterable[Application]) -> None:
        for application in applications:
            self._items[application.id] = application

    def reconcile(self, application_id: str, record: dict[str, Any]) -> Application:
        """Merges a (possibly partial) server record onto the local copy and stores it."""
        if "status" not in record and "stage" not in record:
            raise BackendRejected("backend response did not include the application stage")
        previous = self._items.get(application_id)
        if previous is not None:
            merged = previous.model_dump(mode="json", by_alias=True)
        else:
            merged = {"id": application_id, "candidate_id": "", "job_id": ""}
        for key, value in record.items():
            if key == "stage":
                merged["status"] = value
            else:
                merged[key] = value
        merged["id"] = application_id
        try:
            application = Application.model_validate(merged)
        except ValidationError as exc:
            raise BackendRejected("malformed application record from backend") from exc
        self._items[application_id] = application
        return application


class StageTransitionCoordinator:
    """Runs stage transitions and interview reschedules against the backend.

    Local checks (legality, interview details) always run before any request. The
    backend's answer is the only thing that updates the local registry.
    """

    def __init__(
        self,
        client: WorkflowApiClient,
        *,
        cache: ResultCache,
        confirm: ConfirmFn,
        catalog: Optional[StageCatalog] = None,
        registry: Optional[ApplicationRegistry] = None,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
        page_limit: int = 15,
    ) -> None:
        self._client = client
        self._cache = cache
        self._confirm = confirm
        self.catalog = catalog or StageCatalog.default()
        self.registry = registry or ApplicationRegistry()
        self._clock = clock
        self.page_limit = page_limit
        self._in_flight: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        confirm: ConfirmFn,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "StageTransitionCoordinator":
        client = WorkflowApiClient.from_settings(settings, transport=transport)
        cache = ResultCache(build_cache_policies(settings))
        return cls(
            client, cache=cache, confirm=confirm, page_limit=settings.workflow_page_limit
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def is_in_flight(self, application_id: str) -> bool:
        return application_id in self._in_flight

    async def load_catalog(self) -> StageCatalog:
        self.catalog = await load_catalog(self._client, self._cache)
        return self.catalog

    async def refresh(
        self,
        *,
        stage: Optional[Stage] = None,
        search: Optional[str] = None,
        job_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CandidatePage:
        result = await self._client.list_candidates(
            stage=stage,
            search=search,
            job_id=job_id,
            page=page,
            limit=limit or self.page_limit,
        )
        self.registry.load(result.candidates)
        return result

    async def analytics(
        self, *, stage: Optional[Stage] = None, job_id: Optional[str] = None
    ) -> StageAnalytics:
        key = ("analytics", stage.value if stage else "all", job_id or "")
        tags = _stage_tags([stage] if stage else list(Stage))
        return await self._cache.get_or_compute_async(
            key,
            lambda: self._client.get_analytics(stage=stage, job_id=job_id),
            "analytics",
            tags=tags,
        )

    def local_analytics(self) -> StageAnalytics:
        return aggregate(self.registry.values())

    def interview_scheduler(self, application_id: str) -> InterviewScheduler:
        application = self.registry.get(application_id)
        if application is not None and application.interview is not None:
            return InterviewScheduler.reschedule(application.interview)
        return InterviewScheduler.schedule(self._clock().date())

    async def request_transition(
        self,
        application_id: str,
        current_stage: StageLike,
        target_stage: StageLike,
        extra: Optional[TransitionExtras] = None,
    ) -> TransitionResult:
        current = coerce_stage(current_stage)
        target = coerce_stage(target_stage)
        if current is None or target is None or not is_legal_transition(current, target):
            logger.info(
                "transition_rejected application_id=%s from=%s to=%s",
                application_id,
                current_stage,
                target_stage,
            )
            raise InvalidTransition(
                current.value if current else str(current_stage),
                target.value if target else str(target_stage),
            )
        with self._guard(application_id):
            return await self._run_transition(
                application_id, current, target, extra or TransitionExtras()
            )

    async def reschedule_interview(
        self, application_id: str, details: InterviewDetails
    ) -> TransitionResult:
        application = self.registry.get(application_id)
        if application is not None and not in_interview_branch(application.stage):
            raise InvalidTransition(application.stage.value, Stage.interview_rescheduled.value)
        if application is None or application.interview is None:
            raise MissingInterviewDetails(application_id)
        with self._guard(application_id):
            payload = coerce_interview_form(details).to_payload(now=self._clock())
            interview_id = application.interview.id
            record = await self._client.reschedule_interview(interview_id, payload)
            updated = self.registry.reconcile(application_id, record)
            self._cache.notify(
                INTERVIEW_RESCHEDULED_EVENT,
                _stage_tags([application.stage, updated.stage]),
            )
            logger.info(
                "interview_rescheduled application_id=%s interview_id=%s stage=%s",
                application_id,
                interview_id,
                updated.stage.value,
            )
            return TransitionResult(application=updated)

    async def _run_transition(
        self,
        application_id: str,
        current: Stage,
        target: Stage,
        extra: TransitionExtras,
    ) -> TransitionResult:
        if requires_confirmation(current, target):
            request = ConfirmationRequest(
                application_id=application_id,
                current_stage=current,
                target_stage=target,
                message=self._confirmation_message(current, target),
            )
            if not await self._ask(request):
                logger.info(
                    "transition_cancelled application_id=%s from=%s to=%s",
                    application_id,
                    current.value,
                    target.value,
                )
                return TransitionResult(
                    application=self.registry.get(application_id), cancelled=True
                )

        payload: Optional[InterviewPayload] = None
        if target is Stage.interview_scheduled:
            local = self.registry.get(application_id)
            if extra.interview is not None:
                payload = coerce_interview_form(extra.interview).to_payload(now=self._clock())
            elif local is None or local.interview is None:
                raise MissingInterviewDetails(application_id)

        record = await self._client.update_stage(
            application_id, target, note=extra.note, interview=payload
        )
        updated = self.registry.reconcile(application_id, record)
        self._cache.notify(STAGE_TRANSITION_EVENT, _stage_tags([current, updated.stage]))
        if updated.stage is not target:
            logger.warning(
                "transition_overridden application_id=%s requested=%s stage=%s",
                application_id,
                target.value,
                updated.stage.value,
            )
        logger.info(
            "transition_applied application_id=%s from=%s to=%s",
            application_id,
            current.value,
            updated.stage.value,
        )
        return TransitionResult(application=updated)

    async def _ask(self, request: ConfirmationRequest) -> bool:
        answer = self._confirm(request)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _confirmation_message(self, current: Stage, target: Stage) -> str:
        if target is Stage.interview_failed:
            return (
                "Are you sure you want to mark this interview as FAILED?\n\n"
                "This action cannot be undone."
            )
        return (
            f'Are you sure you want to move this candidate from "{self.catalog.label(current)}" '
            f'to "{self.catalog.label(target)}"?\n\nThis action cannot be undone.'
        )

    def _guard(self, application_id: str) -> "_InFlightGuard":
        return _InFlightGuard(self._in_flight, application_id)


class _InFlightGuard:
    def __init__(self, in_flight: set[str], application_id: str) -> None:
        self._in_flight = in_flight
        self._application_id = application_id

    def __enter__(self) -> None:
        if self._application_id in self._in_flight:
            raise TransitionInFlight(self._application_id)
        self._in_flight.add(self._application_id)

    def __exit__(self, *exc_info: Any) -> None:
        self._in_flight.discard(self._application_id)
