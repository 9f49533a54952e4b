from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agency_workflow.app.models import (
    AnalyticsResponse,
    ApplicationCreateRequest,
    ApplicationResponse,
    AuditEventRecord,
    CandidatePage,
    CandidatePageResponse,
    InterviewPayload,
    Stage,
    StageListData,
    StageListResponse,
    StageUpdateRequest,
)
from agency_workflow.app.observability import MetricsRegistry, configure_logging, observe_request
from agency_workflow.app.persistence import SqlitePersistence
from agency_workflow.app.services.catalog import DEFAULT_STAGES
from agency_workflow.app.services.errors import InterviewValidationError
from agency_workflow.app.services.transitions import transition_table
from agency_workflow.app.settings import Settings, load_settings
from agency_workflow.app.store import InMemoryStore, StoreConflictError, StoreNotFoundError

logger = logging.getLogger("agency_workflow.api")


def create_app() -> FastAPI:
    app = FastAPI(title="Agency Candidate Workflow API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = SqlitePersistence(settings.database_url) if settings.persistence_enabled else None
    app.state.store = InMemoryStore(persistence=persistence)
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": "; ".join(problems) or "invalid request"},
    )


def _interview_error(exc: InterviewValidationError) -> HTTPException:
    details = "; ".join(f"{key}: {value}" for key, value in sorted(exc.errors.items()))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=details)


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.get("/workflow/stages", response_model=StageListResponse)
    def workflow_stages() -> StageListResponse:
        return StageListResponse(
            data=StageListData(stages=list(DEFAULT_STAGES), transitions=transition_table())
        )

    @router.get("/workflow/candidates", response_model=CandidatePageResponse)
    def workflow_candidates(
        request: Request,
        stage: Optional[Stage] = None,
        search: Optional[str] = Query(default=None, max_length=120),
        job_id: Optional[str] = Query(default=None, max_length=120),
        page: int = Query(default=1, ge=1),
        limit: Optional[int] = Query(default=None, ge=1, le=100),
    ) -> CandidatePageResponse:
        store = get_store(request)
        page_size = limit or get_settings(request).workflow_page_limit
        records, pagination = store.list_candidates(
            stage=stage, search=search, job_id=job_id, page=page, limit=page_size
        )
        return CandidatePageResponse(
            data=CandidatePage(
                candidates=[store.to_application(record) for record in records],
                analytics=store.analytics(job_id=job_id),
                pagination=pagination,
            )
        )

    @router.get("/workflow/analytics", response_model=AnalyticsResponse)
    def workflow_analytics(
        request: Request,
        stage: Optional[Stage] = None,
        job_id: Optional[str] = Query(default=None, max_length=120),
    ) -> AnalyticsResponse:
        return AnalyticsResponse(data=get_store(request).analytics(stage=stage, job_id=job_id))

    @router.post(
        "/workflow/applications",
        response_model=ApplicationResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_application(
        payload: ApplicationCreateRequest, request: Request
    ) -> ApplicationResponse:
        store = get_store(request)
        record = store.create_application(payload)
        return ApplicationResponse(data=store.to_application(record))

    @router.put("/workflow/candidates/{application_id}/stage", response_model=ApplicationResponse)
    def update_stage(
        application_id: str,
        payload: StageUpdateRequest,
        request: Request,
    ) -> ApplicationResponse:
        store = get_store(request)
        registry = get_metrics(request)
        try:
            updated = store.transition_application(
                application_id,
                payload.status,
                note=payload.note,
                interview=payload.interview_details,
            )
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except StoreConflictError as exc:
            registry.record_transition(to_stage=payload.status.value, accepted=False)
            logger.info(
                "stage_update_rejected application_id=%s to=%s reason=%s",
                application_id,
                payload.status.value,
                exc,
            )
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except InterviewValidationError as exc:
            registry.record_transition(to_stage=payload.status.value, accepted=False)
            raise _interview_error(exc) from exc
        registry.record_transition(to_stage=updated.stage.value, accepted=True)
        return ApplicationResponse(data=store.to_application(updated))

    @router.put(
        "/workflow/interviews/{interview_id}/reschedule", response_model=ApplicationResponse
    )
    def reschedule_interview(
        interview_id: str,
        payload: InterviewPayload,
        request: Request,
    ) -> ApplicationResponse:
        store = get_store(request)
        try:
            updated = store.reschedule_interview(interview_id, payload)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except InterviewValidationError as exc:
            raise _interview_error(exc) from exc
        get_metrics(request).record_transition(to_stage=updated.stage.value, accepted=True)
        return ApplicationResponse(data=store.to_application(updated))

    @router.get(
        "/workflow/candidates/{application_id}/history",
        response_model=list[AuditEventRecord],
    )
    def stage_history(application_id: str, request: Request) -> list[AuditEventRecord]:
        store = get_store(request)
        try:
            store.get_application(application_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return store.list_audit_events(application_id)

    return router


app = create_app()
