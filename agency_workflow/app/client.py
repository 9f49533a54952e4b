from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from agency_workflow.app.models import (
    Application,
    ApplicationCreateRequest,
    CandidatePage,
    InterviewPayload,
    Pagination,
    Stage,
    StageAnalytics,
    StageDefinition,
    StageUpdateRequest,
)
from agency_workflow.app.services.analytics import from_summary
from agency_workflow.app.services.errors import BackendRejected
from agency_workflow.app.settings import Settings

logger = logging.getLogger("agency_workflow.client")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return f"HTTP {response.status_code}"


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "success" in body:
        if not body.get("success"):
            raise BackendRejected(str(body.get("message") or "request failed"))
        return body.get("data")
    return body


class WorkflowApiClient:
    """Async client for the workflow endpoints of the agency backend.

    Every non-2xx answer and every transport failure surfaces as ``BackendRejected``.
    No retries happen here; a retry is always a new call by the user.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "WorkflowApiClient":
        timeout = settings.workflow_request_timeout_seconds or None
        return cls(settings.workflow_api_base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "WorkflowApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_stages(self) -> list[StageDefinition]:
        data = await self._request("GET", "/workflow/stages")
        try:
            return [StageDefinition.model_validate(item) for item in data.get("stages", [])]
        except (AttributeError, ValidationError) as exc:
            raise BackendRejected("malformed stage list from backend") from exc

    async def list_candidates(
        self,
        *,
        stage: Optional[Stage] = None,
        search: Optional[str] = None,
        job_id: Optional[str] = None,
        page: int = 1,
        limit: int = 15,
    ) -> CandidatePage:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if stage is not None:
            params["stage"] = stage.value
        if search:
            params["search"] = search
        if job_id:
            params["job_id"] = job_id
        data = await self._request("GET", "/workflow/candidates", params=params)
        try:
            candidates = [
                Application.model_validate(item) for item in data.get("candidates", [])
            ]
            raw_pagination = data.get("pagination")
            pagination = (
                Pagination.model_validate(raw_pagination)
                if raw_pagination
                else Pagination(
                    current_page=page,
                    total_pages=1,
                    total_items=len(candidates),
                    items_per_page=limit,
                )
            )
        except (AttributeError, ValidationError) as exc:
            raise BackendRejected("malformed candidate page from backend") from exc
        return CandidatePage(
            candidates=candidates,
            analytics=from_summary(data.get("analytics") or {}),
            pagination=pagination,
        )

    async def get_analytics(
        self, *, stage: Optional[Stage] = None, job_id: Optional[str] = None
    ) -> StageAnalytics:
        params: dict[str, Any] = {}
        if stage is not None:
            params["stage"] = stage.value
        if job_id:
            params["job_id"] = job_id
        data = await self._request("GET", "/workflow/analytics", params=params)
        if not isinstance(data, dict):
            raise BackendRejected("malformed analytics summary from backend")
        return from_summary(data)

    async def update_stage(
        self,
        application_id: str,
        status: Stage,
        *,
        note: Optional[str] = None,
        interview: Optional[InterviewPayload] = None,
    ) -> dict[str, Any]:
        body = StageUpdateRequest(status=status, note=note, interview_details=interview)
        return await self._record(
            "PUT",
            f"/workflow/candidates/{quote(application_id, safe='')}/stage",
            json=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    async def reschedule_interview(
        self, interview_id: str, payload: InterviewPayload
    ) -> dict[str, Any]:
        return await self._record(
            "PUT",
            f"/workflow/interviews/{quote(interview_id, safe='')}/reschedule",
            json=payload.model_dump(mode="json"),
        )

    async def create_application(self, request: ApplicationCreateRequest) -> Application:
        data = await self._record(
            "POST", "/workflow/applications", json=request.model_dump(mode="json")
        )
        return Application.model_validate(data)

    async def _record(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        data = await self._request(method, path, **kwargs)
        if not isinstance(data, dict):
            raise BackendRejected("backend returned no application record")
        return data

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("backend_unreachable method=%s path=%s error=%s", method, path, exc)
            raise BackendRejected(f"backend request failed: {exc}") from exc
        if not response.is_success:
            message = _error_message(response)
            logger.warning(
                "backend_rejected method=%s path=%s status=%s message=%s",
                method,
                path,
                response.status_code,
                message,
            )
            raise BackendRejected(message, status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise BackendRejected(
                "backend response was not valid json", status_code=response.status_code
            ) from exc
        return _unwrap(body)
