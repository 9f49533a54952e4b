from __future__ import annotations

import asyncio
import json
from datetime import date, time, timedelta

import httpx
import pytest

from agency_workflow.app.client import WorkflowApiClient
from agency_workflow.app.main import create_app
from agency_workflow.app.models import ApplicationCreateRequest, InterviewPayload, Stage
from agency_workflow.app.services.errors import BackendRejected
from agency_workflow.app.services.interview import InterviewScheduler


@pytest.fixture()
def asgi_transport(monkeypatch: pytest.MonkeyPatch) -> httpx.ASGITransport:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    return httpx.ASGITransport(app=create_app())


def interview_payload(days_ahead: int = 3) -> InterviewPayload:
    return InterviewPayload(
        date=date.today() + timedelta(days=days_ahead),
        time=time(11, 0),
        location="Head office",
        interviewer="Asha Gurung",
        duration=45,
    )


def test_client_round_trip_against_reference_backend(asgi_transport) -> None:
    async def scenario() -> None:
        async with WorkflowApiClient("http://testserver", transport=asgi_transport) as client:
            stages = await client.get_stages()
            assert [stage.id for stage in stages][:2] == ["applied", "shortlisted"]

            created = await client.create_application(
                ApplicationCreateRequest(
                    candidate_id="cand_1", job_id="job_1", candidate_name="Sita Rai"
                )
            )
            assert created.stage is Stage.applied

            record = await client.update_stage(created.id, Stage.shortlisted, note="good fit")
            assert record["status"] == "shortlisted"

            record = await client.update_stage(
                created.id, Stage.interview_scheduled, interview=interview_payload()
            )
            assert record["status"] == "interview_scheduled"
            assert record["interview"]["duration"] == 45
            interview_id = record["interview"]["id"]

            record = await client.reschedule_interview(interview_id, interview_payload(5))
            assert record["status"] == "interview_rescheduled"
            assert record["interview"]["reschedule_count"] == 1

            page = await client.list_candidates(stage=Stage.interview_scheduled, limit=5)
            assert [item.id for item in page.candidates] == [created.id]
            assert page.pagination.items_per_page == 5
            assert page.analytics.displayed["interview_scheduled"] == 1

            analytics = await client.get_analytics()
            assert analytics.by_stage[Stage.interview_rescheduled] == 1

    asyncio.run(scenario())


def test_client_maps_conflict_to_backend_rejected(asgi_transport) -> None:
    async def scenario() -> None:
        async with WorkflowApiClient("http://testserver", transport=asgi_transport) as client:
            created = await client.create_application(
                ApplicationCreateRequest(
                    candidate_id="cand_2", job_id="job_1", candidate_name="Hari Thapa"
                )
            )
            with pytest.raises(BackendRejected) as excinfo:
                await client.update_stage(created.id, Stage.interview_passed)
            assert excinfo.value.status_code == 409
            assert "invalid transition applied -> interview_passed" in excinfo.value.message

            with pytest.raises(BackendRejected) as missing:
                await client.update_stage("app_missing", Stage.shortlisted)
            assert missing.value.status_code == 404

    asyncio.run(scenario())


def test_client_reports_transport_failures_and_bare_errors() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def bare_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    def unsuccessful(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "message": "stage locked"})

    async def scenario() -> None:
        async with WorkflowApiClient(
            "http://testserver", transport=httpx.MockTransport(unreachable)
        ) as client:
            with pytest.raises(BackendRejected) as excinfo:
                await client.get_stages()
            assert excinfo.value.status_code is None

        async with WorkflowApiClient(
            "http://testserver", transport=httpx.MockTransport(bare_error)
        ) as client:
            with pytest.raises(BackendRejected) as excinfo:
                await client.update_stage("app_1", Stage.shortlisted)
            assert excinfo.value.message == "HTTP 502"

        async with WorkflowApiClient(
            "http://testserver", transport=httpx.MockTransport(unsuccessful)
        ) as client:
            with pytest.raises(BackendRejected) as excinfo:
                await client.update_stage("app_1", Stage.shortlisted)
            assert excinfo.value.message == "stage locked"

    asyncio.run(scenario())


def test_client_wraps_undecodable_responses() -> None:
    def corrupt_gzip(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers={"content-encoding": "gzip"}, content=b"definitely not gzip"
        )

    async def scenario() -> None:
        async with WorkflowApiClient(
            "http://testserver", transport=httpx.MockTransport(corrupt_gzip)
        ) as client:
            with pytest.raises(BackendRejected) as excinfo:
                await client.get_stages()
            assert excinfo.value.message.startswith("backend request failed")

            scheduler = InterviewScheduler.schedule(date.today())
            scheduler.update(interviewer_name="Asha Gurung")

            async def send(form):
                return await client.update_stage(
                    "app_1", Stage.interview_scheduled, interview=form.to_payload()
                )

            assert await scheduler.submit(send) is None
            assert scheduler.submit_error is not None
            assert scheduler.is_submitting is False

    asyncio.run(scenario())


def test_client_sends_aliased_stage_update_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        data = {"status": "interview_scheduled"}
        return httpx.Response(200, json={"success": True, "data": data})

    async def scenario() -> None:
        async with WorkflowApiClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as client:
            await client.update_stage(
                "app_1", Stage.interview_scheduled, interview=interview_payload()
            )

    asyncio.run(scenario())
    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == "/workflow/candidates/app_1/stage"
    body = json.loads(request.content)
    assert body["status"] == "interview_scheduled"
    assert body["interviewDetails"]["duration"] == 45
    assert body["interviewDetails"]["time"] == "11:00:00"
    assert "note" not in body
