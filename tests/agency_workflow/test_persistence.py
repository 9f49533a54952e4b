from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from agency_workflow.app.main import create_app
from agency_workflow.app.persistence import SqlitePersistence


def _new_client(monkeypatch, db_path: Path) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "true")
    monkeypatch.setenv("PERSISTENCE_DB_PATH", str(db_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{str(db_path).replace(chr(92), '/')}")
    return TestClient(create_app())


def test_application_stage_and_interview_persist_across_restart(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "agency_workflow.sqlite3"
    first_client = _new_client(monkeypatch, db_path)
    created = first_client.post(
        "/workflow/applications",
        json={"candidate_id": "cand_1", "job_id": "job_1", "candidate_name": "Sita Rai"},
    ).json()["data"]
    first_client.put(f"/workflow/candidates/{created['id']}/stage", json={"status": "shortlisted"})
    scheduled = first_client.put(
        f"/workflow/candidates/{created['id']}/stage",
        json={
            "status": "interview_scheduled",
            "interviewDetails": {
                "date": (date.today() + timedelta(days=3)).isoformat(),
                "time": "10:00",
                "location": "Office",
                "interviewer": "Asha",
            },
        },
    )
    assert scheduled.status_code == 200

    restarted_client = _new_client(monkeypatch, db_path)
    listed = restarted_client.get("/workflow/candidates")
    assert listed.status_code == 200
    candidates = listed.json()["data"]["candidates"]
    assert [item["id"] for item in candidates] == [created["id"]]
    assert candidates[0]["status"] == "interview_scheduled"
    assert candidates[0]["interview"]["location"] == "Office"

    history = restarted_client.get(f"/workflow/candidates/{created['id']}/history").json()
    assert [event["to_stage"] for event in history] == [
        "applied",
        "shortlisted",
        "interview_scheduled",
    ]


def test_audit_events_are_written_to_their_own_table(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "agency_workflow.sqlite3"
    client = _new_client(monkeypatch, db_path)
    created = client.post(
        "/workflow/applications",
        json={"candidate_id": "cand_9", "job_id": "job_1", "candidate_name": "Hari Thapa"},
    ).json()["data"]
    client.put(
        f"/workflow/candidates/{created['id']}/stage",
        json={"status": "shortlisted", "note": "called back"},
    )

    persistence = SqlitePersistence(f"sqlite:///{db_path.as_posix()}")
    events = persistence.list_audit_events(created["id"])
    assert [event.to_stage.value for event in events] == ["applied", "shortlisted"]
    assert events[1].reason == "called back"


def test_sqlite_url_creates_missing_parent_directories(tmp_path) -> None:
    db_path = tmp_path / "nested" / "agency_workflow.sqlite3"
    persistence = SqlitePersistence(f"sqlite:///{db_path.as_posix()}")
    assert db_path.parent.exists()
    assert persistence.ping()
