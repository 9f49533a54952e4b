from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agency_workflow.app.main import create_app


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    app = create_app()
    return TestClient(app)
