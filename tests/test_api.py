"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from app import app
from core.dependencies import get_gradebook_session
from utils.session_manager import GradebookSession


@pytest.fixture
def session(persistence, populated_manager):
    session = GradebookSession(persistence, None, auto_sync=False)
    session.manager.replace_document(populated_manager.document)
    return session


@pytest.fixture
def client(session):
    app.dependency_overrides[get_gradebook_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == "6.1.0"
    assert body["timestamp"]


def test_sync_status_for_local_session(client):
    response = client.get("/api/sync/status")
    assert response.status_code == 200
    assert response.json()["status"] == "idle"
    assert response.json()["remoteBacked"] is False


def test_sync_now_is_noop_without_remote(client):
    response = client.post("/api/sync")
    assert response.status_code == 200
    assert response.json()["lastSync"] is None


def test_lesson_export_payload(client, session):
    classroom_id = session.document.classrooms[0].id
    response = client.get(f"/api/classrooms/{classroom_id}/lessons/1/export")
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "lesson"
    assert body["className"] == "Year 9 English"
    assert [r["studentName"] for r in body["rows"]] == ["Ada", "Bea", "Charlie"]


def test_class_export_payload(client, session):
    classroom_id = session.document.classrooms[0].id
    body = client.get(f"/api/classrooms/{classroom_id}/export").json()
    assert body["type"] == "class"
    assert body["totalLessons"] == 1
    assert body["rows"][0]["attendanceRate"] == 100


def test_export_of_unknown_classroom_is_404(client):
    assert client.get("/api/classrooms/class_0_missing/export").status_code == 404
    assert client.get("/api/classrooms/class_0_missing/lessons/1/export").status_code == 404


def test_validate_export(client, session):
    classroom_id = session.document.classrooms[0].id
    payload = client.get(f"/api/classrooms/{classroom_id}/lessons/1/export").json()
    response = client.post("/api/export/validate", json=payload)
    assert response.status_code == 200
    assert response.json() == {"valid": True, "type": "lesson", "rows": 3}

    response = client.post("/api/export/validate", json={"type": "lesson", "rows": []})
    assert response.status_code == 400
    assert "Missing className" in response.json()["detail"]
