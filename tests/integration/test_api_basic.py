from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.routes import get_app_config
from app.core.settings import PATHS
from app.db.base import Base
from app.db.session import get_db_session
from app.main import app
from app.models import Project  # noqa: F401
from app.schemas.config import AppConfig, WorkflowConfig


@pytest.fixture
def client() -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, class_=Session, autoflush=False)

    def override_db():
        with TestSession() as session:
            yield session

    config = AppConfig(workflow=WorkflowConfig(simulation_mode=True))
    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_app_config] = lambda: config
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _create(client: TestClient, **extra: object) -> dict:
    response = client.post("/api/projects", json={"title": "Morning coffee", "generate_segments": True, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["simulation_mode"] is True
    assert payload["pending_video_tasks"] == 0


def test_config_roundtrip(client: TestClient) -> None:
    backup = PATHS.config_path.read_text(encoding="utf-8") if PATHS.config_path.exists() else None

    try:
        current = client.get("/api/config")
        assert current.status_code == 200
        payload = current.json()
        payload["video"]["poll_interval_s"] = 20
        payload["speech"]["default_voice"] = "nova"

        saved = client.put("/api/config", json=payload)
        assert saved.status_code == 200
        assert saved.json()["video"]["poll_interval_s"] == 20
        assert saved.json()["speech"]["default_voice"] == "nova"
    finally:
        if backup is None:
            PATHS.config_path.unlink(missing_ok=True)
        else:
            PATHS.config_path.write_text(backup, encoding="utf-8")


def test_instruction_crud(client: TestClient) -> None:
    backup = PATHS.instructions_path.read_text(encoding="utf-8") if PATHS.instructions_path.exists() else None

    try:
        saved = client.put("/api/instructions/itest", json={"content": "Two sentences per segment."})
        assert saved.status_code == 200
        assert saved.json()["name"] == "itest"

        listed = client.get("/api/instructions")
        assert {item["name"] for item in listed.json()} >= {"itest", "default"}

        assert client.get("/api/instructions/itest").json()["content"] == "Two sentences per segment."
        assert client.delete("/api/instructions/itest").json()["deleted"] is True
        assert client.get("/api/instructions/itest").status_code == 404
    finally:
        if backup is None:
            PATHS.instructions_path.unlink(missing_ok=True)
        else:
            PATHS.instructions_path.write_text(backup, encoding="utf-8")


def test_create_project_generates_segments(client: TestClient) -> None:
    project = _create(client)

    assert project["current_stage"] == "SCRIPT_GENERATION"
    assert project["status"] == "DRAFT"
    assert len(project["segments"]) == 3
    assert all(segment["script_approval_status"] == "PROCESSING" for segment in project["segments"])
    assert all(segment["overall_status"] == "PROCESSING" for segment in project["segments"])

    listed = client.get("/api/projects")
    assert any(item["id"] == project["id"] for item in listed.json())


def test_regenerate_requires_confirmation(client: TestClient) -> None:
    project = _create(client)

    refused = client.post(f"/api/projects/{project['id']}/segments/generate", json={})
    assert refused.status_code == 409

    confirmed = client.post(f"/api/projects/{project['id']}/segments/generate", json={"confirm": True})
    assert confirmed.status_code == 200
    new_ids = {segment["id"] for segment in confirmed.json()["segments"]}
    assert not new_ids & {segment["id"] for segment in project["segments"]}


def test_batch_approval_rejects_whole_request(client: TestClient) -> None:
    project = _create(client)
    segment = project["segments"][0]
    base = f"/api/projects/{project['id']}/segments/{segment['id']}"

    # Audio is still DRAFT, so approving the script stage must fail as a whole.
    response = client.post(f"{base}/approve", json={"stage": "script"})
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"

    fresh = client.get(f"/api/projects/{project['id']}").json()["segments"][0]
    assert fresh["script_approval_status"] == "PROCESSING"

    assert client.post(f"{base}/audios", json={}).status_code == 200
    approved = client.post(f"{base}/approve", json={"fields": ["scriptApprovalStatus", "audioApprovalStatus"]})
    assert approved.status_code == 200, approved.text
    assert approved.json()["script_approval_status"] == "APPROVED"
    assert approved.json()["audio_approval_status"] == "APPROVED"


def test_stage_flow_to_video(client: TestClient) -> None:
    project = _create(client)
    project_id = project["id"]

    for segment in project["segments"]:
        response = client.post(f"/api/projects/{project_id}/segments/{segment['id']}/audios", json={})
        assert response.status_code == 200

    staged = client.post(f"/api/projects/{project_id}/stages/script/approve")
    assert staged.status_code == 200, staged.text
    assert staged.json()["current_stage"] == "IMAGE_GENERATION"

    segment_id = project["segments"][0]["id"]
    base = f"/api/projects/{project_id}/segments/{segment_id}"
    image = client.post(f"{base}/images", json={"prompt": "steam over a mug"})
    assert image.status_code == 200
    assert image.json()["is_selected"] is True
    assert image.json()["url"].startswith("simulated://")

    selected = client.put(f"{base}/images/{image.json()['id']}/select")
    assert selected.status_code == 200

    task = client.post(f"{base}/videos", json={"duration": 5})
    assert task.status_code == 200, task.text
    task_id = task.json()["task_id"]

    status = client.get(f"/api/videos/tasks/{task_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "processing"
    assert status.json()["poll_again"] is True
    assert status.json()["attempts"] == 1

    blocked = client.post(f"{base}/approve", json={"stage": "video"})
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "precondition_failed"

    canceled = client.post(f"/api/videos/tasks/{task_id}/cancel")
    assert canceled.json()["canceled"] is True
    after = client.get(f"/api/videos/tasks/{task_id}").json()
    assert after["status"] == "failed"
    assert after["error"] == "canceled"
    assert after["poll_again"] is False

    history = client.get(f"/api/projects/{project_id}/history", params={"segment_id": segment_id})
    assert history.status_code == 200
    fields = {event["field"] for event in history.json()}
    assert {"script_approval_status", "audio_approval_status", "image_approval_status"} <= fields


def test_edit_only_while_draft(client: TestClient) -> None:
    project = _create(client)
    segment = project["segments"][0]
    url = f"/api/projects/{project['id']}/segments/{segment['id']}"

    refused = client.patch(url, json={"script": "rewrite"})
    assert refused.status_code == 409

    reset = client.post(f"{url}/reject", json={"stage": "script", "fields": []})
    assert reset.status_code == 409  # audio is DRAFT; nothing changes

    rejected = client.post(f"{url}/transition", json={"fields": ["script_approval_status"], "to_status": "REJECTED"})
    assert rejected.status_code == 200
    drafted = client.post(f"{url}/transition", json={"fields": ["script_approval_status"], "to_status": "DRAFT"})
    assert drafted.status_code == 200

    edited = client.patch(url, json={"script": "rewrite"})
    assert edited.status_code == 200
    assert edited.json()["script"] == "rewrite"


def test_not_found_errors(client: TestClient) -> None:
    missing = client.get("/api/projects/nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"

    assert client.get("/api/videos/tasks/nope").status_code == 404
    assert client.delete("/api/projects/nope").status_code == 404


def test_delete_project(client: TestClient) -> None:
    project = _create(client, generate_segments=False)
    assert project["segments"] == []

    assert client.delete(f"/api/projects/{project['id']}").json()["deleted"] is True
    assert client.get(f"/api/projects/{project['id']}").status_code == 404


def test_update_project(client: TestClient) -> None:
    project = _create(client, generate_segments=False)

    updated = client.patch(f"/api/projects/{project['id']}", json={"title": "Evening tea"})
    assert updated.status_code == 200, updated.text
    assert updated.json()["title"] == "Evening tea"
    assert updated.json()["description"] == project["description"]

    blank = client.patch(f"/api/projects/{project['id']}", json={"title": " "})
    assert blank.status_code == 400
    assert blank.json()["error"] == "invalid_title"
    assert client.patch("/api/projects/nope", json={"title": "x"}).status_code == 404


def test_generate_ideas_avoids_existing_titles(client: TestClient) -> None:
    first = client.post("/api/ideas", json={"topic": "lighthouses", "count": 2})
    assert first.status_code == 200, first.text
    titles = [idea["title"] for idea in first.json()]
    assert len(titles) == 2

    _create(client, title=titles[0], generate_segments=False)
    again = client.post("/api/ideas", json={"topic": "lighthouses", "count": 3, "existing_ideas": [titles[1]]})
    assert len(again.json()) == 3
    assert not set(titles) & {idea["title"] for idea in again.json()}

    assert client.post("/api/ideas", json={"topic": "  "}).status_code == 400
    assert client.post("/api/ideas", json={"topic": "x", "count": 0}).status_code == 422


def test_model_and_voice_catalog(client: TestClient) -> None:
    models = client.get("/api/models").json()
    assert set(models) == {"script", "speech", "image", "video"}
    assert any(option["is_default"] for option in models["script"])

    voices = client.get("/api/voices").json()
    assert [voice["value"] for voice in voices if voice["is_default"]] == ["alloy"]
