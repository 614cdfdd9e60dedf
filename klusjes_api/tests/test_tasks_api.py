"""Tests for task CRUD endpoints, status progression and cascade deletion."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from klusjes_api import store
from klusjes_api.models import Photo, Task, TaskCreate
from klusjes_api.status import TaskStatus
from klusjes_api.uploads import PhotoStore

T0 = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)


def _create_task(client: TestClient, room_id: str, **fields) -> dict:
    response = client.post("/api/tasks/", json={"title": "Afwas", "roomId": room_id, **fields})
    assert response.status_code == 201, response.text
    return response.json()


def _advance(client: TestClient, task: dict) -> dict:
    next_status = TaskStatus(task["status"]).advance().value
    response = client.put("/api/tasks/", json={**task, "status": next_status})
    assert response.status_code == 200, response.text
    return response.json()["task"]


def test_create_task_defaults(client: TestClient, room: dict):
    task = _create_task(client, room["id"])
    assert task["id"].startswith("task_")
    assert task["roomId"] == room["id"]
    assert task["status"] == "todo"
    assert task["priority"] is False
    assert task["description"] == ""
    assert task["photos"] == []
    assert task["completedAt"] is None
    assert task["dueDate"] is None


def test_create_task_requires_title_and_room(client: TestClient, room: dict, session: Session):
    for body in ({"roomId": room["id"]}, {"title": "Ramen lappen"}, {"title": " ", "roomId": room["id"]}):
        response = client.post("/api/tasks/", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Title and roomId are required"}
    assert session.exec(select(Task)).all() == []


def test_create_task_in_unknown_room_returns_404(client: TestClient):
    response = client.post("/api/tasks/", json={"title": "Afwas", "roomId": "room_missing"})
    assert response.status_code == 404
    assert response.json() == {"error": "Room not found"}


def test_create_task_rejects_unknown_status(client: TestClient, room: dict):
    response = client.post("/api/tasks/", json={"title": "Afwas", "roomId": room["id"], "status": "done"})
    assert response.status_code == 400


@pytest.mark.parametrize("duration", [0, -5])
def test_create_task_rejects_non_positive_duration(client: TestClient, room: dict, duration: int):
    response = client.post(
        "/api/tasks/",
        json={"title": "Afwas", "roomId": room["id"], "estimatedDuration": duration},
    )
    assert response.status_code == 400


def test_due_date_keeps_only_the_date(client: TestClient, room: dict):
    task = _create_task(client, room["id"], dueDate="2026-04-01T10:00:00.000Z")
    assert task["dueDate"] == "2026-04-01"


def test_created_as_completed_gets_completed_at(client: TestClient, room: dict):
    task = _create_task(client, room["id"], status="completed")
    assert task["completedAt"] is not None


def test_keuken_afwas_scenario(client: TestClient):
    """Create, advance to completed, then delete the room."""
    room = client.post("/api/rooms/", json={"name": "Keuken"}).json()
    task = _create_task(client, room["id"])
    assert task["status"] == "todo"
    assert task["photos"] == []

    for _ in range(3):
        task = _advance(client, task)
    assert task["status"] == "completed"
    assert task["completedAt"] is not None

    client.request("DELETE", "/api/rooms/", json={"id": room["id"]})
    assert client.get("/api/tasks/").json() == []


def test_completed_at_tracks_status(client: TestClient, room: dict):
    task = _create_task(client, room["id"], status="waiting")
    task = _advance(client, task)
    stamped = task["completedAt"]
    assert stamped is not None

    # Re-saving a completed task keeps its original completion time.
    response = client.put("/api/tasks/", json={**task, "title": "Afwas + drogen"})
    task = response.json()["task"]
    assert task["completedAt"] == stamped

    task = _advance(client, task)
    assert task["status"] == "todo"
    assert task["completedAt"] is None


def test_client_supplied_completed_at_is_ignored(client: TestClient, room: dict):
    task = _create_task(client, room["id"])
    response = client.put("/api/tasks/", json={**task, "completedAt": "2020-01-01T00:00:00Z"})
    assert response.json()["task"]["completedAt"] is None


def test_update_task_is_full_replace(client: TestClient, room: dict):
    task = _create_task(client, room["id"], description="Alles", priority=True, estimatedDuration=20)
    response = client.put("/api/tasks/", json={"id": task["id"], "title": "Afwas"})
    updated = response.json()["task"]
    assert updated["description"] == ""
    assert updated["priority"] is False
    assert updated["estimatedDuration"] is None
    assert updated["roomId"] == room["id"]


def test_update_task_can_move_rooms(client: TestClient, room: dict):
    other = client.post("/api/rooms/", json={"name": "Bijkeuken"}).json()
    task = _create_task(client, room["id"])
    response = client.put("/api/tasks/", json={**task, "roomId": other["id"]})
    assert response.json()["task"]["roomId"] == other["id"]

    response = client.put("/api/tasks/", json={**task, "roomId": "room_missing"})
    assert response.status_code == 404


def test_update_task_errors(client: TestClient, room: dict):
    assert client.put("/api/tasks/", json={"title": "x"}).json() == {"error": "ID is required"}
    assert client.put("/api/tasks/", json={"id": "task_missing", "title": "x"}).status_code == 404
    task = _create_task(client, room["id"])
    assert client.put("/api/tasks/", json={"id": task["id"], "title": ""}).status_code == 400


def test_list_tasks_priority_first_then_oldest(session: Session, client: TestClient, room: dict):
    for offset, (title, priority) in enumerate([("a", False), ("b", True), ("c", False), ("d", True)]):
        store.create_task(
            session,
            TaskCreate(title=title, room_id=room["id"], priority=priority),
            now=T0 + timedelta(minutes=offset),
        )
    titles = [task["title"] for task in client.get("/api/tasks/").json()]
    assert titles == ["b", "d", "a", "c"]


def test_list_tasks_filters_by_room(client: TestClient, room: dict):
    other = client.post("/api/rooms/", json={"name": "Zolder"}).json()
    _create_task(client, room["id"], title="Afwas")
    _create_task(client, other["id"], title="Opruimen")
    tasks = client.get("/api/tasks/", params={"roomId": other["id"]}).json()
    assert [task["title"] for task in tasks] == ["Opruimen"]


def test_delete_task(client: TestClient, room: dict):
    task = _create_task(client, room["id"])
    response = client.request("DELETE", "/api/tasks/", json={"id": task["id"]})
    assert response.json() == {"success": True}
    assert client.get("/api/tasks/").json() == []
    assert client.request("DELETE", "/api/tasks/", json={"id": task["id"]}).status_code == 404


def test_delete_room_cascades_to_tasks_photos_and_files(
    client: TestClient, session: Session, photo_store: PhotoStore, room: dict
):
    task = _create_task(client, room["id"])
    upload = client.post(
        "/api/upload",
        data={"taskId": task["id"]},
        files={"file": ("vaat.jpg", b"\xff\xd8\xff\xe0jpeg", "image/jpeg")},
    )
    assert upload.status_code == 201
    path = photo_store.path_for(upload.json()["url"])
    assert path.exists()

    client.request("DELETE", "/api/rooms/", json={"id": room["id"]})

    session.expire_all()
    assert session.exec(select(Task)).all() == []
    assert session.exec(select(Photo)).all() == []
    assert not path.exists()


def test_task_mutations_bump_only_tasks_watermark(client: TestClient, session: Session, room: dict):
    before = store.read_watermarks(session)
    _create_task(client, room["id"])
    after = store.read_watermarks(session)
    assert after["tasks"] == before["tasks"] + 1
    assert after["rooms"] == before["rooms"]


def test_room_delete_bumps_both_watermarks(client: TestClient, session: Session, room: dict):
    before = store.read_watermarks(session)
    client.request("DELETE", "/api/rooms/", json={"id": room["id"]})
    after = store.read_watermarks(session)
    assert after["rooms"] == before["rooms"] + 1
    assert after["tasks"] == before["tasks"] + 1
