"""Task endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from klusjes_api import store
from klusjes_api.database import get_session
from klusjes_api.errors import storage_errors
from klusjes_api.models import Deleted, DeleteRequest, TaskCreate, TaskRead, TaskUpdate, TaskUpdated
from klusjes_api.uploads import PhotoStore, get_photo_store

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("/")
def list_tasks(
    room_id: Optional[str] = Query(default=None, alias="roomId"),
    session: Session = Depends(get_session),
) -> list[TaskRead]:
    """List tasks, optionally for one room. Priority tasks come first, then oldest first."""
    with storage_errors(session, "Failed to fetch tasks"):
        return store.list_tasks(session, room_id)


@router.post("/", status_code=201)
def create_task(body: TaskCreate, session: Session = Depends(get_session)) -> TaskRead:
    """Create a task in an existing room."""
    with storage_errors(session, "Failed to create task"):
        return store.create_task(session, body)


@router.put("/")
def update_task(body: TaskUpdate, session: Session = Depends(get_session)) -> TaskUpdated:
    """Replace a task's fields. ``completedAt`` is always computed here."""
    with storage_errors(session, "Failed to update task"):
        return TaskUpdated(task=store.update_task(session, body))


@router.delete("/")
def delete_task(
    body: DeleteRequest,
    session: Session = Depends(get_session),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> Deleted:
    """Delete a task and its photos."""
    with storage_errors(session, "Failed to delete task"):
        store.delete_task(session, body.id, photo_store)
    return Deleted()
