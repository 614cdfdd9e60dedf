"""Record store operations behind the mutation API and the change feed.

Every function takes a SQLModel session and returns canonical read models.
Each mutation commits once, bumping the watermark of every collection it
touched in the same transaction. Photo binaries are removed only after the
rows are gone, so a failed commit never loses files.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from klusjes_api.errors import NotFoundError, ValidationError
from klusjes_api.models import (
    ROOMS,
    TASKS,
    Photo,
    PhotoRead,
    Room,
    RoomCreate,
    RoomRead,
    RoomUpdate,
    Task,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    Watermark,
    utcnow,
)
from klusjes_api.status import TaskStatus, completion_time
from klusjes_api.uploads import PhotoStore

logger = logging.getLogger(__name__)


# ─── Watermarks ─────────────────────────────────────────────────────


def bump_watermarks(session: Session, *collections: str) -> None:
    now = utcnow()
    for collection in collections:
        mark = session.get(Watermark, collection)
        if mark is None:
            mark = Watermark(collection=collection)
        mark.version += 1
        mark.updated_at = now
        session.add(mark)


def read_watermarks(session: Session) -> dict[str, int]:
    """Return the current version of each collection (0 when never modified)."""
    versions = {ROOMS: 0, TASKS: 0}
    for mark in session.exec(select(Watermark)).all():
        versions[mark.collection] = mark.version
    return versions


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


# ─── Rooms ──────────────────────────────────────────────────────────


def _require_room(session: Session, room_id: str) -> Room:
    room = session.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found")
    return room


def list_rooms(session: Session) -> list[RoomRead]:
    """All rooms, oldest first."""
    rooms = session.exec(select(Room).order_by(Room.created_at.asc())).all()
    return [RoomRead.model_validate(room) for room in rooms]


def create_room(session: Session, body: RoomCreate) -> RoomRead:
    if _blank(body.name):
        raise ValidationError("Name is required")
    room = Room(name=body.name.strip(), description=body.description, color=body.color)
    session.add(room)
    bump_watermarks(session, ROOMS)
    session.commit()
    session.refresh(room)
    logger.info("Created room %s", room.id)
    return RoomRead.model_validate(room)


def update_room(session: Session, body: RoomUpdate) -> RoomRead:
    """Replace the editable fields of a room with the values in *body*."""
    if _blank(body.id):
        raise ValidationError("ID is required")
    if _blank(body.name):
        raise ValidationError("Name is required")
    room = _require_room(session, body.id)
    room.name = body.name.strip()
    room.description = body.description
    room.color = body.color
    session.add(room)
    bump_watermarks(session, ROOMS)
    session.commit()
    session.refresh(room)
    return RoomRead.model_validate(room)


def delete_room(session: Session, room_id: Optional[str], photo_store: PhotoStore) -> None:
    """Delete a room with all of its tasks, photos and photo files."""
    if _blank(room_id):
        raise ValidationError("ID is required")
    room = _require_room(session, room_id)
    task_ids = list(session.exec(select(Task.id).where(Task.room_id == room_id)).all())
    urls = _delete_tasks(session, task_ids)
    session.delete(room)
    bump_watermarks(session, ROOMS, TASKS)
    session.commit()
    _remove_files(photo_store, urls)
    logger.info("Deleted room %s with %d task(s)", room_id, len(task_ids))


# ─── Tasks ──────────────────────────────────────────────────────────


def _require_task(session: Session, task_id: str) -> Task:
    task = session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


def _photos_by_task(session: Session, task_ids: list[str]) -> dict[str, list[PhotoRead]]:
    grouped: dict[str, list[PhotoRead]] = defaultdict(list)
    if not task_ids:
        return grouped
    statement = (
        select(Photo)
        .where(Photo.task_id.in_(task_ids))
        .order_by(Photo.created_at.desc())
    )
    for photo in session.exec(statement).all():
        grouped[photo.task_id].append(PhotoRead.model_validate(photo))
    return grouped


def _task_read(task: Task, photos: list[PhotoRead]) -> TaskRead:
    read = TaskRead.model_validate(task)
    read.photos = photos
    return read


def list_tasks(session: Session, room_id: Optional[str] = None) -> list[TaskRead]:
    """Tasks with their photos; priority tasks first, then oldest first."""
    statement = select(Task)
    if room_id:
        statement = statement.where(Task.room_id == room_id)
    statement = statement.order_by(Task.priority.desc(), Task.created_at.asc())
    tasks = session.exec(statement).all()
    photos = _photos_by_task(session, [task.id for task in tasks])
    return [_task_read(task, photos.get(task.id, [])) for task in tasks]


def get_task(session: Session, task_id: str) -> TaskRead:
    task = _require_task(session, task_id)
    return _task_read(task, _photos_by_task(session, [task.id]).get(task.id, []))


def create_task(session: Session, body: TaskCreate, now: Optional[datetime] = None) -> TaskRead:
    if _blank(body.title) or _blank(body.room_id):
        raise ValidationError("Title and roomId are required")
    _require_room(session, body.room_id)
    now = now or utcnow()
    task = Task(
        room_id=body.room_id,
        title=body.title.strip(),
        description=body.description,
        priority=body.priority,
        status=body.status,
        due_date=body.due_date,
        estimated_duration=body.estimated_duration,
        created_at=now,
        completed_at=completion_time(None, body.status, None, now),
    )
    session.add(task)
    bump_watermarks(session, TASKS)
    session.commit()
    session.refresh(task)
    logger.info("Created task %s in room %s", task.id, task.room_id)
    return _task_read(task, [])


def update_task(session: Session, body: TaskUpdate, now: Optional[datetime] = None) -> TaskRead:
    """Replace a task's editable fields and recompute ``completed_at``."""
    if _blank(body.id):
        raise ValidationError("ID is required")
    if _blank(body.title):
        raise ValidationError("Title is required")
    task = _require_task(session, body.id)
    if body.room_id and body.room_id != task.room_id:
        _require_room(session, body.room_id)
        task.room_id = body.room_id

    previous = task.status
    task.title = body.title.strip()
    task.description = body.description
    task.priority = body.priority
    task.status = body.status
    task.due_date = body.due_date
    task.estimated_duration = body.estimated_duration
    task.completed_at = completion_time(previous, body.status, task.completed_at, now or utcnow())

    session.add(task)
    bump_watermarks(session, TASKS)
    session.commit()
    session.refresh(task)
    if previous != task.status:
        logger.info("Task %s: %s -> %s", task.id, TaskStatus(previous).value, task.status.value)
    return get_task(session, task.id)


def _delete_tasks(session: Session, task_ids: list[str]) -> list[str]:
    """Stage deletion of tasks and their photo rows; returns the photo urls."""
    if not task_ids:
        return []
    photos = session.exec(select(Photo).where(Photo.task_id.in_(task_ids))).all()
    urls = [photo.url for photo in photos]
    for photo in photos:
        session.delete(photo)
    # No relationships are mapped, so flush children before their parents.
    session.flush()
    for task in session.exec(select(Task).where(Task.id.in_(task_ids))).all():
        session.delete(task)
    session.flush()
    return urls


def _remove_files(photo_store: PhotoStore, urls: list[str]) -> None:
    for url in urls:
        try:
            photo_store.delete(url)
        except OSError:
            logger.exception("Could not remove photo file %s", url)


def delete_task(session: Session, task_id: Optional[str], photo_store: PhotoStore) -> None:
    if _blank(task_id):
        raise ValidationError("ID is required")
    _require_task(session, task_id)
    urls = _delete_tasks(session, [task_id])
    bump_watermarks(session, TASKS)
    session.commit()
    _remove_files(photo_store, urls)


# ─── Photos ─────────────────────────────────────────────────────────


def list_photos(session: Session, task_id: Optional[str]) -> list[PhotoRead]:
    if _blank(task_id):
        raise ValidationError("Task ID is required")
    return _photos_by_task(session, [task_id]).get(task_id, [])


def require_task(session: Session, task_id: Optional[str]) -> None:
    """Raise unless *task_id* names a live task; used before storing an upload."""
    if _blank(task_id):
        raise ValidationError("Task ID is required")
    _require_task(session, task_id)


def add_photo(session: Session, photo_id: str, task_id: str, url: str) -> PhotoRead:
    photo = Photo(id=photo_id, task_id=task_id, url=url)
    session.add(photo)
    bump_watermarks(session, TASKS)
    session.commit()
    session.refresh(photo)
    return PhotoRead.model_validate(photo)


def delete_photo(session: Session, photo_id: Optional[str], photo_store: PhotoStore) -> None:
    """Delete the photo row and then its file."""
    if _blank(photo_id):
        raise ValidationError("Photo ID is required")
    photo = session.get(Photo, photo_id)
    if photo is None:
        raise NotFoundError("Photo not found")
    url = photo.url
    session.delete(photo)
    bump_watermarks(session, TASKS)
    session.commit()
    _remove_files(photo_store, [url])
