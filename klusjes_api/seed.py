"""Reset the store to the sample household."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlmodel import Session

from klusjes_api.models import ROOMS, TASKS, Photo, Room, Task
from klusjes_api.sample_data import SAMPLE_ROOMS, SAMPLE_TASKS
from klusjes_api.status import TaskStatus
from klusjes_api.store import bump_watermarks

logger = logging.getLogger(__name__)


def seed_sample_data(session: Session) -> dict[str, int]:
    """Replace every room, task and photo row with the sample data.

    Photo files are left on disk; the sample set carries no photos.
    """
    now = datetime.now(timezone.utc)
    session.execute(delete(Photo))
    session.execute(delete(Task))
    session.execute(delete(Room))
    # Distinct creation times keep the listing order stable.
    for index, room in enumerate(SAMPLE_ROOMS):
        session.add(Room(**room, created_at=now + timedelta(milliseconds=index)))
    session.flush()
    for index, task in enumerate(SAMPLE_TASKS):
        created_at = now + timedelta(milliseconds=index)
        completed_at = created_at if task["status"] is TaskStatus.completed else None
        session.add(Task(**task, created_at=created_at, completed_at=completed_at))
    bump_watermarks(session, ROOMS, TASKS)
    session.commit()
    logger.info("Seeded %d rooms and %d tasks", len(SAMPLE_ROOMS), len(SAMPLE_TASKS))
    return {"rooms_created": len(SAMPLE_ROOMS), "tasks_created": len(SAMPLE_TASKS)}
