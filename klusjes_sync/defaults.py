"""Built-in dataset shown when neither the API nor the local cache has data."""

from datetime import datetime, timezone
from typing import Optional

from klusjes_api.sample_data import DEFAULT_ROOM_COLOR, SAMPLE_ROOMS, SAMPLE_TASKS
from klusjes_api.status import TaskStatus


def default_rooms(now: Optional[datetime] = None) -> list[dict]:
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    return [
        {
            "id": room["id"],
            "name": room["name"],
            "description": room.get("description", ""),
            "color": room.get("color", DEFAULT_ROOM_COLOR),
            "createdAt": created_at,
        }
        for room in SAMPLE_ROOMS
    ]


def default_tasks(now: Optional[datetime] = None) -> list[dict]:
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    tasks = []
    for task in SAMPLE_TASKS:
        status = TaskStatus(task["status"])
        tasks.append({
            "id": task["id"],
            "roomId": task["room_id"],
            "title": task["title"],
            "description": task.get("description", ""),
            "priority": task.get("priority", False),
            "status": status.value,
            "dueDate": None,
            "estimatedDuration": task.get("estimated_duration"),
            "createdAt": created_at,
            "completedAt": created_at if status is TaskStatus.completed else None,
            "photos": [],
        })
    return tasks
