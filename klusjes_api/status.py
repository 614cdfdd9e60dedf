"""Task status cycle and the completion-timestamp rule.

Both the API and the sync client import this module so the two sides agree
on how ``completedAt`` follows ``status``.
"""

from enum import Enum


class TaskStatus(str, Enum):
    todo = "todo"
    in_progress = "in-progress"
    waiting = "waiting"
    completed = "completed"

    def advance(self) -> "TaskStatus":
        """Return the next status in the cycle, wrapping completed -> todo."""
        members = list(TaskStatus)
        return members[(members.index(self) + 1) % len(members)]


def completion_time(previous, current, completed_at, now):
    """Return the ``completedAt`` value after a status change.

    Entering ``completed`` stamps *now*, staying in ``completed`` keeps the
    existing stamp, and any other status clears it.
    """
    if TaskStatus(current) is not TaskStatus.completed:
        return None
    if previous is not None and TaskStatus(previous) is TaskStatus.completed and completed_at is not None:
        return completed_at
    return now
