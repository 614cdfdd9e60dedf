"""Ephemeral view state: which forms are open and what is being edited.

Never persisted; a fresh :class:`UIState` is the initial screen.
"""

import copy
from typing import Optional


class UIState:
    def __init__(self) -> None:
        self.task_form_open = False
        self.task_form_room_id: Optional[str] = None
        self.room_form_open = False
        self.editing_task: Optional[dict] = None

    def open_task_form(self, room_id: Optional[str] = None) -> None:
        """Open the new-task form, optionally preselecting a room."""
        self.task_form_open = True
        self.task_form_room_id = room_id

    def close_task_form(self) -> None:
        self.task_form_open = False
        self.task_form_room_id = None

    def open_room_form(self) -> None:
        self.room_form_open = True

    def close_room_form(self) -> None:
        self.room_form_open = False

    def edit_task(self, task: dict) -> None:
        self.editing_task = copy.deepcopy(task)

    def close_task_editor(self) -> None:
        self.editing_task = None

    def reset(self) -> None:
        self.close_task_form()
        self.close_room_form()
        self.close_task_editor()

    def snapshot(self) -> dict:
        return {
            "taskFormOpen": self.task_form_open,
            "taskFormRoomId": self.task_form_room_id,
            "roomFormOpen": self.room_form_open,
            "editingTask": copy.deepcopy(self.editing_task),
        }
