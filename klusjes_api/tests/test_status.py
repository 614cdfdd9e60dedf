from datetime import datetime, timezone

import pytest

from klusjes_api.status import TaskStatus, completion_time

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
EARLIER = datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)


class TestAdvance:
    def test_cycle_order(self):
        assert TaskStatus.todo.advance() is TaskStatus.in_progress
        assert TaskStatus.in_progress.advance() is TaskStatus.waiting
        assert TaskStatus.waiting.advance() is TaskStatus.completed
        assert TaskStatus.completed.advance() is TaskStatus.todo

    @pytest.mark.parametrize("start", list(TaskStatus))
    @pytest.mark.parametrize("steps", [0, 1, 2, 3, 4, 5, 8, 11])
    def test_advancing_n_times_lands_on_index_plus_n(self, start, steps):
        members = list(TaskStatus)
        status = start
        for _ in range(steps):
            status = status.advance()
        assert status is members[(members.index(start) + steps) % 4]

    def test_wire_values(self):
        assert [s.value for s in TaskStatus] == ["todo", "in-progress", "waiting", "completed"]


class TestCompletionTime:
    def test_entering_completed_stamps_now(self):
        assert completion_time(TaskStatus.waiting, TaskStatus.completed, None, NOW) == NOW

    def test_staying_completed_keeps_stamp(self):
        assert completion_time(TaskStatus.completed, TaskStatus.completed, EARLIER, NOW) == EARLIER

    def test_leaving_completed_clears(self):
        assert completion_time(TaskStatus.completed, TaskStatus.todo, EARLIER, NOW) is None

    def test_accepts_plain_strings(self):
        # The client stores statuses as JSON strings.
        assert completion_time("waiting", "completed", None, "2026-03-01T09:30:00") == "2026-03-01T09:30:00"
        assert completion_time("completed", "todo", "x", "y") is None

    def test_created_directly_as_completed(self):
        assert completion_time(None, TaskStatus.completed, None, NOW) == NOW
