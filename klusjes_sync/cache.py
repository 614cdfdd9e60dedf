"""Client-side cache of rooms and tasks.

The cache is the single place the client reads from. Background refreshes
and change-feed snapshots replace a whole collection at once (last snapshot
wins); entities with a live pending mark are the only exception, so an
optimistic edit is not undone by a snapshot that predates it.

Every write persists the affected collection to the storage backend and
notifies subscribers after the lock is released.
"""

import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from klusjes_api.status import TaskStatus

logger = logging.getLogger(__name__)

ROOMS = "rooms"
TASKS = "tasks"

STORAGE_KEYS = {
    ROOMS: "klusjes-rooms",
    TASKS: "klusjes-tasks",
}

UPSERT = "upsert"
DELETE = "delete"

DEFAULT_PENDING_TTL = 30.0

Listener = Callable[[str], None]


@dataclass
class PendingMark:
    kind: str
    pinned: bool
    since: float


class ClientCache:
    """Thread-safe rooms/tasks store with optimistic pending marks.

    Args:
        storage: Backend with ``get``/``set``/``remove`` (see ``klusjes_sync.storage``).
        clock: Monotonic clock used to expire timed pending marks.
        pending_ttl: Seconds an unpinned mark protects its entity.
    """

    def __init__(
        self,
        storage,
        clock: Callable[[], float] = time.monotonic,
        pending_ttl: float = DEFAULT_PENDING_TTL,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._pending_ttl = pending_ttl
        self._lock = threading.Lock()
        self._data: dict[str, list[dict]] = {ROOMS: [], TASKS: []}
        self._pending: dict[tuple[str, str], PendingMark] = {}
        self._listeners: list[Listener] = []

    # -- reads ---------------------------------------------------------------

    def rooms(self) -> list[dict]:
        with self._lock:
            return copy.deepcopy(self._data[ROOMS])

    def tasks(self, room_id: Optional[str] = None) -> list[dict]:
        """Tasks in display order: priority first, otherwise in stored order."""
        with self._lock:
            tasks = [t for t in self._data[TASKS] if room_id is None or t.get("roomId") == room_id]
            tasks = sorted(tasks, key=lambda t: not t.get("priority"))
            return copy.deepcopy(tasks)

    def get_room(self, room_id: str) -> Optional[dict]:
        with self._lock:
            return copy.deepcopy(self._find(ROOMS, room_id))

    def get_task(self, task_id: str) -> Optional[dict]:
        with self._lock:
            return copy.deepcopy(self._find(TASKS, task_id))

    def task_stats(self, room_id: Optional[str] = None) -> dict:
        tasks = self.tasks(room_id)
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            try:
                counts[TaskStatus(task.get("status"))] += 1
            except ValueError:
                continue
        total = len(tasks)
        completed = counts[TaskStatus.completed]
        return {
            "total": total,
            "todo": counts[TaskStatus.todo],
            "inProgress": counts[TaskStatus.in_progress],
            "waiting": counts[TaskStatus.waiting],
            "completed": completed,
            "priority": sum(1 for t in tasks if t.get("priority") and t.get("status") != TaskStatus.completed.value),
            "completionRate": round(completed / total * 100) if total else 0,
        }

    def is_pending(self, collection: str, entity_id: str) -> bool:
        with self._lock:
            return self._live_mark(collection, entity_id) is not None

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._pending) if self._live_mark(*key) is not None)

    # -- writes --------------------------------------------------------------

    def upsert(self, collection: str, entity: dict) -> None:
        """Insert *entity* or replace the entry with the same id."""
        with self._lock:
            self._put(collection, copy.deepcopy(entity))
            self._persist(collection)
        self._notify(collection)

    def remove(self, collection: str, entity_id: str) -> Optional[dict]:
        with self._lock:
            removed = self._take(collection, entity_id)
            self._persist(collection)
        self._notify(collection)
        return removed

    def remove_room_tasks(self, room_id: str) -> list[str]:
        """Drop every task of *room_id*; returns the removed task ids."""
        with self._lock:
            removed = [t["id"] for t in self._data[TASKS] if t.get("roomId") == room_id]
            self._data[TASKS] = [t for t in self._data[TASKS] if t.get("roomId") != room_id]
            self._persist(TASKS)
        self._notify(TASKS)
        return removed

    def mark_pending(self, collection: str, entity_id: str, kind: str, pinned: bool = False) -> None:
        """Protect *entity_id* from snapshots until confirmed (or, unpinned, until the TTL passes)."""
        with self._lock:
            self._pending[(collection, entity_id)] = PendingMark(kind=kind, pinned=pinned, since=self._clock())

    def clear_pending(self, collection: str, entity_id: str) -> None:
        with self._lock:
            self._pending.pop((collection, entity_id), None)

    def apply_snapshot(self, collection: str, entries: list[dict]) -> None:
        """Replace *collection* with a server snapshot, keeping live pending entities.

        Subscribers are only notified when the collection actually changed.
        """
        with self._lock:
            local = {e["id"]: e for e in self._data[collection]}
            merged: list[dict] = []
            seen: set[str] = set()
            for entry in entries:
                entity_id = entry.get("id")
                seen.add(entity_id)
                mark = self._live_mark(collection, entity_id)
                if mark is None:
                    merged.append(copy.deepcopy(entry))
                elif mark.kind == UPSERT:
                    merged.append(local.get(entity_id, copy.deepcopy(entry)))
                # pending deletes stay removed
            for entity_id, entity in local.items():
                if entity_id in seen:
                    continue
                mark = self._live_mark(collection, entity_id)
                if mark is not None and mark.kind == UPSERT:
                    merged.append(entity)
            if merged == self._data[collection]:
                return
            self._data[collection] = merged
            self._persist(collection)
        self._notify(collection)

    def confirm(self, collection: str, entity: dict, local_id: Optional[str] = None) -> None:
        """Replace the optimistic entity with the server's canonical one.

        When *local_id* differs from the canonical id, the local entity is
        renamed first (see :meth:`remap_id`).
        """
        entity_id = entity["id"]
        touched = {collection}
        with self._lock:
            if local_id and local_id != entity_id:
                touched |= self._rename(collection, local_id, entity_id)
                self._pending.pop((collection, local_id), None)
            self._put(collection, copy.deepcopy(entity))
            self._pending.pop((collection, entity_id), None)
            for name in touched:
                self._persist(name)
        for name in sorted(touched):
            self._notify(name)

    def remap_id(self, collection: str, old_id: str, new_id: str) -> None:
        """Rename an entity and every reference to it (a room's tasks follow it)."""
        with self._lock:
            touched = self._rename(collection, old_id, new_id)
            for name in touched:
                self._persist(name)
        for name in sorted(touched):
            self._notify(name)

    # -- persistence fallback ------------------------------------------------

    def load_persisted(self, collection: str) -> bool:
        """Load *collection* from storage. Returns False when nothing was stored."""
        stored = self._storage.get(STORAGE_KEYS[collection])
        if not isinstance(stored, list):
            return False
        with self._lock:
            self._data[collection] = [e for e in stored if isinstance(e, dict) and "id" in e]
        self._notify(collection)
        return True

    def seed(self, collection: str, entries: list[dict]) -> None:
        with self._lock:
            self._data[collection] = copy.deepcopy(entries)
            self._persist(collection)
        self._notify(collection)

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener(collection)* after every change; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -- private helpers (caller holds the lock) -----------------------------

    def _find(self, collection: str, entity_id: str) -> Optional[dict]:
        for entity in self._data[collection]:
            if entity.get("id") == entity_id:
                return entity
        return None

    def _put(self, collection: str, entity: dict) -> None:
        entries = self._data[collection]
        for index, existing in enumerate(entries):
            if existing.get("id") == entity["id"]:
                entries[index] = entity
                return
        entries.append(entity)

    def _take(self, collection: str, entity_id: str) -> Optional[dict]:
        entity = self._find(collection, entity_id)
        if entity is not None:
            self._data[collection] = [e for e in self._data[collection] if e.get("id") != entity_id]
        return entity

    def _rename(self, collection: str, old_id: str, new_id: str) -> set[str]:
        touched = set()
        entity = self._find(collection, old_id)
        if entity is not None:
            # A snapshot may already hold the server copy under the new id.
            self._take(collection, new_id)
            entity["id"] = new_id
            touched.add(collection)
        mark = self._pending.pop((collection, old_id), None)
        if mark is not None:
            self._pending[(collection, new_id)] = mark
        if collection == ROOMS:
            for task in self._data[TASKS]:
                if task.get("roomId") == old_id:
                    task["roomId"] = new_id
                    touched.add(TASKS)
        return touched

    def _live_mark(self, collection: str, entity_id: str) -> Optional[PendingMark]:
        mark = self._pending.get((collection, entity_id))
        if mark is None:
            return None
        if not mark.pinned and self._clock() - mark.since > self._pending_ttl:
            del self._pending[(collection, entity_id)]
            logger.debug("Pending mark for %s %s expired", collection, entity_id)
            return None
        return mark

    def _persist(self, collection: str) -> None:
        self._storage.set(STORAGE_KEYS[collection], self._data[collection])

    def _notify(self, collection: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(collection)
            except Exception:
                logger.exception("Cache listener failed for %s", collection)
