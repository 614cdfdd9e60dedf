"""Sync coordinator: the client's single entry point for reads and mutations.

Two independent producers feed one cache: a polling loop that refreshes
both collections every few seconds, and the change feed that pushes full
snapshots. Both go through :meth:`ClientCache.apply_snapshot`, so the last
snapshot per collection wins.

Mutations are optimistic. The cache is updated and the entity marked
pending before the API call; the server's canonical answer then replaces
the optimistic value. While offline (or when the API cannot be reached)
the intent is queued in the pending-operations log and replayed in order
once the client is back online, remapping locally generated ids to the
ids the server assigns.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from klusjes_api.sample_data import DEFAULT_ROOM_COLOR
from klusjes_api.status import TaskStatus, completion_time
from klusjes_sync.api_client import KlusjesApi
from klusjes_sync.cache import DELETE as DELETE_MARK
from klusjes_sync.cache import ROOMS, TASKS, UPSERT, ClientCache
from klusjes_sync.defaults import default_rooms, default_tasks
from klusjes_sync.errors import (
    ApiError,
    ConnectivityError,
    InternalError,
    NotFoundError,
    SyncError,
    ValidationError,
)
from klusjes_sync.feed_client import MAX_ATTEMPTS_MESSAGE, ChangeFeedClient
from klusjes_sync.pending import (
    CREATE,
    DELETE,
    DELETE_PHOTO,
    UPDATE,
    PendingOperation,
    PendingOperationsLog,
)

logger = logging.getLogger(__name__)

PHOTOS = "photos"
LOCAL_ID_PREFIX = "local-"

ROOM_FIELDS = {"name": "name", "description": "description", "color": "color"}
TASK_FIELDS = {
    "title": "title",
    "room_id": "roomId",
    "description": "description",
    "priority": "priority",
    "status": "status",
    "due_date": "dueDate",
    "estimated_duration": "estimatedDuration",
}


class CollectionState(str, Enum):
    loading = "loading"
    ready = "ready"
    polling = "polling"


def new_local_id(kind: str) -> str:
    return f"{LOCAL_ID_PREFIX}{kind}-{uuid.uuid4().hex}"


def is_local_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(LOCAL_ID_PREFIX)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _room_payload(room: dict) -> dict:
    return {"id": room["id"], "name": room["name"], "description": room["description"], "color": room["color"]}


def _task_payload(task: dict) -> dict:
    return {
        "id": task["id"],
        "title": task["title"],
        "roomId": task["roomId"],
        "description": task["description"],
        "priority": task["priority"],
        "status": task["status"],
        "dueDate": task.get("dueDate"),
        "estimatedDuration": task.get("estimatedDuration"),
    }


def _check_task_fields(task: dict) -> None:
    if _blank(task.get("title")) or _blank(task.get("roomId")):
        raise ValidationError("Title and roomId are required")
    try:
        task["status"] = TaskStatus(task.get("status") or TaskStatus.todo).value
    except ValueError:
        raise ValidationError(f"Invalid status: {task.get('status')}") from None
    duration = task.get("estimatedDuration")
    if duration is not None and (not isinstance(duration, int) or duration <= 0):
        raise ValidationError("estimatedDuration must be a positive number of minutes")


class SyncCoordinator:
    """Owns loading, refreshing, mutating and replaying for one client.

    Args:
        api: Mutation API client.
        cache: Client cache the UI reads from.
        pending: Offline log of queued mutations.
        feed: Optional change-feed client; snapshots it delivers go into the cache.
        refresh_interval: Seconds between background refreshes.
        initial_delay: Seconds before the first background refresh.
        online: Initial connectivity flag.
        sleep: Replaceable sleep used by the refresh loop.
    """

    def __init__(
        self,
        api: KlusjesApi,
        cache: ClientCache,
        pending: PendingOperationsLog,
        feed: Optional[ChangeFeedClient] = None,
        refresh_interval: float = 3.0,
        initial_delay: float = 1.0,
        online: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api = api
        self.cache = cache
        self.pending = pending
        self.feed = feed
        self.refresh_interval = refresh_interval
        self.initial_delay = initial_delay
        self.online = online
        self.visible = True
        self.states = {ROOMS: CollectionState.loading, TASKS: CollectionState.loading}
        self.last_error: Optional[str] = None
        self.feed_failed = False
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self._replaying = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._feed_listeners = {
            "rooms_updated": self._on_rooms_updated,
            "tasks_updated": self._on_tasks_updated,
            "error": self._on_feed_error,
        }

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Load both collections, send any queued work, then start the feed and the refresh loop."""
        await self.load_initial()
        if self.online and len(self.pending):
            await self.replay_pending()
        if self.feed is not None:
            for event_type, listener in self._feed_listeners.items():
                self.feed.add_listener(event_type, listener)
            self.feed.connect()
        self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self.feed is not None:
            for event_type, listener in self._feed_listeners.items():
                self.feed.remove_listener(event_type, listener)
            await self.feed.disconnect()

    async def load_initial(self) -> None:
        """Fetch each collection; fall back to the persisted cache, then to the built-in dataset.

        Entities with queued operations are restored from the persisted
        cache and marked pending first, so the server snapshot does not
        drop work that has not been sent yet.
        """
        if len(self.pending):
            for collection in (ROOMS, TASKS):
                self.cache.load_persisted(collection)
            for op in self.pending.entries():
                self._mark(op, pinned=True)
        for collection in (ROOMS, TASKS):
            try:
                if not self.online:
                    raise ConnectivityError("Offline")
                self.cache.apply_snapshot(collection, await self._fetch(collection))
            except SyncError as exc:
                self._record_error(exc)
                if self.cache.load_persisted(collection):
                    logger.info("Loaded %s from local cache", collection)
                else:
                    logger.info("No cached %s, using built-in defaults", collection)
                    self.cache.seed(collection, default_rooms() if collection == ROOMS else default_tasks())
            self.states[collection] = CollectionState.ready

    async def refresh(self, collection: str) -> bool:
        """Refresh one collection from the API. Returns False when skipped or failed."""
        if (
            collection in self._in_flight
            or self.states[collection] is CollectionState.loading
            or not self.visible
            or not self.online
        ):
            return False
        self._in_flight.add(collection)
        self.states[collection] = CollectionState.polling
        try:
            entries = await self._fetch(collection)
        except SyncError as exc:
            self._record_error(exc)
            logger.warning("Background refresh of %s failed: %s", collection, exc)
            return False
        finally:
            self._in_flight.discard(collection)
            self.states[collection] = CollectionState.ready
        self.cache.apply_snapshot(collection, entries)
        return True

    async def refresh_all(self) -> None:
        """Send queued work if there is any, then refresh both collections."""
        if self.online and len(self.pending):
            await self.replay_pending()
        await asyncio.gather(self.refresh(ROOMS), self.refresh(TASKS))

    async def _refresh_loop(self) -> None:
        await self._sleep(self.initial_delay)
        while True:
            await self.refresh_all()
            await self._sleep(self.refresh_interval)

    async def set_online(self, online: bool) -> None:
        """Record connectivity; coming back online replays queued work, then refreshes."""
        was_online, self.online = self.online, online
        if online and not was_online:
            logger.info("Back online, replaying %d queued operation(s)", len(self.pending))
            await self.refresh_all()

    async def set_visible(self, visible: bool) -> None:
        self.visible = visible
        if visible:
            await self.refresh_all()

    async def _fetch(self, collection: str) -> list[dict]:
        if collection == ROOMS:
            return await self.api.list_rooms()
        return await self.api.list_tasks()

    # -- change feed ---------------------------------------------------------

    def _on_rooms_updated(self, payload: dict) -> None:
        self._apply_feed_snapshot(ROOMS, payload.get("rooms"))

    def _on_tasks_updated(self, payload: dict) -> None:
        self._apply_feed_snapshot(TASKS, payload.get("tasks"))

    def _apply_feed_snapshot(self, collection: str, entries: Any) -> None:
        if not isinstance(entries, list):
            logger.warning("Ignoring change feed %s snapshot without entries", collection)
            return
        self.cache.apply_snapshot(collection, entries)

    def _on_feed_error(self, payload: dict) -> None:
        self.last_error = payload.get("message") or "Change feed failed"
        if self.last_error != MAX_ATTEMPTS_MESSAGE:
            # The feed client reconnects on its own.
            logger.warning("Change feed error: %s", self.last_error)
            return
        self.feed_failed = True
        logger.warning("Change feed unavailable (%s), relying on polling", self.last_error)

    # -- rooms ---------------------------------------------------------------

    async def create_room(self, name: str, description: str = "", color: Optional[str] = None) -> dict:
        if _blank(name):
            raise ValidationError("Name is required")
        room = {
            "id": new_local_id("room"),
            "name": name.strip(),
            "description": description or "",
            "color": color or DEFAULT_ROOM_COLOR,
            "createdAt": _now_iso(),
        }
        payload = _room_payload(room)
        del payload["id"]
        self.cache.upsert(ROOMS, room)
        return await self._submit(PendingOperation(ROOMS, CREATE, room["id"], payload), room)

    async def update_room(self, room_id: str, **changes) -> dict:
        """Change some of a room's fields; the full resulting room is sent."""
        room = self.cache.get_room(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        for key, value in changes.items():
            if key not in ROOM_FIELDS:
                raise TypeError(f"update_room() got an unexpected field {key!r}")
            room[ROOM_FIELDS[key]] = value
        if _blank(room.get("name")):
            raise ValidationError("Name is required")
        room["name"] = room["name"].strip()
        room["description"] = room.get("description") or ""
        room["color"] = room.get("color") or DEFAULT_ROOM_COLOR
        self.cache.upsert(ROOMS, room)
        return await self._submit(PendingOperation(ROOMS, UPDATE, room_id, _room_payload(room)), room)

    async def delete_room(self, room_id: str) -> None:
        """Delete a room; its tasks disappear from the cache with it."""
        if self.cache.get_room(room_id) is None:
            raise NotFoundError("Room not found")
        self.cache.remove(ROOMS, room_id)
        task_ids = self.cache.remove_room_tasks(room_id)
        await self._submit(PendingOperation(ROOMS, DELETE, room_id, {"id": room_id, "taskIds": task_ids}))

    # -- tasks ---------------------------------------------------------------

    async def create_task(
        self,
        room_id: str,
        title: str,
        description: str = "",
        priority: bool = False,
        status: str = TaskStatus.todo.value,
        due_date: Optional[str] = None,
        estimated_duration: Optional[int] = None,
    ) -> dict:
        now = _now_iso()
        task = {
            "id": new_local_id("task"),
            "roomId": room_id,
            "title": title.strip() if title else title,
            "description": description or "",
            "priority": bool(priority),
            "status": status,
            "dueDate": due_date,
            "estimatedDuration": estimated_duration,
            "createdAt": now,
            "completedAt": None,
            "photos": [],
        }
        _check_task_fields(task)
        if self.cache.get_room(room_id) is None:
            raise NotFoundError("Room not found")
        task["completedAt"] = completion_time(None, task["status"], None, now)

        payload = _task_payload(task)
        del payload["id"]
        self.cache.upsert(TASKS, task)
        return await self._submit(PendingOperation(TASKS, CREATE, task["id"], payload), task)

    async def update_task(self, task_id: str, **changes) -> dict:
        """Change some of a task's fields; the full resulting task is sent.

        ``completedAt`` is recomputed locally for the optimistic copy and
        replaced by the server's value on confirmation.
        """
        current = self.cache.get_task(task_id)
        if current is None:
            raise NotFoundError("Task not found")
        task = dict(current)
        for key, value in changes.items():
            if key not in TASK_FIELDS:
                raise TypeError(f"update_task() got an unexpected field {key!r}")
            task[TASK_FIELDS[key]] = value
        _check_task_fields(task)
        task["title"] = task["title"].strip()
        if task["roomId"] != current["roomId"] and self.cache.get_room(task["roomId"]) is None:
            raise NotFoundError("Room not found")
        task["completedAt"] = completion_time(
            current.get("status"), task["status"], current.get("completedAt"), _now_iso()
        )

        self.cache.upsert(TASKS, task)
        return await self._submit(PendingOperation(TASKS, UPDATE, task_id, _task_payload(task)), task)

    async def advance_task_status(self, task_id: str) -> dict:
        """Move a task one step along todo -> in-progress -> waiting -> completed -> todo."""
        task = self.cache.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return await self.update_task(task_id, status=TaskStatus(task["status"]).advance().value)

    async def delete_task(self, task_id: str) -> None:
        if self.cache.get_task(task_id) is None:
            raise NotFoundError("Task not found")
        self.cache.remove(TASKS, task_id)
        await self._submit(PendingOperation(TASKS, DELETE, task_id, {"id": task_id}))

    # -- photos --------------------------------------------------------------

    async def upload_photo(self, task_id: str, filename: str, content: bytes, content_type: str) -> dict:
        """Upload a photo for a synced task. Needs a live connection; nothing is queued."""
        task = self.cache.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        if is_local_id(task_id):
            raise ValidationError("Task has not been saved yet")
        if not self.online:
            raise ConnectivityError("Photo upload requires a connection")
        try:
            uploaded = await self.api.upload_photo(task_id, filename, content, content_type)
        except SyncError as exc:
            self._record_error(exc)
            raise
        photo = {"id": uploaded["id"], "taskId": task_id, "url": uploaded["url"], "createdAt": _now_iso()}
        task = self.cache.get_task(task_id)
        if task is not None:
            task["photos"] = [photo] + list(task.get("photos") or [])
            self.cache.upsert(TASKS, task)
        return photo

    async def delete_photo(self, task_id: str, photo_id: str) -> None:
        task = self.cache.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        photos = task.get("photos") or []
        if not any(photo.get("id") == photo_id for photo in photos):
            raise NotFoundError("Photo not found")
        task["photos"] = [photo for photo in photos if photo.get("id") != photo_id]
        self.cache.upsert(TASKS, task)
        await self._submit(PendingOperation(PHOTOS, DELETE_PHOTO, photo_id, {"id": photo_id, "taskId": task_id}))

    # -- submission and replay -----------------------------------------------

    async def _submit(self, op: PendingOperation, optimistic: Optional[dict] = None) -> Optional[dict]:
        """Send *op* now, or queue it when offline or when it depends on queued work."""
        self._mark(op, pinned=False)
        if not self.online or self._depends_on_queue(op):
            self._queue(op)
            return optimistic
        try:
            result = await self._send(op)
        except ConnectivityError as exc:
            self._record_error(exc)
            self._queue(op)
            raise
        except ApiError as exc:
            self._record_error(exc)
            self._release(op)
            raise
        self._settle(op, result)
        if op.action not in (CREATE, UPDATE):
            return None
        read = self.cache.get_task if op.collection == TASKS else self.cache.get_room
        return read(result["id"]) or result

    async def replay_pending(self) -> int:
        """Send queued operations in order. Returns how many went through.

        Rejected operations (validation, not found) are dropped with a
        warning. A connectivity or server fault stops the replay and keeps
        the remaining operations queued. A call made while a replay is
        already running returns 0 straight away.
        """
        if self._replaying:
            return 0
        self._replaying = True
        try:
            return await self._replay()
        finally:
            self._replaying = False

    async def _replay(self) -> int:
        replayed = 0
        while self.online:
            entries = self.pending.entries()
            if not entries:
                break
            op = entries[0]
            try:
                result = await self._send(op)
            except (ConnectivityError, InternalError) as exc:
                self._record_error(exc)
                logger.warning("Replay stopped at %s %s %s: %s", op.action, op.collection, op.entity_id, exc)
                break
            except ApiError as exc:
                self._record_error(exc)
                logger.warning("Dropping queued %s %s %s: %s", op.action, op.collection, op.entity_id, exc)
                self.pending.discard(op.op_id)
                self._release(op)
                continue
            self.pending.discard(op.op_id)
            self._settle(op, result)
            replayed += 1
        return replayed

    async def _send(self, op: PendingOperation) -> Any:
        api = self.api
        if op.action == DELETE_PHOTO:
            return await api.delete_photo(op.entity_id)
        if op.collection == ROOMS:
            if op.action == CREATE:
                return await api.create_room(op.payload)
            if op.action == UPDATE:
                return await api.update_room(op.payload)
            return await api.delete_room(op.entity_id)
        if op.action == CREATE:
            return await api.create_task(op.payload)
        if op.action == UPDATE:
            return await api.update_task(op.payload)
        return await api.delete_task(op.entity_id)

    def _settle(self, op: PendingOperation, result: Any) -> None:
        """Fold a successful API answer back into the cache and the log."""
        if op.action == CREATE:
            server_id = result["id"]
            if server_id != op.entity_id:
                self.pending.remap_id(op.entity_id, server_id)
            if self.pending.has_entity(op.collection, server_id):
                # Later queued operations still own the local version.
                self.cache.remap_id(op.collection, op.entity_id, server_id)
            else:
                self.cache.confirm(op.collection, result, local_id=op.entity_id)
            return
        if op.action == UPDATE:
            if not self.pending.has_entity(op.collection, op.entity_id):
                self.cache.confirm(op.collection, result)
            return
        self._release(op)

    def _depends_on_queue(self, op: PendingOperation) -> bool:
        if self.pending.has_entity(op.collection, op.entity_id):
            return True
        return any(is_local_id(op.payload.get(key)) for key in ("id", "roomId", "taskId"))

    def _marks(self, op: PendingOperation) -> list[tuple[str, str, str]]:
        if op.action == DELETE_PHOTO:
            return [(TASKS, op.payload.get("taskId"), UPSERT)]
        if op.action == DELETE:
            marks = [(op.collection, op.entity_id, DELETE_MARK)]
            marks += [(TASKS, task_id, DELETE_MARK) for task_id in op.payload.get("taskIds", [])]
            return marks
        return [(op.collection, op.entity_id, UPSERT)]

    def _mark(self, op: PendingOperation, pinned: bool) -> None:
        for collection, entity_id, kind in self._marks(op):
            self.cache.mark_pending(collection, entity_id, kind, pinned=pinned)

    def _release(self, op: PendingOperation) -> None:
        for collection, entity_id, _ in self._marks(op):
            if not self.pending.has_entity(collection, entity_id):
                self.cache.clear_pending(collection, entity_id)

    def _queue(self, op: PendingOperation) -> None:
        self.pending.record(op.collection, op.action, op.entity_id, op.payload)
        self._mark(op, pinned=True)

    def _record_error(self, exc: Exception) -> None:
        self.last_error = str(exc)

    # -- reads ---------------------------------------------------------------

    def diagnostics(self) -> dict:
        """Connection and sync status for a debug view."""
        return {
            "rooms": self.states[ROOMS].value,
            "tasks": self.states[TASKS].value,
            "online": self.online,
            "visible": self.visible,
            "pendingOperations": len(self.pending),
            "pendingEntities": self.cache.pending_count(),
            "feed": self.feed.state.value if self.feed is not None else None,
            "feedFailed": self.feed_failed,
            "lastError": self.last_error,
        }
