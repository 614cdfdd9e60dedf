"""Change feed publisher: pushes full collection snapshots over Server-Sent Events.

Each connection runs its own loop. Every ``poll_interval`` seconds it reads
the per-collection watermarks and, for every collection whose version moved
since the last push on this connection, emits a complete snapshot. A
heartbeat goes out every ``heartbeat_interval`` seconds regardless of data
so clients can tell a quiet feed from a dead one.
"""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from sqlalchemy.engine import Engine
from sqlmodel import Session

from klusjes_api import store
from klusjes_api.models import ROOMS, TASKS

logger = logging.getLogger(__name__)

POLL_INTERVAL = float(os.getenv("KLUSJES_FEED_POLL_SECONDS", "1.0"))
HEARTBEAT_INTERVAL = float(os.getenv("KLUSJES_FEED_HEARTBEAT_SECONDS", "15.0"))

# collection -> (SSE event name, payload type, payload key)
_SNAPSHOT_EVENTS = {
    ROOMS: ("rooms", "rooms_updated", "rooms"),
    TASKS: ("tasks", "tasks_updated", "tasks"),
}


@dataclass(frozen=True)
class FeedEvent:
    id: int
    event: str
    data: dict[str, Any]

    def encode(self) -> str:
        """Render the event as one SSE frame."""
        return f"event: {self.event}\nid: {self.id}\ndata: {json.dumps(self.data)}\n\n"


def _load_changes(engine: Engine, last_pushed: dict[str, int]) -> dict[str, tuple[int, list[dict]]]:
    """Return ``{collection: (version, snapshot)}`` for collections that moved."""
    changed: dict[str, tuple[int, list[dict]]] = {}
    with Session(engine) as session:
        versions = store.read_watermarks(session)
        for collection, version in versions.items():
            if last_pushed.get(collection) == version:
                continue
            if collection == ROOMS:
                entries = store.list_rooms(session)
            else:
                entries = store.list_tasks(session)
            changed[collection] = (
                version,
                [entry.model_dump(mode="json", by_alias=True) for entry in entries],
            )
    return changed


class ChangeFeedPublisher:
    """Produces the event stream for a single client connection.

    Args:
        engine: Database engine; every check opens its own short session.
        poll_interval: Seconds between watermark checks.
        heartbeat_interval: Seconds between heartbeat events.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        engine: Engine,
        poll_interval: float = POLL_INTERVAL,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._poll_interval = poll_interval
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._next_id = 0
        self._last_pushed: dict[str, int] = {}

    def _event(self, event: str, data: dict[str, Any]) -> FeedEvent:
        feed_event = FeedEvent(id=self._next_id, event=event, data={**data, "timestamp": int(time.time())})
        self._next_id += 1
        return feed_event

    async def events(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[FeedEvent]:
        """Yield events until the client goes away or a storage fault occurs."""
        yield self._event("connect", {"type": "connected", "message": "Change feed connected"})
        last_heartbeat = self._clock()

        while True:
            if await is_disconnected():
                logger.info("Change feed client disconnected after %d event(s)", self._next_id)
                return

            try:
                changed = await asyncio.to_thread(_load_changes, self._engine, dict(self._last_pushed))
            except Exception:
                logger.exception("Change feed check failed")
                yield self._event("error", {"type": "error", "message": "Change feed failed"})
                return

            for collection in (ROOMS, TASKS):
                if collection not in changed:
                    continue
                version, snapshot = changed[collection]
                event_name, payload_type, key = _SNAPSHOT_EVENTS[collection]
                yield self._event(event_name, {"type": payload_type, key: snapshot})
                self._last_pushed[collection] = version

            now = self._clock()
            if now - last_heartbeat >= self._heartbeat_interval:
                yield self._event("heartbeat", {"type": "heartbeat"})
                last_heartbeat = now

            await asyncio.sleep(self._poll_interval)

    async def stream(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[str]:
        """Encoded SSE frames, ready for a streaming response."""
        async for event in self.events(is_disconnected):
            yield event.encode()
