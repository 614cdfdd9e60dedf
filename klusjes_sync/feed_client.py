"""Change feed client: consumes ``GET /api/feed`` and dispatches snapshots.

The connection is retried with exponential backoff. A feed that stays silent
longer than ``stale_after`` seconds (the server sends heartbeats) is treated
as dead and reconnected like any other transport failure.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from klusjes_sync.errors import SyncError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "Max reconnection attempts reached"

Listener = Callable[[dict], Any]


class ConnectionState(str, Enum):
    connecting = "connecting"
    open = "open"
    closed = "closed"


class FeedError(SyncError):
    """The feed responded but cannot be consumed (bad status, went silent)."""


@dataclass
class SSEMessage:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """Incremental ``text/event-stream`` decoder, fed one line at a time."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._id: Optional[str] = None

    def feed(self, line: str) -> Optional[SSEMessage]:
        """Consume one line; returns a message when *line* completes one."""
        line = line.rstrip("\r\n")
        if not line:
            if not self._data and not self._event and self._id is None:
                return None
            message = SSEMessage(event=self._event or "message", data="\n".join(self._data), id=self._id)
            self._reset()
            return message
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value
        return None


def _default_client() -> httpx.AsyncClient:
    # No read timeout: silence is detected by ``stale_after`` instead.
    return httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))


class ChangeFeedClient:
    """Keeps one change-feed connection alive and fans payloads out by ``type``.

    Listeners are registered per payload type (``rooms_updated``,
    ``tasks_updated``, ``heartbeat``, ``connected``, ``error``). A failing
    listener is logged and does not affect the others.
    """

    def __init__(
        self,
        url: str,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        stale_after: float = 45.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._client_factory = client_factory
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.stale_after = stale_after
        self._sleep = sleep

        self.state = ConnectionState.closed
        self.attempts = 0
        self.last_event_id: Optional[str] = None
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._stopped = False
        self._runner: Optional[asyncio.Task] = None

    # -- listeners -----------------------------------------------------------

    def add_listener(self, event_type: str, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event_type: str, payload: dict) -> None:
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(payload)
            except Exception:
                logger.exception("Change feed listener for %s failed", event_type)

    # -- connection ----------------------------------------------------------

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff before reconnect number *attempt* (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def connect(self) -> asyncio.Task:
        """Start the background runner if it is not already running."""
        if self._runner is None or self._runner.done():
            self._stopped = False
            self._runner = asyncio.create_task(self.run())
            self._runner.add_done_callback(_on_runner_done)
        return self._runner

    async def disconnect(self) -> None:
        """Stop the runner and suppress any further reconnection."""
        self._stopped = True
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        self.state = ConnectionState.closed

    async def run(self) -> None:
        """Connect, consume, and reconnect until stopped or out of attempts."""
        async with self._client_factory() as client:
            while not self._stopped:
                self.state = ConnectionState.connecting
                try:
                    await self._consume(client)
                    logger.info("Change feed stream ended by server")
                except (httpx.HTTPError, FeedError) as exc:
                    logger.warning("Change feed connection lost: %s", exc)

                self.state = ConnectionState.closed
                if self._stopped:
                    break
                if self.attempts >= self.max_attempts:
                    logger.error("Change feed giving up after %d reconnect attempts", self.attempts)
                    self._emit("error", {"type": "error", "message": MAX_ATTEMPTS_MESSAGE})
                    break
                self.attempts += 1
                delay = self.reconnect_delay(self.attempts)
                logger.info("Change feed reconnect attempt %d in %.1fs", self.attempts, delay)
                await self._sleep(delay)
        self.state = ConnectionState.closed

    async def _consume(self, client: httpx.AsyncClient) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self.last_event_id is not None:
            headers["Last-Event-ID"] = self.last_event_id

        async with client.stream("GET", self.url, headers=headers) as response:
            if response.status_code != 200:
                raise FeedError(f"Change feed returned HTTP {response.status_code}")
            self.state = ConnectionState.open
            self.attempts = 0
            logger.info("Change feed connected to %s", self.url)

            decoder = SSEDecoder()
            lines = response.aiter_lines()
            while not self._stopped:
                try:
                    line = await asyncio.wait_for(lines.__anext__(), timeout=self.stale_after)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise FeedError(f"No change feed data for {self.stale_after:.0f}s") from None
                message = decoder.feed(line)
                if message is not None:
                    self._dispatch(message)

    def _dispatch(self, message: SSEMessage) -> None:
        if message.id is not None:
            self.last_event_id = message.id
        if not message.data:
            return
        try:
            payload = json.loads(message.data)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed change feed payload for event %s", message.event)
            return
        if not isinstance(payload, dict):
            logger.warning("Skipping non-object change feed payload for event %s", message.event)
            return
        self._emit(payload.get("type") or message.event, payload)


def _on_runner_done(task: asyncio.Task) -> None:
    """Log unexpected exceptions from the feed runner."""
    if task.cancelled():
        return
    try:
        task.result()
    except Exception:
        logger.exception("Change feed runner failed unexpectedly")
