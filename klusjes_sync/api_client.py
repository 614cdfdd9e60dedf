"""Async HTTP client for the Klusjes mutation API.

Responses are returned as plain JSON dicts in wire (camelCase) shape so they
can go straight into the client cache.
"""

import logging
from typing import Any, Optional

import httpx

from klusjes_sync.errors import ConnectivityError, raise_for_response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class KlusjesApi:
    """Thin wrapper around ``httpx.AsyncClient``.

    Transport failures become :class:`ConnectivityError`; error statuses
    become the matching :class:`~klusjes_sync.errors.ApiError` subclass.
    """

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "KlusjesApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ConnectivityError(f"Could not reach {self.base_url}") from exc
        raise_for_response(response)
        return response.json()

    # -- rooms ---------------------------------------------------------------

    async def list_rooms(self) -> list[dict]:
        return await self._request("GET", "/api/rooms/")

    async def create_room(self, room: dict) -> dict:
        return await self._request("POST", "/api/rooms/", json=room)

    async def update_room(self, room: dict) -> dict:
        """Send the full desired room; returns the canonical room."""
        body = await self._request("PUT", "/api/rooms/", json=room)
        return body["room"]

    async def delete_room(self, room_id: str) -> None:
        await self._request("DELETE", "/api/rooms/", json={"id": room_id})

    # -- tasks ---------------------------------------------------------------

    async def list_tasks(self, room_id: Optional[str] = None) -> list[dict]:
        params = {"roomId": room_id} if room_id else None
        return await self._request("GET", "/api/tasks/", params=params)

    async def create_task(self, task: dict) -> dict:
        return await self._request("POST", "/api/tasks/", json=task)

    async def update_task(self, task: dict) -> dict:
        """Send the full desired task; returns the canonical task."""
        body = await self._request("PUT", "/api/tasks/", json=task)
        return body["task"]

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", "/api/tasks/", json={"id": task_id})

    # -- photos --------------------------------------------------------------

    async def list_photos(self, task_id: str) -> list[dict]:
        return await self._request("GET", "/api/photos/", params={"taskId": task_id})

    async def upload_photo(self, task_id: str, filename: str, content: bytes, content_type: str) -> dict:
        """Upload one image; returns ``{id, url, size}``."""
        return await self._request(
            "POST",
            "/api/upload",
            data={"taskId": task_id},
            files={"file": (filename, content, content_type)},
        )

    async def delete_photo(self, photo_id: str) -> None:
        await self._request("DELETE", "/api/photos/", json={"id": photo_id})
