"""Durable local key/value storage for the client cache.

Storage is best-effort: a missing or corrupt entry reads as the default and
a failed write is logged. The in-memory cache stays authoritative either way.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Non-durable storage, used when no cache directory is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """One ``<key>.json`` file per key inside *directory*."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            raw = path.read_text(encoding="utf-8")
            return json.loads(raw)
        except (OSError, json.JSONDecodeError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache entry %s: %s", path.name, exc)
            return default

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value), encoding="utf-8")
        except (OSError, TypeError) as exc:
            logger.warning("Could not persist cache entry %s: %s", path.name, exc)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
