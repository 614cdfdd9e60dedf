"""Durable, ordered log of mutations recorded while the API was unreachable."""

import copy
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

STORAGE_KEY = "klusjes-pending-ops"

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
DELETE_PHOTO = "delete_photo"

ACTIONS = (CREATE, UPDATE, DELETE, DELETE_PHOTO)

# Payload keys that may hold an entity id and must follow a remap
# (``taskIds`` of a room delete is handled separately).
_REFERENCE_KEYS = ("id", "roomId", "taskId")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PendingOperation:
    collection: str
    action: str
    entity_id: str
    payload: dict = field(default_factory=dict)
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    recorded_at: str = field(default_factory=_now_iso)


class PendingOperationsLog:
    """FIFO of :class:`PendingOperation`, persisted after every change."""

    def __init__(self, storage, key: str = STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._lock = threading.Lock()
        self._ops: list[PendingOperation] = self._load()

    def _load(self) -> list[PendingOperation]:
        stored = self._storage.get(self._key, [])
        ops = []
        for raw in stored if isinstance(stored, list) else []:
            try:
                ops.append(PendingOperation(**raw))
            except TypeError:
                logger.warning("Dropping malformed pending operation: %r", raw)
        return ops

    def _persist(self) -> None:
        self._storage.set(self._key, [asdict(op) for op in self._ops])

    def __len__(self) -> int:
        with self._lock:
            return len(self._ops)

    def record(self, collection: str, action: str, entity_id: str, payload: Optional[dict] = None) -> PendingOperation:
        if action not in ACTIONS:
            raise ValueError(f"Unknown pending action: {action}")
        op = PendingOperation(
            collection=collection,
            action=action,
            entity_id=entity_id,
            payload=copy.deepcopy(payload or {}),
        )
        with self._lock:
            self._ops.append(op)
            self._persist()
        logger.info("Queued %s %s %s for replay", action, collection, entity_id)
        return copy.deepcopy(op)

    def entries(self) -> list[PendingOperation]:
        with self._lock:
            return copy.deepcopy(self._ops)

    def has_entity(self, collection: str, entity_id: str) -> bool:
        with self._lock:
            return any(op.collection == collection and op.entity_id == entity_id for op in self._ops)

    def discard(self, op_id: str) -> None:
        with self._lock:
            self._ops = [op for op in self._ops if op.op_id != op_id]
            self._persist()

    def remap_id(self, old_id: str, new_id: str) -> None:
        """Point queued operations at *new_id* wherever they referenced *old_id*."""
        with self._lock:
            for op in self._ops:
                if op.entity_id == old_id:
                    op.entity_id = new_id
                for key in _REFERENCE_KEYS:
                    if op.payload.get(key) == old_id:
                        op.payload[key] = new_id
                if old_id in op.payload.get("taskIds", []):
                    op.payload["taskIds"] = [new_id if i == old_id else i for i in op.payload["taskIds"]]
            self._persist()
