"""Room, task and photo tables plus the camelCase request/response schemas."""

from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from pydantic.alias_generators import to_camel
from sqlmodel import Field, SQLModel

from klusjes_api.sample_data import DEFAULT_ROOM_COLOR
from klusjes_api.status import TaskStatus

ROOMS = "rooms"
TASKS = "tasks"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


# ─── Tables ─────────────────────────────────────────────────────────


class Room(SQLModel, table=True):
    id: str = Field(default_factory=lambda: new_id("room"), primary_key=True)
    name: str = Field(max_length=255)
    description: str = Field(default="")
    color: str = Field(default=DEFAULT_ROOM_COLOR)
    created_at: datetime = Field(default_factory=utcnow)


class Task(SQLModel, table=True):
    id: str = Field(default_factory=lambda: new_id("task"), primary_key=True)
    room_id: str = Field(foreign_key="room.id", index=True, ondelete="CASCADE")
    title: str = Field(max_length=255)
    description: str = Field(default="")
    priority: bool = Field(default=False)
    status: TaskStatus = Field(default=TaskStatus.todo)
    due_date: Optional[date] = Field(default=None)
    estimated_duration: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)


class Photo(SQLModel, table=True):
    id: str = Field(default_factory=lambda: new_id("photo"), primary_key=True)
    task_id: str = Field(foreign_key="task.id", index=True, ondelete="CASCADE")
    url: str
    created_at: datetime = Field(default_factory=utcnow)


class Watermark(SQLModel, table=True):
    """Per-collection modification counter read by the change feed."""
    collection: str = Field(primary_key=True)
    version: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)


# ─── Wire schemas ───────────────────────────────────────────────────


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RoomRead(ApiModel):
    id: str
    name: str
    description: str
    color: str
    created_at: datetime


class PhotoRead(ApiModel):
    id: str
    task_id: str
    url: str
    created_at: datetime


class TaskRead(ApiModel):
    id: str
    room_id: str
    title: str
    description: str
    priority: bool
    status: TaskStatus
    due_date: Optional[date] = None
    estimated_duration: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    photos: list[PhotoRead] = PydanticField(default_factory=list)


class RoomCreate(ApiModel):
    """Required fields are optional here so the API can answer with its own message."""
    name: Optional[str] = None
    description: str = ""
    color: str = DEFAULT_ROOM_COLOR

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, v):
        return "" if v is None else v

    @field_validator("color", mode="before")
    @classmethod
    def _default_color(cls, v):
        return DEFAULT_ROOM_COLOR if not v else v


class RoomUpdate(RoomCreate):
    id: Optional[str] = None


class TaskCreate(ApiModel):
    title: Optional[str] = None
    room_id: Optional[str] = None
    description: str = ""
    priority: bool = False
    status: TaskStatus = TaskStatus.todo
    due_date: Optional[date] = None
    estimated_duration: Optional[int] = PydanticField(default=None, gt=0)

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, v):
        return "" if v is None else v

    @field_validator("priority", mode="before")
    @classmethod
    def _falsy_priority(cls, v):
        return False if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, v):
        return TaskStatus.todo if not v else v

    @field_validator("due_date", mode="before")
    @classmethod
    def _date_part(cls, v):
        # Clients may send a full ISO timestamp; only the date is kept.
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v or None


class TaskUpdate(TaskCreate):
    """Full desired state of a task. ``roomId`` may be omitted to keep the room."""
    id: Optional[str] = None


class DeleteRequest(ApiModel):
    id: Optional[str] = None


class RoomUpdated(ApiModel):
    success: bool = True
    room: RoomRead


class TaskUpdated(ApiModel):
    success: bool = True
    task: TaskRead


class Deleted(ApiModel):
    success: bool = True


class PhotoUploaded(ApiModel):
    id: str
    url: str
    size: int
