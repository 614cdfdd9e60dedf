"""Room endpoints. Update and delete take the room id in the JSON body."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from klusjes_api import store
from klusjes_api.database import get_session
from klusjes_api.errors import storage_errors
from klusjes_api.models import Deleted, DeleteRequest, RoomCreate, RoomRead, RoomUpdate, RoomUpdated
from klusjes_api.uploads import PhotoStore, get_photo_store

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


@router.get("/")
def list_rooms(session: Session = Depends(get_session)) -> list[RoomRead]:
    """List all rooms, oldest first."""
    with storage_errors(session, "Failed to fetch rooms"):
        return store.list_rooms(session)


@router.post("/", status_code=201)
def create_room(body: RoomCreate, session: Session = Depends(get_session)) -> RoomRead:
    """Create a room. The id is assigned by the server."""
    with storage_errors(session, "Failed to create room"):
        return store.create_room(session, body)


@router.put("/")
def update_room(body: RoomUpdate, session: Session = Depends(get_session)) -> RoomUpdated:
    """Replace a room's name, description and color."""
    with storage_errors(session, "Failed to update room"):
        return RoomUpdated(room=store.update_room(session, body))


@router.delete("/")
def delete_room(
    body: DeleteRequest,
    session: Session = Depends(get_session),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> Deleted:
    """Delete a room together with its tasks and their photos."""
    with storage_errors(session, "Failed to delete room"):
        store.delete_room(session, body.id, photo_store)
    return Deleted()
