"""Photo listing, upload and deletion."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlmodel import Session

from klusjes_api import store
from klusjes_api.database import get_session
from klusjes_api.errors import InternalError, ValidationError, storage_errors
from klusjes_api.models import Deleted, DeleteRequest, PhotoRead, PhotoUploaded, new_id
from klusjes_api.uploads import ALLOWED_CONTENT_TYPES, MAX_UPLOAD_BYTES, PhotoStore, get_photo_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["photos"])


@router.get("/api/photos/")
def list_photos(
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    session: Session = Depends(get_session),
) -> list[PhotoRead]:
    """List a task's photos, newest first."""
    with storage_errors(session, "Failed to fetch photos"):
        return store.list_photos(session, task_id)


@router.delete("/api/photos/")
def delete_photo(
    body: DeleteRequest,
    session: Session = Depends(get_session),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> Deleted:
    """Delete a photo row and its file."""
    with storage_errors(session, "Failed to delete photo"):
        store.delete_photo(session, body.id, photo_store)
    return Deleted()


@router.post("/api/upload", status_code=201)
async def upload_photo(
    file: UploadFile = File(...),
    task_id: str = Form(default="", alias="taskId"),
    session: Session = Depends(get_session),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> PhotoUploaded:
    """Store an uploaded jpeg, png or webp image for a task."""
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Invalid file type. Only JPEG, PNG and WebP allowed")

    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"File too large (max {MAX_UPLOAD_BYTES // 1024} KB)")

    with storage_errors(session, "Failed to process upload"):
        store.require_task(session, task_id)

    photo_id = new_id("photo")
    try:
        url = photo_store.save(task_id, photo_id, data, file.content_type)
    except OSError:
        logger.exception("Could not write photo for task %s", task_id)
        raise InternalError("Failed to process upload") from None

    try:
        with storage_errors(session, "Failed to process upload"):
            photo = store.add_photo(session, photo_id, task_id, url)
    except InternalError:
        photo_store.delete(url)
        raise
    return PhotoUploaded(id=photo.id, url=photo.url, size=len(data))
