"""On-disk storage for task photo binaries."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("KLUSJES_UPLOAD_DIR", str(Path(__file__).parent / "uploads")))
UPLOAD_URL_PREFIX = "/uploads"
MAX_UPLOAD_BYTES = int(os.getenv("KLUSJES_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class PhotoStore:
    """Saves and removes photo files under a single directory.

    Files are exposed to clients as ``/uploads/<filename>``; only the final
    path component of a url is ever used, so a stored url cannot point
    outside *directory*.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, task_id: str, photo_id: str, data: bytes, content_type: str) -> str:
        """Write *data* and return the public url of the stored file."""
        extension = ALLOWED_CONTENT_TYPES[content_type]
        self._directory.mkdir(parents=True, exist_ok=True)
        filename = f"{task_id}_{photo_id}{extension}"
        (self._directory / filename).write_bytes(data)
        return f"{UPLOAD_URL_PREFIX}/{filename}"

    def path_for(self, url: str) -> Path:
        return self._directory / Path(url).name

    def delete(self, url: str) -> bool:
        """Remove the file behind *url*. Returns False when it was already gone."""
        path = self.path_for(url)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Photo file already missing: %s", path.name)
            return False
        return True


_default_store = PhotoStore(UPLOAD_DIR)


def get_photo_store() -> PhotoStore:
    """FastAPI dependency; tests override it with a temporary directory."""
    return _default_store
