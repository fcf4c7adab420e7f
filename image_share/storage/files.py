from pathlib import Path
from typing import Optional, Tuple
import logging
import uuid

from image_share.exceptions import FileStorageException
from image_share.settings import settings

log = logging.getLogger(__name__)

UPLOADS_DIR = "uploads"
THUMBNAILS_DIR = "thumbnails"
THUMBNAIL_PREFIX = "thumb_"

# -------------------------
# Local file storage
# -------------------------
class LocalFileStorage:
    """
        Files under the media root, addressed by web-style relative paths:

            /uploads/<owner_id>/<uuid>_<filename>
            /uploads/thumbnails/<owner_id>/thumb_<uuid>_<filename>

        Thumbnail directories are per owner and thumbnail names derive from the
        already-unique stored name, so no two writers ever target the same file
        for different images.
    """
    def __init__(self, media_root: Optional[str] = None):
        self.root = Path(media_root or settings.media_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        log.info("Using media root %s", self.root)

    def save_upload(self, owner_id: str, filename: str, data: bytes) -> Tuple[str, str]:
        """Writes an original upload. Returns (stored_file_name, relative_path)."""
        stored_file_name = f"{uuid.uuid4()}_{Path(filename).name}"
        target = self.root / UPLOADS_DIR / owner_id / stored_file_name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            log.error("Failed to write upload %s: %s", target, e)
            raise FileStorageException(f"Failed to store file {filename}: {e}")
        log.debug("Stored upload %s", target)
        return stored_file_name, self.relative(target)

    def resolve(self, relative_path: str) -> Path:
        """Maps a stored relative path to an absolute path inside the media root."""
        path = (self.root / relative_path.lstrip("/")).resolve()
        if self.root != path and self.root not in path.parents:
            raise FileStorageException(f"Path escapes media root: {relative_path}")
        return path

    def relative(self, path: Path) -> str:
        return "/" + path.resolve().relative_to(self.root).as_posix()

    def thumbnail_path(self, owner_id: str, stored_file_name: str) -> Path:
        thumb_dir = self.root / UPLOADS_DIR / THUMBNAILS_DIR / owner_id
        thumb_dir.mkdir(parents=True, exist_ok=True)
        return thumb_dir / f"{THUMBNAIL_PREFIX}{Path(stored_file_name).name}"

    def delete(self, relative_path: str) -> bool:
        path = self.resolve(relative_path)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            log.error("Failed to delete %s: %s", path, e)
            raise FileStorageException(f"Failed to delete {relative_path}: {e}")
        log.debug("Deleted %s", path)
        return True
