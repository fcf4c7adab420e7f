from datetime import datetime, timezone
from typing import List, Optional, Tuple
from io import BytesIO
import logging
from PIL import Image, UnidentifiedImageError

from image_share.events.models import ImageUploadedEvent
from image_share.image_service.models import ImageMeta
from image_share.messaging.bus import MessageBus
from image_share.storage.dynamodb import DynamoDBService
from image_share.storage.files import LocalFileStorage
from image_share.exceptions import InvalidImageException, ImageNotFoundException, FileStorageException

log = logging.getLogger(__name__)

# Pillow format name -> MIME type
ALLOWED_IMAGE_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

def validate_image_bytes(file_bytes: bytes, content_type: str) -> Tuple[str, int, int]:
    """
        Validates that the uploaded bytes are a real raster image.
        Returns the detected MIME type and the pixel dimensions.
    """
    if content_type not in ALLOWED_IMAGE_TYPES.values():
        raise InvalidImageException(f"Unsupported content type: {content_type}")
    try:
        with Image.open(BytesIO(file_bytes)) as img:
            img.load()
            mime_type = ALLOWED_IMAGE_TYPES.get((img.format or "").upper())
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError):
        raise InvalidImageException("Invalid image file")
    if mime_type is None:
        raise InvalidImageException("Unsupported image type")
    return mime_type, width, height

async def save_image_and_meta(
    db: DynamoDBService,
    files: LocalFileStorage,
    bus: MessageBus,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    owner_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> ImageMeta:
    """
        Stores the upload on disk, saves its record and announces it.

        The upload succeeds once the record is saved; if the bus is unreachable
        the image simply never gets a thumbnail.
    """
    mime_type, width, height = validate_image_bytes(file_bytes, content_type)
    stored_file_name, stored_path = files.save_upload(owner_id, filename, file_bytes)

    image = ImageMeta(
        owner_id=owner_id,
        title=title,
        description=description,
        tags=tags or [],
        original_file_name=filename,
        stored_file_name=stored_file_name,
        stored_path=stored_path,
        content_type=mime_type,
        size=len(file_bytes),
        width=width,
        height=height,
        uploaded_at=datetime.now(timezone.utc),
    )
    db.save_image(image)
    log.info("Saved image metadata %s", image.image_id)

    published = await bus.publish(ImageUploadedEvent(
        image_id=image.image_id,
        owner_id=image.owner_id,
        original_file_name=image.original_file_name,
        stored_path=image.stored_path,
        byte_size=image.size,
        mime_type=image.content_type,
        width=image.width,
        height=image.height,
    ))
    if not published:
        log.warning("Image %s saved but upload event was not published", image.image_id)
    return image

def get_image_meta(db: DynamoDBService, image_id: str) -> ImageMeta:
    """Gets image metadata, raising when it does not exist."""
    image = db.get_image(image_id)
    if not image:
        raise ImageNotFoundException(image_id)
    return image

def remove_image(db: DynamoDBService, files: LocalFileStorage, image_id: str) -> bool:
    """Removes an image, its files and every share request that points at it."""
    image = get_image_meta(db, image_id)

    removed = db.delete_share_requests_for_image(image_id)
    if removed:
        log.info("Removed %d share requests for image %s", removed, image_id)

    for path in (image.stored_path, image.thumbnail_path):
        if not path:
            continue
        try:
            files.delete(path)
        except FileStorageException:
            # the record goes regardless; an orphaned file is harmless
            log.warning("Could not delete file %s of image %s", path, image_id)

    db.delete_image(image_id)
    log.info("Removed image %s", image_id)
    return True
