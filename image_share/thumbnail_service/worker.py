import asyncio
import logging
from typing import Optional, Set

from image_share.events.models import ImageUploadedEvent
from image_share.image_service.models import ImageMeta
from image_share.messaging.bus import MessageBus
from image_share.settings import settings
from image_share.storage.files import LocalFileStorage
from image_share.storage.protocols import ImageStore
from image_share.thumbnail_service.thumbnails import (
    calculate_thumbnail_size,
    generate_thumbnail,
    read_image_size,
)

log = logging.getLogger(__name__)

class ThumbnailWorker:
    """
        Consumes ImageUploadedEvent and writes a bounded-size JPEG preview.

        An image that already has a thumbnail is skipped, and so is a second
        delivery of an image still being processed. Errors while reading,
        resizing or saving are logged and swallowed here, so the bus still
        acks the delivery; only a failing store lookup reaches the bus.

        The worker subscribes without the bus handler deadline: a resize in a
        worker thread cannot be cancelled, so the only deadline is
        ``slot_timeout`` for waiting on a free resize slot.
    """
    def __init__(
        self,
        store: ImageStore,
        files: LocalFileStorage,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
        quality: Optional[int] = None,
        concurrency: Optional[int] = None,
        slot_timeout: Optional[float] = None,
    ):
        self.store = store
        self.files = files
        self.max_width = max_width or settings.thumbnail_width
        self.max_height = max_height or settings.thumbnail_height
        self.quality = quality or settings.thumbnail_quality
        self.semaphore = asyncio.Semaphore(concurrency or settings.thumbnail_concurrency)
        self.slot_timeout = slot_timeout or settings.thumbnail_slot_timeout_seconds
        self.in_flight: Set[str] = set()

    async def start(self, bus: MessageBus) -> str:
        consumer_tag = await bus.subscribe(
            ImageUploadedEvent, self.handle_image_uploaded, handler_timeout=None,
        )
        log.info("Thumbnail worker subscribed to %s", ImageUploadedEvent.routing_key())
        return consumer_tag

    async def handle_image_uploaded(self, event: ImageUploadedEvent) -> bool:
        """Returns True when a thumbnail was written."""
        image_id = event.image_id
        log.info("Thumbnail requested for image %s (owner %s)", image_id, event.owner_id)

        if image_id in self.in_flight:
            log.info("Thumbnail for image %s already in progress", image_id)
            return False

        self.in_flight.add(image_id)
        try:
            image = await asyncio.to_thread(self.store.get_image, image_id)
            if image is None:
                log.warning("Image %s not found, skipping thumbnail", image_id)
                return False
            if image.thumbnail_ready:
                log.info("Thumbnail for image %s already exists", image_id)
                return False
            return await self._render(event, image)
        finally:
            self.in_flight.discard(image_id)

    async def _render(self, event: ImageUploadedEvent, image: ImageMeta) -> bool:
        image_id = image.image_id
        try:
            source = self.files.resolve(event.stored_path)
            if not source.exists():
                log.warning("Source file %s for image %s is missing", source, image_id)
                return False

            width, height = event.width, event.height
            if width <= 0 or height <= 0:
                width, height = await asyncio.to_thread(read_image_size, source)
            size = calculate_thumbnail_size(width, height, self.max_width, self.max_height)

            target = self.files.thumbnail_path(event.owner_id, image.stored_file_name)
            await asyncio.wait_for(self.semaphore.acquire(), timeout=self.slot_timeout)
            try:
                await asyncio.to_thread(generate_thumbnail, source, target, size, self.quality)
            finally:
                self.semaphore.release()

            image.set_thumbnail(self.files.relative(target))
            await asyncio.to_thread(self.store.save_image, image)
            log.info("Thumbnail ready for image %s at %s", image_id, image.thumbnail_path)
            return True
        except asyncio.TimeoutError:
            log.warning("No resize slot for image %s within %ss, skipping thumbnail", image_id, self.slot_timeout)
            return False
        except Exception:
            log.exception("Thumbnail generation failed for image %s", image_id)
            return False
