import logging
from typing import List, Optional

from image_share.clock import SystemClock
from image_share.events.models import ShareRequestApprovedEvent, ShareRequestCreatedEvent
from image_share.exceptions import (
    DuplicateShareRequestException,
    ImageNotFoundException,
    ShareForbiddenException,
    ShareRequestNotFoundException,
)
from image_share.messaging.bus import MessageBus
from image_share.settings import settings
from image_share.share_service.models import ShareRequest, ShareRequestStatus
from image_share.storage.protocols import Clock, ImageStore, ShareRequestStore

log = logging.getLogger(__name__)

class ShareWorkflow:
    """
        Use cases around share requests: a requester asks the owner of an image
        for access, the owner approves or rejects, the requester may cancel.

        Each operation is a single load, mutate, save against the store. Bus
        publication happens after the save and is best effort.
    """
    def __init__(
        self,
        store,
        bus: MessageBus,
        clock: Optional[Clock] = None,
        expiration_days: Optional[int] = None,
    ):
        self.images: ImageStore = store
        self.requests: ShareRequestStore = store
        self.bus = bus
        self.clock = clock or SystemClock()
        self.expiration_days = settings.share_expiration_days if expiration_days is None else expiration_days

    async def create(
        self,
        requester_id: str,
        owner_id: str,
        image_id: str,
        message: Optional[str] = None,
        expiration_days: Optional[int] = None,
    ) -> ShareRequest:
        now = self.clock.now()
        share_request = ShareRequest.create(
            requester_id=requester_id,
            owner_id=owner_id,
            image_id=image_id,
            now=now,
            request_message=message,
            expiration_days=self.expiration_days if expiration_days is None else expiration_days,
        )

        image = self.images.get_image(image_id)
        if image is None or image.owner_id != owner_id:
            raise ImageNotFoundException(image_id)

        existing = self.requests.find_share_requests(
            requester_id=requester_id, owner_id=owner_id, image_id=image_id,
        )
        if any(r.status != ShareRequestStatus.REJECTED for r in existing):
            raise DuplicateShareRequestException(image_id)

        self.requests.save_share_request(share_request)
        log.info(
            "Created share request %s: %s asks %s for image %s",
            share_request.share_request_id, requester_id, owner_id, image_id,
        )

        await self._publish(ShareRequestCreatedEvent(
            share_request_id=share_request.share_request_id,
            image_id=image_id,
            image_file_name=image.original_file_name,
            requester_id=requester_id,
            owner_id=owner_id,
            message=message,
            timestamp=share_request.created_at,
        ), share_request)
        return share_request

    async def approve(
        self,
        share_request_id: str,
        response_message: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ShareRequest:
        share_request = self.get(share_request_id)
        self._ensure_actor(actor_id, share_request.owner_id, "Only the image owner can approve a share request.")

        share_request.approve(self.clock.now(), response_message)
        self.requests.save_share_request(share_request)
        log.info("Approved share request %s", share_request_id)

        image = self.images.get_image(share_request.image_id)
        await self._publish(ShareRequestApprovedEvent(
            share_request_id=share_request.share_request_id,
            image_id=share_request.image_id,
            image_file_name=image.original_file_name if image else "",
            requester_id=share_request.requester_id,
            owner_id=share_request.owner_id,
            message=share_request.request_message,
            timestamp=share_request.responded_at,
        ), share_request)
        return share_request

    async def reject(
        self,
        share_request_id: str,
        response_message: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ShareRequest:
        """Rejects without an event; rejection is not announced."""
        share_request = self.get(share_request_id)
        self._ensure_actor(actor_id, share_request.owner_id, "Only the image owner can reject a share request.")

        share_request.reject(self.clock.now(), response_message)
        self.requests.save_share_request(share_request)
        log.info("Rejected share request %s", share_request_id)
        return share_request

    async def cancel(self, share_request_id: str, actor_id: Optional[str] = None) -> ShareRequest:
        share_request = self.get(share_request_id)
        self._ensure_actor(actor_id, share_request.requester_id, "Only the requester can cancel a share request.")

        share_request.cancel(self.clock.now())
        self.requests.save_share_request(share_request)
        log.info("Cancelled share request %s", share_request_id)
        return share_request

    def get(self, share_request_id: str) -> ShareRequest:
        share_request = self.requests.get_share_request(share_request_id)
        if share_request is None:
            raise ShareRequestNotFoundException(share_request_id)
        return share_request

    def received(self, owner_id: str, status: Optional[ShareRequestStatus] = None) -> List[ShareRequest]:
        """Requests waiting on (or answered by) an image owner, newest first."""
        found = self.requests.find_share_requests(owner_id=owner_id, status=status)
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def sent(self, requester_id: str, status: Optional[ShareRequestStatus] = None) -> List[ShareRequest]:
        found = self.requests.find_share_requests(requester_id=requester_id, status=status)
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def shared_with(self, requester_id: str) -> List[ShareRequest]:
        """Approved requests of a requester, most recently approved first."""
        found = self.requests.find_share_requests(requester_id=requester_id, status=ShareRequestStatus.APPROVED)
        return sorted(found, key=lambda r: r.responded_at, reverse=True)

    def _ensure_actor(self, actor_id: Optional[str], expected: str, detail: str):
        if actor_id is not None and actor_id != expected:
            raise ShareForbiddenException(detail)

    async def _publish(self, event, share_request: ShareRequest):
        if not await self.bus.publish(event):
            log.warning(
                "%s for share request %s was not published",
                event.event_type(), share_request.share_request_id,
            )
