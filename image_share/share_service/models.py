"""
    Share request entity.

    Pending -> Approved | Rejected | Cancelled, all terminal. "Expired" is not a
    stored state: it is ``now >= expires_at``, evaluated whenever a request is
    read or a transition is attempted. Nothing sweeps old requests.

    Two asymmetries are kept on purpose: approve checks expiry and reject does
    not, and only approval is announced on the bus (see ShareWorkflow).
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from image_share.exceptions import (
    InvalidShareRequestException,
    InvalidShareStateException,
    ShareRequestExpiredException,
)

DEFAULT_EXPIRATION_DAYS = 7

class ShareRequestStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

def new_share_request_id() -> str:
    return str(uuid4())

def request_expired(expires_at: datetime, now: datetime) -> bool:
    return now >= expires_at

def request_processable(status: ShareRequestStatus, expires_at: datetime, now: datetime) -> bool:
    return status == ShareRequestStatus.PENDING and not request_expired(expires_at, now)

class ShareRequest(BaseModel):
    share_request_id: str = Field(default_factory=new_share_request_id)
    requester_id: str
    owner_id: str
    # back-reference only, the image is looked up on demand
    image_id: str
    status: ShareRequestStatus = ShareRequestStatus.PENDING
    request_message: Optional[str] = None
    response_message: Optional[str] = None
    created_at: datetime
    responded_at: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def create(
        cls,
        requester_id: str,
        owner_id: str,
        image_id: str,
        now: datetime,
        request_message: Optional[str] = None,
        expiration_days: int = DEFAULT_EXPIRATION_DAYS,
    ) -> "ShareRequest":
        """The only place the requester/owner distinctness is checked."""
        if requester_id.casefold() == owner_id.casefold():
            raise InvalidShareRequestException("Requester and owner cannot be the same user.")
        return cls(
            requester_id=requester_id,
            owner_id=owner_id,
            image_id=image_id,
            request_message=request_message,
            created_at=now,
            expires_at=now + timedelta(days=expiration_days),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != ShareRequestStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return request_expired(self.expires_at, now)

    def can_be_processed(self, now: datetime) -> bool:
        return request_processable(self.status, self.expires_at, now)

    def approve(self, now: datetime, response_message: Optional[str] = None):
        self._ensure_pending()
        if self.is_expired(now):
            raise ShareRequestExpiredException(self.share_request_id)
        self._respond(ShareRequestStatus.APPROVED, now, response_message)

    def reject(self, now: datetime, response_message: Optional[str] = None):
        # expiry intentionally not checked
        self._ensure_pending()
        self._respond(ShareRequestStatus.REJECTED, now, response_message)

    def cancel(self, now: datetime):
        self._ensure_pending()
        self._respond(ShareRequestStatus.CANCELLED, now, None)

    def _ensure_pending(self):
        if self.status != ShareRequestStatus.PENDING:
            raise InvalidShareStateException(self.share_request_id, self.status.value)

    def _respond(self, status: ShareRequestStatus, now: datetime, response_message: Optional[str]):
        self.status = status
        self.response_message = response_message
        self.responded_at = now
