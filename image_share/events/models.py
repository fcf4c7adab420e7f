"""
    Integration events exchanged over the message bus.

    The payload class name is the event type: the routing key, the queue
    name and the ``type`` property on the wire are all derived from it, so
    the three can never drift apart. Renaming a class changes its routing
    key, which is why the derived table is pinned in the tests.
"""
import re
from datetime import datetime, timezone
from typing import Dict, Generic, Optional, Tuple, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EVENT_SCHEMA_VERSION = "1.0"

_UPPER = re.compile(r"(?<!^)(?=[A-Z])")

def routing_key_for(type_name: str) -> str:
    """
        Derives the topic routing key from an event type name.

        ImageUploadedEvent -> image.uploaded
        ShareRequestCreatedEvent -> share.request.created
    """
    if type_name.endswith("Event"):
        type_name = type_name[: -len("Event")]
    return _UPPER.sub(".", type_name).lower()

def queue_name_for(routing_key: str) -> str:
    return f"queue.{routing_key}"

class IntegrationEvent(BaseModel):
    """Base class for bus payloads. Serialized with camelCase field names."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @classmethod
    def event_type(cls) -> str:
        return cls.__name__

    @classmethod
    def routing_key(cls) -> str:
        return routing_key_for(cls.__name__)

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, body: bytes):
        return cls.model_validate_json(body)

class ImageUploadedEvent(IntegrationEvent):
    """Published once per successfully persisted image."""
    image_id: str
    owner_id: str
    original_file_name: str
    stored_path: str
    byte_size: int
    mime_type: str
    width: int = 0
    height: int = 0

class ShareRequestCreatedEvent(IntegrationEvent):
    share_request_id: str
    image_id: str
    image_file_name: str
    requester_id: str
    owner_id: str
    message: Optional[str] = None
    timestamp: datetime

class ShareRequestApprovedEvent(IntegrationEvent):
    share_request_id: str
    image_id: str
    image_file_name: str
    requester_id: str
    owner_id: str
    # the original request message
    message: Optional[str] = None
    timestamp: datetime

EVENT_CATALOG: Tuple[Type[IntegrationEvent], ...] = (
    ImageUploadedEvent,
    ShareRequestCreatedEvent,
    ShareRequestApprovedEvent,
)

EVENT_TYPES: Dict[str, Type[IntegrationEvent]] = {cls.event_type(): cls for cls in EVENT_CATALOG}

ROUTING_KEYS: Dict[str, str] = {cls.event_type(): cls.routing_key() for cls in EVENT_CATALOG}

T = TypeVar("T", bound=IntegrationEvent)

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class EventEnvelope(BaseModel, Generic[T]):
    """Transport metadata around a payload. Only the payload travels in the body."""
    event_type: str
    occurred_at: datetime = Field(default_factory=_utcnow)
    version: str = EVENT_SCHEMA_VERSION
    message_id: str = Field(default_factory=lambda: str(uuid4()))
    payload: T

    @classmethod
    def wrap(cls, payload: T, occurred_at: Optional[datetime] = None) -> "EventEnvelope[T]":
        return cls(
            event_type=payload.event_type(),
            occurred_at=occurred_at or _utcnow(),
            payload=payload,
        )

    @property
    def timestamp_ms(self) -> int:
        return int(self.occurred_at.timestamp() * 1000)

    def headers(self) -> Dict[str, object]:
        return {
            "eventType": self.event_type,
            "timestamp": self.timestamp_ms,
            "version": self.version,
        }
