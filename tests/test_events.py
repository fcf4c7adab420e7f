import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from image_share.events.models import (
    EVENT_TYPES,
    ROUTING_KEYS,
    EventEnvelope,
    ImageUploadedEvent,
    ShareRequestApprovedEvent,
    ShareRequestCreatedEvent,
    queue_name_for,
    routing_key_for,
)


# ------------------------------
# routing keys
# ------------------------------

@pytest.mark.parametrize("type_name, expected", [
    ("ImageUploadedEvent", "image.uploaded"),
    ("ShareRequestCreatedEvent", "share.request.created"),
    ("ShareRequestApprovedEvent", "share.request.approved"),
    ("UploadCompleted", "upload.completed"),
    ("Event", ""),
    ("Thumbnail", "thumbnail"),
    ("EventSourcedThing", "event.sourced.thing"),
])
def test_routing_key_for(type_name, expected):
    assert routing_key_for(type_name) == expected


def test_routing_key_is_deterministic():
    assert routing_key_for("ShareRequestCreatedEvent") == routing_key_for("ShareRequestCreatedEvent")


def test_only_trailing_event_suffix_is_stripped():
    assert routing_key_for("EventLogEvent") == "event.log"


def test_routing_table_is_pinned():
    # changing a class name changes its wire identity; this table must be updated on purpose
    assert ROUTING_KEYS == {
        "ImageUploadedEvent": "image.uploaded",
        "ShareRequestCreatedEvent": "share.request.created",
        "ShareRequestApprovedEvent": "share.request.approved",
    }


def test_event_types_lookup():
    assert EVENT_TYPES["ImageUploadedEvent"] is ImageUploadedEvent
    assert ImageUploadedEvent.routing_key() == "image.uploaded"
    assert queue_name_for(ImageUploadedEvent.routing_key()) == "queue.image.uploaded"


# ------------------------------
# serialization
# ------------------------------

def make_uploaded():
    return ImageUploadedEvent(
        image_id="img1",
        owner_id="u1",
        original_file_name="cat.png",
        stored_path="/uploads/u1/abc_cat.png",
        byte_size=1234,
        mime_type="image/png",
        width=640,
        height=480,
    )


def test_payload_uses_camel_case_on_the_wire():
    body = json.loads(make_uploaded().to_json())
    assert body["imageId"] == "img1"
    assert body["ownerId"] == "u1"
    assert body["storedPath"] == "/uploads/u1/abc_cat.png"
    assert body["byteSize"] == 1234
    assert body["mimeType"] == "image/png"
    assert "image_id" not in body


def test_payload_decodes_from_wire():
    event = make_uploaded()
    assert ImageUploadedEvent.from_json(event.to_json()) == event


def test_payload_rejects_incomplete_body():
    with pytest.raises(ValidationError):
        ImageUploadedEvent.from_json(b'{"imageId": "img1"}')


def test_payloads_are_immutable():
    event = make_uploaded()
    with pytest.raises(ValidationError):
        event.width = 1


def test_share_event_optional_message():
    ts = datetime(2025, 1, 1, tzinfo=timezone.utc)
    event = ShareRequestCreatedEvent(
        share_request_id="s1", image_id="img1", image_file_name="cat.png",
        requester_id="u1", owner_id="u2", timestamp=ts,
    )
    body = json.loads(event.to_json())
    assert body["message"] is None
    assert body["shareRequestId"] == "s1"
    assert body["imageFileName"] == "cat.png"


# ------------------------------
# envelope
# ------------------------------

def test_envelope_metadata():
    ts = datetime(2025, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
    event = ShareRequestApprovedEvent(
        share_request_id="s1", image_id="img1", image_file_name="cat.png",
        requester_id="u1", owner_id="u2", timestamp=ts,
    )
    envelope = EventEnvelope.wrap(event, occurred_at=ts)
    assert envelope.event_type == "ShareRequestApprovedEvent"
    assert envelope.version == "1.0"
    assert envelope.payload is event
    assert envelope.headers() == {
        "eventType": "ShareRequestApprovedEvent",
        "timestamp": 1735689601000,
        "version": "1.0",
    }


def test_envelope_message_ids_are_unique():
    event = make_uploaded()
    assert EventEnvelope.wrap(event).message_id != EventEnvelope.wrap(event).message_id
