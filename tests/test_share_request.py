from datetime import datetime, timedelta, timezone

import pytest

from image_share.exceptions import (
    InvalidShareRequestException,
    InvalidShareStateException,
    ShareRequestExpiredException,
)
from image_share.share_service.models import (
    ShareRequest,
    ShareRequestStatus,
    request_expired,
    request_processable,
)

NOW = datetime(2025, 8, 14, 12, 0, tzinfo=timezone.utc)


def pending(expiration_days=7):
    return ShareRequest.create("u1", "u2", "img1", now=NOW, request_message="please", expiration_days=expiration_days)


def terminal(status):
    req = pending()
    if status == ShareRequestStatus.APPROVED:
        req.approve(NOW)
    elif status == ShareRequestStatus.REJECTED:
        req.reject(NOW)
    else:
        req.cancel(NOW)
    return req


# ------------------------------
# create
# ------------------------------

def test_create_sets_pending_and_expiry():
    req = pending()
    assert req.status == ShareRequestStatus.PENDING
    assert req.created_at == NOW
    assert req.expires_at == NOW + timedelta(days=7)
    assert req.responded_at is None
    assert req.request_message == "please"
    assert req.share_request_id


@pytest.mark.parametrize("user", ["u1", "someone@example.com", "", "x" * 64])
def test_create_rejects_self_share(user):
    with pytest.raises(InvalidShareRequestException):
        ShareRequest.create(user, user, "img1", now=NOW)


def test_create_self_share_check_ignores_case():
    with pytest.raises(InvalidShareRequestException):
        ShareRequest.create("Alice", "alice", "img1", now=NOW)


def test_loading_does_not_recheck_requester_and_owner():
    # the check belongs to creation only
    req = ShareRequest(
        requester_id="u1", owner_id="u1", image_id="img1",
        created_at=NOW, expires_at=NOW + timedelta(days=7),
    )
    assert req.status == ShareRequestStatus.PENDING


# ------------------------------
# transitions
# ------------------------------

def test_approve():
    req = pending()
    later = NOW + timedelta(hours=1)
    req.approve(later, "sure")
    assert req.status == ShareRequestStatus.APPROVED
    assert req.responded_at == later
    assert req.response_message == "sure"


def test_reject():
    req = pending()
    req.reject(NOW, "no")
    assert req.status == ShareRequestStatus.REJECTED
    assert req.responded_at == NOW
    assert req.response_message == "no"


def test_cancel():
    req = pending()
    req.cancel(NOW)
    assert req.status == ShareRequestStatus.CANCELLED
    assert req.responded_at == NOW


@pytest.mark.parametrize("status", [
    ShareRequestStatus.APPROVED,
    ShareRequestStatus.REJECTED,
    ShareRequestStatus.CANCELLED,
])
def test_terminal_states_refuse_every_transition(status):
    req = terminal(status)
    responded_at = req.responded_at
    for attempt in (lambda: req.approve(NOW), lambda: req.reject(NOW), lambda: req.cancel(NOW)):
        with pytest.raises(InvalidShareStateException):
            attempt()
    assert req.status == status
    assert req.responded_at == responded_at
    assert req.is_terminal


def test_approve_after_expiry_fails_and_leaves_request_pending():
    req = pending()
    with pytest.raises(ShareRequestExpiredException):
        req.approve(req.expires_at)
    assert req.status == ShareRequestStatus.PENDING
    assert req.responded_at is None


def test_reject_after_expiry_is_allowed():
    req = pending()
    req.reject(req.expires_at + timedelta(days=30))
    assert req.status == ShareRequestStatus.REJECTED


def test_cancel_after_expiry_is_allowed():
    req = pending()
    req.cancel(req.expires_at + timedelta(days=1))
    assert req.status == ShareRequestStatus.CANCELLED


def test_already_expired_request():
    req = pending(expiration_days=-1)
    assert req.is_expired(NOW)
    assert not req.can_be_processed(NOW)
    with pytest.raises(ShareRequestExpiredException):
        req.approve(NOW)


# ------------------------------
# expiry predicate
# ------------------------------

def test_expiry_boundary_is_inclusive():
    expires = NOW + timedelta(days=7)
    assert not request_expired(expires, expires - timedelta(microseconds=1))
    assert request_expired(expires, expires)


def test_processable_requires_pending_and_unexpired():
    expires = NOW + timedelta(days=1)
    assert request_processable(ShareRequestStatus.PENDING, expires, NOW)
    assert not request_processable(ShareRequestStatus.PENDING, expires, expires)
    assert not request_processable(ShareRequestStatus.APPROVED, expires, NOW)


def test_round_trips_through_json_dump():
    req = pending()
    req.approve(NOW)
    loaded = ShareRequest.model_validate(req.model_dump(mode="json"))
    assert loaded == req
    assert loaded.status is ShareRequestStatus.APPROVED
