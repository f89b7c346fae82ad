"""
Unit tests for the parcel and parcel request transition tables.
"""

import pytest

from courier_backend.app.core.exceptions import ConflictError
from courier_backend.app.domain.parcels.state_machine import (
    PARCEL_TERMINAL_STATES,
    can_transition_parcel,
    ensure_parcel_transition,
    ensure_request_transition,
)
from courier_backend.app.models.parcel_enums import ParcelStatus, ParcelRequestStatus


@pytest.mark.parametrize("current, target", [
    (ParcelStatus.PENDING, ParcelStatus.PICKED_UP),
    (ParcelStatus.PICKED_UP, ParcelStatus.IN_TRANSIT),
    (ParcelStatus.IN_TRANSIT, ParcelStatus.DELIVERED),
    (ParcelStatus.DELIVERED, ParcelStatus.RECEIVED),
    (ParcelStatus.PENDING, ParcelStatus.CANCELLED),
    (ParcelStatus.PICKED_UP, ParcelStatus.CANCELLED),
    (ParcelStatus.IN_TRANSIT, ParcelStatus.CANCELLED),
    (ParcelStatus.IN_TRANSIT, ParcelStatus.IN_TRANSIT),
    (ParcelStatus.DELIVERED, ParcelStatus.DELIVERED),
])
def test_allowed_parcel_transitions(current, target):
    assert can_transition_parcel(current, target)
    ensure_parcel_transition(current, target)


@pytest.mark.parametrize("current, target", [
    (ParcelStatus.PENDING, ParcelStatus.DELIVERED),
    (ParcelStatus.PICKED_UP, ParcelStatus.RECEIVED),
    (ParcelStatus.IN_TRANSIT, ParcelStatus.PICKED_UP),
    (ParcelStatus.DELIVERED, ParcelStatus.CANCELLED),
    (ParcelStatus.RECEIVED, ParcelStatus.DELIVERED),
    (ParcelStatus.CANCELLED, ParcelStatus.PICKED_UP),
])
def test_rejected_parcel_transitions(current, target):
    assert not can_transition_parcel(current, target)
    with pytest.raises(ConflictError) as exc_info:
        ensure_parcel_transition(current, target)
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["requested_status"] == target.value


def test_terminal_states():
    assert PARCEL_TERMINAL_STATES == {ParcelStatus.RECEIVED, ParcelStatus.CANCELLED}
    for status in ParcelStatus:
        assert not can_transition_parcel(ParcelStatus.RECEIVED, status)


def test_request_decisions_only_from_pending():
    ensure_request_transition(ParcelRequestStatus.PENDING, ParcelRequestStatus.APPROVED)
    ensure_request_transition(ParcelRequestStatus.PENDING, ParcelRequestStatus.REJECTED)

    with pytest.raises(ConflictError):
        ensure_request_transition(ParcelRequestStatus.APPROVED, ParcelRequestStatus.REJECTED)
    with pytest.raises(ConflictError):
        ensure_request_transition(ParcelRequestStatus.REJECTED, ParcelRequestStatus.APPROVED)
