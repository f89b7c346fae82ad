"""
Parcel and parcel request state machines.

Transitions not listed here are rejected at the service boundary. Non-terminal
parcel states may transition to themselves so that a location can be updated
without changing status.
"""

from typing import Dict, FrozenSet

from courier_backend.app.core.exceptions import ConflictError
from courier_backend.app.models.parcel_enums import ParcelStatus, ParcelRequestStatus


PARCEL_TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    ParcelStatus.PENDING: frozenset({ParcelStatus.PENDING, ParcelStatus.PICKED_UP, ParcelStatus.CANCELLED}),
    ParcelStatus.PICKED_UP: frozenset({ParcelStatus.PICKED_UP, ParcelStatus.IN_TRANSIT, ParcelStatus.CANCELLED}),
    ParcelStatus.IN_TRANSIT: frozenset({ParcelStatus.IN_TRANSIT, ParcelStatus.DELIVERED, ParcelStatus.CANCELLED}),
    # Re-sending DELIVERED is a replay: location is re-forced, no second payment
    ParcelStatus.DELIVERED: frozenset({ParcelStatus.DELIVERED, ParcelStatus.RECEIVED}),
    ParcelStatus.RECEIVED: frozenset(),
    ParcelStatus.CANCELLED: frozenset(),
}

PARCEL_TERMINAL_STATES = frozenset(
    status for status, targets in PARCEL_TRANSITIONS.items() if not targets
)

REQUEST_TRANSITIONS: Dict[ParcelRequestStatus, FrozenSet[ParcelRequestStatus]] = {
    ParcelRequestStatus.PENDING: frozenset({ParcelRequestStatus.APPROVED, ParcelRequestStatus.REJECTED}),
    ParcelRequestStatus.APPROVED: frozenset(),
    ParcelRequestStatus.REJECTED: frozenset(),
}


def can_transition_parcel(current: ParcelStatus, target: ParcelStatus) -> bool:
    return target in PARCEL_TRANSITIONS[current]


def ensure_parcel_transition(current: ParcelStatus, target: ParcelStatus):
    """Raise ConflictError unless ``current → target`` is an allowed parcel move."""
    if not can_transition_parcel(current, target):
        raise ConflictError(
            f"Cannot change parcel status from {current.value} to {target.value}",
            details={"current_status": current.value, "requested_status": target.value}
        )


def ensure_request_transition(current: ParcelRequestStatus, target: ParcelRequestStatus):
    """Raise ConflictError unless ``current → target`` is an allowed request move."""
    if target not in REQUEST_TRANSITIONS[current]:
        raise ConflictError(
            f"Parcel request is already {current.value} and cannot become {target.value}",
            details={"current_status": current.value, "requested_status": target.value}
        )
