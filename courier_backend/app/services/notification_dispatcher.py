"""
Notification Dispatcher.

Fire-and-forget side channel: services collect ``NotificationEvent`` objects
while they work, commit their transaction, then hand the events to the
dispatcher, which pushes them onto the Redis job queue. Queue failures are
logged and swallowed; a state transition never fails because of them.
"""

import logging
import uuid
from typing import Iterable, List, Optional

from courier_backend.app.core.config import settings
from courier_backend.app.schemas.notification import (
    NotificationEvent,
    NotificationEventType,
    NotificationJob,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:

    def __init__(self, redis_client, queue_name: Optional[str] = None):
        self.redis = redis_client
        self.queue_name = queue_name or settings.notification_queue_name

    async def dispatch(self, event: NotificationEvent) -> bool:
        """Queue one event. Returns False (and logs) if the queue is unavailable."""
        job = NotificationJob(id=str(uuid.uuid4()), event=event)
        try:
            await self.redis.rpush(self.queue_name, job.model_dump_json())
        except Exception as exc:
            logger.error(
                "Failed to queue %s notification for %s: %s",
                event.event_type.value, event.recipient_email, exc,
            )
            return False

        logger.info("Queued %s notification for %s", event.event_type.value, event.recipient_email)
        return True

    async def dispatch_all(self, events: Iterable[NotificationEvent]) -> int:
        """Queue events in order; returns how many were accepted."""
        sent = 0
        for event in events:
            if await self.dispatch(event):
                sent += 1
        return sent


# Event builders

def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def new_parcel_request_event(admin_email: str, request) -> NotificationEvent:
    return NotificationEvent(
        recipient_email=admin_email,
        event_type=NotificationEventType.NEW_PARCEL_REQUEST,
        payload={
            "request_id": request.id,
            "sender_email": request.sender.email if request.sender else None,
            "receiver_email": request.receiver_email,
            "description": request.description,
            "weight": request.weight,
            "pickup_location": request.pickup_location,
            "destination_location": request.destination_location,
            "requested_pickup_date": _iso(request.requested_pickup_date),
        },
    )


def request_status_update_event(sender_email: str, request) -> NotificationEvent:
    return NotificationEvent(
        recipient_email=sender_email,
        event_type=NotificationEventType.PARCEL_REQUEST_STATUS_UPDATE,
        payload={
            "request_id": request.id,
            "status": request.status.value,
            "admin_notes": request.admin_notes,
            "description": request.description,
        },
    )


def request_rejected_event(sender, request) -> NotificationEvent:
    return NotificationEvent(
        recipient_email=sender.email,
        event_type=NotificationEventType.PARCEL_REQUEST_REJECTED,
        payload={
            "request_id": request.id,
            "sender_name": sender.full_name,
            "receiver_email": request.receiver_email,
            "description": request.description,
            "weight": request.weight,
            "pickup_location": request.pickup_location,
            "destination_location": request.destination_location,
            "admin_notes": request.admin_notes,
        },
    )


def parcel_status_event(recipient_email: str, parcel) -> NotificationEvent:
    return NotificationEvent(
        recipient_email=recipient_email,
        event_type=NotificationEventType.PARCEL_STATUS_UPDATE,
        payload={
            "parcel_id": parcel.id,
            "tracking_number": parcel.tracking_number,
            "status": parcel.status.value,
            "description": parcel.description,
            "current_location": parcel.current_location,
            "destination_location": parcel.destination_location,
            "price": parcel.price,
        },
    )


def parcel_party_events(parcel, sender_email: str, receiver_email: str) -> List[NotificationEvent]:
    """Status notifications for both sender and receiver of a parcel."""
    return [
        parcel_status_event(sender_email, parcel),
        parcel_status_event(receiver_email, parcel),
    ]


def credentials_event(user, temp_password: str) -> NotificationEvent:
    return NotificationEvent(
        recipient_email=user.email,
        event_type=NotificationEventType.NEW_USER_CREDENTIALS,
        payload={
            "first_name": user.first_name,
            "last_name": user.last_name,
            "temp_password": temp_password,
            "expires_at": _iso(user.temp_password_expiry),
        },
    )
