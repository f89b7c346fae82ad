"""
Notification event schemas.

Events describe what happened; templating and delivery belong to the channel
that consumes the queue.
"""

import enum
from pydantic import BaseModel, Field
from typing import Any, Dict


class NotificationEventType(str, enum.Enum):
    NEW_PARCEL_REQUEST = "new_parcel_request"
    PARCEL_REQUEST_STATUS_UPDATE = "parcel_request_status_update"
    PARCEL_REQUEST_REJECTED = "parcel_request_rejected"
    PARCEL_STATUS_UPDATE = "parcel_status_update"
    NEW_USER_CREDENTIALS = "new_user_credentials"


# Payload keys never written anywhere but the outgoing queue
SENSITIVE_PAYLOAD_KEYS = frozenset({"temp_password"})


class NotificationEvent(BaseModel):
    recipient_email: str
    event_type: NotificationEventType
    payload: Dict[str, Any] = Field(default_factory=dict)

    def redacted_payload(self) -> Dict[str, Any]:
        return {
            key: ("***" if key in SENSITIVE_PAYLOAD_KEYS else value)
            for key, value in self.payload.items()
        }


class NotificationJob(BaseModel):
    """Envelope stored on the Redis queue."""
    id: str
    event: NotificationEvent
    attempts: int = 0
