"""
Audit trail for parcel requests, parcels, payments and provisioned receivers.

``log_event`` only stages the row on the caller's session, so an audit entry
commits or rolls back together with the change it records.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.models.audit_log import AuditLog


class AuditAction:
    PARCEL_REQUEST_SUBMITTED = "PARCEL_REQUEST_SUBMITTED"
    PARCEL_REQUEST_APPROVED = "PARCEL_REQUEST_APPROVED"
    PARCEL_REQUEST_REJECTED = "PARCEL_REQUEST_REJECTED"
    PARCEL_REQUEST_DELETED = "PARCEL_REQUEST_DELETED"

    PARCEL_CREATED = "PARCEL_CREATED"
    PARCEL_CONVERTED = "PARCEL_CONVERTED"
    PARCEL_STATUS_CHANGED = "PARCEL_STATUS_CHANGED"
    PARCEL_RECEIVED = "PARCEL_RECEIVED"
    PARCEL_DELETED = "PARCEL_DELETED"

    RECEIVER_PROVISIONED = "RECEIVER_PROVISIONED"
    PAYMENT_SETTLED = "PAYMENT_SETTLED"


def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[dict] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Stage an audit row.

    ``actor`` is the caller dict from ``get_current_user``; pass None for
    actions the system takes on its own, such as provisioning a receiver
    during conversion.
    """
    entry = AuditLog(
        actor_id=actor.get("user_id") if actor else None,
        actor_email=actor.get("email") if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )
    db.add(entry)
    return entry


async def audit_trail(db: AsyncSession, entity_type: str, entity_id: int, limit: int = 100) -> List[AuditLog]:
    """History of one entity in the order it happened."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id)
        .limit(limit)
    )
    return list(result.scalars().all())

