"""
Audit Log Database Model.

Records every parcel request and parcel state transition with its actor.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from courier_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - PARCEL_REQUEST_SUBMITTED / APPROVED / REJECTED / DELETED
    - PARCEL_CREATED / STATUS_CHANGED / RECEIVED / DELETED
    - RECEIVER_PROVISIONED / PAYMENT_SETTLED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # None for system actions
    actor_id = Column(Integer, index=True, nullable=True)
    actor_email = Column(String(255), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    entity_type = Column(String(50), nullable=True, index=True)
    entity_id = Column(Integer, nullable=True, index=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
