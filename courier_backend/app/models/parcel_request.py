"""
Parcel request database model.

A parcel request is a sender's delivery intent awaiting admin review.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from courier_backend.app.db.session import Base
from courier_backend.app.models.parcel_enums import ParcelRequestStatus


class ParcelRequest(Base):
    """
    Parcel request model.

    Only the admin changes status/admin_notes; the owner or an admin may soft
    delete it while it is still PENDING. Rows are never hard-deleted.
    """
    __tablename__ = "parcel_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_email = Column(String(255), nullable=False, index=True)
    receiver_name = Column(String(200), nullable=False, default="")

    description = Column(String(500), nullable=False)
    weight = Column(Float, nullable=False)
    pickup_location = Column(String(500), nullable=False)
    destination_location = Column(String(500), nullable=False)
    requested_pickup_date = Column(DateTime(timezone=True), nullable=True)
    special_instructions = Column(Text, nullable=True)

    status = Column(Enum(ParcelRequestStatus), default=ParcelRequestStatus.PENDING, nullable=False, index=True)
    admin_notes = Column(Text, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    sender = relationship("User", lazy="selectin")
    created_parcels = relationship(
        "Parcel",
        lazy="selectin",
        primaryjoin="and_(ParcelRequest.id == Parcel.parcel_request_id, Parcel.is_deleted == False)",
        viewonly=True,
    )

    def __repr__(self):
        return f"<ParcelRequest(id={self.id}, sender_id={self.sender_id}, status='{self.status.value}')>"
