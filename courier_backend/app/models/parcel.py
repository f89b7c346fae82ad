"""
Parcel database model.

A parcel is a priced, trackable shipment, created directly by an admin or
converted from an approved parcel request.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from courier_backend.app.db.session import Base
from courier_backend.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel model.

    At most one non-deleted parcel may reference a given parcel request; the
    partial unique index below is what enforces it under concurrent approvals.
    """
    __tablename__ = "parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tracking_number = Column(String(32), unique=True, nullable=False, index=True)

    # Parties
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    description = Column(String(500), nullable=False)
    weight = Column(Float, nullable=False)
    price = Column(Float, nullable=False)

    status = Column(Enum(ParcelStatus), default=ParcelStatus.PENDING, nullable=False, index=True)

    # Locations (coordinates are null when geocoding was unavailable)
    pickup_location = Column(String(500), nullable=False)
    pickup_latitude = Column(Float, nullable=True)
    pickup_longitude = Column(Float, nullable=True)
    destination_location = Column(String(500), nullable=False)
    destination_latitude = Column(Float, nullable=True)
    destination_longitude = Column(Float, nullable=True)
    current_location = Column(String(500), nullable=True)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)

    parcel_request_id = Column(Integer, ForeignKey("parcel_requests.id"), nullable=True, index=True)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    sender = relationship("User", foreign_keys=[sender_id], lazy="selectin")
    receiver = relationship("User", foreign_keys=[receiver_id], lazy="selectin")
    payment = relationship("Payment", back_populates="parcel", uselist=False, lazy="selectin")

    __table_args__ = (
        Index(
            "uq_parcels_active_parcel_request",
            "parcel_request_id",
            unique=True,
            postgresql_where=text("is_deleted = false AND parcel_request_id IS NOT NULL"),
            sqlite_where=text("is_deleted = 0 AND parcel_request_id IS NOT NULL"),
        ),
    )

    def __repr__(self):
        return f"<Parcel(id={self.id}, tracking='{self.tracking_number}', status='{self.status.value}')>"
