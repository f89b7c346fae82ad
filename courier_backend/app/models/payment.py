"""
Payment database model.

Payments are settled automatically when a parcel is delivered; the unique
parcel_id keeps it to one payment per parcel.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from courier_backend.app.db.session import Base
from courier_backend.app.models.parcel_enums import PaymentStatus, PaymentMethod


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    parcel_id = Column(Integer, ForeignKey("parcels.id"), unique=True, nullable=False, index=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="KES")
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    method = Column(Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    parcel = relationship("Parcel", back_populates="payment")

    def __repr__(self):
        return f"<Payment(id={self.id}, parcel_id={self.parcel_id}, amount={self.amount}, status='{self.status.value}')>"
