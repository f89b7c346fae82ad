"""
Parcel, parcel request and payment status enumerations.
"""

import enum


class ParcelStatus(str, enum.Enum):
    """
    Parcel status enumeration.

    Status flow:
        PENDING → PICKED_UP → IN_TRANSIT → DELIVERED → RECEIVED
        PENDING / PICKED_UP / IN_TRANSIT → CANCELLED
    """
    PENDING = "PENDING"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class ParcelRequestStatus(str, enum.Enum):
    """
    Parcel request status enumeration.

    Status flow:
        PENDING → APPROVED | REJECTED (both terminal)
    """
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"
