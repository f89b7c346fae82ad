"""
Parcel Pydantic schemas.

Defines request and response models for parcel management and tracking.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List, Tuple
from courier_backend.app.models.parcel_enums import ParcelStatus, PaymentMethod, PaymentStatus
from courier_backend.app.schemas.common import UserSummary, Pagination


class ParcelCreate(BaseModel):
    """Schema for creating a parcel directly (admin only)."""
    receiver_email: EmailStr = Field(..., description="Receiver email; unknown receivers get an account")
    receiver_name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    weight: float = Field(..., ge=0.1, le=1000, description="Weight in kilograms")
    pickup_location: str = Field(..., min_length=1, max_length=500)
    pickup_latitude: Optional[float] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(None, ge=-180, le=180)
    destination_location: str = Field(..., min_length=1, max_length=500)
    destination_latitude: Optional[float] = Field(None, ge=-90, le=90)
    destination_longitude: Optional[float] = Field(None, ge=-180, le=180)


class ParcelStatusUpdate(BaseModel):
    """Schema for a parcel status change."""
    status: ParcelStatus
    current_location: Optional[str] = Field(None, max_length=500)


class BulkParcelStatusUpdate(BaseModel):
    parcel_ids: List[int] = Field(..., min_length=1)
    status: ParcelStatus


class BulkParcelStatusResponse(BaseModel):
    message: str
    updated_count: int


class PaymentSummary(BaseModel):
    id: int
    amount: float
    currency: str
    status: PaymentStatus
    method: PaymentMethod
    processed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    id: int
    tracking_number: str
    sender_id: int
    receiver_id: int
    description: str
    weight: float
    price: float
    weight_category: Optional[str] = None
    status: ParcelStatus
    pickup_location: str
    pickup_latitude: Optional[float]
    pickup_longitude: Optional[float]
    destination_location: str
    destination_latitude: Optional[float]
    destination_longitude: Optional[float]
    current_location: Optional[str]
    current_latitude: Optional[float]
    current_longitude: Optional[float]
    parcel_request_id: Optional[int]
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    sender: Optional[UserSummary] = None
    receiver: Optional[UserSummary] = None
    payment: Optional[PaymentSummary] = None
    estimated_distance_km: Optional[float] = None
    estimated_delivery_hours: Optional[int] = None

    class Config:
        from_attributes = True


class ParcelTrackingResponse(ParcelResponse):
    """Public tracking view with the route drawn so far (or in full once delivered)."""
    route_polyline: List[Tuple[float, float]] = Field(default_factory=list)


class ParcelListResponse(BaseModel):
    """Schema for paginated parcel list."""
    parcels: List[ParcelResponse]
    pagination: Pagination


class ParcelBrief(BaseModel):
    id: int
    tracking_number: str
    status: ParcelStatus

    class Config:
        from_attributes = True
