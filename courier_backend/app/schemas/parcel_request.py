"""
Parcel request Pydantic schemas.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List
from courier_backend.app.models.parcel_enums import ParcelRequestStatus
from courier_backend.app.schemas.common import UserSummary, Pagination
from courier_backend.app.schemas.parcel import ParcelBrief, ParcelResponse


class ParcelRequestCreate(BaseModel):
    """Schema for submitting a delivery request."""
    receiver_email: EmailStr
    receiver_name: Optional[str] = Field(None, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    weight: float = Field(..., ge=0.1, le=1000, description="Weight in kilograms")
    pickup_location: str = Field(..., min_length=1, max_length=500)
    destination_location: str = Field(..., min_length=1, max_length=500)
    requested_pickup_date: Optional[datetime] = None
    special_instructions: Optional[str] = Field(None, max_length=1000)

    @field_validator("description", "pickup_location", "destination_location")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class ParcelRequestStatusUpdate(BaseModel):
    """Admin decision on a request."""
    status: ParcelRequestStatus
    admin_notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("status")
    @classmethod
    def decision_only(cls, value: ParcelRequestStatus) -> ParcelRequestStatus:
        if value == ParcelRequestStatus.PENDING:
            raise ValueError("status must be APPROVED or REJECTED")
        return value


class ParcelConversionCreate(BaseModel):
    """Optional coordinates for converting an approved request."""
    pickup_latitude: Optional[float] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(None, ge=-180, le=180)
    destination_latitude: Optional[float] = Field(None, ge=-90, le=90)
    destination_longitude: Optional[float] = Field(None, ge=-180, le=180)


class ParcelRequestResponse(BaseModel):
    id: int
    sender_id: int
    receiver_email: str
    receiver_name: str
    description: str
    weight: float
    pickup_location: str
    destination_location: str
    requested_pickup_date: Optional[datetime]
    special_instructions: Optional[str]
    status: ParcelRequestStatus
    admin_notes: Optional[str]
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    sender: Optional[UserSummary] = None
    created_parcels: List[ParcelBrief] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ParcelRequestDecisionResponse(BaseModel):
    message: str
    request: ParcelRequestResponse
    parcel: Optional[ParcelResponse] = None


class ParcelRequestListResponse(BaseModel):
    requests: List[ParcelRequestResponse]
    pagination: Pagination
