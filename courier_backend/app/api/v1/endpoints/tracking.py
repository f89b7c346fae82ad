"""
Public parcel tracking.

No authentication: anyone holding a tracking number can follow the parcel.
"""

from fastapi import APIRouter, Depends, Path

from courier_backend.app.api.v1.endpoints.parcels import get_parcel_service
from courier_backend.app.domain.parcels.parcel_service import ParcelService
from courier_backend.app.schemas.parcel import ParcelTrackingResponse

router = APIRouter(prefix="/tracking", tags=["Tracking"])


@router.get("/{tracking_number}", response_model=ParcelTrackingResponse)
async def track_parcel(
    tracking_number: str = Path(..., min_length=1, max_length=32),
    service: ParcelService = Depends(get_parcel_service)
):
    """Current status and route of a parcel by tracking number."""
    return await service.track_by_number(tracking_number)
