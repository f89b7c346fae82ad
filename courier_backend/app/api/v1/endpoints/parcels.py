"""
Parcel API endpoints.

Admins create parcels and drive them through their lifecycle; senders and
receivers can read their parcels and receivers confirm delivery.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.dependencies import get_current_user, get_geocoder, get_notifier
from courier_backend.app.core.guards import require_admin
from courier_backend.app.db.session import get_db
from courier_backend.app.domain.parcels.parcel_service import ParcelSearchFilters, ParcelService
from courier_backend.app.models.parcel_enums import ParcelStatus
from courier_backend.app.schemas.common import MessageResponse
from courier_backend.app.schemas.parcel import (
    BulkParcelStatusResponse,
    BulkParcelStatusUpdate,
    ParcelCreate,
    ParcelListResponse,
    ParcelResponse,
    ParcelStatusUpdate,
)
from courier_backend.app.services.geocoding import GeocodingService
from courier_backend.app.services.notification_dispatcher import NotificationDispatcher

router = APIRouter(prefix="/parcels", tags=["Parcels"])


def get_parcel_service(
    db: AsyncSession = Depends(get_db),
    geocoder: GeocodingService = Depends(get_geocoder),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ParcelService:
    return ParcelService(db, geocoder, notifier)


@router.post("", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def create_parcel(
    data: ParcelCreate,
    current_user: dict = Depends(require_admin),
    service: ParcelService = Depends(get_parcel_service)
):
    """
    Create a parcel directly (Admin only).

    Price comes from the weight tier; unknown receivers get an account and
    a temporary password by email.
    """
    return await service.create(data, current_user)


@router.get("", response_model=ParcelListResponse)
async def search_parcels(
    status_filter: Optional[ParcelStatus] = Query(None, alias="status"),
    tracking_number: Optional[str] = Query(None),
    sender_id: Optional[int] = Query(None),
    receiver_id: Optional[int] = Query(None),
    receiver_email: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: ParcelService = Depends(get_parcel_service)
):
    """Search parcels, newest first. Non-admins only see parcels they send or receive."""
    filters = ParcelSearchFilters(
        status=status_filter,
        tracking_number=tracking_number,
        sender_id=sender_id,
        receiver_id=receiver_id,
        receiver_email=receiver_email,
        created_from=created_from,
        created_to=created_to,
    )
    return await service.search(filters, current_user, page=page, limit=limit)


@router.put("/bulk-update-status", response_model=BulkParcelStatusResponse)
async def bulk_update_parcel_status(
    data: BulkParcelStatusUpdate,
    current_user: dict = Depends(require_admin),
    service: ParcelService = Depends(get_parcel_service)
):
    """Apply one status to several parcels; any illegal transition aborts all (Admin only)."""
    updated = await service.bulk_update_status(data.parcel_ids, data.status, current_user)
    return BulkParcelStatusResponse(
        message=f"Updated {updated} parcels to {data.status.value}",
        updated_count=updated,
    )


@router.get("/{parcel_id}", response_model=ParcelResponse)
async def get_parcel(
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(get_current_user),
    service: ParcelService = Depends(get_parcel_service)
):
    return await service.get(parcel_id, current_user)


@router.patch("/{parcel_id}/status", response_model=ParcelResponse)
async def update_parcel_status(
    data: ParcelStatusUpdate,
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(require_admin),
    service: ParcelService = Depends(get_parcel_service)
):
    """
    Move a parcel to its next status (Admin only).

    DELIVERED pins the location to the destination and settles the payment.
    """
    return await service.update_status(parcel_id, data.status, data.current_location, current_user)


@router.patch("/{parcel_id}/received", response_model=ParcelResponse)
async def mark_parcel_received(
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(get_current_user),
    service: ParcelService = Depends(get_parcel_service)
):
    """Receiver confirms a delivered parcel."""
    return await service.mark_received(parcel_id, current_user)


@router.delete("/{parcel_id}", response_model=MessageResponse)
async def delete_parcel(
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(require_admin),
    service: ParcelService = Depends(get_parcel_service)
):
    await service.delete(parcel_id, current_user)
    return MessageResponse(message="Parcel deleted successfully")
