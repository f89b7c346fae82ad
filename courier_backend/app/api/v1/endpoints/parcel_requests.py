"""
Parcel request API endpoints.

Senders submit and manage their requests; admins review them. Approval
converts the request into a parcel.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.dependencies import get_current_user, get_geocoder, get_notifier
from courier_backend.app.core.exceptions import ValidationFailedError
from courier_backend.app.core.guards import require_admin
from courier_backend.app.db.session import get_db
from courier_backend.app.domain.parcel_requests.request_service import ParcelRequestService
from courier_backend.app.models.parcel_enums import ParcelRequestStatus
from courier_backend.app.schemas.common import MessageResponse
from courier_backend.app.schemas.parcel import ParcelResponse
from courier_backend.app.schemas.parcel_request import (
    ParcelConversionCreate,
    ParcelRequestCreate,
    ParcelRequestDecisionResponse,
    ParcelRequestListResponse,
    ParcelRequestResponse,
    ParcelRequestStatusUpdate,
)
from courier_backend.app.services.geocoding import GeocodingService
from courier_backend.app.services.notification_dispatcher import NotificationDispatcher

router = APIRouter(prefix="/parcel-requests", tags=["Parcel Requests"])


def get_request_service(
    db: AsyncSession = Depends(get_db),
    geocoder: GeocodingService = Depends(get_geocoder),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ParcelRequestService:
    return ParcelRequestService(db, geocoder, notifier)


def parse_request_status(value: Optional[str]) -> Optional[ParcelRequestStatus]:
    if not value or value.upper() == "ALL":
        return None
    try:
        return ParcelRequestStatus(value.upper())
    except ValueError:
        raise ValidationFailedError(
            f"Invalid parcel request status: {value}",
            details={"allowed": ["ALL"] + [s.value for s in ParcelRequestStatus]}
        )


@router.post("", response_model=ParcelRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_parcel_request(
    data: ParcelRequestCreate,
    current_user: dict = Depends(get_current_user),
    service: ParcelRequestService = Depends(get_request_service)
):
    """
    Submit a delivery request for admin review.

    The receiver may be unknown to the system; sending to yourself or to an
    admin account is forbidden.
    """
    return await service.submit(data, current_user)


@router.get("", response_model=ParcelRequestListResponse)
async def list_parcel_requests(
    status_filter: Optional[str] = Query(None, alias="status", description="PENDING, APPROVED, REJECTED or ALL"),
    sender_id: Optional[int] = Query(None, description="Admin only"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: ParcelRequestService = Depends(get_request_service)
):
    """List requests, newest first. Non-admins only see their own."""
    return await service.list(
        current_user,
        status=parse_request_status(status_filter),
        sender_id=sender_id,
        page=page,
        limit=limit,
    )


@router.get("/{request_id}", response_model=ParcelRequestResponse)
async def get_parcel_request(
    request_id: int = Path(..., description="Parcel request ID"),
    current_user: dict = Depends(get_current_user),
    service: ParcelRequestService = Depends(get_request_service)
):
    return await service.get(request_id, current_user)


@router.patch("/{request_id}/status", response_model=ParcelRequestDecisionResponse)
async def decide_parcel_request(
    data: ParcelRequestStatusUpdate,
    request_id: int = Path(..., description="Parcel request ID"),
    current_user: dict = Depends(require_admin),
    service: ParcelRequestService = Depends(get_request_service)
):
    """
    Approve or reject a request (Admin only).

    Approving creates the parcel; repeating a decision is a no-op.
    """
    return await service.set_status(request_id, data, current_user)


@router.post("/{request_id}/convert", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def convert_parcel_request(
    request_id: int = Path(..., description="Parcel request ID"),
    coordinates: Optional[ParcelConversionCreate] = Body(None),
    current_user: dict = Depends(require_admin),
    service: ParcelRequestService = Depends(get_request_service)
):
    """Create the parcel for an approved request, or return the existing one (Admin only)."""
    return await service.convert(request_id, coordinates, current_user)


@router.delete("/{request_id}", response_model=MessageResponse)
async def delete_parcel_request(
    request_id: int = Path(..., description="Parcel request ID"),
    current_user: dict = Depends(get_current_user),
    service: ParcelRequestService = Depends(get_request_service)
):
    """Soft delete a pending request (owner or admin)."""
    await service.delete(request_id, current_user)
    return MessageResponse(message="Parcel request deleted successfully")
