"""
Parcel construction shared by direct creation and request conversion.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.config import settings
from courier_backend.app.domain.parcels.locations import ResolvedLocation
from courier_backend.app.domain.parcels.tracking_number import generate_tracking_number
from courier_backend.app.domain.pricing.pricing_calculator import calculate_parcel_price
from courier_backend.app.models.parcel import Parcel
from courier_backend.app.models.parcel_enums import ParcelStatus

INITIAL_PARCEL_STATUS = ParcelStatus.PICKED_UP


async def allocate_tracking_number(db: AsyncSession) -> str:
    """
    Pick a tracking number not currently in use.

    This only narrows the window; the unique constraint on insert decides.
    """
    candidate = generate_tracking_number()
    for _ in range(settings.tracking_number_max_attempts - 1):
        taken = await db.execute(
            select(Parcel.id).where(Parcel.tracking_number == candidate)
        )
        if taken.first() is None:
            break
        candidate = generate_tracking_number()
    return candidate


async def build_parcel(
    db: AsyncSession,
    *,
    sender_id: int,
    receiver_id: int,
    description: str,
    weight: float,
    pickup: ResolvedLocation,
    destination: ResolvedLocation,
    parcel_request_id: Optional[int] = None,
) -> Parcel:
    """
    Build an unsaved parcel: priced, tracked, picked up at its pickup point.
    """
    return Parcel(
        tracking_number=await allocate_tracking_number(db),
        sender_id=sender_id,
        receiver_id=receiver_id,
        description=description,
        weight=weight,
        price=calculate_parcel_price(weight),
        status=INITIAL_PARCEL_STATUS,
        pickup_location=pickup.location,
        pickup_latitude=pickup.latitude,
        pickup_longitude=pickup.longitude,
        destination_location=destination.location,
        destination_latitude=destination.latitude,
        destination_longitude=destination.longitude,
        current_location=pickup.location,
        current_latitude=pickup.latitude,
        current_longitude=pickup.longitude,
        parcel_request_id=parcel_request_id,
        is_deleted=False,
    )


async def load_parcel(db: AsyncSession, parcel_id: int, include_deleted: bool = False) -> Optional[Parcel]:
    """Fetch a parcel, refreshing any copy already in the session."""
    query = select(Parcel).where(Parcel.id == parcel_id)
    if not include_deleted:
        query = query.where(Parcel.is_deleted == False)
    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()
