"""
Parcel service.

Owns the parcel lifecycle: direct creation, status transitions (including the
DELIVERED settlement), receiver confirmation, bulk updates, soft delete,
public tracking and scoped search. Notifications go out only after the
transaction that produced them has committed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, func, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.config import settings
from courier_backend.app.core.exceptions import (
    InsufficientPermissionsError,
    PersistenceError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from courier_backend.app.core.guards import is_admin
from courier_backend.app.domain.parcels.factory import build_parcel, load_parcel
from courier_backend.app.domain.parcels.locations import ResolvedLocation, resolve_location
from courier_backend.app.domain.parcels.state_machine import ensure_parcel_transition
from courier_backend.app.domain.pricing.pricing_calculator import get_weight_category
from courier_backend.app.models.parcel import Parcel
from courier_backend.app.models.parcel_enums import ParcelStatus, PaymentMethod, PaymentStatus
from courier_backend.app.models.payment import Payment
from courier_backend.app.models.user import User
from courier_backend.app.schemas.common import Pagination
from courier_backend.app.schemas.parcel import (
    ParcelCreate,
    ParcelListResponse,
    ParcelResponse,
    ParcelTrackingResponse,
)
from courier_backend.app.services.audit import log_event, AuditAction
from courier_backend.app.services.geocoding import GeocodingService, RouteEstimate
from courier_backend.app.services.identity_provisioner import (
    ensure_not_admin,
    ensure_receiver,
    find_user_by_email,
    normalize_email,
)
from courier_backend.app.services.notification_dispatcher import (
    NotificationDispatcher,
    parcel_party_events,
)

logger = logging.getLogger(__name__)


@dataclass
class ParcelSearchFilters:
    status: Optional[ParcelStatus] = None
    tracking_number: Optional[str] = None
    sender_id: Optional[int] = None
    receiver_id: Optional[int] = None
    receiver_email: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


def coerce_parcel_status(value: Union[ParcelStatus, str]) -> ParcelStatus:
    if isinstance(value, ParcelStatus):
        return value
    try:
        return ParcelStatus(value)
    except ValueError:
        raise ValidationFailedError(
            f"Invalid parcel status: {value}",
            details={"allowed": [s.value for s in ParcelStatus]}
        )


def parcel_to_response(
    parcel: Parcel,
    route: Optional[RouteEstimate] = None,
    model=ParcelResponse,
    **extra,
):
    response = model.model_validate(parcel)
    response.weight_category = get_weight_category(parcel.weight)
    if route is not None:
        response.estimated_distance_km = route.distance_km
        response.estimated_delivery_hours = route.duration_hours
    for key, value in extra.items():
        setattr(response, key, value)
    return response


def is_party(parcel: Parcel, current_user: dict) -> bool:
    """Sender, or receiver by id or by email."""
    user_id = current_user.get("user_id")
    if parcel.sender_id == user_id or parcel.receiver_id == user_id:
        return True
    email = current_user.get("email")
    return bool(email and parcel.receiver and parcel.receiver.email.lower() == email.lower())


def ensure_not_receiver_only(status: ParcelStatus):
    # RECEIVED goes through mark_received, never through admin status updates
    if status == ParcelStatus.RECEIVED:
        raise InsufficientPermissionsError("Only the receiver can mark a parcel as received")


class ParcelService:

    def __init__(self, db: AsyncSession, geocoder: GeocodingService, notifier: NotificationDispatcher):
        self.db = db
        self.geocoder = geocoder
        self.notifier = notifier

    async def _get_or_404(self, parcel_id: int) -> Parcel:
        parcel = await load_parcel(self.db, parcel_id)
        if parcel is None:
            raise ResourceNotFoundError("Parcel", parcel_id)
        return parcel

    async def _notify_parties(self, parcel: Parcel, extra_events=None):
        events = list(extra_events or [])
        events.extend(parcel_party_events(parcel, parcel.sender.email, parcel.receiver.email))
        await self.notifier.dispatch_all(events)

    async def create(self, data: ParcelCreate, current_user: dict) -> ParcelResponse:
        """
        Create a parcel directly, with the caller as sender.

        Unknown receivers are provisioned in the same transaction. A tracking
        number collision rolls back the attempt and retries with a fresh one.
        """
        sender_id = current_user["user_id"]
        receiver_email = normalize_email(data.receiver_email)
        if receiver_email == (current_user.get("email") or "").lower():
            raise InsufficientPermissionsError("You cannot send a parcel to yourself")
        ensure_not_admin(await find_user_by_email(self.db, receiver_email))

        pickup = await resolve_location(
            self.geocoder, data.pickup_location, data.pickup_latitude, data.pickup_longitude
        )
        destination = await resolve_location(
            self.geocoder, data.destination_location, data.destination_latitude, data.destination_longitude
        )

        for attempt in range(1, settings.tracking_number_max_attempts + 1):
            try:
                provisioned = await ensure_receiver(self.db, receiver_email, current_user)
                parcel = await build_parcel(
                    self.db,
                    sender_id=sender_id,
                    receiver_id=provisioned.user.id,
                    description=data.description,
                    weight=data.weight,
                    pickup=pickup,
                    destination=destination,
                )
                self.db.add(parcel)
                await self.db.flush()
                log_event(
                    self.db,
                    AuditAction.PARCEL_CREATED,
                    actor=current_user,
                    entity_type="parcel",
                    entity_id=parcel.id,
                    metadata={"tracking_number": parcel.tracking_number, "price": parcel.price},
                )
                await self.db.commit()
                break
            except IntegrityError as exc:
                await self.db.rollback()
                logger.warning("Parcel insert conflict on attempt %d: %s", attempt, exc.orig)
        else:
            raise PersistenceError("Could not allocate a unique tracking number")

        parcel = await load_parcel(self.db, parcel.id)
        logger.info("Parcel %s created by user %s", parcel.tracking_number, sender_id)

        extra = [provisioned.credentials_event] if provisioned.credentials_event else []
        await self._notify_parties(parcel, extra)

        route = await self.geocoder.route(parcel.pickup_location, parcel.destination_location)
        return parcel_to_response(parcel, route)

    async def get(self, parcel_id: int, current_user: dict) -> ParcelResponse:
        parcel = await self._get_or_404(parcel_id)
        if not is_admin(current_user) and not is_party(parcel, current_user):
            raise InsufficientPermissionsError("You do not have permission to view this parcel")
        route = await self.geocoder.route(parcel.pickup_location, parcel.destination_location)
        return parcel_to_response(parcel, route)

    async def _apply_status(
        self,
        parcel: Parcel,
        new_status: ParcelStatus,
        location: Optional[ResolvedLocation] = None,
    ) -> bool:
        """
        Mutate ``parcel`` for ``new_status``. Returns True if a payment was settled.
        """
        ensure_parcel_transition(parcel.status, new_status)
        settled = False

        if new_status == ParcelStatus.DELIVERED:
            parcel.current_location = parcel.destination_location
            parcel.current_latitude = parcel.destination_latitude
            parcel.current_longitude = parcel.destination_longitude
            if parcel.payment is None:
                parcel.payment = Payment(
                    amount=parcel.price,
                    currency=settings.payment_currency,
                    status=PaymentStatus.COMPLETED,
                    method=PaymentMethod.CASH,
                    processed_at=datetime.now(timezone.utc),
                )
                settled = True
        elif location is not None:
            parcel.current_location = location.location
            parcel.current_latitude = location.latitude
            parcel.current_longitude = location.longitude

        parcel.status = new_status
        return settled

    async def update_status(
        self,
        parcel_id: int,
        new_status: Union[ParcelStatus, str],
        current_location: Optional[str] = None,
        current_user: Optional[dict] = None,
    ) -> ParcelResponse:
        """
        Move a parcel along its lifecycle.

        DELIVERED forces the current location to the destination and settles
        exactly one payment for the parcel's stored price. Any other status
        may carry a new current location, geocoded best-effort.

        Raises:
            ValidationFailedError: unknown status value
            InsufficientPermissionsError: RECEIVED, which only the receiver can set
            ResourceNotFoundError: parcel missing or deleted
            ConflictError: transition not allowed from the current status
        """
        status = coerce_parcel_status(new_status)
        ensure_not_receiver_only(status)
        return await self._transition(parcel_id, status, current_location, current_user)

    async def _transition(
        self,
        parcel_id: int,
        status: ParcelStatus,
        current_location: Optional[str],
        current_user: Optional[dict],
    ) -> ParcelResponse:
        parcel = await self._get_or_404(parcel_id)
        ensure_parcel_transition(parcel.status, status)

        location = None
        if current_location and status != ParcelStatus.DELIVERED:
            location = await resolve_location(self.geocoder, current_location)

        previous = parcel.status
        try:
            settled = await self._apply_status(parcel, status, location)
            self._audit_status(parcel, previous, settled, current_user)
            await self.db.commit()
        except IntegrityError:
            # A concurrent DELIVERED settled the payment first
            await self.db.rollback()
            parcel = await self._get_or_404(parcel_id)
            if parcel.status != status or parcel.payment is None:
                raise PersistenceError("Failed to update parcel status", details={"parcel_id": parcel_id})
            logger.info("Parcel %s was already settled concurrently", parcel.tracking_number)
            return parcel_to_response(parcel)

        parcel = await load_parcel(self.db, parcel_id)
        logger.info("Parcel %s: %s -> %s", parcel.tracking_number, previous.value, status.value)
        await self._notify_parties(parcel)
        return parcel_to_response(parcel)

    def _audit_status(self, parcel: Parcel, previous: ParcelStatus, settled: bool, current_user: Optional[dict]):
        action = AuditAction.PARCEL_RECEIVED if parcel.status == ParcelStatus.RECEIVED else AuditAction.PARCEL_STATUS_CHANGED
        log_event(
            self.db,
            action,
            actor=current_user,
            entity_type="parcel",
            entity_id=parcel.id,
            metadata={
                "from": previous.value,
                "to": parcel.status.value,
                "current_location": parcel.current_location,
            },
        )
        if settled:
            log_event(
                self.db,
                AuditAction.PAYMENT_SETTLED,
                actor=current_user,
                entity_type="parcel",
                entity_id=parcel.id,
                metadata={"amount": parcel.price, "currency": settings.payment_currency},
            )

    async def mark_received(self, parcel_id: int, current_user: dict) -> ParcelResponse:
        """Receiver confirms a delivered parcel."""
        parcel = await self._get_or_404(parcel_id)
        if parcel.receiver_id != current_user.get("user_id"):
            raise InsufficientPermissionsError("Only the receiver can mark this parcel as received")
        if parcel.status != ParcelStatus.DELIVERED:
            raise InsufficientPermissionsError(
                "Parcel can only be marked as received once delivered",
                details={"current_status": parcel.status.value},
            )
        return await self._transition(parcel_id, ParcelStatus.RECEIVED, None, current_user)

    async def bulk_update_status(
        self,
        parcel_ids: List[int],
        new_status: Union[ParcelStatus, str],
        current_user: dict,
    ) -> int:
        """
        Apply one status to many parcels in a single transaction.

        Each parcel goes through the same transition rules as ``update_status``;
        one illegal transition aborts the whole batch.
        """
        status = coerce_parcel_status(new_status)
        ensure_not_receiver_only(status)
        wanted = set(parcel_ids)
        result = await self.db.execute(
            select(Parcel)
            .where(Parcel.id.in_(wanted), Parcel.is_deleted == False)
            .order_by(Parcel.id)
            .execution_options(populate_existing=True)
        )
        parcels = result.scalars().all()

        missing = sorted(wanted - {parcel.id for parcel in parcels})
        if missing:
            raise ResourceNotFoundError("Parcel", ", ".join(str(parcel_id) for parcel_id in missing))
        for parcel in parcels:
            ensure_parcel_transition(parcel.status, status)

        for parcel in parcels:
            previous = parcel.status
            settled = await self._apply_status(parcel, status)
            self._audit_status(parcel, previous, settled, current_user)

        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise PersistenceError("Failed to update parcel statuses", details={"error": str(exc.orig)})

        ids = [parcel.id for parcel in parcels]
        logger.info("Bulk status update to %s for %d parcels", status.value, len(ids))
        for parcel_id in ids:
            await self._notify_parties(await load_parcel(self.db, parcel_id))
        return len(ids)

    async def delete(self, parcel_id: int, current_user: dict):
        parcel = await self._get_or_404(parcel_id)
        parcel.is_deleted = True
        parcel.deleted_at = datetime.now(timezone.utc)
        log_event(
            self.db,
            AuditAction.PARCEL_DELETED,
            actor=current_user,
            entity_type="parcel",
            entity_id=parcel.id,
            metadata={"tracking_number": parcel.tracking_number},
        )
        await self.db.commit()
        logger.info("Parcel %s soft-deleted", parcel.tracking_number)

    async def track_by_number(self, tracking_number: str) -> ParcelTrackingResponse:
        """
        Public lookup by tracking number.

        The route runs from pickup to the current position while the parcel
        is moving and from pickup to destination otherwise.
        """
        result = await self.db.execute(
            select(Parcel).where(
                Parcel.tracking_number == tracking_number.strip().upper(),
                Parcel.is_deleted == False
            )
        )
        parcel = result.scalar_one_or_none()
        if parcel is None:
            raise ResourceNotFoundError("Parcel", tracking_number)

        origin = parcel.pickup_location
        if parcel.status in (ParcelStatus.PICKED_UP, ParcelStatus.IN_TRANSIT):
            end = parcel.current_location or parcel.pickup_location
        else:
            end = parcel.destination_location

        polyline = await self.geocoder.route_polyline(origin, end)
        return parcel_to_response(parcel, model=ParcelTrackingResponse, route_polyline=polyline)

    async def search(
        self,
        filters: ParcelSearchFilters,
        current_user: dict,
        page: int = 1,
        limit: int = None,
    ) -> ParcelListResponse:
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        conditions = [Parcel.is_deleted == False]

        if not is_admin(current_user):
            user_id = current_user.get("user_id")
            email = (current_user.get("email") or "").lower()
            conditions.append(or_(
                Parcel.sender_id == user_id,
                Parcel.receiver_id == user_id,
                Parcel.receiver.has(func.lower(User.email) == email),
            ))

        if filters.status:
            conditions.append(Parcel.status == filters.status)
        if filters.tracking_number:
            conditions.append(Parcel.tracking_number.ilike(f"%{filters.tracking_number.strip()}%"))
        if filters.sender_id is not None:
            conditions.append(Parcel.sender_id == filters.sender_id)
        if filters.receiver_id is not None:
            conditions.append(Parcel.receiver_id == filters.receiver_id)
        if filters.receiver_email:
            conditions.append(Parcel.receiver.has(func.lower(User.email) == normalize_email(filters.receiver_email)))
        if filters.created_from:
            conditions.append(Parcel.created_at >= filters.created_from)
        if filters.created_to:
            conditions.append(Parcel.created_at <= filters.created_to)

        total = (await self.db.execute(
            select(func.count(Parcel.id)).where(*conditions)
        )).scalar_one()

        result = await self.db.execute(
            select(Parcel)
            .where(*conditions)
            .order_by(desc(Parcel.created_at), desc(Parcel.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        parcels = result.scalars().all()

        return ParcelListResponse(
            parcels=[parcel_to_response(parcel) for parcel in parcels],
            pagination=Pagination.build(total, page, limit),
        )
