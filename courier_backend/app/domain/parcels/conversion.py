"""
Conversion Orchestrator.

Turns an APPROVED parcel request into exactly one parcel. The existence
check is only a fast path: the partial unique index on
``parcels.parcel_request_id`` is the final arbiter, and losing that race is
treated as "already converted" rather than as an error.

Each attempt is one transaction covering the request's status change (when
approving), receiver provisioning and the parcel insert. Notification events
are returned to the caller for dispatch after commit.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.config import settings
from courier_backend.app.core.exceptions import PersistenceError, ResourceNotFoundError
from courier_backend.app.domain.parcels.factory import build_parcel, load_parcel
from courier_backend.app.domain.parcels.locations import resolve_location
from courier_backend.app.models.parcel import Parcel
from courier_backend.app.models.parcel_enums import ParcelRequestStatus
from courier_backend.app.models.parcel_request import ParcelRequest
from courier_backend.app.schemas.notification import NotificationEvent
from courier_backend.app.schemas.parcel_request import ParcelConversionCreate
from courier_backend.app.services.audit import log_event, AuditAction
from courier_backend.app.services.geocoding import GeocodingService
from courier_backend.app.services.identity_provisioner import (
    ensure_not_admin,
    ensure_receiver,
    find_user_by_email,
)
from courier_backend.app.services.notification_dispatcher import parcel_party_events

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    request: ParcelRequest
    parcel: Parcel
    created: bool
    request_changed: bool = False
    events: List[NotificationEvent] = field(default_factory=list)


class ConversionOrchestrator:

    def __init__(self, db: AsyncSession, geocoder: GeocodingService):
        self.db = db
        self.geocoder = geocoder

    async def find_existing(self, request_id: int) -> Optional[Parcel]:
        result = await self.db.execute(
            select(Parcel)
            .where(Parcel.parcel_request_id == request_id, Parcel.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _load_request(self, request_id: int, for_update: bool = False) -> ParcelRequest:
        query = select(ParcelRequest).where(
            ParcelRequest.id == request_id,
            ParcelRequest.is_deleted == False
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFoundError("Parcel request", request_id)
        return request

    async def convert(
        self,
        request_id: int,
        actor: Optional[dict] = None,
        coordinates: Optional[ParcelConversionCreate] = None,
        prepare: Optional[Callable[[ParcelRequest], bool]] = None,
    ) -> ConversionResult:
        """
        Materialize the parcel for a request, or return the one that exists.

        Args:
            request_id: Parcel request to convert
            actor: Admin performing the conversion
            coordinates: Optional pickup/destination coordinates that skip geocoding
            prepare: Hook run inside the conversion transaction before the insert;
                the approval flow uses it to move the request to APPROVED. Returns
                True if it changed the request.

        Raises:
            ResourceNotFoundError: request missing/deleted, or not APPROVED
                (when no ``prepare`` hook approves it)
            InsufficientPermissionsError: receiver email belongs to an admin
            PersistenceError: uniqueness conflicts persisted past the retry budget
        """
        request = await self._load_request(request_id)

        existing = await self.find_existing(request.id)
        if existing is not None:
            logger.info("Parcel request %s already converted to parcel %s", request.id, existing.id)
            return ConversionResult(request=request, parcel=existing, created=False)

        if prepare is None and request.status != ParcelRequestStatus.APPROVED:
            raise ResourceNotFoundError("Approved parcel request", request_id)

        ensure_not_admin(await find_user_by_email(self.db, request.receiver_email))

        # Geocode before opening the write transaction
        coordinates = coordinates or ParcelConversionCreate()
        pickup_raw = request.pickup_location
        destination_raw = request.destination_location
        pickup = await resolve_location(
            self.geocoder, pickup_raw, coordinates.pickup_latitude, coordinates.pickup_longitude
        )
        destination = await resolve_location(
            self.geocoder, destination_raw, coordinates.destination_latitude, coordinates.destination_longitude
        )

        for attempt in range(1, settings.tracking_number_max_attempts + 1):
            try:
                request = await self._load_request(request_id, for_update=True)
                existing = await self.find_existing(request.id)
                if existing is not None:
                    await self.db.commit()
                    return ConversionResult(request=request, parcel=existing, created=False)

                request_changed = prepare(request) if prepare else False
                if request.status != ParcelRequestStatus.APPROVED:
                    raise ResourceNotFoundError("Approved parcel request", request_id)

                provisioned = await ensure_receiver(self.db, request.receiver_email, actor)
                parcel = await build_parcel(
                    self.db,
                    sender_id=request.sender_id,
                    receiver_id=provisioned.user.id,
                    description=request.description,
                    weight=request.weight,
                    pickup=pickup,
                    destination=destination,
                    parcel_request_id=request.id,
                )
                self.db.add(parcel)
                await self.db.flush()

                log_event(
                    self.db,
                    AuditAction.PARCEL_CONVERTED,
                    actor=actor,
                    entity_type="parcel",
                    entity_id=parcel.id,
                    metadata={
                        "parcel_request_id": request.id,
                        "tracking_number": parcel.tracking_number,
                        "price": parcel.price,
                        "receiver_provisioned": provisioned.created,
                    },
                )
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                existing = await self.find_existing(request_id)
                if existing is not None:
                    logger.info(
                        "Parcel request %s was converted concurrently; returning parcel %s",
                        request_id, existing.id,
                    )
                    return ConversionResult(
                        request=await self._load_request(request_id),
                        parcel=existing,
                        created=False,
                    )
                logger.warning(
                    "Conversion of request %s hit a uniqueness conflict (attempt %d): %s",
                    request_id, attempt, exc.orig,
                )
                continue

            parcel = await load_parcel(self.db, parcel.id)
            request = await self._load_request(request_id)
            logger.info("Parcel %s created from request %s", parcel.tracking_number, request_id)

            events = []
            if provisioned.credentials_event is not None:
                events.append(provisioned.credentials_event)
            events.extend(parcel_party_events(parcel, parcel.sender.email, parcel.receiver.email))

            return ConversionResult(
                request=request,
                parcel=parcel,
                created=True,
                request_changed=request_changed,
                events=events,
            )

        raise PersistenceError(
            "Could not convert parcel request after repeated conflicts",
            details={"parcel_request_id": request_id},
        )
