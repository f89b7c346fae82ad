"""
Parcel request service.

Submission, admin decisions, listing and soft delete for parcel requests.
Approving a request converts it into its parcel in the same transaction that
records the approval; re-sending a decision the request already carries is
a no-op that returns the current state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from courier_backend.app.core.config import settings
from courier_backend.app.core.exceptions import (
    BadRequestError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
)
from courier_backend.app.core.guards import OwnershipGuard
from courier_backend.app.domain.parcels.conversion import ConversionOrchestrator
from courier_backend.app.domain.parcels.parcel_service import parcel_to_response
from courier_backend.app.domain.parcels.state_machine import ensure_request_transition
from courier_backend.app.models.enums import UserRole
from courier_backend.app.models.parcel_enums import ParcelRequestStatus
from courier_backend.app.models.parcel_request import ParcelRequest
from courier_backend.app.models.user import User
from courier_backend.app.schemas.common import Pagination
from courier_backend.app.schemas.parcel import ParcelResponse
from courier_backend.app.schemas.parcel_request import (
    ParcelConversionCreate,
    ParcelRequestCreate,
    ParcelRequestDecisionResponse,
    ParcelRequestListResponse,
    ParcelRequestResponse,
    ParcelRequestStatusUpdate,
)
from courier_backend.app.services.audit import log_event, AuditAction
from courier_backend.app.services.geocoding import GeocodingService
from courier_backend.app.services.identity_provisioner import (
    ensure_not_admin,
    find_user_by_email,
    normalize_email,
)
from courier_backend.app.services.notification_dispatcher import (
    NotificationDispatcher,
    new_parcel_request_event,
    request_rejected_event,
    request_status_update_event,
)

logger = logging.getLogger(__name__)

ownership_guard = OwnershipGuard()


class ParcelRequestService:

    def __init__(self, db: AsyncSession, geocoder: GeocodingService, notifier: NotificationDispatcher):
        self.db = db
        self.geocoder = geocoder
        self.notifier = notifier
        self.conversion = ConversionOrchestrator(db, geocoder)

    async def _get_or_404(self, request_id: int, for_update: bool = False) -> ParcelRequest:
        query = (
            select(ParcelRequest)
            .where(ParcelRequest.id == request_id, ParcelRequest.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFoundError("Parcel request", request_id)
        return request

    async def _admin_emails(self):
        result = await self.db.execute(
            select(User.email).where(
                User.role == UserRole.ADMIN,
                User.is_deleted == False,
                User.is_active == True
            )
        )
        return result.scalars().all()

    async def submit(self, data: ParcelRequestCreate, current_user: dict) -> ParcelRequestResponse:
        """
        Record a sender's delivery request as PENDING and alert every admin.

        Raises:
            InsufficientPermissionsError: receiver is the sender or an admin
        """
        sender = await self.db.get(User, current_user["user_id"])
        if sender is None or sender.is_deleted:
            raise ResourceNotFoundError("User", current_user["user_id"])

        receiver_email = normalize_email(data.receiver_email)
        if receiver_email == sender.email.lower():
            raise InsufficientPermissionsError("You cannot send a parcel to yourself")

        receiver = await find_user_by_email(self.db, receiver_email)
        ensure_not_admin(receiver)

        request = ParcelRequest(
            sender_id=sender.id,
            receiver_email=receiver_email,
            receiver_name=receiver.full_name if receiver else (data.receiver_name or ""),
            description=data.description,
            weight=data.weight,
            pickup_location=data.pickup_location,
            destination_location=data.destination_location,
            requested_pickup_date=data.requested_pickup_date,
            special_instructions=data.special_instructions,
            status=ParcelRequestStatus.PENDING,
            is_deleted=False,
        )
        self.db.add(request)
        await self.db.flush()
        log_event(
            self.db,
            AuditAction.PARCEL_REQUEST_SUBMITTED,
            actor=current_user,
            entity_type="parcel_request",
            entity_id=request.id,
            metadata={"receiver_email": receiver_email, "weight": data.weight},
        )
        await self.db.commit()

        request = await self._get_or_404(request.id)
        logger.info("Parcel request %s submitted by %s", request.id, sender.email)

        admins = await self._admin_emails()
        await self.notifier.dispatch_all(new_parcel_request_event(email, request) for email in admins)

        return ParcelRequestResponse.model_validate(request)

    async def get(self, request_id: int, current_user: dict) -> ParcelRequestResponse:
        request = await self._get_or_404(request_id)
        ownership_guard.enforce(request.sender_id, current_user, "parcel request", "view")
        return ParcelRequestResponse.model_validate(request)

    async def list(
        self,
        current_user: dict,
        status: Optional[ParcelRequestStatus] = None,
        sender_id: Optional[int] = None,
        page: int = 1,
        limit: int = None,
    ) -> ParcelRequestListResponse:
        """Paginated requests, newest first. Non-admins only ever see their own."""
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        conditions = [ParcelRequest.is_deleted == False]

        owner_id = ownership_guard.filter_by_ownership(current_user)
        if owner_id is not None:
            conditions.append(ParcelRequest.sender_id == owner_id)
        elif sender_id is not None:
            conditions.append(ParcelRequest.sender_id == sender_id)

        if status is not None:
            conditions.append(ParcelRequest.status == status)

        total = (await self.db.execute(
            select(func.count(ParcelRequest.id)).where(*conditions)
        )).scalar_one()

        result = await self.db.execute(
            select(ParcelRequest)
            .where(*conditions)
            .order_by(desc(ParcelRequest.created_at), desc(ParcelRequest.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return ParcelRequestListResponse(
            requests=[ParcelRequestResponse.model_validate(r) for r in result.scalars().all()],
            pagination=Pagination.build(total, page, limit),
        )

    async def set_status(
        self,
        request_id: int,
        data: ParcelRequestStatusUpdate,
        current_user: dict,
    ) -> ParcelRequestDecisionResponse:
        """
        Approve or reject a PENDING request.

        APPROVED converts the request into its parcel. Repeating the decision
        the request already has changes nothing; switching between APPROVED
        and REJECTED raises ConflictError.
        """
        request = await self._get_or_404(request_id)
        target = data.status

        if request.status == target:
            return await self._replay_decision(request, current_user)

        ensure_request_transition(request.status, target)

        if target == ParcelRequestStatus.REJECTED:
            return await self._reject(request_id, data.admin_notes, current_user)

        def approve(locked: ParcelRequest) -> bool:
            if locked.status == ParcelRequestStatus.APPROVED:
                return False
            ensure_request_transition(locked.status, ParcelRequestStatus.APPROVED)
            locked.status = ParcelRequestStatus.APPROVED
            locked.admin_notes = data.admin_notes
            log_event(
                self.db,
                AuditAction.PARCEL_REQUEST_APPROVED,
                actor=current_user,
                entity_type="parcel_request",
                entity_id=locked.id,
                metadata={"admin_notes": data.admin_notes},
            )
            return True

        result = await self.conversion.convert(request_id, actor=current_user, prepare=approve)

        events = []
        if result.request_changed:
            events.append(request_status_update_event(result.request.sender.email, result.request))
        events.extend(result.events)
        await self.notifier.dispatch_all(events)

        logger.info(
            "Parcel request %s approved; parcel %s", request_id, result.parcel.tracking_number
        )
        return ParcelRequestDecisionResponse(
            message="Parcel request approved and parcel created",
            request=ParcelRequestResponse.model_validate(result.request),
            parcel=parcel_to_response(result.parcel),
        )

    async def _reject(self, request_id: int, admin_notes: Optional[str], current_user: dict):
        # Re-read under lock: an approval may have committed since the first read
        request = await self._get_or_404(request_id, for_update=True)
        if request.status == ParcelRequestStatus.REJECTED:
            await self.db.commit()
            return await self._replay_decision(request, current_user)
        ensure_request_transition(request.status, ParcelRequestStatus.REJECTED)

        request.status = ParcelRequestStatus.REJECTED
        request.admin_notes = admin_notes
        log_event(
            self.db,
            AuditAction.PARCEL_REQUEST_REJECTED,
            actor=current_user,
            entity_type="parcel_request",
            entity_id=request.id,
            metadata={"admin_notes": admin_notes},
        )
        await self.db.commit()

        request = await self._get_or_404(request.id)
        logger.info("Parcel request %s rejected", request.id)

        await self.notifier.dispatch_all([
            request_status_update_event(request.sender.email, request),
            request_rejected_event(request.sender, request),
        ])
        return ParcelRequestDecisionResponse(
            message="Parcel request rejected",
            request=ParcelRequestResponse.model_validate(request),
        )

    async def _replay_decision(self, request: ParcelRequest, current_user: dict):
        parcel = None
        if request.status == ParcelRequestStatus.APPROVED:
            # Also repairs an approval whose parcel was never created
            result = await self.conversion.convert(request.id, actor=current_user)
            await self.notifier.dispatch_all(result.events)
            request = result.request
            parcel = parcel_to_response(result.parcel)

        logger.info("Parcel request %s already %s; nothing to do", request.id, request.status.value)
        return ParcelRequestDecisionResponse(
            message=f"Parcel request already {request.status.value}",
            request=ParcelRequestResponse.model_validate(request),
            parcel=parcel,
        )

    async def convert(
        self,
        request_id: int,
        coordinates: Optional[ParcelConversionCreate],
        current_user: dict,
    ) -> ParcelResponse:
        """Convert an already APPROVED request; returns the existing parcel if any."""
        result = await self.conversion.convert(request_id, actor=current_user, coordinates=coordinates)
        await self.notifier.dispatch_all(result.events)

        route = await self.geocoder.route(result.parcel.pickup_location, result.parcel.destination_location)
        return parcel_to_response(result.parcel, route)

    async def delete(self, request_id: int, current_user: dict):
        """
        Soft delete a request.

        Raises:
            ResourceNotFoundError: missing or already deleted
            InsufficientPermissionsError: caller is neither owner nor admin
            BadRequestError: request is no longer PENDING
        """
        request = await self._get_or_404(request_id)
        ownership_guard.enforce(request.sender_id, current_user, "parcel request", "delete")

        if request.status != ParcelRequestStatus.PENDING:
            raise BadRequestError(
                "Only pending parcel requests can be deleted",
                details={"current_status": request.status.value},
            )

        request.is_deleted = True
        request.deleted_at = datetime.now(timezone.utc)
        log_event(
            self.db,
            AuditAction.PARCEL_REQUEST_DELETED,
            actor=current_user,
            entity_type="parcel_request",
            entity_id=request.id,
        )
        await self.db.commit()
        logger.info("Parcel request %s deleted", request.id)
