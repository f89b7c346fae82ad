"""
Stage 4: Conversion idempotency.

A request must never produce more than one live parcel, whether approvals
arrive one after another or race past the existence check.
"""

import pytest
from sqlalchemy import select, func, update

from courier_backend.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    PersistenceError,
    ResourceNotFoundError,
)
from courier_backend.app.domain.parcel_requests.request_service import ParcelRequestService
from courier_backend.app.domain.parcels.conversion import ConversionOrchestrator
from courier_backend.app.models.parcel import Parcel
from courier_backend.app.models.parcel_enums import ParcelRequestStatus
from courier_backend.app.models.parcel_request import ParcelRequest
from courier_backend.app.schemas.parcel_request import (
    ParcelConversionCreate,
    ParcelRequestCreate,
    ParcelRequestStatusUpdate,
)


@pytest.fixture
def request_service(db_session, geocoder, notifier):
    return ParcelRequestService(db_session, geocoder, notifier)


@pytest.fixture
def make_request(db_session, sender):
    """Persist a parcel request directly in the given status."""
    async def _make_request(status=ParcelRequestStatus.APPROVED, receiver_email="new.person@example.com"):
        request = ParcelRequest(
            sender_id=sender.id,
            receiver_email=receiver_email,
            receiver_name="",
            description="Laptop",
            weight=12,
            pickup_location="Westlands",
            destination_location="Karen",
            status=status,
        )
        db_session.add(request)
        await db_session.commit()
        return request
    return _make_request


async def live_parcel_count(db_session, request_id):
    return (await db_session.execute(
        select(func.count(Parcel.id)).where(
            Parcel.parcel_request_id == request_id,
            Parcel.is_deleted == False
        )
    )).scalar_one()


@pytest.mark.asyncio
async def test_convert_approved_request(request_service, make_request, admin, identity, redis_client):
    request = await make_request()

    parcel = await request_service.convert(request.id, None, identity(admin))

    assert parcel.parcel_request_id == request.id
    assert parcel.price == pytest.approx(96.0)
    assert parcel.weight_category == "Medium (5-20kg)"
    assert parcel.estimated_distance_km == pytest.approx(12.5)
    assert parcel.estimated_delivery_hours == 2
    assert [e["event_type"] for e in redis_client.events()] == [
        "new_user_credentials",
        "parcel_status_update",
        "parcel_status_update",
    ]


@pytest.mark.asyncio
async def test_convert_is_idempotent(request_service, make_request, admin, identity, redis_client, db_session):
    request = await make_request()

    first = await request_service.convert(request.id, None, identity(admin))
    queued = len(redis_client.events())
    second = await request_service.convert(request.id, None, identity(admin))

    assert second.id == first.id
    assert second.tracking_number == first.tracking_number
    assert await live_parcel_count(db_session, request.id) == 1
    assert len(redis_client.events()) == queued


@pytest.mark.asyncio
async def test_convert_requires_approved_request(request_service, make_request, admin, identity):
    pending = await make_request(ParcelRequestStatus.PENDING)
    rejected = await make_request(ParcelRequestStatus.REJECTED)

    with pytest.raises(ResourceNotFoundError):
        await request_service.convert(pending.id, None, identity(admin))
    with pytest.raises(ResourceNotFoundError):
        await request_service.convert(rejected.id, None, identity(admin))
    with pytest.raises(ResourceNotFoundError):
        await request_service.convert(9999, None, identity(admin))


@pytest.mark.asyncio
async def test_caller_coordinates_skip_geocoding(request_service, make_request, admin, identity, maps_stub):
    request = await make_request()
    coordinates = ParcelConversionCreate(
        pickup_latitude=-1.26, pickup_longitude=36.80,
        destination_latitude=-1.32, destination_longitude=36.70,
    )

    parcel = await request_service.convert(request.id, coordinates, identity(admin))

    assert parcel.pickup_location == "Westlands"
    assert (parcel.pickup_latitude, parcel.pickup_longitude) == (-1.26, 36.80)
    assert (parcel.destination_latitude, parcel.destination_longitude) == (-1.32, 36.70)
    assert not any(path.endswith("/geocode/json") for path in maps_stub.paths())


@pytest.mark.asyncio
async def test_geocoding_outage_keeps_raw_addresses(request_service, make_request, admin, identity, maps_stub):
    maps_stub.fail = True
    request = await make_request()

    parcel = await request_service.convert(request.id, None, identity(admin))

    assert parcel.pickup_location == "Westlands"
    assert parcel.destination_location == "Karen"
    assert parcel.pickup_latitude is None
    assert parcel.estimated_distance_km is None


@pytest.mark.asyncio
async def test_admin_receiver_blocks_conversion(request_service, make_request, admin, identity, db_session):
    request = await make_request(receiver_email=admin.email)

    with pytest.raises(InsufficientPermissionsError):
        await request_service.convert(request.id, None, identity(admin))
    assert await live_parcel_count(db_session, request.id) == 0


@pytest.mark.asyncio
async def test_lost_race_returns_winning_parcel(db_session, geocoder, make_request, admin, identity, monkeypatch):
    """
    Both approvals pass the existence check; the unique index rejects the
    second insert and the loser returns the winner's parcel.
    """
    request = await make_request()
    # The loser's rollback expires everything loaded in db_session
    request_id, as_admin = request.id, identity(admin)
    orchestrator = ConversionOrchestrator(db_session, geocoder)
    winner = await orchestrator.convert(request_id, actor=as_admin)
    assert winner.created is True
    winner_id = winner.parcel.id

    real_find_existing = ConversionOrchestrator.find_existing
    lookups = {"count": 0}

    async def stale_then_real(self, request_id):
        lookups["count"] += 1
        if lookups["count"] <= 2:
            return None
        return await real_find_existing(self, request_id)

    monkeypatch.setattr(ConversionOrchestrator, "find_existing", stale_then_real)

    loser = await orchestrator.convert(request_id, actor=as_admin)

    assert loser.created is False
    assert loser.parcel.id == winner_id
    assert loser.events == []
    assert await live_parcel_count(db_session, request_id) == 1


@pytest.mark.asyncio
async def test_persistent_conflicts_raise_persistence_error(db_session, geocoder, make_request, admin, identity, monkeypatch):
    request = await make_request()
    request_id, as_admin = request.id, identity(admin)
    orchestrator = ConversionOrchestrator(db_session, geocoder)
    await orchestrator.convert(request_id, actor=as_admin)

    async def never_found(self, request_id):
        return None

    monkeypatch.setattr(ConversionOrchestrator, "find_existing", never_found)

    with pytest.raises(PersistenceError):
        await orchestrator.convert(request_id, actor=as_admin)
    assert await live_parcel_count(db_session, request_id) == 1


@pytest.mark.asyncio
async def test_deleted_parcel_allows_reconversion(db_session, geocoder, make_request, admin, identity):
    request = await make_request()
    orchestrator = ConversionOrchestrator(db_session, geocoder)
    first = await orchestrator.convert(request.id, actor=identity(admin))

    first.parcel.is_deleted = True
    await db_session.commit()

    second = await orchestrator.convert(request.id, actor=identity(admin))
    assert second.created is True
    assert second.parcel.id != first.parcel.id
    assert await live_parcel_count(db_session, request.id) == 1


@pytest.mark.asyncio
async def test_submit_then_approve_through_service(request_service, sender, admin, identity, db_session):
    submitted = await request_service.submit(
        ParcelRequestCreate(
            receiver_email="friend@example.com",
            description="Gift",
            weight=2.5,
            pickup_location="Kilimani",
            destination_location="Ruaka",
        ),
        identity(sender),
    )
    assert submitted.status == ParcelRequestStatus.PENDING

    decision = await request_service.set_status(
        submitted.id, ParcelRequestStatusUpdate(status=ParcelRequestStatus.APPROVED), identity(admin)
    )
    assert decision.parcel.price == pytest.approx(12.5)
    assert await live_parcel_count(db_session, submitted.id) == 1
    assert decision.request.created_parcels[0].id == decision.parcel.id


@pytest.mark.asyncio
async def test_reject_loses_to_committed_approval(request_service, make_request, admin, identity, db_session, monkeypatch):
    """
    The reject path read the request while it was PENDING; an approval commits
    before the reject writes. The reject must fail instead of overwriting it.
    """
    request = await make_request(ParcelRequestStatus.PENDING)
    request_id, as_admin = request.id, identity(admin)
    real_reject = ParcelRequestService._reject

    async def approve_first(self, request_id, admin_notes, current_user):
        # Plain UPDATE leaves the already loaded object stale at PENDING
        await self.db.execute(
            update(ParcelRequest)
            .where(ParcelRequest.id == request_id)
            .values(status=ParcelRequestStatus.APPROVED)
        )
        await self.db.commit()
        return await real_reject(self, request_id, admin_notes, current_user)

    monkeypatch.setattr(ParcelRequestService, "_reject", approve_first)

    with pytest.raises(ConflictError):
        await request_service.set_status(
            request_id,
            ParcelRequestStatusUpdate(status=ParcelRequestStatus.REJECTED, admin_notes="too late"),
            as_admin,
        )

    status = (await db_session.execute(
        select(ParcelRequest.status).where(ParcelRequest.id == request_id)
    )).scalar_one()
    assert status == ParcelRequestStatus.APPROVED
