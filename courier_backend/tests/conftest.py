"""
Shared fixtures: a fresh SQLite database per test, an in-memory notification
queue, a stubbed maps provider and persisted admin/sender/receiver users.
"""

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from courier_backend.app.main import app
from courier_backend.app.db.session import Base, build_engine, create_tables, get_db
from courier_backend.app.core.dependencies import get_geocoder
from courier_backend.app.core.jwt import create_token_for_user
from courier_backend.app.core.redis_client import get_redis
from courier_backend.app.core.reliability import CircuitBreaker
from courier_backend.app.core.security import get_password_hash
from courier_backend.app.models.enums import UserRole
from courier_backend.app.models.user import User
from courier_backend.app.services.geocoding import GeocodingService
from courier_backend.app.services.notification_dispatcher import NotificationDispatcher
import courier_backend.app.core.redis_client as redis_client_module
from courier_backend.tests.stubs import MapsStub, MockRedis

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# bcrypt is slow on purpose; hash once for every fixture user
FIXTURE_PASSWORD_HASH = get_password_hash("password123")


def enable_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def maps_stub():
    return MapsStub()


@pytest.fixture
def geocoder(maps_stub):
    """Real geocoding adapter talking to the in-memory maps stub."""
    return GeocodingService(
        api_key="test-key",
        transport=httpx.MockTransport(maps_stub.handler),
        breaker=CircuitBreaker(failure_threshold=100, reset_timeout=60),
    )


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def notifier(redis_client):
    return NotificationDispatcher(redis_client)


@pytest.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = build_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", enable_foreign_keys)
    await create_tables(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, redis_client, geocoder):
    """Point the app at the test database, fake queue and maps stub."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Factory creating persisted users."""
    async def _make_user(email: str, role: UserRole = UserRole.USER, first_name: str = "Test", last_name: str = "User"):
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone="+254700000000",
            hashed_password=FIXTURE_PASSWORD_HASH,
            role=role,
            is_active=True,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _make_user


def identity_of(user: User) -> dict:
    return {"user_id": user.id, "sub": user.email, "email": user.email, "role": user.role.value}


@pytest.fixture
def identity():
    """Caller dict as resolved by ``get_current_user``."""
    return identity_of


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_token_for_user(user)}"}
    return _headers


@pytest.fixture
async def admin(make_user):
    return await make_user("admin@courier-mail.com", UserRole.ADMIN, "Ada", "Admin")


@pytest.fixture
async def sender(make_user):
    return await make_user("sender@courier-mail.com", UserRole.USER, "Sam", "Sender")


@pytest.fixture
async def receiver(make_user):
    return await make_user("receiver@courier-mail.com", UserRole.USER, "Rita", "Receiver")
