"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from glassbox_backend.app.main import app
from glassbox_backend.app.db.session import get_db, get_session_factory, Base
from glassbox_backend.app.core.redis_client import get_redis
from glassbox_backend.app.core.jwt import create_access_token
import glassbox_backend.app.core.redis_client as redis_client_module
from glassbox_backend.app.models.ad_view_transaction import AdViewTransaction
from glassbox_backend.app.models.fee_enums import FeeEntity
from glassbox_backend.app.schemas.fee_schema import BusinessSchemaFeeCreate
from glassbox_backend.app.services.fee_schemas import FeeSchemaService

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

ADMIN_USER = {"sub": "finance_admin", "user_id": 1, "role": "ADMIN"}


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False, xx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        if xx and key not in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.ttls = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    def override_get_session_factory():
        return TestingSessionLocal

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


def auth_headers(**claims) -> dict:
    token = create_access_token(data=claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_headers(**ADMIN_USER)


@pytest.fixture
def merchant_headers():
    return auth_headers(sub="merchant_user", user_id=20, role="MERCHANT", merchant_id="M-001")


@pytest.fixture
def partner_headers():
    return auth_headers(sub="partner_user", user_id=30, role="PARTNER", partner_id="P-001")


@pytest.fixture
def create_fee(db_session, redis_client_session):
    """Create a business schema fee through the service (with its first revision)."""
    async def _create(merchant_id, entity, amount, effective_from=datetime(2024, 1, 1), is_active=True):
        data = BusinessSchemaFeeCreate(
            entity=FeeEntity(entity),
            merchant_id=merchant_id,
            amount=Decimal(str(amount)),
            is_active=is_active,
            effective_from=effective_from
        )
        return await FeeSchemaService.create_schema(db_session, redis_client_session, data, ADMIN_USER)
    return _create


@pytest.fixture
def add_transactions(db_session):
    """Insert ad view transactions; each row is a dict of column overrides."""
    async def _add(overrides_list):
        rows = []
        for overrides in overrides_list:
            values = {
                "merchant_id": "M-001",
                "partner_id": "P-001",
                "advertisement_id": "AD-1",
                "device_id": "DEV-1",
                "category": "FOOD",
                "amount": Decimal("100.00"),
                "currency": "IDR",
                "displayed_at": datetime(2024, 3, 15, 12, 0, 0),
            }
            values.update(overrides)
            rows.append(AdViewTransaction(**values))
        db_session.add_all(rows)
        await db_session.commit()
        return rows
    return _add
