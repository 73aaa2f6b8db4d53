"""
Centralized Test Configuration.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from dailyorder.app.main import app
from dailyorder.app.db.session import get_db, Base
from dailyorder.app.core.clock import FixedClock, get_clock
from dailyorder.app.core.config import get_ordering_window
from dailyorder.app.core.redis_client import get_redis
from dailyorder.app.core.reliability import notification_circuit_breaker
from dailyorder.app.models.catalog_item import CatalogItem
from dailyorder.app.models.enums import UserRole
from dailyorder.app.models.user import User
import dailyorder.app.core.redis_client as redis_client_module
from dailyorder.tests.factories import MORNING_INSTANT, MockRedis, WindowSwitch, actor_for

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def clock():
    return FixedClock(MORNING_INSTANT)


@pytest.fixture
def window():
    return WindowSwitch(enabled=False)


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, mock_redis, clock, window):
    """Route the app's dependencies to this test's database, redis, clock and window."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis
    notification_circuit_breaker.reset_state()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_ordering_window] = lambda: window.config
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client
    notification_circuit_breaker.reset_state()


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory):
    """
    Two tenants, a platform operator and a small catalog.

    Only plain values are returned so tests can keep using them after a
    session rollback.
    """
    async with session_factory() as session:
        master = User(first_name="Platform", last_name="Operator", phone_no="9000000000",
                      role=UserRole.MASTER_ADMIN, tenant_id=None)
        admin = User(first_name="Asha", last_name="Admin", phone_no="9000000001",
                     role=UserRole.SUPER_ADMIN, tenant_id=1)
        dist1 = User(first_name="Ravi", last_name="Kumar", phone_no="9000000002",
                     role=UserRole.DISTRIBUTOR, tenant_id=1, business_name="Ravi Traders")
        dist2 = User(first_name="Meena", last_name="Shah", phone_no="9000000003",
                     role=UserRole.DISTRIBUTOR, tenant_id=1, business_name="Shah Agencies")
        admin2 = User(first_name="Other", last_name="Admin", phone_no="9000000004",
                      role=UserRole.SUPER_ADMIN, tenant_id=2)
        dist3 = User(first_name="Kiran", last_name="Rao", phone_no="9000000005",
                     role=UserRole.DISTRIBUTOR, tenant_id=2, business_name="Rao Stores")
        session.add_all([master, admin, dist1, dist2, admin2, dist3])

        item_a = CatalogItem(tenant_id=1, name="Milk 500ml", unit="pcs", rate=Decimal("10.00"), box_rate=Decimal("240.00"))
        item_b = CatalogItem(tenant_id=1, name="Curd 200g", unit="pcs", rate=Decimal("5.00"))
        item_c = CatalogItem(tenant_id=1, name="Buttermilk", unit="pcs", rate=Decimal("2.00"))
        platform_item = CatalogItem(tenant_id=None, name="Paneer 100g", unit="pcs", rate=Decimal("7.50"))
        inactive_item = CatalogItem(tenant_id=1, name="Ghee 1l", unit="pcs", rate=Decimal("99.00"), is_active=False)
        foreign_item = CatalogItem(tenant_id=2, name="Lassi", unit="pcs", rate=Decimal("3.00"))
        session.add_all([item_a, item_b, item_c, platform_item, inactive_item, foreign_item])
        await session.commit()

        return SimpleNamespace(
            master=actor_for(master),
            admin=actor_for(admin),
            dist1=actor_for(dist1),
            dist2=actor_for(dist2),
            admin2=actor_for(admin2),
            dist3=actor_for(dist3),
            item_a=item_a.id,
            item_b=item_b.id,
            item_c=item_c.id,
            platform_item=platform_item.id,
            inactive_item=inactive_item.id,
            foreign_item=foreign_item.id,
        )
