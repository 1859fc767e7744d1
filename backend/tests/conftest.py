"""Pytest configuration and fixtures for KopiTrace tests.

Each test gets its own file-backed SQLite database (aiosqlite).  Every
transaction starts with BEGIN IMMEDIATE, so concurrent writers serialise
on the database lock the way row locks serialise them on PostgreSQL.

Sessions: a session holds the write lock from its first statement until
it closes, so a test should not keep one open while calling run_atomic.
"""

from datetime import date
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.context import LedgerContext
from app.auth.jwt import create_access_token
from app.auth.permissions import NATIONAL_ROLES, resolve_permissions
from app.database import Base, get_db, get_session_factory
from app.main import app
from app.models import (
    ActivityType,
    Cooperative,
    CultivationActivity,
    Farmer,
    Land,
    QualityCheckpoint,
)
from app.services.batch_store import create_batch
from app.services.ledger import record_transaction
from app.services.unit_of_work import run_atomic


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """One session for tests that read and write in a single transaction."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def atomic(session_factory):
    """Run a mutation the way the routers do: own session, commit or roll back."""
    async def _atomic(operation):
        return await run_atomic(session_factory, operation)
    return _atomic


@pytest.fixture
def read(session_factory):
    """Run a query in a short-lived session."""
    async def _read(query):
        async with session_factory() as session:
            return await query(session)
    return _read


# ── Registry Fixtures ────────────────────────────────────────────

@pytest_asyncio.fixture
async def registry(session_factory) -> SimpleNamespace:
    """Seed the read-only registry.

    Aceh:  Gayo (2 farmers, one inactive; 2 lands, 2.5 ha)
           Bener Meriah (1 farmer; 1 land, 1.5 ha)
    Bali:  Kintamani (1 farmer; 1 land with no recorded area)
    """
    ns = SimpleNamespace(
        gayo="coop-gayo",
        bener="coop-bener",
        kintamani="coop-kintamani",
        farmer_gayo="farmer-gayo-1",
        farmer_gayo_inactive="farmer-gayo-2",
        farmer_bener="farmer-bener-1",
        farmer_kintamani="farmer-kintamani-1",
        land_gayo="land-gayo-1",
        land_gayo_shared="land-gayo-2",
        land_bener="land-bener-1",
        land_kintamani="land-kintamani-1",
    )

    async with session_factory() as db:
        db.add_all([
            Cooperative(id=ns.gayo, name="Koperasi Gayo Mandiri", province="Aceh", regency="Aceh Tengah"),
            Cooperative(id=ns.bener, name="Koperasi Bener Meriah", province="Aceh", regency="Bener Meriah"),
            Cooperative(id=ns.kintamani, name="Koperasi Kintamani", province="Bali", regency="Bangli"),
        ])
        db.add_all([
            Farmer(id=ns.farmer_gayo, cooperative_id=ns.gayo, name="Ahmad Syukri", is_active=True),
            Farmer(id=ns.farmer_gayo_inactive, cooperative_id=ns.gayo, name="Rahmat Hidayat", is_active=False),
            Farmer(id=ns.farmer_bener, cooperative_id=ns.bener, name="Siti Aminah", is_active=True),
            Farmer(id=ns.farmer_kintamani, cooperative_id=ns.kintamani, name="I Made Sudana", is_active=True),
        ])
        db.add_all([
            Land(id=ns.land_gayo, cooperative_id=ns.gayo, farmer_id=ns.farmer_gayo,
                 name="Kebun Atu Lintang", location="Atu Lintang", area_hectares=2.0,
                 coffee_variety="Gayo 1"),
            Land(id=ns.land_gayo_shared, cooperative_id=ns.gayo, farmer_id=None,
                 name="Kebun Bersama", area_hectares=0.5, coffee_variety="Ateng"),
            Land(id=ns.land_bener, cooperative_id=ns.bener, farmer_id=ns.farmer_bener,
                 name="Kebun Simpang Balik", area_hectares=1.5, coffee_variety="Gayo 2"),
            Land(id=ns.land_kintamani, cooperative_id=ns.kintamani, farmer_id=ns.farmer_kintamani,
                 name="Kebun Batur", area_hectares=0.0, coffee_variety="Kopyol"),
        ])
        db.add_all([
            CultivationActivity(
                land_id=ns.land_gayo, activity_type=ActivityType.HARVEST_ESTIMATE.value,
                activity_date=date(2026, 2, 1), estimated_date=date(2026, 5, 10), estimated_kg=500.0,
            ),
            CultivationActivity(
                land_id=ns.land_bener, activity_type=ActivityType.HARVEST_ESTIMATE.value,
                activity_date=date(2026, 2, 3), estimated_date=date(2026, 5, 20), estimated_kg=300.0,
            ),
            CultivationActivity(
                land_id=ns.land_kintamani, activity_type=ActivityType.HARVEST_ESTIMATE.value,
                activity_date=date(2026, 2, 5), estimated_date=date(2026, 6, 1), estimated_kg=200.0,
            ),
            CultivationActivity(
                land_id=ns.land_gayo, activity_type=ActivityType.PLANTING.value,
                activity_date=date(2025, 11, 1), estimated_kg=999.0,
            ),
        ])
        db.add(QualityCheckpoint(
            batch_code="GREENBEAN-001", checkpoint_type="PROCESSING",
            name="Moisture check", checkpoint_date=date(2026, 3, 6), score=86.5, status="PASSED",
        ))
        await db.commit()

    return ns


# ── Caller Contexts ──────────────────────────────────────────────

def make_context(role: str, cooperative_ids: list[str] | None = None, user_id: str = "user-1") -> LedgerContext:
    return LedgerContext(
        user_id=user_id,
        role=role,
        cooperative_ids=None if role in NATIONAL_ROLES else frozenset(cooperative_ids or []),
        permissions=resolve_permissions(role),
    )


@pytest.fixture
def national_ctx() -> LedgerContext:
    return make_context("SUPER_ADMIN", user_id="user-national")


@pytest.fixture
def gayo_ctx(registry) -> LedgerContext:
    """Cooperative admin for Gayo only."""
    return make_context("ADMIN", [registry.gayo], user_id="user-gayo")


@pytest.fixture
def gayo_operator(registry) -> LedgerContext:
    return make_context("OPERATOR", [registry.gayo], user_id="user-gayo-op")


# ── Ledger Data Fixtures ─────────────────────────────────────────

@pytest.fixture
def harvested_batch(atomic, national_ctx, registry):
    """Factory: create an origin batch and record its harvest receipt.

    Defaults to the Gayo cooperative, land and farmer.
    """
    async def _make(
        code: str,
        quantity: float,
        cooperative_id: str | None = None,
        land_id: str | None = None,
        farmer_id: str | None = None,
        on_date: date = date(2026, 3, 1),
        product_type: str = "cherry",
    ):
        coop = cooperative_id or registry.gayo
        if cooperative_id is None:
            land_id = land_id or registry.land_gayo
            farmer_id = farmer_id or registry.farmer_gayo

        async def _op(db):
            batch = await create_batch(db, national_ctx, coop, product_type, code=code)
            await record_transaction(
                db, national_ctx, batch.code, "RECEIPT", "harvest", quantity, on_date,
                farmer_id=farmer_id, land_id=land_id,
            )
            return batch

        return await atomic(_op)

    return _make


# ── HTTP Client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database dependencies pointed at the test engine."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(role: str, cooperative_ids: list[str] | None = None, user_id: str = "user-1") -> dict:
    token = create_access_token(user_id=user_id, role=role, cooperative_ids=cooperative_ids)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def national_headers() -> dict:
    return auth_headers("SUPER_ADMIN", user_id="user-national")


@pytest.fixture
def gayo_headers(registry) -> dict:
    return auth_headers("ADMIN", [registry.gayo], user_id="user-gayo")


@pytest.fixture
def operator_headers(registry) -> dict:
    return auth_headers("OPERATOR", [registry.gayo], user_id="user-gayo-op")


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Service tests against a real session")
    config.addinivalue_line("markers", "api: HTTP tests through the ASGI app")
    config.addinivalue_line("markers", "integration: Multi-step ledger scenarios")
    config.addinivalue_line("markers", "concurrency: Concurrent writers on one batch")
