"""
Pytest configuration and shared fixtures for the EV share test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests)
- A fixed clock and an engine wired to the test session
- Factories for users and co-owned vehicles with a fund
- A lightweight FastAPI test app and auth headers
"""

import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable, List

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from evshare.auth.auth_handler import sign_jwt
from evshare.auth.rbac import Role
from evshare.core.clock import FixedClock
from evshare.core.db import Base, get_db
from evshare.exceptions import (
    concurrency_exception_handler,
    domain_exception_handler,
)
from evshare.models import Fund, User, Vehicle, VehicleCoOwner
from evshare.routers import auth as auth_router_module
from evshare.routers import funds as funds_router_module
from evshare.routers import health as health_router_module
from evshare.routers import metrics as metrics_router_module
from evshare.routers import upgrades as upgrades_router_module
from evshare.services.exceptions import ConcurrentModificationError, UpgradeDomainError
from evshare.services.fund_ledger import FundLedger
from evshare.services.upgrade_engine import UpgradeProposalEngine


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FIXED_NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def async_db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(async_engine, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def upgrade_engine(async_db_session, clock) -> UpgradeProposalEngine:
    return UpgradeProposalEngine(async_db_session, clock=clock)


@pytest.fixture
def fund_ledger(async_db_session, clock) -> FundLedger:
    return FundLedger(async_db_session, clock=clock)


# Test Data Factories
#
# Factories return plain ids. A failing operation rolls the session back,
# which expires every loaded instance, and touching an expired instance
# outside the engine would need a lazy load.

@pytest.fixture
def user_factory(async_db_session) -> Callable:
    """Create users; returns the new user's id."""
    counter = itertools.count(1)

    async def _create(fullname: str = None, role: Role = Role.CO_OWNER, email: str = None) -> int:
        n = next(counter)
        user = User(
            email=email or f"user{n}@example.com",
            fullname=fullname or f"User {n}",
            password="not-a-real-hash",
            role=role.value,
        )
        async_db_session.add(user)
        await async_db_session.commit()
        return user.id

    return _create


@pytest.fixture
def vehicle_factory(async_db_session) -> Callable:
    """Create a vehicle shared equally by `owner_ids`; returns the vehicle id."""

    async def _create(
        owner_ids: List[int],
        balance: Decimal = Decimal("1000.00"),
        name: str = "Shared VF8",
        with_fund: bool = True,
    ) -> int:
        fund_id = None
        if with_fund:
            fund = Fund(current_balance=balance)
            async_db_session.add(fund)
            await async_db_session.flush()
            fund_id = fund.id

        vehicle = Vehicle(name=name, brand="VinFast", model="VF8", fund_id=fund_id)
        async_db_session.add(vehicle)
        await async_db_session.flush()

        share = (Decimal("100") / len(owner_ids)).quantize(Decimal("0.01")) if owner_ids else Decimal("0")
        for owner_id in owner_ids:
            async_db_session.add(
                VehicleCoOwner(vehicle_id=vehicle.id, user_id=owner_id, ownership_percentage=share)
            )
        await async_db_session.commit()
        return vehicle.id

    return _create


@pytest.fixture
async def owners(user_factory) -> List[int]:
    """Four co-owners: Alice, Bob, Carol, Dave."""
    return [
        await user_factory(fullname="Alice Nguyen", email="alice@example.com"),
        await user_factory(fullname="Bob Tran", email="bob@example.com"),
        await user_factory(fullname="Carol Le", email="carol@example.com"),
        await user_factory(fullname="Dave Pham", email="dave@example.com"),
    ]


@pytest.fixture
async def admin_id(user_factory) -> int:
    return await user_factory(fullname="Fleet Admin", role=Role.ADMIN, email="admin@example.com")


# HTTP fixtures

@pytest.fixture
async def test_async_client(async_db_session) -> AsyncGenerator[AsyncClient, None]:
    """A lightweight test FastAPI app mounting the routers without rate limiting."""
    async def override_get_db():
        yield async_db_session

    test_app = FastAPI()
    test_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    test_app.add_exception_handler(UpgradeDomainError, domain_exception_handler)
    test_app.add_exception_handler(ConcurrentModificationError, concurrency_exception_handler)

    test_app.include_router(health_router_module.router)
    test_app.include_router(auth_router_module.router)
    test_app.include_router(upgrades_router_module.router)
    test_app.include_router(funds_router_module.router)
    test_app.include_router(metrics_router_module.router)

    test_app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client

    test_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable:
    """Bearer header for a user without going through /auth/login."""
    def _headers(user_id: int, role: Role = Role.CO_OWNER) -> dict:
        token = sign_jwt(user_id, role.value)["access_token"]
        return {"Authorization": f"Bearer {token}"}
    return _headers
