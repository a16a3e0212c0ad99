"""
Test fixtures for CertVal tests.

Provides:
- Async DB session fixture (SQLite in-memory, fresh schema per test)
- Seed helpers for evaluation_reports / validated_reports
- Reviewer JWT
- Phoenix double (AsyncMock) and a recording notifier
- Coordinator wired to the doubles
- Authenticated FastAPI test client with dependency overrides
"""

import os
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from certval.api.deps import get_coordinator, get_db
from certval.auth.jwt import create_access_token
from certval.db.engine import Base
from certval.db.models import EvaluationReport, ValidatedReport
from certval.main import app
from certval.services.phoenix_client import PhoenixClient
from certval.validation.coordinator import DecisionConfig, DecisionCoordinator
from certval.validation.notifier import DecisionNotifier

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

REVIEWER_EMAIL = "reviewer@example.com"
REPORT_BASE_URL = "https://dashboard.example.com"


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with all tables."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Seed helpers ─────────────────────────────────────────────────────────


@pytest.fixture
def add_evaluation(session_factory):
    async def _add(
        cert_no: str,
        calibration_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        json_data: Optional[dict] = None,
    ) -> EvaluationReport:
        async with session_factory() as session:
            report = EvaluationReport(
                cert_no=cert_no,
                calibration_id=calibration_id,
                created_at=created_at or datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
                json_data=json_data,
            )
            session.add(report)
            await session.commit()
            return report

    return _add


@pytest.fixture
def add_decision(session_factory):
    async def _add(
        cert_no: str,
        status: str = "APPROVED",
        calibration_id: Optional[str] = None,
        approved_at: Optional[datetime] = None,
    ) -> ValidatedReport:
        async with session_factory() as session:
            record = ValidatedReport(
                cert_no=cert_no,
                status=status,
                approved_by="earlier@example.com",
                approved_at=approved_at or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
                calibration_id=calibration_id,
            )
            session.add(record)
            await session.commit()
            return record

    return _add


# ── Identity ─────────────────────────────────────────────────────────────


@pytest.fixture
def reviewer_token() -> str:
    return create_access_token(email=REVIEWER_EMAIL, name="Test Reviewer")


# ── Collaborators ────────────────────────────────────────────────────────


@pytest.fixture
def phoenix() -> AsyncMock:
    """Phoenix double: every action succeeds, detail lookups return nothing."""
    mock = AsyncMock(spec=PhoenixClient)
    mock.reject_calibration.return_value = None
    mock.approve_calibration.return_value = None
    mock.get_certificate_details.return_value = {}
    return mock


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock(spec=DecisionNotifier)
    mock.notify.return_value = None
    return mock


@pytest.fixture
def decision_config() -> DecisionConfig:
    return DecisionConfig(error_list_id="1", report_base_url=REPORT_BASE_URL)


@pytest.fixture
def coordinator(phoenix, notifier, decision_config) -> DecisionCoordinator:
    return DecisionCoordinator(phoenix=phoenix, config=decision_config, notifier=notifier)


# ── API client ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, coordinator, reviewer_token):
    """
    Authenticated async test client.

    get_db is pointed at the in-memory session factory and get_coordinator at
    the coordinator built on the Phoenix double, so the API sees the same data
    and collaborators as the test.
    """

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {reviewer_token}"},
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anon_client(session_factory, coordinator):
    """Client without an Authorization header."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
