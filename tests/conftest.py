"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["MARKETPLACE_PROVIDER"] = "stub"
os.environ["ENCRYPTION_MASTER_KEY"] = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="
os.environ["SWEEP_PAUSE_SECONDS"] = "0"

from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402


class FakeClock:
    """Deterministic clock injected into services."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 10, 19, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite shared by every session of a test."""
    from creative_rotator.db.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def marketplace():
    """Scriptable in-memory marketplace."""
    from creative_rotator.adapters.marketplace.stub import StubMarketplaceAdapter

    return StubMarketplaceAdapter()


@pytest.fixture
def account_id(session_factory: sessionmaker[Session]) -> UUID:
    from creative_rotator.db.session import get_session_context
    from creative_rotator.services.accounts import create_account

    with get_session_context(session_factory) as session:
        account = create_account(session, "main-store", "wb-test-token")
        return account.id


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rotation_service(session_factory, marketplace, clock, recording_sleep):
    """Rotation service wired to the test database and the stub marketplace."""
    from creative_rotator.services.alerting import AlertingService
    from creative_rotator.services.resilience import ResilientCaller
    from creative_rotator.services.rotation import RotationService

    return RotationService(
        adapter_factory=lambda db, account_id: marketplace,
        caller=ResilientCaller(max_attempts=3, base_delay=0.5, sleep=recording_sleep),
        notifier=AlertingService(),
        session_factory=session_factory,
        clock=clock,
    )
