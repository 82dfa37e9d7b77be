"""Pytest configuration and shared fixtures."""
import itertools
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.models.domain import Account
from app.models.enums import AccountStatus, DurationMode, UserType
from app.services.moderation import ModerationService
from app.services.state_machine import Actor
from tests.helpers import T0, FrozenClock, RecordingNotifier


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db_session, notifier, clock):
    return ModerationService(db_session, notifier, clock=clock)


@pytest.fixture
def admin(db_session):
    """An active system administrator, as an actor."""
    account = Account(
        email="admin@example.com",
        name="Site Admin",
        user_type=UserType.SYSTEM_ADMIN,
        status=AccountStatus.ACTIVE,
        approved_at=T0 - timedelta(days=365)
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return Actor(id=account.id, role=UserType.SYSTEM_ADMIN.value)


@pytest.fixture
def make_account(db_session):
    """Factory for accounts in any state, written straight to the database."""
    counter = itertools.count(1)

    def _make(status=AccountStatus.PENDING, **fields):
        n = next(counter)
        fields.setdefault("email", f"user{n}@example.com")
        fields.setdefault("name", f"User {n}")
        account = Account(status=status, **fields)
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture
def suspended_account(make_account):
    """Suspended at T0 for 7 days."""
    return make_account(
        status=AccountStatus.SUSPENDED,
        approved_at=T0 - timedelta(days=30),
        approved_by="1",
        suspension_reason="spam",
        suspension_started_at=T0,
        suspension_ends_at=T0 + timedelta(days=7),
        suspension_mode=DurationMode.PERIOD
    )
