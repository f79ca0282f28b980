"""
Shared fixtures: an in-memory SQLite database per test, seeded profiles and
a helper that opens investments through the real deposit approval path.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

import conglomerate.models  # noqa: F401
from conglomerate.core.database import Base, build_engine
from conglomerate.models.deposit import Deposit
from conglomerate.models.investment import Investment
from conglomerate.models.profile import Profile, Role
from conglomerate.services import deposits as deposit_service

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    profile = Profile(id="user-1", email="user@example.com", role=Role.USER)
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def other_user(db):
    profile = Profile(id="user-2", email="other@example.com", role=Role.USER)
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def admin(db):
    profile = Profile(id="admin-1", email="admin@example.com", role=Role.ADMIN)
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def make_investment(db, user, admin):
    """Open an investment via deposit approval, then set balances directly."""

    def _make(principal="1000", accrued_interest=None, rate=None, opened_at=NOW, owner=None):
        owner_id = owner.id if owner is not None else user.id
        if rate is not None:
            profile = db.get(Profile, owner_id)
            profile.monthly_percentage = Decimal(rate)
            db.commit()
        deposit = Deposit(user_id=owner_id, amount=Decimal(principal))
        db.add(deposit)
        db.commit()
        investment_id = deposit_service.approve_deposit(db, deposit.id, admin.id, now=opened_at)
        investment = db.get(Investment, investment_id)
        if accrued_interest is not None:
            investment.accrued_interest = Decimal(accrued_interest)
            db.commit()
        return investment

    return _make


def reload(db, model, pk):
    """Fresh copy of a row, bypassing the identity map."""
    db.expire_all()
    return db.get(model, pk)
