"""
Shared fixtures for the lead auction tests.

Engine tests run against a temporary SQLite file so that several sessions
(and threads) see the same committed state. Time is driven by a manual
clock rather than the wall clock.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lead_auction.database import init_db
from lead_auction.models import Actor, ActorRole
from lead_auction.services.auction import ApplicationLocks, MarketplaceService


T0 = datetime(2026, 3, 2, 9, 0, 0)

OWNER = Actor("business-1", ActorRole.BUSINESS)
OTHER_BUSINESS = Actor("business-2", ActorRole.BUSINESS)
BANK_A = Actor("bank-a", ActorRole.BANK)
BANK_B = Actor("bank-b", ActorRole.BANK)
BANK_C = Actor("bank-c", ActorRole.BANK)
ADMIN = Actor("admin-1", ActorRole.ADMIN)

PROFILE = {
    "company_name": "Gulf Trading Co",
    "annual_revenue": 1_200_000,
    "requested_amount": 250_000,
    "sector": "retail",
}

TERMS = {
    "approved_amount": 200_000,
    "repayment_period_months": 24,
    "interest_rate": 7.5,
    "monthly_installment": 9_000,
}


class ManualClock:
    """Callable clock the tests move forward explicitly."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'auction.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def locks():
    return ApplicationLocks()


@pytest.fixture
def make_service(session_factory, locks, clock):
    """Services on their own sessions, sharing one lock registry and clock."""
    sessions = []

    def factory(**kwargs):
        session = session_factory()
        sessions.append(session)
        kwargs.setdefault("clock", clock)
        return MarketplaceService(session, locks, **kwargs)

    yield factory

    for session in sessions:
        session.close()


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def live_application(service):
    """A freshly submitted application, live for 48 hours from T0."""
    return service.submit_application(
        {"owner_business_id": OWNER.actor_id, "financial_profile": PROFILE},
        OWNER,
    )
