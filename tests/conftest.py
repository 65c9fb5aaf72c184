# tests/conftest.py
"""Global test configuration and fixtures."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from daily_outreach.db.batches import BatchStore
from daily_outreach.db.leads import LeadStore
from daily_outreach.db.models import Base, Company, Contact, ProductProfile, SenderProfile, User
from daily_outreach.db.preferences import PreferenceStore
from outreach_server.db import models as server_models  # noqa: F401  (registers job tables)
from outreach_server.db.jobs import JobStore

# Monday 2024-06-03, 10:00 in New York
MONDAY_MORNING_NY = datetime(2024, 6, 3, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Seeder:
    """Inserts users, companies, contacts and profiles straight into the test database."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _add(self, row):
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
            return row
        finally:
            session.close()

    def user(self, user_id: int = 1, email: Optional[str] = None, username: Optional[str] = None) -> User:
        return self._add(User(id=user_id, email=email or f"user{user_id}@example.com", username=username))

    def company(self, user_id: int = 1, name: str = "Acme", description: Optional[str] = None) -> Company:
        return self._add(Company(user_id=user_id, name=name, description=description))

    def contact(
        self,
        company: Company,
        name: str,
        email: Optional[str] = "",
        role: Optional[str] = None,
        confidence: Optional[int] = 50,
    ) -> Contact:
        if email == "":
            email = f"{name.lower().replace(' ', '.')}@example.com"
        return self._add(
            Contact(
                user_id=company.user_id,
                company_id=company.id,
                name=name,
                email=email,
                role=role,
                confidence_score=confidence,
            )
        )

    def contacts(self, user_id: int, count: int, description: Optional[str] = None) -> List[Contact]:
        """One contact per company, confidence descending from 90."""
        created = []
        for index in range(count):
            company = self.company(user_id, name=f"Company {index}", description=description)
            created.append(self.contact(company, f"Contact {index}", confidence=90 - index))
        return created

    def product(
        self,
        user_id: int = 1,
        title: str = "Widgets",
        product_service: Optional[str] = "widget automation",
        goal: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ProductProfile:
        return self._add(
            ProductProfile(
                user_id=user_id,
                title=title,
                product_service=product_service,
                primary_business_goal=goal,
                created_at=created_at or MONDAY_MORNING_NY,
            )
        )

    def sender(self, user_id: int = 1, display_name: str = "Sam Seller", is_default: bool = True) -> SenderProfile:
        return self._add(SenderProfile(user_id=user_id, display_name=display_name, is_default=is_default))


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite file database per test (file-based so worker threads share it)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'outreach-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(MONDAY_MORNING_NY)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def lead_store(session_factory):
    return LeadStore(session_factory)


@pytest.fixture
def preference_store(session_factory):
    return PreferenceStore(session_factory)


@pytest.fixture
def batch_store(session_factory):
    return BatchStore(session_factory)
