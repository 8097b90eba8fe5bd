import os
from datetime import datetime, time, timedelta

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("NOTIFICATION_DISPATCH_URL", None)
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carebridge import models_calendar
from carebridge.database import Base, get_db
from carebridge.models import (
    Appointment,
    AvailabilityWindow,
    ShiftListing,
    Specialist,
    TimeOffBlock,
    User,
    WaitlistEntry,
)
from carebridge.services.google_calendar_service import encrypt_token

# Monday
NOW = datetime(2026, 10, 19, 8, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    from carebridge.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class Factory:
    """Row builders with sensible defaults; every builder commits"""

    def __init__(self, db):
        self.db = db
        self._users = 0

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def user(self, **overrides):
        self._users += 1
        data = {"email": f"user{self._users}@example.com", "full_name": f"User {self._users}"}
        data.update(overrides)
        return self._save(User(**data))

    def specialist(self, **overrides):
        user = overrides.pop("user", None) or self.user()
        data = {
            "user_id": user.id,
            "first_name": "Dana",
            "last_name": f"Doctor{user.id}",
            "specialties": ["Cardiology"],
            "conditions_treated": [],
            "languages": ["English"],
            "timezone": "America/New_York",
            "video_consultation_enabled": True,
            "in_person_enabled": False,
            "consultation_fee_min": 100.0,
            "consultation_fee_max": 200.0,
            "accepts_insurance": False,
            "average_rating": 4.0,
            "total_reviews": 10,
            "is_accepting_patients": True,
            "verification_status": "verified",
        }
        data.update(overrides)
        return self._save(Specialist(**data))

    def window(self, specialist, **overrides):
        data = {
            "specialist_id": specialist.id,
            "day_of_week": 1,
            "start_time": time(9, 0),
            "end_time": time(12, 0),
            "is_active": True,
        }
        data.update(overrides)
        return self._save(AvailabilityWindow(**data))

    def window_at(self, specialist, starts_at):
        """Explicit-date window opening at starts_at and running to end of day"""
        return self.window(
            specialist,
            day_of_week=None,
            start_date=starts_at.date(),
            end_date=starts_at.date(),
            start_time=starts_at.time(),
            end_time=time(23, 59),
        )

    def time_off(self, specialist, starts_at, ends_at, **overrides):
        data = {
            "specialist_id": specialist.id,
            "starts_at": starts_at,
            "ends_at": ends_at,
            "status": "approved",
        }
        data.update(overrides)
        return self._save(TimeOffBlock(**data))

    def appointment(self, specialist, scheduled_at, **overrides):
        data = {
            "specialist_id": specialist.id,
            "scheduled_at": scheduled_at,
            "duration_minutes": 30,
            "status": "scheduled",
        }
        data.update(overrides)
        return self._save(Appointment(**data))

    def listing(self, **overrides):
        starts_at = overrides.pop("starts_at", NOW + timedelta(days=2, hours=6))
        data = {
            "title": "Weekend cardiology cover",
            "location": "Riverside Clinic",
            "specialty_required": ["Cardiology"],
            "urgency_level": "normal",
            "starts_at": starts_at,
            "ends_at": starts_at + timedelta(hours=8),
            "pay_rate": 120.0,
            "auto_accept_high_rated": False,
            "status": "open",
        }
        data.update(overrides)
        return self._save(ShiftListing(**data))

    def calendar_integration(self, specialist, **overrides):
        data = {
            "specialist_id": specialist.id,
            "provider": "google",
            "access_token": encrypt_token("access-token"),
            "refresh_token": encrypt_token("refresh-token"),
            "token_expires_at": datetime(2099, 1, 1),
            "calendar_id": "primary",
            "sync_enabled": True,
        }
        data.update(overrides)
        return self._save(models_calendar.CalendarIntegration(**data))

    def waitlist_entry(self, patient=None, **overrides):
        patient = patient or self.user()
        created_at = overrides.pop("created_at", NOW)
        max_wait_days = overrides.pop("max_wait_days", 30)
        data = {
            "patient_id": patient.id,
            "specialty": "Cardiology",
            "preferred_times": [],
            "urgency_score": 0,
            "max_wait_days": max_wait_days,
            "status": "active",
            "match_results": [],
            "created_at": created_at,
            "expires_at": created_at + timedelta(days=max_wait_days),
        }
        data.update(overrides)
        return self._save(WaitlistEntry(**data))


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def two_sessions(tmp_path):
    """Two independent sessions on one file database, for race scenarios"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    first, second = Session(), Session()
    try:
        yield first, second, Factory(first)
    finally:
        first.close()
        second.close()
        engine.dispose()
