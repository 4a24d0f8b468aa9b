"""Shared test fixtures and factories."""

import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["UPLOAD_BASE_DIR"] = tempfile.mkdtemp(prefix="gorepair-uploads-")
os.environ["SERVICE_TIMEZONE"] = "UTC"

from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from gorepair.db.session import SessionLocal, engine, get_db
from gorepair.main import app
from gorepair.models import Base
from gorepair.models.booking import BookingStatus
from gorepair.models.catalog import Part, Service
from gorepair.models.technician import TechnicianProfile, TechnicianStatus, WEEKDAYS
from gorepair.models.user import User, UserRole
from gorepair.services.ledger import BookingLedger
from gorepair.utils.auth import create_access_token

# MG Road, Bengaluru; 0.018 degrees of latitude is roughly 2 km
BASE_LAT = 12.9716
BASE_LNG = 77.5946

ALWAYS_ON = {day: {"start": "00:00", "end": "24:00", "available": True} for day in WEEKDAYS}

DEFAULT_ADDRESS = {
    "street": "12 Residency Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "country": "India",
    "pincode": "560025",
    "landmark": None,
    "tag": "home",
}

DEFAULT_SLOT = {"start": "10:00", "end": "12:00"}


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def factory(role: UserRole = UserRole.USER, full_name: Optional[str] = None, **fields) -> User:
        counter["n"] += 1
        user = User(
            email=fields.pop("email", f"{role.value}{counter['n']}@example.com"),
            password_hash="not-used",
            full_name=full_name or f"{role.value.title()} {counter['n']}",
            role=role,
            is_active=fields.pop("is_active", True),
            **fields
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def customer(make_user):
    return make_user(UserRole.USER, full_name="Priya Sharma")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, full_name="Ops Admin")


@pytest.fixture
def make_technician(db, make_user):
    def factory(
        full_name: Optional[str] = None,
        latitude: Optional[float] = BASE_LAT,
        longitude: Optional[float] = BASE_LNG,
        skills=("ac_gas_refill", "ac_service"),
        services=(),
        rating: float = 4.0,
        workload: int = 0,
        max_workload: int = 5,
        is_online: bool = True,
        status: TechnicianStatus = TechnicianStatus.ACTIVE,
        working_hours=None,
        is_on_break: bool = False,
    ) -> User:
        user = make_user(
            UserRole.TECHNICIAN,
            full_name=full_name,
            is_online=is_online,
            latitude=latitude,
            longitude=longitude,
        )
        db.add(TechnicianProfile(
            user_id=user.id,
            skills=list(skills),
            services=list(services),
            working_hours=ALWAYS_ON if working_hours is None else working_hours,
            is_on_break=is_on_break,
            current_workload=workload,
            max_workload=max_workload,
            is_available=workload < max_workload,
            average_rating=rating,
            total_ratings=10 if rating else 0,
            status=status,
        ))
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def make_service(db):
    def factory(name: str = "AC Gas Refill", price=500, category: str = "AC Repair", skills=("ac_gas_refill",)) -> Service:
        service = Service(
            name=name,
            category=category,
            price=price,
            estimated_duration=60,
            skills_required=list(skills),
            is_active=True,
        )
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return factory


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def make_part(db):
    def factory(sku: str = "AC-CAP-45", name: str = "AC Run Capacitor", price=50) -> Part:
        part = Part(sku=sku, name=name, price=price, quantity_in_stock=100, is_active=True)
        db.add(part)
        db.commit()
        db.refresh(part)
        return part

    return factory


@pytest.fixture
def make_booking(db, service):
    def factory(
        customer: User,
        services=None,
        latitude: Optional[float] = BASE_LAT,
        longitude: Optional[float] = BASE_LNG,
        discount_amount=0,
    ):
        return BookingLedger(db).create_booking(
            customer,
            services=services or [{"service_id": service.id, "quantity": 1}],
            address=dict(DEFAULT_ADDRESS),
            schedule_date=datetime.utcnow() + timedelta(days=1),
            preferred_time_slot=dict(DEFAULT_SLOT),
            latitude=latitude,
            longitude=longitude,
            discount_amount=discount_amount,
        )

    return factory


@pytest.fixture
def auth_headers():
    def build(user: User) -> dict:
        token = create_access_token({"sub": user.email, "user_id": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def hold(db):
    """Put a booking in ``assigned`` with the technician holding one workload unit"""
    def apply(booking, technician: User, actor: User):
        ledger = BookingLedger(db)
        assert ledger.reserve_capacity(technician.id)
        booking.assigned_technician_id = technician.id
        ledger.transition(booking, BookingStatus.ASSIGNED, actor, note="Assigned in test")
        db.commit()
        db.refresh(booking)
        return booking

    return apply


@pytest.fixture
def set_status(db):
    """Test setup shortcut that skips the transition table"""
    def apply(booking, status: BookingStatus, technician: Optional[User] = None):
        if technician is not None:
            booking.assigned_technician_id = technician.id
        booking.status = status
        db.commit()
        db.refresh(booking)
        return booking

    return apply
