"""
pytest configuration: every test runs against a fresh in-memory store.
"""
import os

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from techcare import deps
from techcare.main import app
from techcare.repositories.memory import MemoryStore
from techcare.schemas.technician import ApprovalStatus, Technician
from techcare.schemas.user import Principal, Role
from techcare.security import create_access_token
from techcare.services.assignment import AssignmentCoordinator
from techcare.services.state_machine import BookingStateMachine
from techcare.utils import new_id

KIGALI = (-1.9441, 30.0619)


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Rate limiting stays off for the whole suite"""
    app.state.limiter = None


@pytest.fixture
def store():
    s = MemoryStore()
    app.dependency_overrides[deps.get_booking_repository] = lambda: s.bookings
    app.dependency_overrides[deps.get_technician_directory] = lambda: s.technicians
    app.dependency_overrides[deps.get_catalog] = lambda: s.catalog
    yield s
    app.dependency_overrides.clear()


@pytest.fixture
def client(store):
    app.state.limiter = None
    return TestClient(app)


@pytest.fixture
def machine(store):
    return BookingStateMachine(store.bookings)


@pytest.fixture
def coordinator(store, machine):
    return AssignmentCoordinator(machine, store.technicians)


def make_technician(**overrides) -> Technician:
    user_id = overrides.pop("user_id", new_id())
    data = {
        "id": new_id(),
        "user_id": user_id,
        "full_name": "Jean Habimana",
        "phone": "+250788000111",
        "image_url": "https://cdn.example.com/jean.png",
        "specialization": "Laptop Repair",
        "experience": "5 years",
        "rate": 5000.0,
        "is_available": True,
        "is_active": True,
        "approval_status": ApprovalStatus.APPROVED,
        "latitude": KIGALI[0],
        "longitude": KIGALI[1],
        "district": "Nyarugenge",
        "last_location_update": datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return Technician(**data)


@pytest.fixture
def technician(store):
    return store.technicians.add(make_technician())


@pytest.fixture
def customer():
    return Principal(id=new_id(), role=Role.CUSTOMER)


@pytest.fixture
def other_customer():
    return Principal(id=new_id(), role=Role.CUSTOMER)


@pytest.fixture
def admin():
    return Principal(id=new_id(), role=Role.ADMIN)


@pytest.fixture
def tech_principal(technician):
    return Principal(id=technician.user_id, role=Role.TECHNICIAN)


def auth_headers(principal: Principal) -> dict:
    token = create_access_token(principal.id, principal.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def booking_payload():
    return {
        "title": "Laptop will not boot",
        "description": "Black screen after the latest update",
        "category": "laptop_repair",
        "location": "KG 11 Ave, Kigali",
        "estimated_hours": 2,
    }
