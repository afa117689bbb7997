"""
Shared fixtures: the API runs against an in-memory MongoDB (mongomock-motor)
and every test starts from empty collections plus the default admin account.
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

import motor.motor_asyncio
import pytest
from mongomock_motor import AsyncMongoMockClient

os.environ["JWT_SECRET"] = "test-secret"
os.environ["DB_NAME"] = "carwithdriver_test"
os.environ["DEFAULT_ADMIN_EMAIL"] = "admin@carwithdriver.test"
os.environ["DEFAULT_ADMIN_PASSWORD"] = "admin-password"
os.environ["ADMIN_SETUP_CODE"] = "setup-code"
os.environ.pop("SMTP_SERVER", None)
os.environ.pop("GOOGLE_CLIENT_ID", None)

motor.motor_asyncio.AsyncIOMotorClient = AsyncMongoMockClient

from fastapi.testclient import TestClient  # noqa: E402

from carwithdriver.server import app, create_default_admin  # noqa: E402
from carwithdriver.routes.shared import db, create_token, hash_password, now_iso  # noqa: E402

COLLECTIONS = (
    "users", "vehicles", "bookings", "reviews", "chat_conversations", "chat_messages",
    "commission_discounts", "driver_commissions", "tour_briefs",
)


def run(coro):
    return asyncio.run(coro)


def day(offset: int) -> str:
    """ISO date `offset` days from today (UTC)"""
    return (datetime.now(timezone.utc).date() + timedelta(days=offset)).isoformat()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _reset_database():
    for name in COLLECTIONS:
        await db[name].delete_many({})
    await create_default_admin()


@pytest.fixture
def client():
    run(_reset_database())
    return TestClient(app)


@pytest.fixture
def make_user():
    """Insert a verified user and return (user, auth headers)"""
    def _make(role="guest", **extra):
        user = {
            "id": str(uuid.uuid4()),
            "name": extra.pop("name", f"Test {role.title()}"),
            "email": extra.pop("email", f"{role}-{uuid.uuid4().hex[:8]}@example.com"),
            "password_hash": hash_password("password123"),
            "role": role,
            "is_verified": True,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        if role == "driver":
            user.update({
                "contact_number": "+94 77 123 4567",
                "description": "Friendly driver based in Kandy",
                "address": "Kandy, Sri Lanka",
                "driver_status": "approved",
            })
        user.update(extra)
        run(db.users.insert_one(user))
        user.pop("_id", None)
        return user, auth_headers(create_token(user))
    return _make


@pytest.fixture
def make_vehicle():
    """Insert a vehicle for a driver, approved unless told otherwise"""
    def _make(driver, **extra):
        vehicle = {
            "id": str(uuid.uuid4()),
            "driver_id": driver["id"],
            "model": "Toyota Prius",
            "year": 2020,
            "description": "Comfortable hybrid sedan",
            "seats": 4,
            "price_per_day": 50,
            "images": ["https://images.example.com/prius.jpg"],
            "english_speaking_driver": True,
            "meet_and_greet_at_airport": False,
            "fuel_and_insurance": True,
            "driver_meals_and_accommodation": False,
            "parking_fees_and_tolls": False,
            "all_taxes": False,
            "status": "approved",
            "availability": [],
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        vehicle.update(extra)
        run(db.vehicles.insert_one(vehicle))
        vehicle.pop("_id", None)
        return vehicle
    return _make


@pytest.fixture
def traveler_details():
    return {
        "full_name": "Ada Traveller",
        "email": "ada@example.com",
        "phone_number": "+44 7700 900123",
        "country": "United Kingdom",
    }


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/auth/login", json={
        "email": os.environ["DEFAULT_ADMIN_EMAIL"],
        "password": os.environ["DEFAULT_ADMIN_PASSWORD"],
    })
    assert response.status_code == 200, f"Admin login failed: {response.text}"
    return auth_headers(response.json()["token"])
