import os
import tempfile
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest
from fastapi.testclient import TestClient

# Configuration is read at import time, point everything at local doubles first
_dbFile = os.path.join(tempfile.mkdtemp(prefix="busbook-"), "busbook.sqlite3")
os.environ.setdefault("PSQL_DB_URL", f"sqlite:///{_dbFile}")
os.environ["OPENOBSERVE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("APP_ENV", "test")

from busbook.src import argon2  # noqa: E402
from busbook.src.db import ORMbase, User, engine, sessionMaker  # noqa: E402
from busbook.src.enums import Role, SubRole  # noqa: E402

PASSWORD = "password"
Account = namedtuple("Account", ["id", "username", "headers"])


class FakeLock:
    """In-memory stand-in for a redis-py Lock."""

    def __init__(self):
        self.held = False

    def acquire(self, blocking=True, blocking_timeout=None):
        self.held = True
        return True

    def locked(self):
        return self.held

    def owned(self):
        return self.held

    def release(self):
        self.held = False


class FakeRedis:
    """
    Minimal in-memory Redis double covering the commands used by the server
    (INCR, EXPIRE, TTL and locks).
    """

    def __init__(self):
        self.store: Dict[str, int] = {}
        self.expiry: Dict[str, int] = {}

    def incr(self, key):
        self.store[key] = self.store.get(key, 0) + 1
        return self.store[key]

    def expire(self, key, seconds):
        self.expiry[key] = seconds
        return True

    def ttl(self, key):
        return self.expiry.get(key, -1)

    def lock(self, name, timeout=None):
        return FakeLock()


@pytest.fixture(scope="session")
def app():
    """
    Import the FastAPI app once per test session.
    """
    from busbook.main import app as busbook_app

    return busbook_app


@pytest.fixture()
def client(app):
    """
    Synchronous TestClient for calling the API.
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def database():
    """Start every test from empty tables."""
    ORMbase.metadata.drop_all(engine)
    ORMbase.metadata.create_all(engine)
    yield
    ORMbase.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    from busbook.src import redis as busbookRedis

    fake = FakeRedis()
    monkeypatch.setattr(busbookRedis, "redisClient", fake)
    return fake


# ----------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------
def login(client: TestClient, username: str, password: str = PASSWORD) -> Dict[str, str]:
    response = client.post(
        "/api/auth/token", data={"username": username, "password": password}
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


_phoneCounter = iter(range(9100000000, 9199999999))


def insertUser(
    username: str,
    role: Role,
    created_by: int | None = None,
    sub_role: SubRole | None = None,
) -> int:
    session = sessionMaker()
    try:
        user = User(
            username=username,
            password=argon2.makePassword(PASSWORD),
            role=role,
            sub_role=sub_role,
            full_name=username.title(),
            email_id=f"{username}@busbook.test",
            phone_number=str(next(_phoneCounter)),
            created_by=created_by,
        )
        session.add(user)
        session.commit()
        return user.id
    finally:
        session.close()


@pytest.fixture()
def make_account(client):
    """Factory inserting an account directly and logging it in."""

    def factory(username, role, created_by=None, sub_role=None) -> Account:
        userId = insertUser(username, role, created_by, sub_role)
        return Account(userId, username, login(client, username))

    return factory


@pytest.fixture()
def master_admin(make_account):
    return make_account("master", Role.MASTER_ADMIN)


@pytest.fixture()
def bus_owner(make_account, master_admin):
    return make_account("owner", Role.BUS_OWNER, created_by=master_admin.id)


@pytest.fixture()
def bus_admin(make_account, bus_owner):
    return make_account("busadmin", Role.BUS_ADMIN, created_by=bus_owner.id)


@pytest.fixture()
def booking_man(make_account, bus_admin):
    return make_account("counter", Role.BOOKING_MAN, created_by=bus_admin.id)


@pytest.fixture()
def driver(make_account, bus_admin):
    return make_account(
        "driver", Role.BUS_EMPLOYEE, created_by=bus_admin.id, sub_role=SubRole.DRIVER
    )


@pytest.fixture()
def helper(make_account, bus_admin):
    return make_account(
        "helper", Role.BUS_EMPLOYEE, created_by=bus_admin.id, sub_role=SubRole.HELPER
    )


@pytest.fixture()
def customer(make_account):
    return make_account("customer", Role.CUSTOMER)


@pytest.fixture()
def other_customer(make_account):
    return make_account("stranger", Role.CUSTOMER)


# ----------------------------------------------------------------------
# Fleet
# ----------------------------------------------------------------------
@pytest.fixture()
def make_bus(client, bus_admin):
    counter = iter(range(1000, 9999))

    def factory(total_seats=40, **extra) -> dict:
        data = {
            "bus_number": f"KL01AB{next(counter)}",
            "name": "Test bus",
            "bus_type": 1,
            "total_seats": total_seats,
        }
        data.update(extra)
        response = client.post("/api/buses", data=data, headers=bus_admin.headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return factory


@pytest.fixture()
def bus(make_bus):
    return make_bus()


@pytest.fixture()
def route(client, bus_admin):
    response = client.post(
        "/api/routes",
        json={
            "name": "Kochi - Thiruvananthapuram",
            "origin": "Kochi",
            "destination": "Thiruvananthapuram",
            "distance_km": 210,
            "estimated_duration": 300,
            "base_fare": 300,
        },
        headers=bus_admin.headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def tripTimes(days: int = 1):
    departure = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=days)
    return departure.isoformat(), (departure + timedelta(hours=5)).isoformat()


@pytest.fixture()
def make_trip(client, bus_admin, make_bus, route):
    def factory(total_seats=40, **extra) -> dict:
        bus = make_bus(total_seats=total_seats)
        departure_at, arrival_at = tripTimes()
        data = {
            "bus_id": bus["id"],
            "route_id": route["id"],
            "departure_at": departure_at,
            "arrival_at": arrival_at,
        }
        data.update(extra)
        response = client.post("/api/trips", data=data, headers=bus_admin.headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return factory


@pytest.fixture()
def trip(make_trip):
    return make_trip()


def seatRequest(*seatNumbers):
    return [
        {
            "seat_number": number,
            "passenger_name": f"Passenger {number}",
            "passenger_age": 30,
            "passenger_gender": 1,
            "passenger_phone": "9876543210",
        }
        for number in seatNumbers
    ]


@pytest.fixture()
def book(client):
    """Helper posting a booking and returning the raw response."""

    def post(account: Account, trip_id: int, *seatNumbers, **extra):
        body = {
            "trip_id": trip_id,
            "seats": seatRequest(*seatNumbers),
            "boarding_point": "Kochi",
            "dropping_point": "Thiruvananthapuram",
        }
        body.update(extra)
        return client.post("/api/bookings", json=body, headers=account.headers)

    return post
