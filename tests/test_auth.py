from busbook.src.db import User, UserToken, sessionMaker
from busbook.src.enums import AccountStatus

from conftest import login


def test_login_returns_token_and_role(client, customer):
    response = client.post(
        "/api/auth/token", data={"username": "customer", "password": "password"}
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["role"] == 6
    assert len(body["data"]["access_token"]) == 64
    assert body["data"]["expires_in"] == 7 * 24 * 60 * 60


def test_login_with_wrong_password_is_rejected(client, customer):
    response = client.post(
        "/api/auth/token", data={"username": "customer", "password": "wrongpass"}
    )
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"] == "InvalidCredentials"
    assert response.headers["X-Error"] == "InvalidCredentials"


def test_login_with_unknown_username_is_rejected(client):
    response = client.post(
        "/api/auth/token", data={"username": "nobody", "password": "password"}
    )
    assert response.status_code == 401


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/account")
    assert response.status_code == 401
    assert response.json()["error"] == "InvalidToken"


def test_garbage_token_is_unauthorized(client):
    response = client.get("/api/account", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_profile_never_exposes_the_password(client, customer):
    response = client.get("/api/account", headers=customer.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["username"] == "customer"
    assert "password" not in data


def test_customer_cannot_reach_fleet_endpoints(client, customer):
    response = client.get("/api/buses", headers=customer.headers)
    assert response.status_code == 403
    assert response.json()["error"] == "NoPermission"


def test_register_creates_a_customer(client):
    form = {
        "username": "traveller",
        "password": "password123",
        "full_name": "Frequent Traveller",
        "email_id": "traveller@example.com",
        "phone_number": "9876501234",
    }
    response = client.post("/api/auth/register", data=form)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == 6
    assert data["created_by"] is None

    duplicate = client.post("/api/auth/register", data=form)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "UniqueViolation"


def test_register_validates_the_input(client):
    response = client.post(
        "/api/auth/register",
        data={
            "username": "1bad",
            "password": "short",
            "full_name": "X",
            "email_id": "not-an-email",
            "phone_number": "12345",
        },
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationFailed"


def test_logout_revokes_the_token(client, customer):
    response = client.delete("/api/auth/token", headers=customer.headers)
    assert response.status_code == 204

    response = client.get("/api/account", headers=customer.headers)
    assert response.status_code == 401


def test_refresh_rotates_the_token(client, customer):
    response = client.patch("/api/auth/token", headers=customer.headers)
    assert response.status_code == 200
    newHeaders = {
        "Authorization": f"Bearer {response.json()['data']['access_token']}"
    }

    assert client.get("/api/account", headers=customer.headers).status_code == 401
    assert client.get("/api/account", headers=newHeaders).status_code == 200


def test_oldest_token_is_rotated_out(client, customer):
    for _ in range(5):
        client.post(
            "/api/auth/token", data={"username": "customer", "password": "password"}
        )

    session = sessionMaker()
    try:
        tokenCount = (
            session.query(UserToken).filter(UserToken.user_id == customer.id).count()
        )
    finally:
        session.close()
    assert tokenCount == 5
    assert client.get("/api/account", headers=customer.headers).status_code == 401


def test_suspended_account_cannot_login(client, customer):
    session = sessionMaker()
    try:
        session.query(User).filter(User.id == customer.id).update(
            {User.status: AccountStatus.SUSPENDED}
        )
        session.commit()
    finally:
        session.close()

    response = client.post(
        "/api/auth/token", data={"username": "customer", "password": "password"}
    )
    assert response.status_code == 403
    assert response.json()["error"] == "InactiveAccount"


def test_update_profile(client, customer):
    response = client.patch(
        "/api/account",
        data={"full_name": "Renamed Customer", "address": "MG Road, Kochi"},
        headers=customer.headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["full_name"] == "Renamed Customer"
    assert response.json()["data"]["address"] == "MG Road, Kochi"


def test_password_change_requires_the_current_password(client, customer):
    response = client.patch(
        "/api/account", data={"password": "newpassword1"}, headers=customer.headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "IncorrectPassword"

    response = client.patch(
        "/api/account",
        data={"password": "newpassword1", "current_password": "notmine123"},
        headers=customer.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "IncorrectPassword"
    login(client, "customer")

    response = client.patch(
        "/api/account",
        data={"password": "newpassword1", "current_password": "password"},
        headers=customer.headers,
    )
    assert response.status_code == 200
    login(client, "customer", "newpassword1")
    response = client.post(
        "/api/auth/token", data={"username": "customer", "password": "password"}
    )
    assert response.status_code == 401
