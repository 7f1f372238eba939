import itertools

import pytest

from busbook.src.db import UserToken, sessionMaker
from busbook.src.enums import Role, SubRole

_phones = itertools.count(9200000000)


def accountForm(username: str, role: Role, **extra) -> dict:
    form = {
        "username": username,
        "password": "password123",
        "full_name": username.title(),
        "email_id": f"{username}@example.com",
        "phone_number": str(next(_phones)),
        "role": int(role),
    }
    form.update(extra)
    return form


def test_master_admin_creates_bus_owner(client, master_admin):
    response = client.post(
        "/api/users", data=accountForm("newowner", Role.BUS_OWNER), headers=master_admin.headers
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == Role.BUS_OWNER
    assert data["created_by"] == master_admin.id
    assert "password" not in data


@pytest.mark.parametrize(
    "creator, role",
    [
        ("master_admin", Role.BUS_ADMIN),
        ("bus_owner", Role.BOOKING_MAN),
        ("bus_owner", Role.BUS_OWNER),
        ("bus_admin", Role.BUS_ADMIN),
    ],
)
def test_accounts_are_created_one_level_down_only(client, request, creator, role):
    account = request.getfixturevalue(creator)
    response = client.post(
        "/api/users", data=accountForm("skipper", role), headers=account.headers
    )
    assert response.status_code == 403
    assert response.json()["error"] == "NoPermission"


def test_booking_man_cannot_create_accounts(client, booking_man):
    response = client.post(
        "/api/users", data=accountForm("helper2", Role.CUSTOMER), headers=booking_man.headers
    )
    assert response.status_code == 403


def test_bus_owner_is_limited_to_two_bus_admins(client, bus_owner, bus_admin):
    response = client.post(
        "/api/users", data=accountForm("second", Role.BUS_ADMIN), headers=bus_owner.headers
    )
    assert response.status_code == 201

    response = client.post(
        "/api/users", data=accountForm("third", Role.BUS_ADMIN), headers=bus_owner.headers
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ExceededMaxLimit"


def test_bus_employee_requires_sub_role(client, bus_admin):
    response = client.post(
        "/api/users", data=accountForm("nosub", Role.BUS_EMPLOYEE), headers=bus_admin.headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "MissingParameter"

    response = client.post(
        "/api/users",
        data=accountForm("driver2", Role.BUS_EMPLOYEE, sub_role=int(SubRole.DRIVER)),
        headers=bus_admin.headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["sub_role"] == SubRole.DRIVER


def test_sub_role_is_rejected_for_other_roles(client, bus_admin):
    response = client.post(
        "/api/users",
        data=accountForm("counter2", Role.BOOKING_MAN, sub_role=int(SubRole.HELPER)),
        headers=bus_admin.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "UnexpectedParameter"


def test_user_listing_is_limited_to_the_subtree(
    client, master_admin, bus_owner, bus_admin, booking_man, driver, make_account
):
    otherOwner = make_account("rival", Role.BUS_OWNER, created_by=master_admin.id)

    response = client.get("/api/users", headers=bus_owner.headers)
    assert response.status_code == 200
    usernames = {item["username"] for item in response.json()["data"]["items"]}
    assert usernames == {"busadmin", "counter", "driver"}

    response = client.get("/api/users", headers=master_admin.headers)
    usernames = {item["username"] for item in response.json()["data"]["items"]}
    assert {"owner", "rival", "busadmin", "counter", "driver"} <= usernames

    response = client.get(f"/api/users/{bus_admin.id}", headers=otherOwner.headers)
    assert response.status_code == 404


def test_user_listing_filters_by_role(client, bus_admin, booking_man, driver, helper):
    response = client.get(
        "/api/users", params={"role": int(Role.BUS_EMPLOYEE)}, headers=bus_admin.headers
    )
    items = response.json()["data"]["items"]
    assert {item["username"] for item in items} == {"driver", "helper"}
    assert response.json()["data"]["pagination"]["total_items"] == 2


def test_suspending_an_account_revokes_its_tokens(client, bus_admin, booking_man):
    response = client.patch(
        f"/api/users/{booking_man.id}", data={"status": 2}, headers=bus_admin.headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == 2

    session = sessionMaker()
    try:
        remaining = (
            session.query(UserToken).filter(UserToken.user_id == booking_man.id).count()
        )
    finally:
        session.close()
    assert remaining == 0
    assert client.get("/api/account", headers=booking_man.headers).status_code == 401


def test_manager_cannot_edit_itself(client, bus_admin):
    response = client.patch(
        f"/api/users/{bus_admin.id}", data={"status": 2}, headers=bus_admin.headers
    )
    assert response.status_code == 403


def test_only_master_admin_deletes_accounts(client, master_admin, bus_owner, bus_admin):
    response = client.delete(f"/api/users/{bus_admin.id}", headers=bus_owner.headers)
    assert response.status_code == 403

    response = client.delete(f"/api/users/{master_admin.id}", headers=master_admin.headers)
    assert response.status_code == 403

    response = client.delete(f"/api/users/{bus_admin.id}", headers=master_admin.headers)
    assert response.status_code == 204
    response = client.get(f"/api/users/{bus_admin.id}", headers=master_admin.headers)
    assert response.status_code == 404
