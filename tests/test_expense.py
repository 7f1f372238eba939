from busbook.src.enums import ExpenseStatus, Role


def expenseForm(bus_id: int, **extra) -> dict:
    form = {
        "bus_id": bus_id,
        "expense_type": 1,
        "amount": 2500,
        "description": "Diesel top up",
    }
    form.update(extra)
    return form


def test_employee_submits_an_expense(client, driver, bus):
    response = client.post("/api/expenses", data=expenseForm(bus["id"]), headers=driver.headers)
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    assert data["employee_id"] == driver.id
    assert data["created_by"] == driver.id
    assert data["status"] == ExpenseStatus.PENDING


def test_employee_cannot_file_for_someone_else(client, driver, helper, bus):
    response = client.post(
        "/api/expenses",
        data=expenseForm(bus["id"], employee_id=helper.id),
        headers=driver.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "UnexpectedParameter"


def test_expense_trip_must_run_on_the_bus(client, bus_admin, make_bus, trip):
    other = make_bus()
    response = client.post(
        "/api/expenses",
        data=expenseForm(other["id"], trip_id=trip["id"]),
        headers=bus_admin.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidAssociation"

    response = client.post(
        "/api/expenses",
        data=expenseForm(trip["bus_id"], trip_id=trip["id"], expense_type=3, amount=120),
        headers=bus_admin.headers,
    )
    assert response.status_code == 201


def test_expense_needs_a_bus_of_the_owner(client, make_account, master_admin, bus):
    rival = make_account("rival", Role.BUS_OWNER, created_by=master_admin.id)
    response = client.post("/api/expenses", data=expenseForm(bus["id"]), headers=rival.headers)
    assert response.status_code == 404


def test_approval_is_final(client, bus_owner, driver, bus):
    expense = client.post(
        "/api/expenses", data=expenseForm(bus["id"]), headers=driver.headers
    ).json()["data"]

    response = client.put(f"/api/expenses/{expense['id']}/approve", headers=driver.headers)
    assert response.status_code == 403

    response = client.put(f"/api/expenses/{expense['id']}/approve", headers=bus_owner.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == ExpenseStatus.APPROVED
    assert data["approved_by"] == bus_owner.id
    assert data["approved_at"] is not None

    response = client.put(
        f"/api/expenses/{expense['id']}/reject",
        data={"rejection_reason": "Too late"},
        headers=bus_owner.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"

    response = client.put(
        f"/api/expenses/{expense['id']}", data={"amount": 10}, headers=driver.headers
    )
    assert response.status_code == 400


def test_rejection_keeps_the_reason(client, bus_admin, driver, bus):
    expense = client.post(
        "/api/expenses", data=expenseForm(bus["id"]), headers=driver.headers
    ).json()["data"]
    response = client.put(
        f"/api/expenses/{expense['id']}/reject",
        data={"rejection_reason": "Missing receipt"},
        headers=bus_admin.headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == ExpenseStatus.REJECTED
    assert response.json()["data"]["rejection_reason"] == "Missing receipt"


def test_employee_edits_only_own_pending_expense(client, bus_admin, driver, helper, bus):
    expense = client.post(
        "/api/expenses", data=expenseForm(bus["id"]), headers=driver.headers
    ).json()["data"]

    response = client.put(
        f"/api/expenses/{expense['id']}", data={"amount": 2600}, headers=driver.headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["amount"] == 2600

    response = client.put(
        f"/api/expenses/{expense['id']}", data={"amount": 1}, headers=helper.headers
    )
    assert response.status_code == 404

    response = client.delete(f"/api/expenses/{expense['id']}", headers=bus_admin.headers)
    assert response.status_code == 204


def test_expense_listing_is_scoped(client, bus_admin, driver, helper, bus, booking_man):
    client.post("/api/expenses", data=expenseForm(bus["id"]), headers=driver.headers)
    client.post("/api/expenses", data=expenseForm(bus["id"], amount=80), headers=helper.headers)

    response = client.get("/api/expenses", headers=driver.headers)
    assert response.json()["data"]["pagination"]["total_items"] == 1

    response = client.get("/api/expenses", params={"amount_le": 100}, headers=bus_admin.headers)
    assert response.json()["data"]["pagination"]["total_items"] == 1

    response = client.get("/api/expenses", headers=booking_man.headers)
    assert response.status_code == 403
