from busbook.src.enums import Role


def confirm(client, account, booking_id: int, status: int = 2):
    response = client.put(
        f"/api/bookings/{booking_id}/status", json={"status": status}, headers=account.headers
    )
    assert response.status_code == 200, response.text


def test_empty_statistics_report_zeros(client, customer):
    response = client.get("/api/bookings/statistics", headers=customer.headers)
    assert response.status_code == 200
    overview = response.json()["data"]["overview"]
    assert overview["total_bookings"] == 0
    assert overview["total_revenue"] == 0
    assert overview["total_refunds"] == 0
    assert overview["average_booking_value"] == 0
    assert overview["success_rate"] == 0
    assert response.json()["data"]["top_routes"] == []
    assert response.json()["data"]["trends"] == []


def test_revenue_counts_confirmed_and_completed_only(
    client, customer, bus_admin, trip, route, book
):
    book(customer, trip["id"], 1)
    confirmed = book(customer, trip["id"], 2, 3).json()["data"]
    completed = book(customer, trip["id"], 4).json()["data"]
    cancelled = book(customer, trip["id"], 5).json()["data"]
    confirm(client, bus_admin, confirmed["id"])
    confirm(client, bus_admin, completed["id"])
    confirm(client, bus_admin, completed["id"], status=4)
    client.put(f"/api/bookings/{cancelled['id']}/cancel", json={}, headers=customer.headers)

    response = client.get(
        "/api/bookings/statistics", params={"period": 1}, headers=customer.headers
    )
    data = response.json()["data"]
    overview = data["overview"]
    assert overview["total_bookings"] == 4
    assert overview["pending_bookings"] == 1
    assert overview["confirmed_bookings"] == 1
    assert overview["completed_bookings"] == 1
    assert overview["cancelled_bookings"] == 1
    assert overview["total_revenue"] == 900
    assert overview["total_refunds"] == 300
    assert overview["average_booking_value"] == 450
    assert overview["success_rate"] == 50
    assert overview["cancellation_rate"] == 25
    assert data["period"] == "DAILY"
    assert data["top_routes"][0]["route_id"] == route["id"]
    assert data["top_routes"][0]["bookings"] == 4
    assert sum(row["bookings"] for row in data["trends"]) == 4


def test_statistics_are_scoped_per_account(client, customer, other_customer, trip, book):
    book(customer, trip["id"], 1)
    response = client.get("/api/bookings/statistics", headers=other_customer.headers)
    assert response.json()["data"]["overview"]["total_bookings"] == 0


def test_booking_man_dashboard_reports_commission(client, booking_man, bus_admin, trip, book):
    booking = book(booking_man, trip["id"], 1, 2).json()["data"]
    confirm(client, bus_admin, booking["id"])

    response = client.get("/api/dashboard", headers=booking_man.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "BOOKING_MAN"
    assert data["bookings"]["total_revenue"] == 600
    assert data["commission_rate"] == 0.05
    assert data["commission"] == 30


def test_fleet_dashboard_reports_net_profit(client, customer, bus_admin, driver, trip, book):
    booking = book(customer, trip["id"], 1, 2).json()["data"]
    confirm(client, bus_admin, booking["id"])
    expense = client.post(
        "/api/expenses",
        data={
            "bus_id": trip["bus_id"],
            "expense_type": 1,
            "amount": 100,
            "description": "Fuel",
        },
        headers=driver.headers,
    ).json()["data"]
    client.put(f"/api/expenses/{expense['id']}/approve", headers=bus_admin.headers)

    response = client.get("/api/dashboard", headers=bus_admin.headers)
    data = response.json()["data"]
    assert data["role"] == "BUS_ADMIN"
    assert data["buses"]["total"] == 1
    assert data["routes"] == 1
    assert data["trips"]["total"] == 1
    assert data["bookings"]["total_revenue"] == 600
    assert data["approved_expenses"] == 100
    assert data["net_profit"] == 500
    assert data["staff"] == {"BUS_EMPLOYEE": 1}


def test_role_specific_dashboards(client, master_admin, customer, driver, bus_admin, make_trip, book):
    trip = make_trip(driver_id=driver.id)
    book(customer, trip["id"], 1)

    data = client.get("/api/dashboard", headers=master_admin.headers).json()["data"]
    assert data["role"] == "MASTER_ADMIN"
    assert data["users"]["CUSTOMER"] == 1
    assert data["trips"]["SCHEDULED"] == 1
    assert data["bookings"]["total_bookings"] == 1

    data = client.get("/api/dashboard", headers=driver.headers).json()["data"]
    assert data["role"] == "BUS_EMPLOYEE"
    assert [item["id"] for item in data["upcoming_trips"]] == [trip["id"]]

    data = client.get("/api/dashboard", headers=customer.headers).json()["data"]
    assert data["role"] == "CUSTOMER"
    assert data["upcoming_trips"][0]["trip"]["id"] == trip["id"]


def test_expense_analytics(client, bus_admin, driver, bus, customer):
    response = client.get("/api/analytics/expenses", headers=bus_admin.headers)
    assert response.status_code == 200
    assert response.json()["data"]["total_amount"] == 0
    assert response.json()["data"]["by_type"] == []

    for amount, kind in ((100, 1), (40, 3), (60, 1)):
        client.post(
            "/api/expenses",
            data={"bus_id": bus["id"], "expense_type": kind, "amount": amount, "description": "x"},
            headers=driver.headers,
        )
    data = client.get("/api/analytics/expenses", headers=bus_admin.headers).json()["data"]
    assert data["total_expenses"] == 3
    assert data["total_amount"] == 200
    assert data["approved_amount"] == 0
    assert {row["type"]: row["amount"] for row in data["by_type"]} == {"FUEL": 160, "TOLL": 40}

    response = client.get("/api/analytics/expenses", headers=customer.headers)
    assert response.status_code == 403


def test_booking_analytics_date_range(client, customer, trip, book):
    book(customer, trip["id"], 1)
    response = client.get(
        "/api/analytics/bookings",
        params={"start_date": "2000-01-01T00:00:00", "end_date": "2000-12-31T00:00:00"},
        headers=customer.headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["overview"]["total_bookings"] == 0


def test_bus_performance_per_bus(
    client, make_account, master_admin, customer, bus_admin, make_bus, trip, book
):
    idle = make_bus()
    booking = book(customer, trip["id"], 1, 2).json()["data"]
    confirm(client, bus_admin, booking["id"])
    dropped = book(customer, trip["id"], 3).json()["data"]
    client.put(f"/api/bookings/{dropped['id']}/cancel", json={}, headers=customer.headers)

    response = client.get("/api/analytics/bus-performance", headers=bus_admin.headers)
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert [row["bus_id"] for row in data] == [trip["bus_id"], idle["id"]]
    busy = data[0]
    assert busy["total_bookings"] == 2
    assert busy["total_passengers"] == 2
    assert busy["total_revenue"] == 600
    assert busy["total_trips"] == 1
    assert busy["occupancy_rate"] == 5.0
    assert busy["utilization_rate"] == 0
    assert data[1]["total_bookings"] == 0
    assert data[1]["occupancy_rate"] == 0

    rival = make_account("rival", Role.BUS_OWNER, created_by=master_admin.id)
    response = client.get("/api/analytics/bus-performance", headers=rival.headers)
    assert response.json()["data"] == []

    response = client.get("/api/analytics/bus-performance", headers=customer.headers)
    assert response.status_code == 403


def test_popular_routes_are_shared_across_accounts(
    client, customer, other_customer, bus_admin, route, trip, book
):
    book(customer, trip["id"], 1, 2)
    dropped = book(customer, trip["id"], 3).json()["data"]
    client.put(f"/api/bookings/{dropped['id']}/cancel", json={}, headers=customer.headers)

    response = client.get("/api/analytics/popular-routes", headers=other_customer.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data) == 1
    assert data[0]["route_id"] == route["id"]
    assert data[0]["bookings"] == 1
    assert data[0]["passengers"] == 2
    assert data[0]["average_fare"] == 300
    assert "revenue" not in data[0]

    client.put(f"/api/routes/{route['id']}", json={"is_active": False}, headers=bus_admin.headers)
    response = client.get("/api/analytics/popular-routes", headers=customer.headers)
    assert response.json()["data"] == []
