from conftest import tripTimes

from busbook.src.enums import BusStatus, Role, TripStatus


def test_trip_copies_inventory_and_fare(trip):
    assert trip["trip_number"] == f"TR-{trip['id']:05d}"
    assert trip["total_seats"] == 40
    assert trip["available_seats"] == 40
    assert trip["total_bookings"] == 0
    assert trip["fare"] == 300
    assert trip["status"] == TripStatus.SCHEDULED


def test_trip_fare_can_override_the_route(make_trip):
    trip = make_trip(fare=450)
    assert trip["fare"] == 450


def test_trip_needs_an_active_bus(client, bus_admin, make_bus, route):
    bus = make_bus(status=int(BusStatus.MAINTENANCE))
    departure_at, arrival_at = tripTimes()
    response = client.post(
        "/api/trips",
        data={
            "bus_id": bus["id"],
            "route_id": route["id"],
            "departure_at": departure_at,
            "arrival_at": arrival_at,
        },
        headers=bus_admin.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InactiveResource"


def test_trip_schedule_is_validated(client, bus_admin, bus, route):
    departure_at, arrival_at = tripTimes()
    response = client.post(
        "/api/trips",
        data={
            "bus_id": bus["id"],
            "route_id": route["id"],
            "departure_at": arrival_at,
            "arrival_at": departure_at,
        },
        headers=bus_admin.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidValue"

    departure_at, arrival_at = tripTimes(days=-1)
    response = client.post(
        "/api/trips",
        data={
            "bus_id": bus["id"],
            "route_id": route["id"],
            "departure_at": departure_at,
            "arrival_at": arrival_at,
        },
        headers=bus_admin.headers,
    )
    assert response.status_code == 400


def test_trip_crew_must_match_sub_roles(client, bus_admin, bus, route, driver, helper):
    departure_at, arrival_at = tripTimes()
    form = {
        "bus_id": bus["id"],
        "route_id": route["id"],
        "departure_at": departure_at,
        "arrival_at": arrival_at,
    }
    response = client.post(
        "/api/trips",
        data={**form, "driver_id": helper.id},
        headers=bus_admin.headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidAssociation"

    response = client.post(
        "/api/trips",
        data={**form, "driver_id": driver.id, "helper_id": helper.id},
        headers=bus_admin.headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["driver_id"] == driver.id


def test_other_owner_cannot_schedule_on_the_bus(
    client, make_account, master_admin, bus, route
):
    rival = make_account("rival", Role.BUS_OWNER, created_by=master_admin.id)
    departure_at, arrival_at = tripTimes()
    response = client.post(
        "/api/trips",
        data={
            "bus_id": bus["id"],
            "route_id": route["id"],
            "departure_at": departure_at,
            "arrival_at": arrival_at,
        },
        headers=rival.headers,
    )
    assert response.status_code == 404


def test_trip_status_transitions(client, bus_admin, trip):
    url = f"/api/trips/{trip['id']}/status"

    response = client.put(url, data={"status": 5, "delay_reason": "Rain"}, headers=bus_admin.headers)
    assert response.status_code == 200
    assert response.json()["data"]["delay_reason"] == "Rain"

    assert client.put(url, data={"status": 2}, headers=bus_admin.headers).status_code == 200
    response = client.put(url, data={"status": 1}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"

    assert client.put(url, data={"status": 3}, headers=bus_admin.headers).status_code == 200
    response = client.put(url, data={"status": 4}, headers=bus_admin.headers)
    assert response.status_code == 400


def test_trip_search_for_customers(client, customer, make_trip):
    make_trip()
    make_trip(fare=900)

    response = client.get(
        "/api/trips",
        params={"origin": "kochi", "fare_le": 500},
        headers=customer.headers,
    )
    assert response.status_code == 200
    items = response.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["fare"] == 300


def test_employee_sees_assigned_trips_only(client, bus_admin, driver, make_trip):
    make_trip()
    assigned = make_trip(driver_id=driver.id)

    response = client.get("/api/trips", headers=driver.headers)
    assert [item["id"] for item in response.json()["data"]["items"]] == [assigned["id"]]


def test_update_trip(client, bus_admin, trip, helper):
    response = client.put(
        f"/api/trips/{trip['id']}",
        data={"fare": 350, "helper_id": helper.id},
        headers=bus_admin.headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["fare"] == 350
    assert response.json()["data"]["helper_id"] == helper.id


def test_trip_with_bookings_cannot_be_deleted(client, bus_admin, customer, make_trip, book):
    empty = make_trip()
    assert client.delete(f"/api/trips/{empty['id']}", headers=bus_admin.headers).status_code == 204

    booked = make_trip()
    book(customer, booked["id"], 1)
    response = client.delete(f"/api/trips/{booked['id']}", headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "DataInUse"


def test_cancelled_bookings_still_block_trip_delete(client, bus_admin, customer, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    client.put(f"/api/bookings/{booking['id']}/cancel", json={}, headers=customer.headers)

    response = client.delete(f"/api/trips/{trip['id']}", headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "DataInUse"
