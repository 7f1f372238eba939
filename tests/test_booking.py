from busbook.src import reservation
from busbook.src.db import Booking, BookingSeat, Trip, sessionMaker
from busbook.src.enums import BookingStatus, PaymentStatus, Role, TripStatus


def tripState(trip_id: int) -> Trip:
    session = sessionMaker()
    try:
        return session.query(Trip).filter(Trip.id == trip_id).one()
    finally:
        session.close()


def bookingCount(trip_id: int) -> int:
    session = sessionMaker()
    try:
        return session.query(Booking).filter(Booking.trip_id == trip_id).count()
    finally:
        session.close()


def assertInventory(trip_id: int):
    trip = tripState(trip_id)
    assert trip.available_seats + trip.total_bookings == trip.total_seats


def test_booking_takes_seats_and_cancel_restores_them(client, customer, trip, book):
    response = book(customer, trip["id"], 1, 2)
    assert response.status_code == 201, response.text
    booking = response.json()["data"]
    assert booking["total_amount"] == 600
    assert booking["seat_count"] == 2
    assert booking["status"] == BookingStatus.PENDING
    assert booking["payment_status"] == PaymentStatus.PENDING
    assert booking["reference"].startswith("BE")
    assert [seat["seat_number"] for seat in booking["seats"]] == [1, 2]
    assert tripState(trip["id"]).available_seats == 38
    assertInventory(trip["id"])

    response = client.put(
        f"/api/bookings/{booking['id']}/cancel",
        json={"cancellation_reason": "Plans changed"},
        headers=customer.headers,
    )
    assert response.status_code == 200, response.text
    cancelled = response.json()["data"]
    assert cancelled["status"] == BookingStatus.CANCELLED
    assert cancelled["payment_status"] == PaymentStatus.REFUNDED
    assert cancelled["refund_amount"] == 600
    assert cancelled["cancelled_by"] == customer.id
    assert all(seat["is_released"] for seat in cancelled["seats"])
    assert tripState(trip["id"]).available_seats == 40
    assertInventory(trip["id"])


def test_released_seats_can_be_booked_again(client, customer, other_customer, trip, book):
    booking = book(customer, trip["id"], 5).json()["data"]
    client.put(f"/api/bookings/{booking['id']}/cancel", json={}, headers=customer.headers)

    response = book(other_customer, trip["id"], 5)
    assert response.status_code == 201


def test_taken_seat_conflicts_without_partial_reservation(
    customer, other_customer, trip, book
):
    assert book(customer, trip["id"], 3).status_code == 201

    response = book(other_customer, trip["id"], 3, 4)
    assert response.status_code == 409
    assert response.json()["error"] == "SeatUnavailable"
    assert "3" in response.json()["message"]

    assert bookingCount(trip["id"]) == 1
    assert tripState(trip["id"]).available_seats == 39
    assertInventory(trip["id"])


def test_database_rejects_a_double_sale(monkeypatch, customer, other_customer, trip, book):
    assert book(customer, trip["id"], 7).status_code == 201

    # Skip the early check, as if both requests had read the seat map together
    monkeypatch.setattr(reservation, "heldSeats", lambda *args, **kwargs: set())
    response = book(other_customer, trip["id"], 7)
    assert response.status_code == 409
    assert response.json()["error"] == "SeatUnavailable"

    assert bookingCount(trip["id"]) == 1
    assert tripState(trip["id"]).available_seats == 39
    assertInventory(trip["id"])


def test_clashing_reference_is_regenerated_once(
    monkeypatch, customer, other_customer, trip, book
):
    taken = book(customer, trip["id"], 1).json()["data"]["reference"]
    references = iter([taken, "BEFRESH0001"])
    monkeypatch.setattr(reservation, "generateReference", lambda: next(references))

    response = book(other_customer, trip["id"], 2)
    assert response.status_code == 201, response.text
    assert response.json()["data"]["reference"] == "BEFRESH0001"
    assert tripState(trip["id"]).available_seats == 38
    assertInventory(trip["id"])


def test_second_reference_clash_is_a_conflict(
    monkeypatch, customer, other_customer, trip, book
):
    taken = book(customer, trip["id"], 1).json()["data"]["reference"]
    monkeypatch.setattr(reservation, "generateReference", lambda: taken)

    response = book(other_customer, trip["id"], 2)
    assert response.status_code == 409
    assert response.json()["error"] == "UniqueViolation"
    assert bookingCount(trip["id"]) == 1
    assert tripState(trip["id"]).available_seats == 39
    assertInventory(trip["id"])


def test_counter_rejects_overbooking(make_trip, customer, other_customer, book):
    trip = make_trip(total_seats=1)
    assert book(customer, trip["id"], 1).status_code == 201

    response = book(other_customer, trip["id"], 1)
    assert response.status_code == 409
    trip = tripState(trip["id"])
    assert trip.available_seats == 0
    assert trip.total_bookings == 1


def test_booking_is_cancelled_only_once(client, customer, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    url = f"/api/bookings/{booking['id']}/cancel"
    assert client.put(url, json={}, headers=customer.headers).status_code == 200

    response = client.put(url, json={}, headers=customer.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "AlreadyCancelled"
    assert tripState(trip["id"]).available_seats == 40


def test_status_follows_the_booking_lifecycle(client, customer, bus_admin, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    url = f"/api/bookings/{booking['id']}/status"

    response = client.put(url, json={"status": 2}, headers=bus_admin.headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == BookingStatus.CONFIRMED
    assert response.json()["data"]["confirmed_at"] is not None

    response = client.put(url, json={"status": 4}, headers=bus_admin.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == BookingStatus.COMPLETED
    assert data["payment_status"] == PaymentStatus.COMPLETED

    response = client.put(url, json={"status": 1}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"

    response = client.put(
        f"/api/bookings/{booking['id']}/cancel", json={}, headers=bus_admin.headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "NotCancellable"


def test_cancelling_through_status_releases_seats(client, customer, bus_admin, trip, book):
    booking = book(customer, trip["id"], 1, 2, 3).json()["data"]
    response = client.put(
        f"/api/bookings/{booking['id']}/status",
        json={"status": 3},
        headers=bus_admin.headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == PaymentStatus.REFUNDED
    assert tripState(trip["id"]).available_seats == 40


def test_cancelled_booking_cannot_be_cancelled_again_through_status(
    client, customer, bus_admin, trip, book
):
    booking = book(customer, trip["id"], 1).json()["data"]
    url = f"/api/bookings/{booking['id']}/status"
    assert client.put(url, json={"status": 3}, headers=bus_admin.headers).status_code == 200

    response = client.put(url, json={"status": 3}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "AlreadyCancelled"

    response = client.put(url, json={"status": 2}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "AlreadyCancelled"
    assert tripState(trip["id"]).available_seats == 40
    assertInventory(trip["id"])


def test_current_status_is_not_a_transition(client, customer, bus_admin, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    url = f"/api/bookings/{booking['id']}/status"

    response = client.put(url, json={"status": 1}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"

    client.put(url, json={"status": 2}, headers=bus_admin.headers)
    response = client.put(url, json={"status": 2}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"

    client.put(url, json={"status": 4}, headers=bus_admin.headers)
    response = client.put(url, json={"status": 4}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidStateTransition"


def test_customer_cannot_change_the_status(client, customer, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    response = client.put(
        f"/api/bookings/{booking['id']}/status",
        json={"status": 2},
        headers=customer.headers,
    )
    assert response.status_code == 403


def test_cancelled_trip_is_not_bookable(client, customer, bus_admin, trip, book):
    response = client.put(
        f"/api/trips/{trip['id']}/status", data={"status": 4}, headers=bus_admin.headers
    )
    assert response.status_code == 200

    response = book(customer, trip["id"], 1)
    assert response.status_code == 400
    assert response.json()["error"] == "TripNotBookable"


def test_delayed_trip_is_still_bookable(client, customer, bus_admin, trip, book):
    client.put(
        f"/api/trips/{trip['id']}/status",
        data={"status": int(TripStatus.DELAYED), "delay_reason": "Traffic"},
        headers=bus_admin.headers,
    )
    assert book(customer, trip["id"], 1).status_code == 201


def test_seat_numbers_are_validated(customer, trip, book):
    response = book(customer, trip["id"], 41)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidValue"

    response = book(customer, trip["id"], 2, 2)
    assert response.status_code == 400

    response = book(customer, trip["id"], 0)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationFailed"

    response = book(customer, trip["id"], *range(1, 12))
    assert response.status_code == 400
    assert bookingCount(trip["id"]) == 0


def test_unknown_trip(customer, book):
    response = book(customer, 999, 1)
    assert response.status_code == 404


def test_booking_man_books_for_a_customer(client, booking_man, customer, trip, book):
    response = book(booking_man, trip["id"], 10, customer_id=customer.id, payment_method=6)
    assert response.status_code == 201
    booking = response.json()["data"]
    assert booking["user_id"] == customer.id
    assert booking["booked_by"] == booking_man.id
    assert booking["payment_method"] == 6

    # Visible to both, the owning customer and the seller
    for account in (customer, booking_man):
        response = client.get(f"/api/bookings/{booking['id']}", headers=account.headers)
        assert response.status_code == 200


def test_customer_cannot_book_for_someone_else(customer, other_customer, trip, book):
    response = book(customer, trip["id"], 1, customer_id=other_customer.id)
    assert response.status_code == 400
    assert response.json()["error"] == "UnexpectedParameter"


def test_staff_of_another_owner_cannot_sell_the_trip(
    make_account, master_admin, customer, trip, book
):
    rival = make_account("rival", Role.BUS_OWNER, created_by=master_admin.id)
    response = book(rival, trip["id"], 1, customer_id=customer.id)
    assert response.status_code == 404


def test_only_elevated_roles_set_the_refund(client, customer, bus_admin, trip, book):
    booking = book(customer, trip["id"], 1, 2).json()["data"]
    url = f"/api/bookings/{booking['id']}/cancel"

    response = client.put(url, json={"refund_amount": 100}, headers=customer.headers)
    assert response.status_code == 403

    response = client.put(url, json={"refund_amount": 1000}, headers=bus_admin.headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidValue"

    response = client.put(url, json={"refund_amount": 150}, headers=bus_admin.headers)
    assert response.status_code == 200
    assert response.json()["data"]["refund_amount"] == 150


def test_bookings_are_private(client, customer, other_customer, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]

    response = client.get(f"/api/bookings/{booking['id']}", headers=other_customer.headers)
    assert response.status_code == 404
    response = client.put(
        f"/api/bookings/{booking['id']}/cancel", json={}, headers=other_customer.headers
    )
    assert response.status_code == 404

    response = client.get("/api/bookings", headers=other_customer.headers)
    assert response.json()["data"]["items"] == []


def test_lookup_by_reference(client, customer, trip, book):
    booking = book(customer, trip["id"], 1).json()["data"]
    reference = booking["reference"].lower()

    response = client.get(f"/api/bookings/reference/{reference}", headers=customer.headers)
    assert response.status_code == 200
    assert response.json()["data"]["id"] == booking["id"]

    response = client.get("/api/bookings/reference/BENOPE", headers=customer.headers)
    assert response.status_code == 404


def test_booking_list_filters(client, customer, bus_admin, make_trip, book):
    first = make_trip()
    second = make_trip()
    book(customer, first["id"], 1)
    book(customer, second["id"], 1)
    book(customer, second["id"], 2)

    response = client.get(
        "/api/bookings", params={"trip_id": second["id"]}, headers=bus_admin.headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["pagination"]["total_items"] == 2

    response = client.get("/api/bookings", params={"limit": 1}, headers=customer.headers)
    pagination = response.json()["data"]["pagination"]
    assert pagination["total_items"] == 3
    assert pagination["total_pages"] == 3
    assert pagination["has_next_page"] is True


def test_seat_map_reflects_bookings(client, customer, trip, book):
    book(customer, trip["id"], 4, 9)

    response = client.get(f"/api/trips/{trip['id']}/seats", headers=customer.headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["booked_seats"] == [4, 9]
    assert data["available_seats"] == 38
    assert len(data["available_seat_numbers"]) == 38
    assert data["occupancy_percentage"] == 5.0


def test_inventory_holds_through_mixed_operations(client, customer, bus_admin, trip, book):
    ids = [book(customer, trip["id"], seat).json()["data"]["id"] for seat in (1, 2, 3)]
    client.put(f"/api/bookings/{ids[0]}/cancel", json={}, headers=customer.headers)
    client.put(f"/api/bookings/{ids[1]}/status", json={"status": 2}, headers=bus_admin.headers)
    book(customer, trip["id"], 1, 4)

    session = sessionMaker()
    try:
        held = (
            session.query(BookingSeat)
            .filter(BookingSeat.trip_id == trip["id"], BookingSeat.is_released.is_(False))
            .count()
        )
    finally:
        session.close()
    trip = tripState(trip["id"])
    assert trip.total_bookings == held == 4
    assert trip.available_seats == 36
