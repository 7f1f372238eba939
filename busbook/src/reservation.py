"""
Booking lifecycle and seat inventory of BusBook.

This module owns the only invariant spanning several tables: a seat of a trip
is never sold twice, and the inventory counters of the trip always match the
seats held by its bookings.

- Seats are held by `BookingSeat` rows. A partial unique index over the held
  (trip_id, seat_number) pairs rejects a double sale inside the database,
  even for bookings racing each other.
- The trip counters are moved with conditional UPDATE statements in the same
  transaction as the booking rows, a failure in either leaves nothing behind.
- Every status change goes through `BOOKING_TRANSITIONS`.

The functions expect an open session and commit it on success. The caller
owns the session and closes it.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal
from secrets import choice
from typing import List, Protocol
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.session import Session
from psycopg2.errorcodes import UNIQUE_VIOLATION

from busbook.src import exceptions, validators
from busbook.src.constants import (
    BOOKING_INITIAL_STATUS,
    BOOKING_REFERENCE_PREFIX,
    BOOKING_REFERENCE_RANDOM_LENGTH,
)
from busbook.src.db import Booking, BookingSeat, Trip, User
from busbook.src.enums import BookingStatus, PaymentStatus, TripStatus
from busbook.src.functions import toUTC

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: [BookingStatus.CONFIRMED, BookingStatus.CANCELLED],
    BookingStatus.CONFIRMED: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
    BookingStatus.CANCELLED: [],
    BookingStatus.COMPLETED: [],
}
BOOKABLE_TRIP_STATUS = [TripStatus.SCHEDULED, TripStatus.DELAYED]
ACTIVE_BOOKING_STATUS = [BookingStatus.PENDING, BookingStatus.CONFIRMED]
BASE36_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class SeatAssignment(Protocol):
    seat_number: int
    passenger_name: str
    passenger_age: int
    passenger_gender: int
    passenger_phone: str


# ---------------------------------------------------------------------------
# Reference generation
# ---------------------------------------------------------------------------
def toBase36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generateReference() -> str:
    """
    Generate a human readable booking reference.

    The reference is the prefix, the epoch milliseconds in base 36 and a
    random base 36 suffix, e.g. `BEMF3K2J1QX7A2`.
    """
    timestamp = toBase36(int(time.time() * 1000))
    suffix = "".join(
        choice(BASE36_DIGITS) for _ in range(BOOKING_REFERENCE_RANDOM_LENGTH)
    )
    return f"{BOOKING_REFERENCE_PREFIX}{timestamp}{suffix}".upper()


def isReferenceTaken(session: Session, reference: str) -> bool:
    return (
        session.query(Booking.id).filter(Booking.reference == reference).first()
        is not None
    )


# ---------------------------------------------------------------------------
# Seat inventory
# ---------------------------------------------------------------------------
def heldSeats(
    session: Session, trip_id: int, seatNumbers: List[int] | None = None
) -> set[int]:
    """Return the seat numbers of a trip held by bookings which are not cancelled."""
    query = session.query(BookingSeat.seat_number).filter(
        BookingSeat.trip_id == trip_id,
        BookingSeat.is_released.is_(False),
    )
    if seatNumbers is not None:
        query = query.filter(BookingSeat.seat_number.in_(seatNumbers))
    return {row.seat_number for row in query.all()}


def seatMap(session: Session, trip: Trip) -> dict:
    """
    Describe the seat occupancy of a trip.

    Returns:
        dict: total and available seat counts, the booked and the free seat
        numbers and the occupancy percentage.
    """
    bookedSeats = sorted(heldSeats(session, trip.id))
    bookedSet = set(bookedSeats)
    availableSeats = [
        seat for seat in range(1, trip.total_seats + 1) if seat not in bookedSet
    ]
    occupancy = len(bookedSeats) / trip.total_seats * 100 if trip.total_seats else 0
    return {
        "trip_id": trip.id,
        "trip_number": trip.trip_number,
        "status": trip.status,
        "fare": float(trip.fare),
        "total_seats": trip.total_seats,
        "available_seats": trip.available_seats,
        "booked_seats": bookedSeats,
        "available_seat_numbers": availableSeats,
        "occupancy_percentage": round(occupancy, 2),
    }


def _reserve(
    session: Session,
    trip: Trip,
    owner: User,
    bookedBy: User,
    reference: str,
    seats: List[SeatAssignment],
    boarding_point: str,
    dropping_point: str,
    payment_method: int | None,
) -> Booking:
    """Move the trip inventory and persist the booking as one transaction."""
    seatCount = len(seats)
    currentTime = datetime.now(timezone.utc)

    # Take the seats from the trip counter, only if they are still there
    reserved = (
        session.query(Trip)
        .filter(
            Trip.id == trip.id,
            Trip.status.in_(BOOKABLE_TRIP_STATUS),
            Trip.departure_at > currentTime,
            Trip.available_seats >= seatCount,
        )
        .update(
            {
                Trip.available_seats: Trip.available_seats - seatCount,
                Trip.total_bookings: Trip.total_bookings + seatCount,
            },
            synchronize_session=False,
        )
    )
    if reserved != 1:
        session.rollback()
        raise exceptions.SeatUnavailable()

    booking = Booking(
        reference=reference,
        user_id=owner.id,
        booked_by=bookedBy.id,
        trip_id=trip.id,
        bus_id=trip.bus_id,
        route_id=trip.route_id,
        seat_count=seatCount,
        boarding_point=boarding_point,
        dropping_point=dropping_point,
        total_amount=Decimal(trip.fare) * seatCount,
        status=BOOKING_INITIAL_STATUS,
        payment_status=PaymentStatus.PENDING,
        payment_method=payment_method,
    )
    if BOOKING_INITIAL_STATUS == BookingStatus.CONFIRMED:
        booking.confirmed_at = currentTime
    session.add(booking)
    session.flush()

    for seat in seats:
        session.add(
            BookingSeat(
                booking_id=booking.id,
                trip_id=trip.id,
                seat_number=seat.seat_number,
                passenger_name=seat.passenger_name,
                passenger_age=seat.passenger_age,
                passenger_gender=seat.passenger_gender,
                passenger_phone=seat.passenger_phone,
            )
        )
    session.flush()
    session.commit()
    session.refresh(booking)
    return booking


# ---------------------------------------------------------------------------
# Booking lifecycle
# ---------------------------------------------------------------------------
def createBooking(
    session: Session,
    trip_id: int,
    seats: List[SeatAssignment],
    boarding_point: str,
    dropping_point: str,
    payment_method: int | None,
    owner: User,
    bookedBy: User,
) -> Booking:
    """
    Book seats of a trip.

    The amount is the fare of the trip times the number of seats. The
    booking starts in `BOOKING_INITIAL_STATUS` with a pending payment.

    Raises:
        exceptions.InvalidValue: If the seat numbers repeat or exceed the trip capacity.
        exceptions.UnknownValue: If the trip does not exist.
        exceptions.TripNotBookable: If the trip departed or is not open for booking.
        exceptions.SeatUnavailable: If any seat is held by another booking.
        exceptions.UniqueViolation: If the booking reference clashes twice.
    """
    seatNumbers = [seat.seat_number for seat in seats]
    if not seatNumbers or len(set(seatNumbers)) != len(seatNumbers):
        raise exceptions.InvalidValue(BookingSeat.seat_number)

    trip = session.query(Trip).filter(Trip.id == trip_id).first()
    if trip is None:
        raise exceptions.UnknownValue(Booking.trip_id)
    if trip.status not in BOOKABLE_TRIP_STATUS:
        raise exceptions.TripNotBookable()
    if toUTC(trip.departure_at) <= datetime.now(timezone.utc):
        raise exceptions.TripNotBookable()
    if min(seatNumbers) < 1 or max(seatNumbers) > trip.total_seats:
        raise exceptions.InvalidValue(BookingSeat.seat_number)

    takenSeats = heldSeats(session, trip.id, seatNumbers)
    if takenSeats:
        raise exceptions.SeatUnavailable(list(takenSeats))

    # A clashing reference is regenerated once, clashing seats are reported
    for attempt in range(2):
        reference = generateReference()
        try:
            return _reserve(
                session,
                trip,
                owner,
                bookedBy,
                reference,
                seats,
                boarding_point,
                dropping_point,
                payment_method,
            )
        except IntegrityError as e:
            session.rollback()
            if isReferenceTaken(session, reference):
                if attempt == 0:
                    continue
                raise exceptions.UniqueViolation("Booking reference is already in use")
            if exceptions.sqlState(e) == UNIQUE_VIOLATION:
                raise exceptions.SeatUnavailable()
            raise e


def cancelBooking(
    session: Session,
    booking_id: int,
    requester: User,
    cancellation_reason: str | None = None,
    refund_amount: float | None = None,
) -> Booking:
    """
    Cancel a booking and give its seats back to the trip.

    The refund defaults to the whole amount paid. The status, the payment
    status, the released seats and the trip counters change together.

    Raises:
        exceptions.InvalidIdentifier: If the booking does not exist.
        exceptions.AlreadyCancelled: If the booking is already cancelled.
        exceptions.NotCancellable: If the booking is completed.
        exceptions.InvalidValue: If the refund is negative or exceeds the amount.
    """
    booking = session.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise exceptions.InvalidIdentifier()
    if booking.status == BookingStatus.CANCELLED:
        raise exceptions.AlreadyCancelled()
    if booking.status == BookingStatus.COMPLETED:
        raise exceptions.NotCancellable()
    validators.stateTransition(
        BOOKING_TRANSITIONS, booking.status, BookingStatus.CANCELLED, Booking.status
    )

    totalAmount = Decimal(booking.total_amount)
    refund = totalAmount if refund_amount is None else Decimal(str(refund_amount))
    if refund < 0 or refund > totalAmount:
        raise exceptions.InvalidValue(Booking.refund_amount)

    # Only one of two racing cancellations gets past this update
    cancelled = (
        session.query(Booking)
        .filter(
            Booking.id == booking.id,
            Booking.status.in_(ACTIVE_BOOKING_STATUS),
        )
        .update(
            {
                Booking.status: BookingStatus.CANCELLED,
                Booking.payment_status: PaymentStatus.REFUNDED,
                Booking.cancellation_reason: cancellation_reason,
                Booking.refund_amount: refund,
                Booking.cancelled_at: datetime.now(timezone.utc),
                Booking.cancelled_by: requester.id,
            },
            synchronize_session=False,
        )
    )
    if cancelled != 1:
        session.rollback()
        raise exceptions.AlreadyCancelled()

    releasedSeats = (
        session.query(BookingSeat)
        .filter(
            BookingSeat.booking_id == booking.id,
            BookingSeat.is_released.is_(False),
        )
        .update({BookingSeat.is_released: True}, synchronize_session=False)
    )
    session.query(Trip).filter(Trip.id == booking.trip_id).update(
        {
            Trip.available_seats: Trip.available_seats + releasedSeats,
            Trip.total_bookings: Trip.total_bookings - releasedSeats,
        },
        synchronize_session=False,
    )
    session.commit()
    session.refresh(booking)
    return booking


def updateBookingStatus(
    session: Session, booking_id: int, status: BookingStatus, requester: User
) -> Booking:
    """
    Move a booking to a new status through the booking state machine.

    Cancelling is delegated to `cancelBooking`, so the seats are released.
    The state machine has no self loops, so setting the current status
    again is rejected like any other disallowed transition.

    Raises:
        exceptions.InvalidIdentifier: If the booking does not exist.
        exceptions.AlreadyCancelled: If the booking is already cancelled.
        exceptions.InvalidStateTransition: If the transition is not allowed.
    """
    booking = session.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise exceptions.InvalidIdentifier()
    if booking.status == BookingStatus.CANCELLED:
        raise exceptions.AlreadyCancelled()
    validators.stateTransition(
        BOOKING_TRANSITIONS, booking.status, status, Booking.status
    )
    if status == BookingStatus.CANCELLED:
        return cancelBooking(session, booking.id, requester)

    currentTime = datetime.now(timezone.utc)
    values = {Booking.status: status}
    if status == BookingStatus.CONFIRMED:
        values[Booking.confirmed_at] = currentTime
    if status == BookingStatus.COMPLETED:
        values[Booking.completed_at] = currentTime
        if booking.payment_status == PaymentStatus.PENDING:
            values[Booking.payment_status] = PaymentStatus.COMPLETED

    updated = (
        session.query(Booking)
        .filter(Booking.id == booking.id, Booking.status == booking.status)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        session.rollback()
        raise exceptions.InvalidStateTransition(Booking.status)
    session.commit()
    session.refresh(booking)
    return booking
