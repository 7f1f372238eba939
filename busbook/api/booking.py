from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, status, Body
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.db import Booking, BookingSeat, Bus, Trip, User, sessionMaker
from busbook.src import exceptions, schemas, validators, getters, reservation
from busbook.src.statistics import bookingScope, bookingStatistics
from busbook.src.loggers import logEvent
from busbook.src.enums import (
    BookingStatus,
    GenderType,
    OrderIn,
    PaymentMethod,
    PaymentStatus,
    Period,
    Role,
)
from busbook.src.constants import (
    ANY_ROLE,
    BOOKING_ELEVATED,
    BOOKING_STATUS_WRITERS,
    BOOKING_WRITERS,
    MAX_SEATS_PER_BOOKING,
    REGEX_PHONE_NUMBER,
)
from busbook.src.functions import enumStr, fuseExceptionResponses, makeResponse, paginate
from busbook.src.urls import (
    URL_BOOKING,
    URL_BOOKING_BY_ID,
    URL_BOOKING_BY_REFERENCE,
    URL_BOOKING_CANCEL,
    URL_BOOKING_STATISTICS,
    URL_BOOKING_STATUS,
)

route_booking = APIRouter()


## Output Schema
class BookingSeatSchema(BaseModel):
    seat_number: int
    passenger_name: str
    passenger_age: int
    passenger_gender: int
    passenger_phone: str
    is_released: bool


class BookingSchema(BaseModel):
    id: int
    reference: str
    user_id: Optional[int]
    booked_by: Optional[int]
    trip_id: int
    bus_id: int
    route_id: int
    seat_count: int
    seats: List[BookingSeatSchema]
    boarding_point: str
    dropping_point: str
    total_amount: float
    status: int
    payment_status: int
    payment_method: Optional[int]
    cancellation_reason: Optional[str]
    refund_amount: Optional[float]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[int]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


class BookingResponse(schemas.Response):
    data: BookingSchema


class BookingListData(BaseModel):
    items: List[BookingSchema]
    pagination: schemas.Pagination


class BookingListResponse(schemas.Response):
    data: BookingListData


## Input Forms
class SeatForm(BaseModel):
    seat_number: int = Field(ge=1)
    passenger_name: str = Field(min_length=1, max_length=64)
    passenger_age: int = Field(ge=1, le=120)
    passenger_gender: GenderType = Field(description=enumStr(GenderType))
    passenger_phone: str = Field(pattern=REGEX_PHONE_NUMBER)


class CreateForm(BaseModel):
    trip_id: int = Field(Body(ge=1))
    seats: List[SeatForm] = Field(
        Body(min_length=1, max_length=MAX_SEATS_PER_BOOKING)
    )
    boarding_point: str = Field(Body(min_length=1, max_length=64))
    dropping_point: str = Field(Body(min_length=1, max_length=64))
    payment_method: PaymentMethod | None = Field(
        Body(description=enumStr(PaymentMethod), default=None)
    )
    customer_id: int | None = Field(
        Body(default=None, description="Customer the booking is placed for, staff only")
    )


class CancelForm(BaseModel):
    cancellation_reason: str | None = Field(Body(max_length=512, default=None))
    refund_amount: float | None = Field(
        Body(ge=0, default=None, description="Defaults to the total amount")
    )


class StatusForm(BaseModel):
    status: BookingStatus = Field(Body(embed=True, description=enumStr(BookingStatus)))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    total_amount = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    # filters
    reference: str | None = Field(Query(default=None))
    trip_id: int | None = Field(Query(default=None))
    bus_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    user_id: int | None = Field(Query(default=None))
    status: BookingStatus | None = Field(
        Query(default=None, description=enumStr(BookingStatus))
    )
    payment_status: PaymentStatus | None = Field(
        Query(default=None, description=enumStr(PaymentStatus))
    )
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


class StatisticsParams(BaseModel):
    start_date: datetime | None = Field(Query(default=None))
    end_date: datetime | None = Field(Query(default=None))
    period: Period = Field(Query(default=Period.MONTHLY, description=enumStr(Period)))


## Function
def bookingData(session: Session, bookings: List[Booking]) -> list:
    """Serialize bookings along with their seat assignments."""
    seats = {}
    if bookings:
        rows = (
            session.query(BookingSeat)
            .filter(BookingSeat.booking_id.in_([booking.id for booking in bookings]))
            .order_by(BookingSeat.seat_number.asc())
            .all()
        )
        for seat in rows:
            seats.setdefault(seat.booking_id, []).append(
                jsonable_encoder(seat, exclude={"id", "booking_id", "trip_id"})
            )
    data = []
    for booking in bookings:
        item = jsonable_encoder(booking)
        item["seats"] = seats.get(booking.id, [])
        data.append(item)
    return data


def visibleBooking(session: Session, user: User, *conditions) -> Booking:
    booking = (
        session.query(Booking)
        .filter(*conditions, *bookingScope(session, user))
        .first()
    )
    if booking is None:
        raise exceptions.InvalidIdentifier()
    return booking


def bookingOwner(session: Session, user: User, fParam: CreateForm) -> User:
    """
    Resolve the account a booking is placed for.

    Customers always book for themselves. Staff book counter sales for a
    registered customer, or under their own account when none is given,
    and only on the trips of their own bus owner.
    """
    if user.role == Role.CUSTOMER:
        if fParam.customer_id is not None and fParam.customer_id != user.id:
            raise exceptions.UnexpectedParameter(Booking.user_id)
        return user

    tripOwner = (
        session.query(Bus.owner_id)
        .join(Trip, Trip.bus_id == Bus.id)
        .filter(Trip.id == fParam.trip_id)
        .scalar()
    )
    if tripOwner is None or tripOwner != getters.ownerId(user, session):
        raise exceptions.UnknownValue(Booking.trip_id)
    if fParam.customer_id is None:
        return user
    customer = (
        session.query(User)
        .filter(User.id == fParam.customer_id, User.role == Role.CUSTOMER)
        .first()
    )
    if customer is None:
        raise exceptions.UnknownValue(Booking.user_id)
    return customer


def searchBooking(session: Session, qParam: QueryParams, conditions: list) -> tuple:
    query = session.query(Booking).filter(*conditions)

    # Filters
    if qParam.reference is not None:
        query = query.filter(Booking.reference.ilike(f"%{qParam.reference}%"))
    if qParam.trip_id is not None:
        query = query.filter(Booking.trip_id == qParam.trip_id)
    if qParam.bus_id is not None:
        query = query.filter(Booking.bus_id == qParam.bus_id)
    if qParam.route_id is not None:
        query = query.filter(Booking.route_id == qParam.route_id)
    if qParam.user_id is not None:
        query = query.filter(Booking.user_id == qParam.user_id)
    if qParam.status is not None:
        query = query.filter(Booking.status == qParam.status)
    if qParam.payment_status is not None:
        query = query.filter(Booking.payment_status == qParam.payment_status)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Booking.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Booking.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Booking, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return paginate(query, qParam.page, qParam.limit)


## API endpoints
@route_booking.post(
    URL_BOOKING,
    tags=["Booking"],
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(BookingSeat.seat_number),
            exceptions.TripNotBookable(),
            exceptions.UnknownValue(Booking.trip_id),
            exceptions.SeatUnavailable(),
            exceptions.UniqueViolation("Booking reference is already in use"),
        ]
    ),
    description="""
    Book one or more seats of a trip, each seat with its passenger details.
    The trip must be scheduled or delayed and must not have departed.
    Seat numbers must be unique within the request and within the capacity of the trip.
    At most MAX_SEATS_PER_BOOKING seats can be booked at once.
    The total amount is the fare of the trip times the number of seats.
    Seats held by another booking are rejected with a conflict,
    in that case nothing is reserved.
    Booking men and fleet managers may book for a registered customer using customer_id.
    """,
)
async def create_booking(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, BOOKING_WRITERS)

        owner = bookingOwner(session, user, fParam)
        booking = reservation.createBooking(
            session,
            fParam.trip_id,
            fParam.seats,
            fParam.boarding_point,
            fParam.dropping_point,
            fParam.payment_method,
            owner,
            user,
        )

        data = bookingData(session, [booking])[0]
        logEvent(token, request_info, data, user)
        return makeResponse(data, "Booking created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.get(
    URL_BOOKING,
    tags=["Booking"],
    response_model=BookingListResponse,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Fetch the bookings visible to the account.
    Customers see their own bookings, booking men the bookings they placed,
    bus owners and bus admins the bookings on their buses, bus employees the
    bookings of their trips and the master admin every booking.
    Paginate using page and limit.
    """,
)
async def fetch_bookings(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        bookings, pagination = searchBooking(
            session, qParam, bookingScope(session, user)
        )
        return makeResponse(
            {"items": bookingData(session, bookings), "pagination": pagination},
            "Bookings fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.get(
    URL_BOOKING_STATISTICS,
    tags=["Booking"],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Summarize the bookings visible to the account.
    Includes the counts per status, the revenue, the refunds, the success and
    cancellation rates, the most booked routes and the trend per period.
    The date range filters on the booking time, sums of an empty selection are zero.
    """,
)
async def fetch_booking_statistics(
    qParam: StatisticsParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        data = bookingStatistics(
            session, user, qParam.start_date, qParam.end_date, qParam.period
        )
        return makeResponse(jsonable_encoder(data), "Booking statistics fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.get(
    URL_BOOKING_BY_REFERENCE,
    tags=["Booking"],
    response_model=BookingResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.InvalidIdentifier()]
    ),
    description="Fetch a booking visible to the account using its reference.",
)
async def fetch_booking_by_reference(
    reference: str = Path(max_length=24), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        booking = visibleBooking(session, user, Booking.reference == reference.upper())
        return makeResponse(bookingData(session, [booking])[0], "Booking fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.get(
    URL_BOOKING_BY_ID,
    tags=["Booking"],
    response_model=BookingResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.InvalidIdentifier()]
    ),
    description="Fetch a booking visible to the account.",
)
async def fetch_booking(booking_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        booking = visibleBooking(session, user, Booking.id == booking_id)
        return makeResponse(bookingData(session, [booking])[0], "Booking fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.put(
    URL_BOOKING_CANCEL,
    tags=["Booking"],
    response_model=BookingResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.AlreadyCancelled(),
            exceptions.NotCancellable(),
            exceptions.InvalidValue(Booking.refund_amount),
        ]
    ),
    description="""
    Cancel a booking and release its seats to the trip.
    Customers cancel their own bookings and booking men the bookings they placed,
    bus owners, bus admins and the master admin cancel any booking they can see.
    The refund defaults to the total amount, only bus owners, bus admins and the
    master admin can set a different refund.
    Completed bookings cannot be cancelled and a booking is cancelled only once.
    """,
)
async def cancel_booking(
    booking_id: int = Path(ge=1),
    fParam: CancelForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, BOOKING_WRITERS | BOOKING_ELEVATED)
        if fParam.refund_amount is not None:
            validators.role(user, BOOKING_ELEVATED)

        booking = visibleBooking(session, user, Booking.id == booking_id)
        booking = reservation.cancelBooking(
            session,
            booking.id,
            user,
            fParam.cancellation_reason,
            fParam.refund_amount,
        )

        data = bookingData(session, [booking])[0]
        logEvent(token, request_info, data, user)
        return makeResponse(data, "Booking cancelled")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_booking.put(
    URL_BOOKING_STATUS,
    tags=["Booking"],
    response_model=BookingResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Booking.status),
            exceptions.AlreadyCancelled(),
        ]
    ),
    description="""
    Move a booking to a new status.
    Cancelling through this endpoint releases the seats with a full refund.
    Completing a booking with a pending payment marks the payment completed.

    Allowed status transitions:
        PENDING → CONFIRMED, CANCELLED
        CONFIRMED → COMPLETED, CANCELLED
    """,
)
async def update_booking_status(
    booking_id: int = Path(ge=1),
    fParam: StatusForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, BOOKING_STATUS_WRITERS)

        booking = visibleBooking(session, user, Booking.id == booking_id)
        booking = reservation.updateBookingStatus(
            session, booking.id, fParam.status, user
        )

        data = bookingData(session, [booking])[0]
        logEvent(token, request_info, data, user)
        return makeResponse(data, f"Booking is {BookingStatus(booking.status).name}")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
