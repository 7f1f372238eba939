from datetime import date, datetime, time, timedelta, timezone
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Response, status, Form
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.db import Booking, Bus, Route, Trip, User, sessionMaker
from busbook.src import exceptions, schemas, validators, getters, reservation
from busbook.src.statistics import tripScope
from busbook.src.loggers import logEvent
from busbook.src.enums import BusStatus, OrderIn, Role, SubRole, TripStatus
from busbook.src.constants import ANY_ROLE, FLEET_MANAGERS, TRIP_NUMBER_PREFIX
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    makeResponse,
    paginate,
    toUTC,
    updateIfChanged,
)
from busbook.src.urls import URL_TRIP, URL_TRIP_BY_ID, URL_TRIP_SEATS, URL_TRIP_STATUS

route_trip = APIRouter()


## Output Schema
class TripSchema(BaseModel):
    id: int
    trip_number: Optional[str]
    bus_id: int
    route_id: int
    driver_id: Optional[int]
    helper_id: Optional[int]
    departure_at: datetime
    arrival_at: datetime
    fare: float
    total_seats: int
    available_seats: int
    total_bookings: int
    status: int
    delay_reason: Optional[str]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class TripResponse(schemas.Response):
    data: TripSchema


class TripListData(BaseModel):
    items: List[TripSchema]
    pagination: schemas.Pagination


class TripListResponse(schemas.Response):
    data: TripListData


class SeatMapSchema(BaseModel):
    trip_id: int
    trip_number: Optional[str]
    status: int
    fare: float
    total_seats: int
    available_seats: int
    booked_seats: List[int]
    available_seat_numbers: List[int]
    occupancy_percentage: float


class SeatMapResponse(schemas.Response):
    data: SeatMapSchema


## Input Forms
class CreateForm(BaseModel):
    bus_id: int = Field(Form())
    route_id: int = Field(Form())
    driver_id: int | None = Field(Form(default=None))
    helper_id: int | None = Field(Form(default=None))
    departure_at: datetime = Field(Form())
    arrival_at: datetime = Field(Form())
    fare: float | None = Field(
        Form(ge=0, default=None, description="Defaults to the base fare of the route")
    )


class UpdateForm(BaseModel):
    driver_id: int | None = Field(Form(default=None))
    helper_id: int | None = Field(Form(default=None))
    departure_at: datetime | None = Field(Form(default=None))
    arrival_at: datetime | None = Field(Form(default=None))
    fare: float | None = Field(Form(ge=0, default=None))


class StatusForm(BaseModel):
    status: TripStatus = Field(Form(description=enumStr(TripStatus)))
    delay_reason: str | None = Field(Form(max_length=512, default=None))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    departure_at = 2
    fare = 3
    available_seats = 4
    created_on = 5


class QueryParams(BaseModel):
    # filters
    origin: str | None = Field(Query(default=None))
    destination: str | None = Field(Query(default=None))
    departure_date: date | None = Field(
        Query(default=None, description="Departure date (UTC)")
    )
    status: TripStatus | None = Field(
        Query(default=None, description=enumStr(TripStatus))
    )
    bus_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    # seats based
    available_seats_ge: int | None = Field(Query(default=None))
    # fare based
    fare_ge: float | None = Field(Query(default=None))
    fare_le: float | None = Field(Query(default=None))
    # departure_at based
    departure_at_ge: datetime | None = Field(Query(default=None))
    departure_at_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(
        Query(default=OrderBy.departure_at, description=enumStr(OrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


## Function
def visibleTrips(session: Session, user: User) -> list:
    """Customers and the master admin search every trip, staff see their own fleet."""
    if user.role in (Role.MASTER_ADMIN, Role.CUSTOMER):
        return []
    return tripScope(session, user)


def managedTrip(session: Session, user: User, trip_id: int) -> Trip:
    trip = session.query(Trip).filter(Trip.id == trip_id).first()
    if trip is None:
        raise exceptions.InvalidIdentifier()
    bus = session.query(Bus).filter(Bus.id == trip.bus_id).first()
    validators.owner(bus.owner_id if bus else None, getters.ownerId(user, session))
    return trip


def checkCrew(
    session: Session, ownerId: int, employee_id: int, subRole: SubRole, column
):
    """
    Validate that an employee works for the bus owner in the expected sub role.

    Raises:
        exceptions.UnknownValue: If the account does not exist.
        exceptions.InvalidAssociation: If the account is not a matching employee of the owner.
    """
    employee = session.query(User).filter(User.id == employee_id).first()
    if employee is None:
        raise exceptions.UnknownValue(column)
    if (
        employee.role != Role.BUS_EMPLOYEE
        or employee.sub_role != subRole
        or getters.ownerId(employee, session) != ownerId
    ):
        raise exceptions.InvalidAssociation(column, User.sub_role)


def checkSchedule(departure_at: datetime, arrival_at: datetime):
    if toUTC(departure_at) >= toUTC(arrival_at):
        raise exceptions.InvalidValue(Trip.arrival_at)


def searchTrip(session: Session, qParam: QueryParams, conditions: list) -> tuple:
    query = session.query(Trip).filter(*conditions)

    # Filters
    if qParam.origin is not None or qParam.destination is not None:
        query = query.join(Route, Route.id == Trip.route_id)
        if qParam.origin is not None:
            query = query.filter(Route.origin.ilike(f"%{qParam.origin}%"))
        if qParam.destination is not None:
            query = query.filter(Route.destination.ilike(f"%{qParam.destination}%"))
    if qParam.departure_date is not None:
        dayStart = datetime.combine(qParam.departure_date, time.min, tzinfo=timezone.utc)
        query = query.filter(
            Trip.departure_at >= dayStart,
            Trip.departure_at < dayStart + timedelta(days=1),
        )
    if qParam.status is not None:
        query = query.filter(Trip.status == qParam.status)
    if qParam.bus_id is not None:
        query = query.filter(Trip.bus_id == qParam.bus_id)
    if qParam.route_id is not None:
        query = query.filter(Trip.route_id == qParam.route_id)
    # seats based
    if qParam.available_seats_ge is not None:
        query = query.filter(Trip.available_seats >= qParam.available_seats_ge)
    # fare based
    if qParam.fare_ge is not None:
        query = query.filter(Trip.fare >= qParam.fare_ge)
    if qParam.fare_le is not None:
        query = query.filter(Trip.fare <= qParam.fare_le)
    # departure_at based
    if qParam.departure_at_ge is not None:
        query = query.filter(Trip.departure_at >= qParam.departure_at_ge)
    if qParam.departure_at_le is not None:
        query = query.filter(Trip.departure_at <= qParam.departure_at_le)

    # Ordering
    orderingAttribute = getattr(Trip, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return paginate(query, qParam.page, qParam.limit)


## API endpoints
@route_trip.post(
    URL_TRIP,
    tags=["Trip"],
    response_model=TripResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(Trip.bus_id),
            exceptions.InactiveResource(Bus),
            exceptions.InvalidValue(Trip.arrival_at),
            exceptions.InvalidAssociation(Trip.driver_id, User.sub_role),
        ]
    ),
    description="""
    Schedule a trip of a bus along a route.
    The bus and the route must belong to the bus owner, the bus must be active
    and the route must be active.
    The departure must be in the future and before the arrival.
    The driver must be a DRIVER and the helper a HELPER employed by the same bus owner.
    The seat inventory is copied from the bus, the fare defaults to the base fare of the route.
    """,
)
async def create_trip(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)
        ownerId = getters.ownerId(user, session)

        bus = session.query(Bus).filter(Bus.id == fParam.bus_id).first()
        if bus is None or bus.owner_id != ownerId:
            raise exceptions.UnknownValue(Trip.bus_id)
        if bus.status != BusStatus.ACTIVE:
            raise exceptions.InactiveResource(Bus)
        route = session.query(Route).filter(Route.id == fParam.route_id).first()
        if route is None or route.owner_id != ownerId:
            raise exceptions.UnknownValue(Trip.route_id)
        if not route.is_active:
            raise exceptions.InactiveResource(Route)

        checkSchedule(fParam.departure_at, fParam.arrival_at)
        if toUTC(fParam.departure_at) <= datetime.now(timezone.utc):
            raise exceptions.InvalidValue(Trip.departure_at)
        if fParam.driver_id is not None:
            checkCrew(session, ownerId, fParam.driver_id, SubRole.DRIVER, Trip.driver_id)
        if fParam.helper_id is not None:
            checkCrew(session, ownerId, fParam.helper_id, SubRole.HELPER, Trip.helper_id)

        fare = fParam.fare if fParam.fare is not None else route.base_fare
        trip = Trip(
            bus_id=bus.id,
            route_id=route.id,
            driver_id=fParam.driver_id,
            helper_id=fParam.helper_id,
            departure_at=toUTC(fParam.departure_at),
            arrival_at=toUTC(fParam.arrival_at),
            fare=fare,
            total_seats=bus.total_seats,
            available_seats=bus.total_seats,
            total_bookings=0,
            status=TripStatus.SCHEDULED,
            created_by=user.id,
        )
        session.add(trip)
        session.flush()
        trip.trip_number = f"{TRIP_NUMBER_PREFIX}{trip.id:05d}"
        session.commit()
        session.refresh(trip)

        tripData = jsonable_encoder(trip)
        logEvent(token, request_info, tripData, user)
        return makeResponse(tripData, "Trip created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.get(
    URL_TRIP,
    tags=["Trip"],
    response_model=TripListResponse,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Search trips by origin, destination, departure date and status.
    Customers search every trip, operator staff see the trips of their bus owner,
    bus employees see the trips they are assigned to.
    Paginate using page and limit.
    """,
)
async def fetch_trips(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        trips, pagination = searchTrip(session, qParam, visibleTrips(session, user))
        return makeResponse(
            {"items": jsonable_encoder(trips), "pagination": pagination},
            "Trips fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.get(
    URL_TRIP_BY_ID,
    tags=["Trip"],
    response_model=TripResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.InvalidIdentifier()]
    ),
    description="Fetch a trip visible to the account.",
)
async def fetch_trip(trip_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        trip = (
            session.query(Trip)
            .filter(Trip.id == trip_id, *visibleTrips(session, user))
            .first()
        )
        if trip is None:
            raise exceptions.InvalidIdentifier()
        return makeResponse(jsonable_encoder(trip), "Trip fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.get(
    URL_TRIP_SEATS,
    tags=["Trip"],
    response_model=SeatMapResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.InvalidIdentifier()]
    ),
    description="""
    Fetch the seat map of a trip.
    Lists the booked seat numbers and the free seat numbers along with the occupancy.
    Seats of cancelled bookings are free again.
    """,
)
async def fetch_trip_seats(trip_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        trip = (
            session.query(Trip)
            .filter(Trip.id == trip_id, *visibleTrips(session, user))
            .first()
        )
        if trip is None:
            raise exceptions.InvalidIdentifier()
        return makeResponse(reservation.seatMap(session, trip), "Seats fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.put(
    URL_TRIP_BY_ID,
    tags=["Trip"],
    response_model=TripResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InactiveResource(Trip),
            exceptions.InvalidValue(Trip.arrival_at),
        ]
    ),
    description="""
    Update the crew, the schedule or the fare of a trip.
    Only scheduled or delayed trips can be updated.
    The fare of existing bookings does not change.
    Modifications are only saved if changes are detected.
    """,
)
async def update_trip(
    trip_id: int = Path(ge=1),
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        trip = managedTrip(session, user, trip_id)
        if trip.status not in reservation.BOOKABLE_TRIP_STATUS:
            raise exceptions.InactiveResource(Trip)
        ownerId = getters.ownerId(user, session)
        if fParam.driver_id is not None and fParam.driver_id != trip.driver_id:
            checkCrew(session, ownerId, fParam.driver_id, SubRole.DRIVER, Trip.driver_id)
        if fParam.helper_id is not None and fParam.helper_id != trip.helper_id:
            checkCrew(session, ownerId, fParam.helper_id, SubRole.HELPER, Trip.helper_id)

        fParam.departure_at = toUTC(fParam.departure_at)
        fParam.arrival_at = toUTC(fParam.arrival_at)
        updateIfChanged(
            trip,
            fParam,
            [
                Trip.driver_id.key,
                Trip.helper_id.key,
                Trip.departure_at.key,
                Trip.arrival_at.key,
                Trip.fare.key,
            ],
        )
        haveUpdates = session.is_modified(trip)
        if haveUpdates:
            checkSchedule(trip.departure_at, trip.arrival_at)
            session.commit()
            session.refresh(trip)

        tripData = jsonable_encoder(trip)
        if haveUpdates:
            logEvent(token, request_info, tripData, user)
        return makeResponse(tripData, "Trip updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.put(
    URL_TRIP_STATUS,
    tags=["Trip"],
    response_model=TripResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Trip.status),
        ]
    ),
    description="""
    Update the status of a trip.
    A delay reason can be recorded when the trip is delayed.
    Bookings of a cancelled trip are kept, they are cancelled one by one.

    Allowed status transitions:
        SCHEDULED → IN_PROGRESS, DELAYED, CANCELLED
        DELAYED → SCHEDULED, IN_PROGRESS, CANCELLED
        IN_PROGRESS → COMPLETED
    """,
)
async def update_trip_status(
    trip_id: int = Path(ge=1),
    fParam: StatusForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    tripStatusTransition = {
        TripStatus.SCHEDULED: [
            TripStatus.IN_PROGRESS,
            TripStatus.DELAYED,
            TripStatus.CANCELLED,
        ],
        TripStatus.DELAYED: [
            TripStatus.SCHEDULED,
            TripStatus.IN_PROGRESS,
            TripStatus.CANCELLED,
        ],
        TripStatus.IN_PROGRESS: [TripStatus.COMPLETED],
        TripStatus.COMPLETED: [],
        TripStatus.CANCELLED: [],
    }
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        trip = managedTrip(session, user, trip_id)
        if fParam.status != trip.status:
            validators.stateTransition(
                tripStatusTransition, trip.status, fParam.status, Trip.status
            )
            trip.status = fParam.status
        if fParam.status == TripStatus.DELAYED and fParam.delay_reason is not None:
            trip.delay_reason = fParam.delay_reason

        haveUpdates = session.is_modified(trip)
        if haveUpdates:
            session.commit()
            session.refresh(trip)

        tripData = jsonable_encoder(trip)
        if haveUpdates:
            logEvent(token, request_info, tripData, user)
        return makeResponse(tripData, f"Trip is {TripStatus(trip.status).name}")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_trip.delete(
    URL_TRIP_BY_ID,
    tags=["Trip"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.DataInUse(Trip),
        ]
    ),
    description="""
    Delete a trip of the bus owner.
    A trip referenced by any booking, cancelled ones included, cannot be
    deleted. Cancel the trip through its status instead.
    """,
)
async def delete_trip(
    trip_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        trip = managedTrip(session, user, trip_id)
        if session.query(Booking.id).filter(Booking.trip_id == trip.id).count():
            raise exceptions.DataInUse(Trip)

        session.delete(trip)
        session.commit()
        logEvent(token, request_info, jsonable_encoder(trip), user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
