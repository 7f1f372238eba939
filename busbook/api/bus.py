from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Response, status, Form
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.db import Bus, Expense, Trip, User, sessionMaker
from busbook.src import exceptions, schemas, validators, getters
from busbook.src.loggers import logEvent
from busbook.src.enums import BusStatus, BusType, OrderIn, Role
from busbook.src.constants import (
    FLEET_MANAGERS,
    FLEET_VIEWERS,
    MAX_BUS_SEATS,
    REGEX_BUS_NUMBER,
)
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    makeResponse,
    paginate,
    updateIfChanged,
)
from busbook.src.urls import URL_BUS, URL_BUS_BY_ID

route_bus = APIRouter()


## Output Schema
class BusSchema(BaseModel):
    id: int
    owner_id: Optional[int]
    bus_number: str
    name: str
    bus_type: int
    total_seats: int
    available_seats: int
    amenities: List[str]
    status: int
    registration_upto: Optional[datetime]
    insurance_upto: Optional[datetime]
    fitness_upto: Optional[datetime]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class BusResponse(schemas.Response):
    data: BusSchema


class BusListData(BaseModel):
    items: List[BusSchema]
    pagination: schemas.Pagination


class BusListResponse(schemas.Response):
    data: BusListData


## Input Forms
class CreateForm(BaseModel):
    bus_number: str = Field(Form(pattern=REGEX_BUS_NUMBER, max_length=16))
    name: str = Field(Form(min_length=1, max_length=32))
    bus_type: BusType = Field(Form(description=enumStr(BusType)))
    total_seats: int = Field(Form(ge=1, le=MAX_BUS_SEATS))
    available_seats: int | None = Field(Form(ge=0, le=MAX_BUS_SEATS, default=None))
    amenities: List[str] | None = Field(Form(default=None))
    status: BusStatus = Field(
        Form(description=enumStr(BusStatus), default=BusStatus.ACTIVE)
    )
    registration_upto: datetime | None = Field(Form(default=None))
    insurance_upto: datetime | None = Field(Form(default=None))
    fitness_upto: datetime | None = Field(Form(default=None))


class UpdateForm(BaseModel):
    name: str | None = Field(Form(min_length=1, max_length=32, default=None))
    bus_type: BusType | None = Field(Form(description=enumStr(BusType), default=None))
    total_seats: int | None = Field(Form(ge=1, le=MAX_BUS_SEATS, default=None))
    available_seats: int | None = Field(Form(ge=0, le=MAX_BUS_SEATS, default=None))
    amenities: List[str] | None = Field(Form(default=None))
    status: BusStatus | None = Field(Form(description=enumStr(BusStatus), default=None))
    registration_upto: datetime | None = Field(Form(default=None))
    insurance_upto: datetime | None = Field(Form(default=None))
    fitness_upto: datetime | None = Field(Form(default=None))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    total_seats = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    # filters
    name: str | None = Field(Query(default=None))
    bus_number: str | None = Field(Query(default=None))
    bus_type: BusType | None = Field(Query(default=None, description=enumStr(BusType)))
    status: BusStatus | None = Field(
        Query(default=None, description=enumStr(BusStatus))
    )
    owner_id: int | None = Field(Query(default=None))
    # id based
    id_list: List[int] | None = Field(Query(default=None))
    # seats based
    total_seats_ge: int | None = Field(Query(default=None))
    total_seats_le: int | None = Field(Query(default=None))
    # insurance_upto based
    insurance_upto_ge: datetime | None = Field(Query(default=None))
    insurance_upto_le: datetime | None = Field(Query(default=None))
    # fitness_upto based
    fitness_upto_ge: datetime | None = Field(Query(default=None))
    fitness_upto_le: datetime | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


## Function
def fleetOwner(session: Session, user: User) -> int:
    """Resolve the bus owner a fleet manager acts for."""
    ownerId = getters.ownerId(user, session)
    if ownerId is None:
        raise exceptions.NoPermission()
    return ownerId


def visibleBus(session: Session, user: User, bus_id: int) -> Bus:
    bus = session.query(Bus).filter(Bus.id == bus_id).first()
    if bus is None:
        raise exceptions.InvalidIdentifier()
    if user.role != Role.MASTER_ADMIN:
        validators.owner(bus.owner_id, getters.ownerId(user, session))
    return bus


def updateBus(bus: Bus, fParam: UpdateForm):
    updateIfChanged(
        bus,
        fParam,
        [
            Bus.name.key,
            Bus.bus_type.key,
            Bus.total_seats.key,
            Bus.amenities.key,
            Bus.status.key,
            Bus.registration_upto.key,
            Bus.insurance_upto.key,
            Bus.fitness_upto.key,
        ],
    )
    if fParam.available_seats is not None:
        bus.available_seats = fParam.available_seats
    # Keep the seats in service within the capacity
    if bus.available_seats > bus.total_seats:
        bus.available_seats = bus.total_seats


def searchBus(session: Session, qParam: QueryParams, conditions: list) -> tuple:
    query = session.query(Bus).filter(*conditions)

    # Filters
    if qParam.name is not None:
        query = query.filter(Bus.name.ilike(f"%{qParam.name}%"))
    if qParam.bus_number is not None:
        query = query.filter(Bus.bus_number.ilike(f"%{qParam.bus_number}%"))
    if qParam.bus_type is not None:
        query = query.filter(Bus.bus_type == qParam.bus_type)
    if qParam.status is not None:
        query = query.filter(Bus.status == qParam.status)
    if qParam.owner_id is not None:
        query = query.filter(Bus.owner_id == qParam.owner_id)
    # id based
    if qParam.id_list is not None:
        query = query.filter(Bus.id.in_(qParam.id_list))
    # seats based
    if qParam.total_seats_ge is not None:
        query = query.filter(Bus.total_seats >= qParam.total_seats_ge)
    if qParam.total_seats_le is not None:
        query = query.filter(Bus.total_seats <= qParam.total_seats_le)
    # insurance_upto based
    if qParam.insurance_upto_ge is not None:
        query = query.filter(Bus.insurance_upto >= qParam.insurance_upto_ge)
    if qParam.insurance_upto_le is not None:
        query = query.filter(Bus.insurance_upto <= qParam.insurance_upto_le)
    # fitness_upto based
    if qParam.fitness_upto_ge is not None:
        query = query.filter(Bus.fitness_upto >= qParam.fitness_upto_ge)
    if qParam.fitness_upto_le is not None:
        query = query.filter(Bus.fitness_upto <= qParam.fitness_upto_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Bus.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Bus.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Bus, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return paginate(query, qParam.page, qParam.limit)


## API endpoints
@route_bus.post(
    URL_BUS,
    tags=["Bus"],
    response_model=BusResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(Bus.available_seats),
            exceptions.UniqueViolation(""),
        ]
    ),
    description="""
    Register a new bus in the fleet of the bus owner.
    Bus admins register buses on behalf of their bus owner.
    The bus number must be unique across the platform.
    Available seats default to the total seats and cannot exceed them.
    """,
)
async def create_bus(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        available_seats = fParam.available_seats
        if available_seats is None:
            available_seats = fParam.total_seats
        if available_seats > fParam.total_seats:
            raise exceptions.InvalidValue(Bus.available_seats)

        bus = Bus(
            owner_id=fleetOwner(session, user),
            bus_number=fParam.bus_number,
            name=fParam.name,
            bus_type=fParam.bus_type,
            total_seats=fParam.total_seats,
            available_seats=available_seats,
            amenities=fParam.amenities or [],
            status=fParam.status,
            registration_upto=fParam.registration_upto,
            insurance_upto=fParam.insurance_upto,
            fitness_upto=fParam.fitness_upto,
            created_by=user.id,
        )
        session.add(bus)
        session.commit()
        session.refresh(bus)

        busData = jsonable_encoder(bus)
        logEvent(token, request_info, busData, user)
        return makeResponse(busData, "Bus created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_bus.get(
    URL_BUS,
    tags=["Bus"],
    response_model=BusListResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the buses of the fleet the account works for, the master admin sees every bus.
    Supports filtering by name, number, type, status, seats and document validity.
    Paginate using page and limit.
    """,
)
async def fetch_buses(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_VIEWERS)

        conditions = []
        if user.role != Role.MASTER_ADMIN:
            conditions.append(Bus.owner_id == fleetOwner(session, user))
        buses, pagination = searchBus(session, qParam, conditions)
        return makeResponse(
            {"items": jsonable_encoder(buses), "pagination": pagination},
            "Buses fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_bus.get(
    URL_BUS_BY_ID,
    tags=["Bus"],
    response_model=BusResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="Fetch a bus of the fleet the account works for.",
)
async def fetch_bus(bus_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_VIEWERS)

        bus = visibleBus(session, user, bus_id)
        return makeResponse(jsonable_encoder(bus), "Bus fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_bus.put(
    URL_BUS_BY_ID,
    tags=["Bus"],
    response_model=BusResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Update a bus of the fleet.
    Lowering the total seats clamps the available seats.
    Trips already scheduled keep their own seat inventory.
    Modifications are only saved if changes are detected.
    """,
)
async def update_bus(
    bus_id: int = Path(ge=1),
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        bus = visibleBus(session, user, bus_id)
        updateBus(bus, fParam)
        haveUpdates = session.is_modified(bus)
        if haveUpdates:
            session.commit()
            session.refresh(bus)

        busData = jsonable_encoder(bus)
        if haveUpdates:
            logEvent(token, request_info, busData, user)
        return makeResponse(busData, "Bus updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_bus.delete(
    URL_BUS_BY_ID,
    tags=["Bus"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.DataInUse(Bus),
        ]
    ),
    description="""
    Delete a bus of the fleet.
    A bus referenced by trips or expenses cannot be deleted, deactivate it instead.
    """,
)
async def delete_bus(
    bus_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        bus = visibleBus(session, user, bus_id)
        tripCount = session.query(Trip.id).filter(Trip.bus_id == bus.id).count()
        expenseCount = session.query(Expense.id).filter(Expense.bus_id == bus.id).count()
        if tripCount or expenseCount:
            raise exceptions.DataInUse(Bus)

        session.delete(bus)
        session.commit()
        logEvent(token, request_info, jsonable_encoder(bus), user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
