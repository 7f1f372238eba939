from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Response, status, Body
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from shapely.geometry import Point

from busbook.api.bearer import bearer_user
from busbook.src.db import Route, Trip, User, sessionMaker
from busbook.src import exceptions, schemas, validators, getters
from busbook.src.loggers import logEvent
from busbook.src.enums import OrderIn, Role
from busbook.src.constants import ANY_ROLE, FLEET_MANAGERS
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    getPathLength,
    makeResponse,
    paginate,
    toPath,
    updateIfChanged,
)
from busbook.src.urls import URL_ROUTE, URL_ROUTE_BY_ID

route_route = APIRouter()


## Output Schema
class RouteStop(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    latitude: float | None = None
    longitude: float | None = None
    arrival_offset: int | None = Field(default=None, ge=0)
    departure_offset: int | None = Field(default=None, ge=0)


class RouteSchema(BaseModel):
    id: int
    owner_id: Optional[int]
    name: str
    origin: str
    destination: str
    origin_latitude: Optional[float]
    origin_longitude: Optional[float]
    destination_latitude: Optional[float]
    destination_longitude: Optional[float]
    stops: List[RouteStop]
    distance_km: float
    estimated_duration: int
    base_fare: float
    is_active: bool
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class RouteResponse(schemas.Response):
    data: RouteSchema


class RouteListData(BaseModel):
    items: List[RouteSchema]
    pagination: schemas.Pagination


class RouteListResponse(schemas.Response):
    data: RouteListData


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Body(min_length=1, max_length=64))
    origin: str = Field(Body(min_length=1, max_length=64))
    destination: str = Field(Body(min_length=1, max_length=64))
    origin_latitude: float | None = Field(Body(default=None))
    origin_longitude: float | None = Field(Body(default=None))
    destination_latitude: float | None = Field(Body(default=None))
    destination_longitude: float | None = Field(Body(default=None))
    stops: List[RouteStop] = Field(Body(default=[]))
    distance_km: float | None = Field(Body(gt=0, default=None))
    estimated_duration: int = Field(Body(gt=0, description="Travel time in minutes"))
    base_fare: float = Field(Body(ge=0))
    is_active: bool = Field(Body(default=True))


class UpdateForm(BaseModel):
    name: str | None = Field(Body(min_length=1, max_length=64, default=None))
    origin: str | None = Field(Body(min_length=1, max_length=64, default=None))
    destination: str | None = Field(Body(min_length=1, max_length=64, default=None))
    origin_latitude: float | None = Field(Body(default=None))
    origin_longitude: float | None = Field(Body(default=None))
    destination_latitude: float | None = Field(Body(default=None))
    destination_longitude: float | None = Field(Body(default=None))
    stops: List[RouteStop] | None = Field(Body(default=None))
    distance_km: float | None = Field(Body(gt=0, default=None))
    estimated_duration: int | None = Field(Body(gt=0, default=None))
    base_fare: float | None = Field(Body(ge=0, default=None))
    is_active: bool | None = Field(Body(default=None))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    distance_km = 2
    base_fare = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    # filters
    name: str | None = Field(Query(default=None))
    origin: str | None = Field(Query(default=None))
    destination: str | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
    owner_id: int | None = Field(Query(default=None))
    # fare based
    base_fare_ge: float | None = Field(Query(default=None))
    base_fare_le: float | None = Field(Query(default=None))
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
def routeScope(session: Session, user: User) -> list:
    """Operator accounts see the routes of their bus owner, customers see active routes."""
    if user.role == Role.MASTER_ADMIN:
        return []
    if user.role == Role.CUSTOMER:
        return [Route.is_active.is_(True)]
    return [Route.owner_id == getters.ownerId(user, session)]


def visibleRoute(session: Session, user: User, route_id: int) -> Route:
    route = session.query(Route).filter(Route.id == route_id, *routeScope(session, user)).first()
    if route is None:
        raise exceptions.InvalidIdentifier()
    return route


def routePoints(route: Route) -> list:
    """Collect the known (longitude, latitude) points of a route in travel order."""
    points = []
    if route.origin_latitude is not None and route.origin_longitude is not None:
        points.append((float(route.origin_longitude), float(route.origin_latitude)))
    for stop in route.stops or []:
        if stop.get("latitude") is not None and stop.get("longitude") is not None:
            points.append((stop["longitude"], stop["latitude"]))
    if route.destination_latitude is not None and route.destination_longitude is not None:
        points.append(
            (float(route.destination_longitude), float(route.destination_latitude))
        )
    return points


def checkGeometry(route: Route):
    """
    Validate the coordinates of a route and fill the distance when missing.

    The distance is the geodesic length through the known points, it can
    only be derived when at least two points carry coordinates.

    Raises:
        exceptions.InvalidValue: If any coordinate is outside WGS84 bounds.
        exceptions.MissingParameter: If the distance is unknown and cannot be derived.
    """
    for longitude, latitude, column in [
        (route.origin_longitude, route.origin_latitude, Route.origin_latitude),
        (
            route.destination_longitude,
            route.destination_latitude,
            Route.destination_latitude,
        ),
    ]:
        if (longitude is None) != (latitude is None):
            raise exceptions.MissingParameter(column)
    points = routePoints(route)
    for point in points:
        validators.WGS84(Point(point), Route.stops)

    if route.distance_km is None:
        path = toPath(points)
        if path is None:
            raise exceptions.MissingParameter(Route.distance_km)
        route.distance_km = round(getPathLength(path), 2)


def updateRoute(route: Route, fParam: UpdateForm):
    updateIfChanged(
        route,
        fParam,
        [
            Route.name.key,
            Route.origin.key,
            Route.destination.key,
            Route.origin_latitude.key,
            Route.origin_longitude.key,
            Route.destination_latitude.key,
            Route.destination_longitude.key,
            Route.distance_km.key,
            Route.estimated_duration.key,
            Route.base_fare.key,
            Route.is_active.key,
        ],
    )
    if fParam.stops is not None:
        stops = jsonable_encoder(fParam.stops)
        if route.stops != stops:
            route.stops = stops


def searchRoute(session: Session, qParam: QueryParams, conditions: list) -> tuple:
    query = session.query(Route).filter(*conditions)

    # Filters
    if qParam.name is not None:
        query = query.filter(Route.name.ilike(f"%{qParam.name}%"))
    if qParam.origin is not None:
        query = query.filter(Route.origin.ilike(f"%{qParam.origin}%"))
    if qParam.destination is not None:
        query = query.filter(Route.destination.ilike(f"%{qParam.destination}%"))
    if qParam.is_active is not None:
        query = query.filter(Route.is_active.is_(qParam.is_active))
    if qParam.owner_id is not None:
        query = query.filter(Route.owner_id == qParam.owner_id)
    # fare based
    if qParam.base_fare_ge is not None:
        query = query.filter(Route.base_fare >= qParam.base_fare_ge)
    if qParam.base_fare_le is not None:
        query = query.filter(Route.base_fare <= qParam.base_fare_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Route.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Route.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Route, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return paginate(query, qParam.page, qParam.limit)


## API endpoints
@route_route.post(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidValue(Route.stops),
            exceptions.MissingParameter(Route.distance_km),
            exceptions.UniqueViolation(""),
        ]
    ),
    description="""
    Create a route for the bus owner, with its ordered intermediate stops.
    Coordinates are optional, when given they must be valid WGS84 values.
    The distance is computed from the coordinates when it is not provided.
    The route name must be unique within the bus owner.
    """,
)
async def create_route(
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
        if ownerId is None:
            raise exceptions.NoPermission()

        route = Route(
            owner_id=ownerId,
            name=fParam.name,
            origin=fParam.origin,
            destination=fParam.destination,
            origin_latitude=fParam.origin_latitude,
            origin_longitude=fParam.origin_longitude,
            destination_latitude=fParam.destination_latitude,
            destination_longitude=fParam.destination_longitude,
            stops=jsonable_encoder(fParam.stops),
            distance_km=fParam.distance_km,
            estimated_duration=fParam.estimated_duration,
            base_fare=fParam.base_fare,
            is_active=fParam.is_active,
            created_by=user.id,
        )
        checkGeometry(route)
        session.add(route)
        session.commit()
        session.refresh(route)

        routeData = jsonable_encoder(route)
        logEvent(token, request_info, routeData, user)
        return makeResponse(routeData, "Route created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_route.get(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteListResponse,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Fetch routes. Operator accounts get the routes of their bus owner,
    customers get every active route.
    Search by name, origin and destination (case insensitive, partial match).
    Paginate using page and limit.
    """,
)
async def fetch_routes(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        routes, pagination = searchRoute(session, qParam, routeScope(session, user))
        return makeResponse(
            {"items": jsonable_encoder(routes), "pagination": pagination},
            "Routes fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_route.get(
    URL_ROUTE_BY_ID,
    tags=["Route"],
    response_model=RouteResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.InvalidIdentifier()]
    ),
    description="Fetch a route visible to the account.",
)
async def fetch_route(route_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        route = visibleRoute(session, user, route_id)
        return makeResponse(jsonable_encoder(route), "Route fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_route.put(
    URL_ROUTE_BY_ID,
    tags=["Route"],
    response_model=RouteResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidValue(Route.stops),
        ]
    ),
    description="""
    Update a route of the bus owner.
    Trips already scheduled keep their fare.
    Modifications are only saved if changes are detected.
    """,
)
async def update_route(
    route_id: int = Path(ge=1),
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        route = visibleRoute(session, user, route_id)
        updateRoute(route, fParam)
        haveUpdates = session.is_modified(route)
        if haveUpdates:
            checkGeometry(route)
            session.commit()
            session.refresh(route)

        routeData = jsonable_encoder(route)
        if haveUpdates:
            logEvent(token, request_info, routeData, user)
        return makeResponse(routeData, "Route updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_route.delete(
    URL_ROUTE_BY_ID,
    tags=["Route"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.DataInUse(Route),
        ]
    ),
    description="""
    Delete a route of the bus owner.
    A route referenced by trips cannot be deleted, deactivate it instead.
    """,
)
async def delete_route(
    route_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, FLEET_MANAGERS)

        route = visibleRoute(session, user, route_id)
        if session.query(Trip.id).filter(Trip.route_id == route.id).count():
            raise exceptions.DataInUse(Route)

        session.delete(route)
        session.commit()
        logEvent(token, request_info, jsonable_encoder(route), user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
