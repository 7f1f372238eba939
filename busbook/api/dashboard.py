from datetime import datetime
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.db import sessionMaker
from busbook.src import exceptions, validators, getters, statistics
from busbook.src.enums import Period
from busbook.src.constants import (
    ANY_ROLE,
    EXPENSE_VIEWERS,
    PERFORMANCE_VIEWERS,
    POPULAR_ROUTES_LIMIT,
)
from busbook.src.functions import enumStr, fuseExceptionResponses, makeResponse
from busbook.src.urls import (
    URL_BOOKING_ANALYTICS,
    URL_BUS_PERFORMANCE,
    URL_DASHBOARD,
    URL_EXPENSE_ANALYTICS,
    URL_POPULAR_ROUTES,
)

route_dashboard = APIRouter()


## Query Parameters
class RangeQueryParams(BaseModel):
    start_date: datetime | None = Field(Query(default=None))
    end_date: datetime | None = Field(Query(default=None))


class QueryParams(RangeQueryParams):
    period: Period = Field(Query(default=Period.MONTHLY, description=enumStr(Period)))


## API endpoints
@route_dashboard.get(
    URL_DASHBOARD,
    tags=["Dashboard"],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Overview of the account, shaped by its role.
    The master admin gets platform wide counts, bus owners and bus admins get
    their fleet with the revenue, the approved expenses and the net profit,
    booking men get their sales with the commission, bus employees get their
    trips and customers get their bookings with the upcoming trips.
    Today is the current day in UTC.
    """,
)
async def fetch_dashboard(bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        data = statistics.dashboard(session, user)
        return makeResponse(jsonable_encoder(data), "Dashboard fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BOOKING_ANALYTICS,
    tags=["Dashboard"],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Booking analytics of the bookings visible to the account over a date range.
    The period sets the granularity of the trends.
    """,
)
async def fetch_booking_analytics(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        data = statistics.bookingStatistics(
            session, user, qParam.start_date, qParam.end_date, qParam.period
        )
        return makeResponse(jsonable_encoder(data), "Booking analytics fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_EXPENSE_ANALYTICS,
    tags=["Dashboard"],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Expense analytics by type, by status and over time, for the expenses
    visible to the account over a date range.
    """,
)
async def fetch_expense_analytics(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_VIEWERS)

        data = statistics.expenseStatistics(
            session, user, qParam.start_date, qParam.end_date, qParam.period
        )
        return makeResponse(jsonable_encoder(data), "Expense analytics fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_BUS_PERFORMANCE,
    tags=["Dashboard"],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Performance of every bus of the fleet over a date range.
    Reports the bookings, the passengers and the revenue of each bus, with the
    trip counts, the seat occupancy and the share of completed trips.
    Bookings are filtered on their creation time and trips on their departure.
    """,
)
async def fetch_bus_performance(
    qParam: RangeQueryParams = Depends(), bearer=Depends(bearer_user)
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, PERFORMANCE_VIEWERS)

        data = statistics.busPerformance(
            session, user, qParam.start_date, qParam.end_date
        )
        return makeResponse(jsonable_encoder(data), "Bus performance fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_dashboard.get(
    URL_POPULAR_ROUTES,
    tags=["Dashboard"],
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    The most booked active routes of the platform, for every account.
    Cancelled bookings are not counted.
    """,
)
async def fetch_popular_routes(
    limit: int = Query(default=POPULAR_ROUTES_LIMIT, ge=1, le=50),
    bearer=Depends(bearer_user),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, ANY_ROLE)

        data = statistics.popularRoutes(session, limit)
        return makeResponse(jsonable_encoder(data), "Popular routes fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
