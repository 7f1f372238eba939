from datetime import datetime, timezone
from http import HTTPStatus
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from busbook.api import (
    account,
    account_token,
    booking,
    bus,
    dashboard,
    expense,
    route,
    trip,
)
from busbook.src import constants
from busbook.src.enums import AppID
from busbook.src.redis import hitRateLimit


# ------------------------------------------------------
# Request guards
# ------------------------------------------------------
async def rateLimit(request: Request):
    """Count the request against the window of the client address."""
    if not constants.RATE_LIMIT_ENABLED:
        return
    client = request.client.host if request.client else "unknown"
    hitRateLimit(client)


# ------------------------------------------------------
# Create the FastAPI app of the booking platform
# ------------------------------------------------------
app_api = FastAPI(title="BusBook APP", dependencies=[Depends(rateLimit)])

# Tag the app with its AppID
app_api.state.id = AppID.API


# ------------------------------------------------------
# Error envelope
# ------------------------------------------------------
def errorResponse(
    statusCode: int, message, error: str, headers: dict | None = None
) -> JSONResponse:
    content = {
        "success": False,
        "message": message,
        "error": error,
        "timestamp": datetime.now(timezone.utc),
    }
    return JSONResponse(
        status_code=statusCode, content=jsonable_encoder(content), headers=headers
    )


@app_api.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = exc.headers or {}
    error = headers.get("X-Error", HTTPStatus(exc.status_code).phrase)
    return errorResponse(exc.status_code, exc.detail, error, headers)


@app_api.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return errorResponse(
        HTTPStatus.BAD_REQUEST,
        exc.errors(),
        "ValidationFailed",
        {"X-Error": "ValidationFailed"},
    )


@app_api.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Tracebacks are logged by exceptions.handle
    message = str(exc)
    if constants.APP_ENV == "production":
        message = HTTPStatus.INTERNAL_SERVER_ERROR.phrase
    return errorResponse(
        HTTPStatus.INTERNAL_SERVER_ERROR,
        message,
        "InternalServerError",
        {"X-Error": "InternalServerError"},
    )


# ------------------------------------------------------
# Routers
# ------------------------------------------------------
app_api.include_router(account_token.route_token)
app_api.include_router(account.route_account)
app_api.include_router(bus.route_bus)
app_api.include_router(route.route_route)
app_api.include_router(trip.route_trip)
app_api.include_router(booking.route_booking)
app_api.include_router(expense.route_expense)
app_api.include_router(dashboard.route_dashboard)
