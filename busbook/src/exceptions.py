"""
Centralized exception handling for BusBook API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- Custom domain-specific exceptions with appropriate status codes and headers.
- Utility functions for formatting DB errors, logging, and routing exceptions.

Usage:
    - Raise specific exceptions in route handlers or services.
    - Use `handle()` to normalize raw exceptions (DB, Redis, Pydantic) into API-friendly responses.
    - The exception handlers in `busbook.api.controller` render every APIException
      into the response envelope, the `X-Error` header names the error.
"""

from traceback import format_exception
from logging import getLogger
from fastapi import status, HTTPException
from sqlalchemy.exc import IntegrityError
from psycopg2.errorcodes import UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION, CHECK_VIOLATION
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import Column


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def sqlState(e: IntegrityError) -> str | None:
    """
    Resolve the SQLSTATE of a database integrity error.

    PostgreSQL reports it through the psycopg2 diagnostics, other drivers
    only through the message, which is mapped onto the same codes.
    """
    diag = getattr(e.orig, "diag", None)
    if diag is not None and diag.sqlstate:
        return diag.sqlstate
    message = str(e.orig)
    if "UNIQUE constraint failed" in message:
        return UNIQUE_VIOLATION
    if "FOREIGN KEY constraint failed" in message:
        return FOREIGN_KEY_VIOLATION
    if "CHECK constraint failed" in message:
        return CHECK_VIOLATION
    return None


def formatIntegrityError(e: IntegrityError) -> str:
    """
    Format a database integrity error into a user-friendly message.
    """
    diag = getattr(e.orig, "diag", None)
    errorMessage: str = (diag and diag.message_detail) or str(e.orig)
    errorMessage = errorMessage.translate({ord(i): None for i in '\\"\\.\\(\\)'})
    errorMessage = errorMessage.replace("Key ", "For ")
    errorMessage = errorMessage.replace("=", " value ")
    return errorMessage


def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = "".join(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = None
    headers = None

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from DB, Pydantic, Redis, etc. into
    corresponding APIException subclasses. Anything unknown is logged
    and re-raised, it surfaces as an internal server error.
    """
    if isinstance(e, APIException):
        raise e
    if isinstance(e, IntegrityError):
        state = sqlState(e)
        if state == UNIQUE_VIOLATION:
            raise UniqueViolation(formatIntegrityError(e))
        if state == FOREIGN_KEY_VIOLATION:
            raise ForeignKeyViolation(formatIntegrityError(e))
        if state == CHECK_VIOLATION:
            raise ConstraintViolation(formatIntegrityError(e))
    if isinstance(e, ValidationError):
        raise ValidationFailed(detail=str(e))
    if isinstance(e, RedisError):
        raise RedisDBError(detail=str(e))

    logException(e)
    raise e


# ---------------------------------------------------------------------------
# Validation errors (400)
# ---------------------------------------------------------------------------
class ValidationFailed(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "ValidationFailed"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class InvalidValue(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InvalidValue"}

    def __init__(self, column_name: Column):
        detail = f"Invalid {column_name.name} is provided"
        super().__init__(detail=detail)


class IncorrectPassword(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "The current password is missing or incorrect"
    headers = {"X-Error": "IncorrectPassword"}


class MissingParameter(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "MissingParameter"}

    def __init__(self, column_name: Column):
        detail = f"The {column_name.name} is missing"
        super().__init__(detail=detail)


class UnexpectedParameter(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "UnexpectedParameter"}

    def __init__(self, column_name: Column):
        detail = f"Unexpected parameter {column_name.name} is provided"
        super().__init__(detail=detail)


class ForeignKeyViolation(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "ForeignKeyViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class ConstraintViolation(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "ConstraintViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Authentication errors (401)
# ---------------------------------------------------------------------------
class InvalidCredentials(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid username or password"
    headers = {"X-Error": "InvalidCredentials"}


class InvalidToken(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid token"
    headers = {"X-Error": "InvalidToken"}


# ---------------------------------------------------------------------------
# Authorization errors (403)
# ---------------------------------------------------------------------------
class NoPermission(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "This user has no permission to perform this action"
    headers = {"X-Error": "NoPermission"}


class InactiveAccount(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "The account is not in active status"
    headers = {"X-Error": "InactiveAccount"}


# ---------------------------------------------------------------------------
# Not found errors (404)
# ---------------------------------------------------------------------------
class InvalidIdentifier(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Invalid ID provided"
    headers = {"X-Error": "InvalidIdentifier"}


class UnknownValue(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    headers = {"X-Error": "UnknownValue"}

    def __init__(self, column_name: Column):
        detail = f"Invalid {column_name.name} is provided"
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Conflict errors (409)
# ---------------------------------------------------------------------------
class UniqueViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "UniqueViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class SeatUnavailable(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "SeatUnavailable"}

    def __init__(self, seats: list[int] | None = None):
        if seats:
            seatList = ", ".join(str(seat) for seat in sorted(seats))
            detail = f"Seats {seatList} are already booked"
        else:
            detail = "The requested seats are no longer available"
        super().__init__(detail=detail)


class ExceededMaxLimit(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "ExceededMaxLimit"}

    def __init__(self, orm_class):
        detail = f"Maximum limit for {orm_class.__name__} is exceeded"
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Domain state errors (400)
# ---------------------------------------------------------------------------
class InvalidStateTransition(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InvalidStateTransition"}

    def __init__(self, column_name: Column):
        detail = f"The {column_name.name} cannot be set to the provided value"
        super().__init__(detail=detail)


class AlreadyCancelled(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "The booking is already cancelled"
    headers = {"X-Error": "AlreadyCancelled"}


class NotCancellable(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "A completed booking cannot be cancelled"
    headers = {"X-Error": "NotCancellable"}


class TripNotBookable(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "The trip is not open for booking"
    headers = {"X-Error": "TripNotBookable"}


class InactiveResource(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InactiveResource"}

    def __init__(self, orm_class):
        detail = (
            f"The status of {orm_class.__name__} is not in an active or useful state"
        )
        super().__init__(detail=detail)


class DataInUse(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "DataInUse"}

    def __init__(self, orm_class):
        detail = f"The {orm_class.__name__} is currently in use"
        super().__init__(detail=detail)


class InvalidAssociation(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InvalidAssociation"}

    def __init__(self, column_name_1: Column, column_name_2: Column):
        detail = f"The {column_name_1.name} is not associated with {column_name_2.name}"
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------
class TooManyRequests(APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    detail = "Too many requests, please try again later"
    headers = {"X-Error": "TooManyRequests"}

    def __init__(self, retry_after: int | None = None):
        headers = dict(self.headers)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        super().__init__(headers=headers)


class LockAcquireTimeout(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "LockAcquireTimeout"}
    detail = "Lock acquisition timed out"


class RedisDBError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "RedisAPIError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)
