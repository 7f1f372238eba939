from fastapi import Request
from sqlalchemy.orm.session import Session

from busbook.src import exceptions, schemas
from busbook.src.db import User, UserToken
from busbook.src.enums import AccountStatus, Role


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - app_id (int): Application ID from app state.
            - client (str): Address of the client, if known.
    """
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        app_id=request.scope["app"].state.id,
        client=request.client.host if request.client else None,
    )


def principal(token: UserToken, session: Session) -> User:
    """
    Fetch the account which owns a validated token.

    Raises:
        exceptions.InvalidToken: If the account no longer exists.
        exceptions.InactiveAccount: If the account is suspended.
    """
    user = session.query(User).filter(User.id == token.user_id).first()
    if user is None:
        raise exceptions.InvalidToken()
    if user.status != AccountStatus.ACTIVE:
        raise exceptions.InactiveAccount()
    return user


def ownerId(user: User, session: Session) -> int | None:
    """
    Resolve the bus owner an account is working for.

    Bus owners own themselves. Staff accounts are resolved by walking up the
    `created_by` chain (booking man -> bus admin -> bus owner). Accounts
    outside an operator hierarchy resolve to None.
    """
    current = user
    visited = set()
    while current is not None and current.id not in visited:
        if current.role == Role.BUS_OWNER:
            return current.id
        if current.role not in (Role.BUS_ADMIN, Role.BOOKING_MAN, Role.BUS_EMPLOYEE):
            return None
        visited.add(current.id)
        if current.created_by is None:
            return None
        current = session.query(User).filter(User.id == current.created_by).first()
    return None
