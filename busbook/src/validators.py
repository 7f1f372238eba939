"""
Validation and permission checks for BusBook API.

This module centralizes guard logic such as:
- Token validation
- Role capability checks
- Ownership checks
- Geometry validation (WGS84)
- State transition enforcement

All functions raise appropriate exceptions from `busbook.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from datetime import datetime, timezone
from typing import Any, Iterable
from sqlalchemy import Column
from sqlalchemy.orm import Session
from shapely.geometry.base import BaseGeometry

from busbook.src.db import User, UserToken
from busbook.src.constants import ROLE_HIERARCHY
from busbook.src.enums import Role
from busbook.src import exceptions
from busbook.src.functions import isValidTransition, isWGS84


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------
def userToken(access_token: str, session: Session) -> UserToken:
    """
    Validate a bearer access token.

    Args:
        access_token (str): The bearer token string provided by the client.
        session (Session): Active SQLAlchemy session for DB lookup.

    Returns:
        UserToken: The valid token object from the database.

    Raises:
        exceptions.InvalidToken: If the token is not found or has expired.
    """
    current_time = datetime.now(timezone.utc)

    token = (
        session.query(UserToken)
        .filter(
            UserToken.access_token == access_token,
            UserToken.expires_at > current_time,
        )
        .first()
    )

    if token is None:
        raise exceptions.InvalidToken()

    return token


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------
def role(user: User, roles: Iterable[Role]) -> bool:
    """
    Validate that the account holds one of the acceptable roles.

    Every endpoint declares its requirement as a capability set
    (see the role capability sets in `busbook.src.constants`),
    which is evaluated here once.

    Raises:
        exceptions.NoPermission: If the role is not in the set.
    """
    if user is not None and user.role in roles:
        return True
    raise exceptions.NoPermission()


def creatableRole(creator: User, role: Role) -> bool:
    """
    Validate that the creator may create an account of the given role.

    Raises:
        exceptions.NoPermission: If the role is not directly below the creator.
    """
    if role in ROLE_HIERARCHY.get(creator.role, ()):
        return True
    raise exceptions.NoPermission()


def owner(ownerId: int | None, expectedOwnerId: int | None) -> bool:
    """
    Validate that a resource belongs to the expected bus owner.

    Resources of other owners are reported as missing to avoid ID probing.

    Raises:
        exceptions.InvalidIdentifier: If the owners differ.
    """
    if expectedOwnerId is not None and ownerId == expectedOwnerId:
        return True
    raise exceptions.InvalidIdentifier()


# ---------------------------------------------------------------------------
# Geometry validation
# ---------------------------------------------------------------------------
def WGS84(geometry: BaseGeometry, column: Column) -> bool:
    """
    Validate that the geometry has valid latitude/longitude coordinates.

    Raises:
        exceptions.InvalidValue: If any coordinate is out of range.
    """
    if not isWGS84(geometry):
        raise exceptions.InvalidValue(column)
    return True


# ---------------------------------------------------------------------------
# Other validations
# ---------------------------------------------------------------------------
def stateTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any, state: Column
) -> bool:
    """
    Validate whether a state transition is allowed.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.
        state (Column): SQLAlchemy column representing the state
            (used to format error messages).

    Returns:
        bool: True if the transition is valid.

    Raises:
        exceptions.InvalidStateTransition: If the transition is not permitted.
    """
    if not isValidTransition(transitions, old_state, new_state):
        raise exceptions.InvalidStateTransition(state)
    return True
