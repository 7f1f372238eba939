from datetime import datetime, timezone
from math import ceil
from typing import Any, Dict, List, Optional, Tuple
from pyproj import Geod
from shapely.geometry import LineString
from shapely.geometry.base import BaseGeometry
from sqlalchemy.orm import Query

from busbook.src import schemas
from busbook.src.exceptions import APIException

# Geodesic calculations on the WGS84 ellipsoid
geodWGS84 = Geod(ellps="WGS84")


def fuseExceptionResponses(exceptions: List[APIException]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation by fusing multiple APIException instances.

    Args:
        exceptions (List[APIException]): List of instantiated exceptions.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {
                "success": False,
                "message": exception.detail,
                "error": exception.headers["X-Error"],
            },
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Each enum member is formatted as "<NAME>: <VALUE>".

    Example:
        >>> from enum import IntEnum
        >>> class Color(IntEnum):
        ...     RED = 1
        ...     GREEN = 2
        >>> enumStr(Color)
        'RED: 1, GREEN: 2'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def isValidTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
            Example:
                {
                    BookingStatus.PENDING: [BookingStatus.CONFIRMED],
                    BookingStatus.CONFIRMED: [BookingStatus.COMPLETED],
                }
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.

    Returns:
        bool: True if transition is valid, False otherwise.

    Notes:
        - If `old_state` is not in the transitions mapping, this will return False.
    """
    if not transitions:
        return False
    if old_state not in transitions:
        return False
    return new_state in transitions[old_state]


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> None:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Designed for use with SQLAlchemy models, where `fields` are typically
    provided as `Model.field.key`.

    Example:
        >>> updateIfChanged(bus, fParam, [Bus.name.key, Bus.status.key])
        # bus will be updated where values differ; unchanged fields are skipped silently
    """
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)


def toUTC(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return the datetime as a timezone aware UTC value.

    Databases without timezone support hand back naive datetimes,
    those are stored in UTC and only get the tzinfo attached.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def makeResponse(data: Any = None, message: str = "Success") -> dict:
    """
    Wrap the response data in the uniform response envelope.

    Returns:
        dict: `{success, message, data, timestamp}`
    """
    return {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": datetime.now(timezone.utc),
    }


def paginate(query: Query, page: int, limit: int) -> Tuple[list, dict]:
    """
    Fetch one page of a query along with the pagination summary.

    Args:
        query (Query): A filtered and ordered SQLAlchemy query.
        page (int): One based page number.
        limit (int): Number of items per page.

    Returns:
        Tuple[list, dict]: The items of the page and the pagination details
        (current_page, total_pages, total_items, items_per_page,
        has_next_page, has_prev_page).
    """
    totalItems = query.order_by(None).count()
    totalPages = ceil(totalItems / limit) if totalItems else 0
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "current_page": page,
        "total_pages": totalPages,
        "total_items": totalItems,
        "items_per_page": limit,
        "has_next_page": page < totalPages,
        "has_prev_page": page > 1,
    }
    return items, pagination


def isWGS84(geometry: BaseGeometry) -> bool:
    """
    Validate whether a Shapely geometry uses coordinates consistent with WGS84 (SRID 4326).

      - Latitude must be within [-90, 90].
      - Longitude must be within [-180, 180].

    Example:
        >>> isWGS84(LineString([(76.26, 9.93), (76.95, 8.52)]))
        True
        >>> isWGS84(LineString([(200, 95), (76.95, 8.52)]))
        False
    """
    for longitude, latitude in geometry.coords:
        if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
            return False
    return True


def toPath(points: List[Tuple[float, float]]) -> Optional[LineString]:
    """
    Build the path of a route from its (longitude, latitude) points.

    Returns:
        Optional[LineString]: None when fewer than two points are known.
    """
    if len(points) < 2:
        return None
    return LineString(points)


def getPathLength(path: LineString) -> float:
    """
    Compute the geodesic length of a WGS84 path in kilometers.

    Example:
        >>> getPathLength(LineString([(76.2673, 9.9312), (76.9366, 8.5241)]))
        # distance between Kochi and Thiruvananthapuram in kilometers
    """
    return geodWGS84.geometry_length(path) / 1000
