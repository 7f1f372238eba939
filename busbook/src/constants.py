"""
Application configuration and constants for BusBook API Server.

This module centralizes environment-based configuration, resource limits,
regular expressions, booking policy, role capability sets and other constants.

Configuration values can be overridden via environment variables.
"""

from os import environ
from zoneinfo import ZoneInfo

from busbook.src.enums import BookingStatus, Role


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "BusBook API Server"
API_VERSION = "1.0.0"
APP_ENV = environ.get("APP_ENV", "development")


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")
PSQL_DB_URL = environ.get(
    "PSQL_DB_URL",
    f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}",
)


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_ENABLED = environ.get("OPENOBSERVE_ENABLED", "true").lower() == "true"
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@busbook.com")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "busbook")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "busbook-core-server")
OPENOBSERVE_TIMEOUT = 5  # Request timeout (in seconds)


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")


# ---------------------------------------------------------------------------
# Rate limiting (fixed window, stored in Redis)
# ---------------------------------------------------------------------------
RATE_LIMIT_ENABLED = environ.get("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_WINDOW = int(environ.get("RATE_LIMIT_WINDOW", 15 * 60))  # In seconds
RATE_LIMIT_MAX_REQUESTS = int(environ.get("RATE_LIMIT_MAX_REQUESTS", 100))


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = 10  # Lock timeout (in seconds)
MUTEX_LOCK_MAX_WAIT_TIME = 60  # Max blocking wait time (in seconds)


# ---------------------------------------------------------------------------
# Master admin bootstrap (used by setup.py)
# ---------------------------------------------------------------------------
MASTER_ADMIN_USERNAME = environ.get("MASTER_ADMIN_USERNAME", "admin")
MASTER_ADMIN_PASSWORD = environ.get("MASTER_ADMIN_PASSWORD", "password")
MASTER_ADMIN_EMAIL = environ.get("MASTER_ADMIN_EMAIL", "admin@busbook.com")
MASTER_ADMIN_PHONE = environ.get("MASTER_ADMIN_PHONE", "9000000000")


# ---------------------------------------------------------------------------
# Resource upper limits
# ---------------------------------------------------------------------------
MAX_USER_TOKENS = 5  # Maximum tokens per user
MAX_TOKEN_VALIDITY = 7 * 24 * 60 * 60  # Token validity (in seconds, 7 days)
MAX_BUS_ADMINS_PER_OWNER = 2  # Bus admins a single bus owner may create
MAX_SEATS_PER_BOOKING = 10  # Seats in a single booking
MAX_BUS_SEATS = 100  # Seat capacity upper bound of a bus


# ---------------------------------------------------------------------------
# Regex constants (input validation)
# ---------------------------------------------------------------------------
REGEX_USERNAME = r"^[a-zA-Z][a-zA-Z0-9-.@_]*$"
REGEX_PASSWORD = r"^[a-zA-Z0-9-+,.@_$%&*#!^=/?]*$"
REGEX_PHONE_NUMBER = r"^(\+91|91)?[6-9]\d{9}$"
REGEX_BUS_NUMBER = r"^[A-Z]{2}[0-9]{2}[A-Z]{0,2}[0-9]{1,4}$"


# ---------------------------------------------------------------------------
# Booking policy
# ---------------------------------------------------------------------------
BOOKING_INITIAL_STATUS = BookingStatus[environ.get("BOOKING_INITIAL_STATUS", "PENDING")]
BOOKING_REFERENCE_PREFIX = "BE"
BOOKING_REFERENCE_RANDOM_LENGTH = 4
BOOKING_MAN_COMMISSION_RATE = float(environ.get("BOOKING_MAN_COMMISSION_RATE", 0.05))
TOP_ROUTES_LIMIT = 5  # Routes listed in booking statistics
POPULAR_ROUTES_LIMIT = 10  # Default size of the popular routes listing
TRIP_NUMBER_PREFIX = "TR-"


# ---------------------------------------------------------------------------
# Role hierarchy (which role may create which)
# ---------------------------------------------------------------------------
ROLE_HIERARCHY = {
    Role.MASTER_ADMIN: frozenset({Role.BUS_OWNER}),
    Role.BUS_OWNER: frozenset({Role.BUS_ADMIN}),
    Role.BUS_ADMIN: frozenset({Role.BOOKING_MAN, Role.BUS_EMPLOYEE}),
    Role.BOOKING_MAN: frozenset(),
    Role.BUS_EMPLOYEE: frozenset(),
    Role.CUSTOMER: frozenset(),
}


# ---------------------------------------------------------------------------
# Role capability sets (roles accepted by an endpoint)
# ---------------------------------------------------------------------------
ACCOUNT_MANAGERS = frozenset({Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN})
ACCOUNT_REMOVERS = frozenset({Role.MASTER_ADMIN})
FLEET_MANAGERS = frozenset({Role.BUS_OWNER, Role.BUS_ADMIN})
FLEET_VIEWERS = frozenset(
    {Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN, Role.BOOKING_MAN}
)
BOOKING_WRITERS = frozenset(
    {Role.CUSTOMER, Role.BOOKING_MAN, Role.BUS_ADMIN, Role.BUS_OWNER}
)
BOOKING_STATUS_WRITERS = frozenset(
    {Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN, Role.BOOKING_MAN}
)
BOOKING_ELEVATED = frozenset({Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN})
EXPENSE_WRITERS = frozenset({Role.BUS_OWNER, Role.BUS_ADMIN, Role.BUS_EMPLOYEE})
EXPENSE_APPROVERS = frozenset({Role.BUS_OWNER, Role.BUS_ADMIN})
EXPENSE_VIEWERS = frozenset(
    {Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN, Role.BUS_EMPLOYEE}
)
PERFORMANCE_VIEWERS = frozenset({Role.MASTER_ADMIN, Role.BUS_OWNER, Role.BUS_ADMIN})
ANY_ROLE = frozenset(Role)


# ---------------------------------------------------------------------------
# Timezone constants
# ---------------------------------------------------------------------------
TMZ_PRIMARY = ZoneInfo("UTC")
