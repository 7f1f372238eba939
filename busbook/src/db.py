from secrets import token_hex
from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.dialects.postgresql import JSONB

from busbook.src.constants import PSQL_DB_URL, MAX_BUS_SEATS
from busbook.src.enums import (
    AccountStatus,
    BookingStatus,
    BusStatus,
    ExpenseStatus,
    GenderType,
    PaymentStatus,
    PlatformType,
    Role,
    TripStatus,
)


# Global DBMS variables
engineArgs = {}
if PSQL_DB_URL.startswith("sqlite"):
    # Requests may reuse a pooled connection from another worker thread
    engineArgs["connect_args"] = {"check_same_thread": False}
engine = create_engine(url=PSQL_DB_URL, echo=False, **engineArgs)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ----------------------------------- Account DB Models ---------------------------------------#
class User(ORMbase):
    """
    Represents every account of the platform, from the master admin down to customers.

    The role decides what the account can do. Staff accounts are created by the
    account directly above them in the hierarchy, which is recorded in `created_by`,
    forming a tree rooted at the single master admin. Customers register themselves
    and carry no `created_by`.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the account.

        username (String(32)):
            Unique username used for login.
            It should start with an alphabet (uppercase or lowercase).
            It should be 4-32 characters long.
            May include hyphen (-), period (.), at symbol (@), and underscore (_).

        password (TEXT):
            Argon2 hash of the password. Plaintext is never stored here.

        role (Integer):
            Mapped from the `Role` enum. Must not be null.

        sub_role (Integer):
            Mapped from the `SubRole` enum.
            Required for `Role.BUS_EMPLOYEE` and forbidden for every other role.

        full_name (TEXT):
            Display name of the account holder.

        email_id (String(256)):
            Unique email address, used for communication.

        phone_number (String(16)):
            Unique Indian mobile number, optionally prefixed by +91 or 91.

        gender (Integer):
            Mapped from the `GenderType` enum. Defaults to `GenderType.OTHER`.

        address (TEXT):
            Optional postal address.

        license_number (String(32)):
            Driving license number, meaningful for drivers.

        experience_years (Integer):
            Years of experience, meaningful for employees.

        status (Integer):
            Mapped from the `AccountStatus` enum. Defaults to `AccountStatus.ACTIVE`.
            Suspended accounts cannot login.

        created_by (Integer):
            Foreign key referencing `user_account.id`.
            The account which created this account.
            Set to null if the creator is deleted.

        updated_on (DateTime):
            Timestamp automatically updated whenever the account is modified.

        created_on (DateTime):
            Timestamp of when the account was created.
    """

    __tablename__ = "user_account"
    __table_args__ = (
        CheckConstraint(
            f"(role = {Role.BUS_EMPLOYEE.value} AND sub_role IS NOT NULL) OR "
            f"(role != {Role.BUS_EMPLOYEE.value} AND sub_role IS NULL)",
            name="ck_user_account_sub_role",
        ),
    )

    id = Column(Integer, primary_key=True)
    username = Column(String(32), nullable=False, unique=True)
    password = Column(TEXT, nullable=False)
    role = Column(Integer, nullable=False, index=True)
    sub_role = Column(Integer)
    full_name = Column(TEXT, nullable=False)
    email_id = Column(String(256), nullable=False, unique=True)
    phone_number = Column(String(16), nullable=False, unique=True)
    gender = Column(Integer, nullable=False, default=GenderType.OTHER)
    address = Column(TEXT)
    license_number = Column(String(32))
    experience_years = Column(Integer)
    status = Column(Integer, nullable=False, default=AccountStatus.ACTIVE)
    created_by = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class UserToken(ORMbase):
    """
    Represents an access token issued to an account after a successful login.

    Columns:
        id (Integer):
            Primary key. Unique identifier for this token record.

        user_id (Integer):
            Foreign key referencing `user_account.id`.
            Cascades on delete, the tokens of a removed account are removed too.

        access_token (String):
            Unique, securely generated 64-character hexadecimal access token.

        expires_in (Integer):
            Token validity in seconds.

        expires_at (DateTime):
            Date and time after which the token becomes invalid.

        platform_type (Integer):
            Enum value indicating the client platform type.
            Defaults to `PlatformType.OTHER`.

        client_details (TEXT):
            Optional description of the client device or environment.
            Maximum 1024 characters long.
    """

    __tablename__ = "user_token"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    access_token = Column(
        String(64), unique=True, nullable=False, default=lambda: token_hex(32)
    )
    expires_in = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    # Device related details
    platform_type = Column(Integer, default=PlatformType.OTHER)
    client_details = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Fleet DB Models -----------------------------------------#
class Bus(ORMbase):
    """
    Represents a bus belonging to the fleet of a bus owner.

    The seat counts of a bus are static capacity figures. The bookable inventory
    of a particular departure is tracked on the `Trip`, not here.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the bus.

        owner_id (Integer):
            Foreign key referencing the bus owner account.
            Set to null if the owner account is deleted.

        bus_number (String(16)):
            Vehicle registration number, unique across the platform.

        name (String(32)):
            Display name or label for the bus.

        bus_type (Integer):
            Mapped from the `BusType` enum.

        total_seats (Integer):
            Seating capacity, between 1 and 100.

        available_seats (Integer):
            Seats in service, never negative and never above `total_seats`.

        amenities (JSON):
            List of amenity names (WiFi, Charging Point, etc.).

        status (Integer):
            Mapped from the `BusStatus` enum. Defaults to `BusStatus.ACTIVE`.
            Only active buses can be scheduled for trips.

        registration_upto, insurance_upto, fitness_upto (DateTime):
            Validity of the vehicle documents. Nullable.
    """

    __tablename__ = "bus"
    __table_args__ = (
        CheckConstraint(
            f"total_seats >= 1 AND total_seats <= {MAX_BUS_SEATS}",
            name="ck_bus_total_seats",
        ),
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_bus_available_seats",
        ),
    )

    id = Column(Integer, primary_key=True)
    owner_id = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    bus_number = Column(String(16), nullable=False, unique=True)
    name = Column(String(32), nullable=False, index=True)
    bus_type = Column(Integer, nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    amenities = Column(JSONDocument, nullable=False, default=list)
    status = Column(Integer, nullable=False, default=BusStatus.ACTIVE)
    registration_upto = Column(DateTime(timezone=True))
    insurance_upto = Column(DateTime(timezone=True))
    fitness_upto = Column(DateTime(timezone=True))
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Route(ORMbase):
    """
    Represents a named route from an origin to a destination with intermediate stops.

    A route holds no capacity. The stop list is a JSON array of objects with
    `name`, `latitude`, `longitude`, `arrival_offset` and `departure_offset`
    (offsets in minutes from the departure at the origin).

    Columns:
        owner_id (Integer):
            Foreign key referencing the bus owner account.

        name (String(64)):
            Unique per owner.

        origin, destination (String(64)):
            Names of the first and the last place served.

        origin_latitude, origin_longitude, destination_latitude, destination_longitude (Numeric):
            Optional WGS84 coordinates of the end points.

        stops (JSON):
            Ordered intermediate stops.

        distance_km (Numeric):
            Route length in kilometers.

        estimated_duration (Integer):
            Travel time in minutes.

        base_fare (Numeric):
            Suggested fare per seat, trips may override it.

        is_active (Boolean):
            Inactive routes cannot be scheduled.
    """

    __tablename__ = "route"
    __table_args__ = (UniqueConstraint("name", "owner_id"),)

    id = Column(Integer, primary_key=True)
    owner_id = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    name = Column(String(64), nullable=False)
    origin = Column(String(64), nullable=False, index=True)
    destination = Column(String(64), nullable=False, index=True)
    origin_latitude = Column(Numeric(9, 6))
    origin_longitude = Column(Numeric(9, 6))
    destination_latitude = Column(Numeric(9, 6))
    destination_longitude = Column(Numeric(9, 6))
    stops = Column(JSONDocument, nullable=False, default=list)
    distance_km = Column(Numeric(10, 2), nullable=False)
    estimated_duration = Column(Integer, nullable=False)
    base_fare = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Trip(ORMbase):
    """
    Represents one scheduled run of a bus along a route.

    A trip carries its own seat inventory. `total_seats` is copied from the bus
    when the trip is scheduled, `available_seats` and `total_bookings` are moved
    by the booking service in the same transaction as the booking rows, so
    `available_seats + total_bookings == total_seats` holds at every commit.

    Columns:
        trip_number (String(16)):
            Human readable identifier of the form TR-00001.

        bus_id, route_id (Integer):
            Foreign keys referencing the bus and the route.

        driver_id, helper_id (Integer):
            Foreign keys referencing bus employee accounts.

        departure_at, arrival_at (DateTime):
            Departure must precede arrival.

        fare (Numeric):
            Price of one seat.

        total_seats, available_seats, total_bookings (Integer):
            Seat inventory counters, guarded by check constraints.

        status (Integer):
            Mapped from the `TripStatus` enum. Defaults to `TripStatus.SCHEDULED`.

        delay_reason (TEXT):
            Filled when the trip is delayed.
    """

    __tablename__ = "trip"
    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_trip_available_seats",
        ),
        CheckConstraint("total_bookings >= 0", name="ck_trip_total_bookings"),
        CheckConstraint("departure_at < arrival_at", name="ck_trip_schedule"),
    )

    id = Column(Integer, primary_key=True)
    trip_number = Column(String(16), unique=True)
    bus_id = Column(Integer, ForeignKey("bus.id"), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("route.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    helper_id = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    departure_at = Column(DateTime(timezone=True), nullable=False, index=True)
    arrival_at = Column(DateTime(timezone=True), nullable=False)
    fare = Column(Numeric(10, 2), nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    total_bookings = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=TripStatus.SCHEDULED)
    delay_reason = Column(TEXT)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Booking DB Models ---------------------------------------#
class Booking(ORMbase):
    """
    Represents a reservation of one or more seats on a trip.

    The seats themselves live in `booking_seat`. The status moves through a
    fixed state machine (see `busbook.src.reservation`), and the payment status
    follows it: cancelling marks the payment refunded.

    Columns:
        reference (String(24)):
            Unique, human readable code shown to customers (BE...).

        user_id (Integer):
            The account owning the booking.

        booked_by (Integer):
            The account which placed the booking, a booking man for counter sales.

        trip_id, bus_id, route_id (Integer):
            The booked trip and its bus and route at the time of booking.

        seat_count (Integer):
            Number of seats in the booking, used to move the trip inventory.

        boarding_point, dropping_point (String(64)):
            Where the passengers join and leave the bus.

        total_amount (Numeric):
            Fare of the trip times the seat count.

        status (Integer):
            Mapped from the `BookingStatus` enum.

        payment_status (Integer):
            Mapped from the `PaymentStatus` enum.

        payment_method (Integer):
            Mapped from the `PaymentMethod` enum. Nullable.

        cancellation_reason, refund_amount, cancelled_at, cancelled_by:
            Filled when the booking is cancelled.

        confirmed_at, completed_at (DateTime):
            Filled when the booking reaches the corresponding status.
    """

    __tablename__ = "booking"
    __table_args__ = (
        CheckConstraint("seat_count >= 1", name="ck_booking_seat_count"),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= total_amount)",
            name="ck_booking_refund_amount",
        ),
    )

    id = Column(Integer, primary_key=True)
    reference = Column(String(24), nullable=False, unique=True)
    user_id = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    booked_by = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    trip_id = Column(Integer, ForeignKey("trip.id"), nullable=False, index=True)
    bus_id = Column(Integer, ForeignKey("bus.id"), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("route.id"), nullable=False, index=True)
    seat_count = Column(Integer, nullable=False)
    boarding_point = Column(String(64), nullable=False)
    dropping_point = Column(String(64), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Integer, nullable=False, default=BookingStatus.PENDING)
    payment_status = Column(Integer, nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(Integer)
    # Cancellation details
    cancellation_reason = Column(TEXT)
    refund_amount = Column(Numeric(10, 2))
    cancelled_at = Column(DateTime(timezone=True))
    cancelled_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Lifecycle
    confirmed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )


class BookingSeat(ORMbase):
    """
    Represents one seat assignment of a booking with its passenger details.

    A seat is held while `is_released` is false. The partial unique index over
    (trip_id, seat_number) of held seats is what makes double selling a seat
    impossible, even for bookings committed concurrently. Cancelling a booking
    releases its seats and keeps the rows for history.
    """

    __tablename__ = "booking_seat"
    __table_args__ = (
        UniqueConstraint("booking_id", "seat_number"),
        Index(
            "ix_booking_seat_held",
            "trip_id",
            "seat_number",
            unique=True,
            postgresql_where=text("NOT is_released"),
            sqlite_where=text("NOT is_released"),
        ),
        CheckConstraint("seat_number >= 1", name="ck_booking_seat_number"),
        CheckConstraint(
            "passenger_age >= 1 AND passenger_age <= 120",
            name="ck_booking_seat_passenger_age",
        ),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(
        Integer,
        ForeignKey("booking.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trip_id = Column(Integer, ForeignKey("trip.id"), nullable=False)
    seat_number = Column(Integer, nullable=False)
    passenger_name = Column(String(64), nullable=False)
    passenger_age = Column(Integer, nullable=False)
    passenger_gender = Column(Integer, nullable=False)
    passenger_phone = Column(String(16), nullable=False)
    is_released = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Expense DB Models ---------------------------------------#
class Expense(ORMbase):
    """
    Represents an operating cost of a bus, optionally tied to a trip and an employee.

    Expenses start pending and are approved or rejected by the bus owner or a
    bus admin. The approver and the time of the decision are recorded.
    """

    __tablename__ = "expense"
    __table_args__ = (CheckConstraint("amount >= 0", name="ck_expense_amount"),)

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("bus.id"), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trip.id", ondelete="SET NULL"), index=True)
    employee_id = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    expense_type = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(TEXT, nullable=False)
    expense_date = Column(DateTime(timezone=True), nullable=False, default=func.now())
    receipt_number = Column(String(64))
    status = Column(Integer, nullable=False, default=ExpenseStatus.PENDING)
    approved_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(TEXT)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
