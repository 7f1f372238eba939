"""
Read-only reporting over bookings, trips and expenses.

Every report is scoped by the role of the requesting account:

- MASTER_ADMIN sees the whole platform.
- BUS_OWNER and BUS_ADMIN see the buses of their bus owner.
- BUS_EMPLOYEE sees the trips they drive or assist on.
- BOOKING_MAN sees the bookings they placed.
- CUSTOMER sees their own bookings.

An optional date range filters on the creation time, the period only picks
the granularity of the trends. Sums are coalesced, so an empty selection
reports zeros.
"""

from datetime import datetime, timedelta
from sqlalchemy import case, func, literal_column, select
from sqlalchemy.orm.session import Session

from busbook.src.constants import (
    BOOKING_MAN_COMMISSION_RATE,
    POPULAR_ROUTES_LIMIT,
    TMZ_PRIMARY,
    TOP_ROUTES_LIMIT,
)
from busbook.src.db import Booking, Bus, Expense, Route, Trip, User
from busbook.src.enums import (
    BookingStatus,
    BusStatus,
    ExpenseStatus,
    ExpenseType,
    Period,
    Role,
    TripStatus,
)
from busbook.src import getters

REVENUE_BOOKING_STATUS = [BookingStatus.CONFIRMED, BookingStatus.COMPLETED]
UPCOMING_LIMIT = 5

# Bucket formats of the trends, per SQL dialect
POSTGRESQL_BUCKETS = {
    Period.DAILY: "YYYY-MM-DD",
    Period.WEEKLY: 'IYYY-"W"IW',
    Period.MONTHLY: "YYYY-MM",
    Period.YEARLY: "YYYY",
}
SQLITE_BUCKETS = {
    Period.DAILY: "%Y-%m-%d",
    Period.WEEKLY: "%Y-W%W",
    Period.MONTHLY: "%Y-%m",
    Period.YEARLY: "%Y",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def bucket(session: Session, column, period: Period):
    """SQL expression labelling a timestamp with its trend bucket."""
    # Formats are inlined, so the SELECT and the GROUP BY expressions are identical
    if session.get_bind().dialect.name == "postgresql":
        return func.to_char(column, literal_column(f"'{POSTGRESQL_BUCKETS[period]}'"))
    return func.strftime(literal_column(f"'{SQLITE_BUCKETS[period]}'"), column)


def percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def todayRange() -> tuple[datetime, datetime]:
    dayStart = datetime.now(TMZ_PRIMARY).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return dayStart, dayStart + timedelta(days=1)


def ownerBuses(ownerId: int | None):
    return select(Bus.id).where(Bus.owner_id == ownerId)


def employeeTrips(userId: int):
    return select(Trip.id).where((Trip.driver_id == userId) | (Trip.helper_id == userId))


def bookingScope(session: Session, user: User) -> list:
    """Filter conditions restricting bookings to what the account may see."""
    if user.role == Role.MASTER_ADMIN:
        return []
    if user.role in (Role.BUS_OWNER, Role.BUS_ADMIN):
        return [Booking.bus_id.in_(ownerBuses(getters.ownerId(user, session)))]
    if user.role == Role.BUS_EMPLOYEE:
        return [Booking.trip_id.in_(employeeTrips(user.id))]
    if user.role == Role.BOOKING_MAN:
        return [Booking.booked_by == user.id]
    return [Booking.user_id == user.id]


def expenseScope(session: Session, user: User) -> list:
    """Filter conditions restricting expenses to what the account may see."""
    if user.role == Role.MASTER_ADMIN:
        return []
    if user.role in (Role.BUS_OWNER, Role.BUS_ADMIN):
        return [Expense.bus_id.in_(ownerBuses(getters.ownerId(user, session)))]
    return [(Expense.created_by == user.id) | (Expense.employee_id == user.id)]


def tripScope(session: Session, user: User) -> list:
    """Filter conditions restricting trips to what the account may see."""
    if user.role == Role.MASTER_ADMIN:
        return []
    if user.role in (Role.BUS_OWNER, Role.BUS_ADMIN, Role.BOOKING_MAN):
        return [Trip.bus_id.in_(ownerBuses(getters.ownerId(user, session)))]
    if user.role == Role.BUS_EMPLOYEE:
        return [(Trip.driver_id == user.id) | (Trip.helper_id == user.id)]
    return [Trip.id.in_(select(Booking.trip_id).where(Booking.user_id == user.id))]


def dateRange(column, start_date: datetime | None, end_date: datetime | None) -> list:
    conditions = []
    if start_date is not None:
        conditions.append(column >= start_date)
    if end_date is not None:
        conditions.append(column <= end_date)
    return conditions


def revenueSum():
    return func.coalesce(
        func.sum(
            case(
                (Booking.status.in_(REVENUE_BOOKING_STATUS), Booking.total_amount),
                else_=0,
            )
        ),
        0,
    )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
def bookingOverview(session: Session, conditions: list) -> dict:
    statusCounts = dict(
        session.query(Booking.status, func.count(Booking.id))
        .filter(*conditions)
        .group_by(Booking.status)
        .all()
    )
    totalRevenue, totalRefunds = (
        session.query(
            revenueSum(), func.coalesce(func.sum(Booking.refund_amount), 0)
        )
        .filter(*conditions)
        .one()
    )

    totalBookings = sum(statusCounts.values())
    pending = statusCounts.get(BookingStatus.PENDING, 0)
    confirmed = statusCounts.get(BookingStatus.CONFIRMED, 0)
    cancelled = statusCounts.get(BookingStatus.CANCELLED, 0)
    completed = statusCounts.get(BookingStatus.COMPLETED, 0)
    totalRevenue = float(totalRevenue)
    return {
        "total_bookings": totalBookings,
        "pending_bookings": pending,
        "confirmed_bookings": confirmed,
        "cancelled_bookings": cancelled,
        "completed_bookings": completed,
        "total_revenue": totalRevenue,
        "total_refunds": float(totalRefunds),
        "average_booking_value": (
            round(totalRevenue / (confirmed + completed), 2)
            if confirmed + completed
            else 0.0
        ),
        "success_rate": percentage(confirmed + completed, totalBookings),
        "cancellation_rate": percentage(cancelled, totalBookings),
    }


def bookingStatistics(
    session: Session,
    user: User,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    period: Period = Period.MONTHLY,
) -> dict:
    """
    Summarize the bookings visible to an account.

    Returns:
        dict: `overview` (counts per status, revenue, refunds, averages and
        rates), `top_routes` (most booked routes with their revenue) and
        `trends` (bookings and revenue per period bucket).
    """
    conditions = bookingScope(session, user) + dateRange(
        Booking.created_on, start_date, end_date
    )

    bookingCount = func.count(Booking.id)
    topRoutes = (
        session.query(
            Route.id,
            Route.name,
            Route.origin,
            Route.destination,
            bookingCount.label("bookings"),
            revenueSum().label("revenue"),
        )
        .select_from(Booking)
        .join(Route, Route.id == Booking.route_id)
        .filter(*conditions)
        .group_by(Route.id, Route.name, Route.origin, Route.destination)
        .order_by(bookingCount.desc(), Route.id.asc())
        .limit(TOP_ROUTES_LIMIT)
        .all()
    )

    periodBucket = bucket(session, Booking.created_on, period)
    trends = (
        session.query(
            periodBucket.label("period"),
            bookingCount.label("bookings"),
            revenueSum().label("revenue"),
        )
        .filter(*conditions)
        .group_by(periodBucket)
        .order_by(periodBucket)
        .all()
    )

    return {
        "period": period.name,
        "start_date": start_date,
        "end_date": end_date,
        "overview": bookingOverview(session, conditions),
        "top_routes": [
            {
                "route_id": row.id,
                "name": row.name,
                "origin": row.origin,
                "destination": row.destination,
                "bookings": row.bookings,
                "revenue": float(row.revenue),
            }
            for row in topRoutes
        ],
        "trends": [
            {
                "period": row.period,
                "bookings": row.bookings,
                "revenue": float(row.revenue),
            }
            for row in trends
        ],
    }


def expenseStatistics(
    session: Session,
    user: User,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    period: Period = Period.MONTHLY,
) -> dict:
    """
    Summarize the expenses visible to an account, by type, by status and over time.
    """
    conditions = expenseScope(session, user) + dateRange(
        Expense.expense_date, start_date, end_date
    )
    amountSum = func.coalesce(func.sum(Expense.amount), 0)
    approvedSum = func.coalesce(
        func.sum(
            case((Expense.status == ExpenseStatus.APPROVED, Expense.amount), else_=0)
        ),
        0,
    )

    totalCount, totalAmount, approvedAmount = (
        session.query(func.count(Expense.id), amountSum, approvedSum)
        .filter(*conditions)
        .one()
    )
    byType = (
        session.query(Expense.expense_type, func.count(Expense.id), amountSum)
        .filter(*conditions)
        .group_by(Expense.expense_type)
        .order_by(Expense.expense_type)
        .all()
    )
    byStatus = (
        session.query(Expense.status, func.count(Expense.id), amountSum)
        .filter(*conditions)
        .group_by(Expense.status)
        .order_by(Expense.status)
        .all()
    )
    periodBucket = bucket(session, Expense.expense_date, period)
    trends = (
        session.query(periodBucket.label("period"), func.count(Expense.id), amountSum)
        .filter(*conditions)
        .group_by(periodBucket)
        .order_by(periodBucket)
        .all()
    )

    return {
        "period": period.name,
        "start_date": start_date,
        "end_date": end_date,
        "total_expenses": totalCount,
        "total_amount": float(totalAmount),
        "approved_amount": float(approvedAmount),
        "by_type": [
            {"type": ExpenseType(kind).name, "count": count, "amount": float(amount)}
            for kind, count, amount in byType
        ],
        "by_status": [
            {"status": ExpenseStatus(state).name, "count": count, "amount": float(amount)}
            for state, count, amount in byStatus
        ],
        "trends": [
            {"period": label, "count": count, "amount": float(amount)}
            for label, count, amount in trends
        ],
    }


def busPerformance(
    session: Session,
    user: User,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[dict]:
    """
    Bookings, revenue, trips and seat occupancy of every bus visible to the account.

    Bookings are filtered on their creation time and trips on their departure.
    The occupancy is the share of the scheduled seats sold over the trips of
    the bus. Buses without any activity report zeros, the best earning bus
    comes first.
    """
    busConditions = []
    if user.role != Role.MASTER_ADMIN:
        busConditions.append(Bus.owner_id == getters.ownerId(user, session))
    buses = session.query(Bus).filter(*busConditions).order_by(Bus.id).all()
    busIds = [bus.id for bus in buses]

    bookingRows = (
        session.query(
            Booking.bus_id,
            func.count(Booking.id),
            func.coalesce(
                func.sum(
                    case(
                        (Booking.status != BookingStatus.CANCELLED, Booking.seat_count),
                        else_=0,
                    )
                ),
                0,
            ),
            revenueSum(),
        )
        .filter(
            Booking.bus_id.in_(busIds),
            *dateRange(Booking.created_on, start_date, end_date),
        )
        .group_by(Booking.bus_id)
        .all()
    )
    bookingsByBus = {
        busId: (count, passengers, revenue)
        for busId, count, passengers, revenue in bookingRows
    }

    tripRows = (
        session.query(
            Trip.bus_id,
            func.count(Trip.id),
            func.coalesce(
                func.sum(case((Trip.status == TripStatus.COMPLETED, 1), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((Trip.status == TripStatus.CANCELLED, 1), else_=0)), 0
            ),
            func.coalesce(func.sum(Trip.total_seats), 0),
            func.coalesce(func.sum(Trip.total_seats - Trip.available_seats), 0),
        )
        .filter(
            Trip.bus_id.in_(busIds),
            *dateRange(Trip.departure_at, start_date, end_date),
        )
        .group_by(Trip.bus_id)
        .all()
    )
    tripsByBus = {row[0]: row[1:] for row in tripRows}

    performance = []
    for bus in buses:
        bookings, passengers, revenue = bookingsByBus.get(bus.id, (0, 0, 0))
        trips, completed, cancelled, seats, soldSeats = tripsByBus.get(
            bus.id, (0, 0, 0, 0, 0)
        )
        performance.append(
            {
                "bus_id": bus.id,
                "bus_number": bus.bus_number,
                "name": bus.name,
                "bus_type": bus.bus_type,
                "total_bookings": bookings,
                "total_passengers": int(passengers),
                "total_revenue": float(revenue),
                "total_trips": trips,
                "completed_trips": int(completed),
                "cancelled_trips": int(cancelled),
                "occupancy_rate": percentage(soldSeats, seats),
                "utilization_rate": percentage(completed, trips),
            }
        )
    performance.sort(key=lambda item: item["total_revenue"], reverse=True)
    return performance


def popularRoutes(session: Session, limit: int = POPULAR_ROUTES_LIMIT) -> list[dict]:
    """
    The most booked active routes across every operator.

    Cancelled bookings are left out. No revenue is reported, the listing is
    open to customers.
    """
    bookingCount = func.count(Booking.id)
    rows = (
        session.query(
            Route.id,
            Route.name,
            Route.origin,
            Route.destination,
            Route.base_fare,
            bookingCount.label("bookings"),
            func.coalesce(func.sum(Booking.seat_count), 0).label("passengers"),
            func.coalesce(func.sum(Booking.total_amount), 0).label("amount"),
        )
        .select_from(Booking)
        .join(Route, Route.id == Booking.route_id)
        .filter(
            Route.is_active.is_(True),
            Booking.status != BookingStatus.CANCELLED,
        )
        .group_by(Route.id, Route.name, Route.origin, Route.destination, Route.base_fare)
        .order_by(bookingCount.desc(), Route.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "route_id": row.id,
            "name": row.name,
            "origin": row.origin,
            "destination": row.destination,
            "base_fare": float(row.base_fare),
            "bookings": row.bookings,
            "passengers": int(row.passengers),
            "average_fare": (
                round(float(row.amount) / row.passengers, 2) if row.passengers else 0.0
            ),
        }
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------
def tripSummary(trip: Trip) -> dict:
    return {
        "id": trip.id,
        "trip_number": trip.trip_number,
        "bus_id": trip.bus_id,
        "route_id": trip.route_id,
        "departure_at": trip.departure_at,
        "arrival_at": trip.arrival_at,
        "status": trip.status,
        "available_seats": trip.available_seats,
    }


def fleetDashboard(session: Session, user: User) -> dict:
    ownerId = getters.ownerId(user, session)
    buses = dict(
        session.query(Bus.status, func.count(Bus.id))
        .filter(Bus.owner_id == ownerId)
        .group_by(Bus.status)
        .all()
    )
    routeCount = session.query(func.count(Route.id)).filter(Route.owner_id == ownerId)
    dayStart, dayEnd = todayRange()
    tripConditions = tripScope(session, user)
    todayTrips = (
        session.query(Trip)
        .filter(*tripConditions, Trip.departure_at >= dayStart, Trip.departure_at < dayEnd)
        .order_by(Trip.departure_at.asc())
        .all()
    )
    tripCount = session.query(func.count(Trip.id)).filter(*tripConditions).scalar()
    staff = dict(
        session.query(User.role, func.count(User.id))
        .filter(User.created_by == user.id)
        .group_by(User.role)
        .all()
    )

    bookings = bookingOverview(session, bookingScope(session, user))
    approvedExpenses = (
        session.query(func.coalesce(func.sum(Expense.amount), 0))
        .filter(*expenseScope(session, user), Expense.status == ExpenseStatus.APPROVED)
        .scalar()
    )
    approvedExpenses = float(approvedExpenses)
    return {
        "buses": {
            "total": sum(buses.values()),
            "active": buses.get(BusStatus.ACTIVE, 0),
            "inactive": buses.get(BusStatus.INACTIVE, 0),
            "maintenance": buses.get(BusStatus.MAINTENANCE, 0),
        },
        "routes": routeCount.scalar(),
        "trips": {"total": tripCount, "today": [tripSummary(trip) for trip in todayTrips]},
        "staff": {Role(role).name: count for role, count in staff.items()},
        "bookings": bookings,
        "approved_expenses": approvedExpenses,
        "net_profit": round(bookings["total_revenue"] - approvedExpenses, 2),
    }


def masterAdminDashboard(session: Session, user: User) -> dict:
    users = dict(
        session.query(User.role, func.count(User.id)).group_by(User.role).all()
    )
    trips = dict(
        session.query(Trip.status, func.count(Trip.id)).group_by(Trip.status).all()
    )
    return {
        "users": {role.name: users.get(role, 0) for role in Role},
        "buses": session.query(func.count(Bus.id)).scalar(),
        "routes": session.query(func.count(Route.id)).scalar(),
        "trips": {status.name: trips.get(status, 0) for status in TripStatus},
        "bookings": bookingOverview(session, []),
    }


def bookingManDashboard(session: Session, user: User) -> dict:
    conditions = bookingScope(session, user)
    dayStart, dayEnd = todayRange()
    todayBookings = (
        session.query(func.count(Booking.id))
        .filter(*conditions, Booking.created_on >= dayStart, Booking.created_on < dayEnd)
        .scalar()
    )
    bookings = bookingOverview(session, conditions)
    return {
        "bookings": bookings,
        "today_bookings": todayBookings,
        "commission_rate": BOOKING_MAN_COMMISSION_RATE,
        "commission": round(bookings["total_revenue"] * BOOKING_MAN_COMMISSION_RATE, 2),
    }


def employeeDashboard(session: Session, user: User) -> dict:
    conditions = tripScope(session, user)
    dayStart, dayEnd = todayRange()
    todayTrips = (
        session.query(Trip)
        .filter(*conditions, Trip.departure_at >= dayStart, Trip.departure_at < dayEnd)
        .order_by(Trip.departure_at.asc())
        .all()
    )
    upcomingTrips = (
        session.query(Trip)
        .filter(
            *conditions,
            Trip.departure_at >= dayEnd,
            Trip.status.in_([TripStatus.SCHEDULED, TripStatus.DELAYED]),
        )
        .order_by(Trip.departure_at.asc())
        .limit(UPCOMING_LIMIT)
        .all()
    )
    completedTrips = (
        session.query(func.count(Trip.id))
        .filter(*conditions, Trip.status == TripStatus.COMPLETED)
        .scalar()
    )
    expenses = (
        session.query(func.count(Expense.id))
        .filter(*expenseScope(session, user))
        .scalar()
    )
    return {
        "sub_role": user.sub_role,
        "today_trips": [tripSummary(trip) for trip in todayTrips],
        "upcoming_trips": [tripSummary(trip) for trip in upcomingTrips],
        "completed_trips": completedTrips,
        "submitted_expenses": expenses,
    }


def customerDashboard(session: Session, user: User) -> dict:
    conditions = bookingScope(session, user)
    upcoming = (
        session.query(Booking, Trip)
        .join(Trip, Trip.id == Booking.trip_id)
        .filter(
            *conditions,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
            Trip.departure_at >= datetime.now(TMZ_PRIMARY),
        )
        .order_by(Trip.departure_at.asc())
        .limit(UPCOMING_LIMIT)
        .all()
    )
    return {
        "bookings": bookingOverview(session, conditions),
        "upcoming_trips": [
            {
                "booking_id": booking.id,
                "reference": booking.reference,
                "seat_count": booking.seat_count,
                "trip": tripSummary(trip),
            }
            for booking, trip in upcoming
        ],
    }


def dashboard(session: Session, user: User) -> dict:
    """Build the overview of the account's role."""
    if user.role == Role.MASTER_ADMIN:
        data = masterAdminDashboard(session, user)
    elif user.role in (Role.BUS_OWNER, Role.BUS_ADMIN):
        data = fleetDashboard(session, user)
    elif user.role == Role.BOOKING_MAN:
        data = bookingManDashboard(session, user)
    elif user.role == Role.BUS_EMPLOYEE:
        data = employeeDashboard(session, user)
    else:
        data = customerDashboard(session, user)
    data["role"] = Role(user.role).name
    return data
