"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application
for accessing the resources of the booking platform.

These URLs are relative paths and are prefixed by the mount point
of the API application (see `busbook.main`).
"""

# -------------------------------
# Authentication & Tokens
# -------------------------------
URL_TOKEN = "/auth/token"
URL_REGISTER = "/auth/register"

# -------------------------------
# Accounts
# -------------------------------
URL_ACCOUNT = "/account"
URL_USER = "/users"
URL_USER_BY_ID = "/users/{user_id}"

# -------------------------------
# Fleet
# -------------------------------
URL_BUS = "/buses"
URL_BUS_BY_ID = "/buses/{bus_id}"
URL_ROUTE = "/routes"
URL_ROUTE_BY_ID = "/routes/{route_id}"
URL_TRIP = "/trips"
URL_TRIP_BY_ID = "/trips/{trip_id}"
URL_TRIP_STATUS = "/trips/{trip_id}/status"
URL_TRIP_SEATS = "/trips/{trip_id}/seats"

# -------------------------------
# Bookings
# -------------------------------
URL_BOOKING = "/bookings"
URL_BOOKING_STATISTICS = "/bookings/statistics"
URL_BOOKING_BY_REFERENCE = "/bookings/reference/{reference}"
URL_BOOKING_BY_ID = "/bookings/{booking_id}"
URL_BOOKING_CANCEL = "/bookings/{booking_id}/cancel"
URL_BOOKING_STATUS = "/bookings/{booking_id}/status"

# -------------------------------
# Expenses
# -------------------------------
URL_EXPENSE = "/expenses"
URL_EXPENSE_BY_ID = "/expenses/{expense_id}"
URL_EXPENSE_APPROVE = "/expenses/{expense_id}/approve"
URL_EXPENSE_REJECT = "/expenses/{expense_id}/reject"

# -------------------------------
# Dashboards & Analytics
# -------------------------------
URL_DASHBOARD = "/dashboard"
URL_BOOKING_ANALYTICS = "/analytics/bookings"
URL_EXPENSE_ANALYTICS = "/analytics/expenses"
URL_BUS_PERFORMANCE = "/analytics/bus-performance"
URL_POPULAR_ROUTES = "/analytics/popular-routes"
