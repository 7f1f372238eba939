from enum import IntEnum


class AppID(IntEnum):
    API = 1


class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class AccountStatus(IntEnum):
    ACTIVE = 1
    SUSPENDED = 2


class GenderType(IntEnum):
    OTHER = 1
    FEMALE = 2
    MALE = 3


class PlatformType(IntEnum):
    OTHER = 1
    WEB = 2
    NATIVE = 3
    SERVER = 4


class Role(IntEnum):
    MASTER_ADMIN = 1
    BUS_OWNER = 2
    BUS_ADMIN = 3
    BOOKING_MAN = 4
    BUS_EMPLOYEE = 5
    CUSTOMER = 6


class SubRole(IntEnum):
    DRIVER = 1
    HELPER = 2


class BusType(IntEnum):
    AC = 1
    NON_AC = 2
    SLEEPER = 3
    SEMI_SLEEPER = 4
    VOLVO = 5
    LUXURY = 6


class BusStatus(IntEnum):
    ACTIVE = 1
    INACTIVE = 2
    MAINTENANCE = 3


class TripStatus(IntEnum):
    SCHEDULED = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4
    DELAYED = 5


class BookingStatus(IntEnum):
    PENDING = 1
    CONFIRMED = 2
    CANCELLED = 3
    COMPLETED = 4


class PaymentStatus(IntEnum):
    PENDING = 1
    COMPLETED = 2
    FAILED = 3
    REFUNDED = 4


class PaymentMethod(IntEnum):
    CREDIT_CARD = 1
    DEBIT_CARD = 2
    UPI = 3
    NET_BANKING = 4
    WALLET = 5
    CASH = 6


class ExpenseType(IntEnum):
    FUEL = 1
    MAINTENANCE = 2
    TOLL = 3
    PARKING = 4
    REPAIR = 5
    INSURANCE = 6
    OTHER = 7


class ExpenseStatus(IntEnum):
    PENDING = 1
    APPROVED = 2
    REJECTED = 3


class Period(IntEnum):
    DAILY = 1
    WEEKLY = 2
    MONTHLY = 3
    YEARLY = 4
