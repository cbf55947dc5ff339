"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Order statuses
# ---------------------------------------------------------------------------
STATUS_NEW = "new"
STATUS_CONFIRMED = "confirmed"
STATUS_IN_PREPARATION = "in_preparation"
STATUS_READY = "ready"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = [
    STATUS_NEW, STATUS_CONFIRMED, STATUS_IN_PREPARATION,
    STATUS_READY, STATUS_DELIVERED, STATUS_CANCELLED,
]

# Terminal: entering it releases capacity, leaving it is not allowed
TERMINAL_ORDER_STATUSES = (STATUS_CANCELLED,)

# ---------------------------------------------------------------------------
# Checkout rules
# ---------------------------------------------------------------------------
MAX_TOPPINGS_PER_PIZZA = 3
PHONE_PATTERN = r"^(\+421|0)[0-9\s]{8,12}$"

# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
PAGE_SIZE_OPTIONS = (10, 20, 50, 100)

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
