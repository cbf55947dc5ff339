# pizzaday/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from pizzaday.app.services.reservations import (
    ReservationEngine,
    Reserved,
    Rejected,
    RejectReason,
    Released,
    ReleaseFailed,
    ReleaseError,
    InvalidAmountError,
    SlotState,
    SlotAudit,
)
from pizzaday.app.services.slot_locks import SlotLockRegistry
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.orders import (
    OrderService,
    OrderServiceError,
    OrderNotFoundError,
    InsufficientCapacityError,
    SlotClosedError,
    SlotFrozenError,
    OrderPlacementFailedError,
    InvalidStatusTransitionError,
)
from pizzaday.app.services.pizza_days import (
    PizzaDayService,
    PizzaDayServiceError,
    PizzaDayNotFoundError,
)
from pizzaday.app.services.time_slots import (
    TimeSlotService,
    TimeSlotServiceError,
    TimeSlotNotFoundError,
)
from pizzaday.app.services.menu import (
    MenuServiceError,
    list_categories_service,
    create_category_service,
    update_category_service,
    delete_category_service,
    list_menu_items_service,
    get_public_menu_service,
    create_menu_item_service,
    update_menu_item_service,
    delete_menu_item_service,
)

__all__ = [
    # Reservation engine
    "ReservationEngine",
    "Reserved",
    "Rejected",
    "RejectReason",
    "Released",
    "ReleaseFailed",
    "ReleaseError",
    "InvalidAmountError",
    "SlotState",
    "SlotAudit",
    "SlotLockRegistry",
    "EventPublisher",
    # Order service
    "OrderService",
    "OrderServiceError",
    "OrderNotFoundError",
    "InsufficientCapacityError",
    "SlotClosedError",
    "SlotFrozenError",
    "OrderPlacementFailedError",
    "InvalidStatusTransitionError",
    # Catalog
    "PizzaDayService",
    "PizzaDayServiceError",
    "PizzaDayNotFoundError",
    "TimeSlotService",
    "TimeSlotServiceError",
    "TimeSlotNotFoundError",
    "MenuServiceError",
    "list_categories_service",
    "create_category_service",
    "update_category_service",
    "delete_category_service",
    "list_menu_items_service",
    "get_public_menu_service",
    "create_menu_item_service",
    "update_menu_item_service",
    "delete_menu_item_service",
]
