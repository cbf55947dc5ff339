# pizzaday/app/services/orders.py
"""
Order service - checkout, status lifecycle and order queries.

Capacity is never touched here directly: checkout reserves through the
ReservationEngine before writing the order, and cancellation or deletion
releases through it before the ledger entry changes.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Iterable, Any
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from pizzaday.app.core.constants import (
    MAX_TOPPINGS_PER_PIZZA,
    STATUS_CANCELLED,
    STATUS_NEW,
    TERMINAL_ORDER_STATUSES,
    VALID_ORDER_STATUSES,
    DEFAULT_PAGE_SIZE,
    PAGE_SIZE_OPTIONS,
    ZERO,
    ONE_CENT,
)
from pizzaday.app.core.base import utcnow
from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.metrics import (
    orders_placed_total,
    orders_cancelled_total,
    order_placement_failures_total,
)
from pizzaday.app.core.settings import get_settings
from pizzaday.app.models.menu_item import MenuItem
from pizzaday.app.models.order import Order, OrderItem
from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot
from pizzaday.app.services.menu import get_menu_items_by_ids
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.pizza_days import today_in
from pizzaday.app.services.reservations import (
    ReservationEngine,
    Rejected,
    RejectReason,
    ReleaseFailed,
    ReleaseError,
)

logger = get_logger(__name__)


class OrderServiceError(ServiceError):
    """Base exception for order service errors."""


class OrderNotFoundError(OrderServiceError):
    def __init__(self, order_id: Any):
        super().__init__(f"Order {order_id} not found", 404)


class SlotNotFoundError(OrderServiceError):
    def __init__(self, slot_id: int):
        super().__init__(f"Time slot {slot_id} not found", 404)


class PizzaDayMismatchError(OrderServiceError):
    def __init__(self, slot_id: int, pizza_day_id: int):
        super().__init__(f"Time slot {slot_id} does not belong to pizza day {pizza_day_id}", 400)


class PizzaDayUnavailableError(OrderServiceError):
    def __init__(self, pizza_day_id: int):
        super().__init__(f"Pizza day {pizza_day_id} is not open for orders", 409)


class MenuItemUnavailableError(OrderServiceError):
    def __init__(self, item_id: int):
        super().__init__(f"Menu item {item_id} is not available", 400)


class InvalidToppingError(OrderServiceError):
    def __init__(self, message: str):
        super().__init__(message, 400)


class EmptyOrderError(OrderServiceError):
    def __init__(self):
        super().__init__("Order must contain at least one pizza", 400)


class SlotClosedError(OrderServiceError):
    def __init__(self, slot_id: int):
        super().__init__(f"Time slot {slot_id} is closed for orders", 409)


class SlotFrozenError(OrderServiceError):
    def __init__(self, slot_id: int):
        super().__init__(
            f"Time slot {slot_id} is locked for reconciliation; try again after an admin unfreezes it",
            409,
        )


class InsufficientCapacityError(OrderServiceError):
    def __init__(self, slot_id: int, remaining: int, requested: int):
        self.remaining = remaining
        super().__init__(
            f"Only {remaining} pizza(s) remain in this time slot, {requested} requested",
            409,
        )


class InvalidOrderStatusError(OrderServiceError):
    def __init__(self, status: str):
        super().__init__(f"Invalid status '{status}'. Valid: {', '.join(VALID_ORDER_STATUSES)}", 400)


class InvalidStatusTransitionError(OrderServiceError):
    def __init__(self, order_id: int, current_status: str, new_status: str):
        super().__init__(
            f"Order {order_id} is '{current_status}' and cannot move to '{new_status}'",
            409,
        )


class CapacityReleaseError(OrderServiceError):
    def __init__(self, order_id: int, reason: str):
        super().__init__(f"Capacity for order {order_id} could not be released ({reason})", 409)


class OrderPlacementFailedError(OrderServiceError):
    def __init__(self):
        super().__init__("Order could not be saved; no capacity was kept for it", 500)


# --- Pure checkout helpers ---

@dataclass(frozen=True)
class OrderLine:
    menu_item_id: int
    item_name: str
    item_price: Decimal
    quantity: int
    is_topping: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.item_price * self.quantity


def _require_item(menu: dict[int, MenuItem], item_id: int) -> MenuItem:
    item = menu.get(item_id)
    if item is None or not item.active:
        raise MenuItemUnavailableError(item_id)
    return item


def build_order_lines(items: Iterable[Any], menu: dict[int, MenuItem]) -> list[OrderLine]:
    """
    Turn checkout items into priced order lines.

    Each pizza becomes one line; each of its toppings becomes a topping line
    with the pizza's quantity. Prices always come from the menu.
    """
    lines: list[OrderLine] = []
    for entry in items:
        item = _require_item(menu, entry.menu_item_id)
        if item.is_topping:
            raise InvalidToppingError(f"'{item.name}' is a topping and must be added to a pizza")
        topping_ids = list(entry.topping_ids or [])
        if len(topping_ids) > MAX_TOPPINGS_PER_PIZZA:
            raise InvalidToppingError(f"At most {MAX_TOPPINGS_PER_PIZZA} toppings per pizza")

        lines.append(OrderLine(item.id, item.name, Decimal(item.price), entry.quantity))
        for topping_id in topping_ids:
            topping = _require_item(menu, topping_id)
            if not topping.is_topping:
                raise InvalidToppingError(f"'{topping.name}' cannot be used as a topping")
            lines.append(OrderLine(topping.id, topping.name, Decimal(topping.price), entry.quantity, True))
    return lines


def count_pizzas(lines: Iterable[OrderLine]) -> int:
    """Capacity units for an order: toppings do not count."""
    return sum(line.quantity for line in lines if not line.is_topping)


def order_total(lines: Iterable[OrderLine]) -> Decimal:
    total = sum((line.line_total for line in lines), ZERO)
    return total.quantize(ONE_CENT)


def _escape_like(value: str) -> str:
    """Make % and _ match literally in a LIKE pattern escaped with a backslash."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def rejection_error(rejected: Rejected, requested: int) -> OrderServiceError:
    if rejected.reason is RejectReason.SLOT_NOT_FOUND:
        return SlotNotFoundError(rejected.slot_id)
    if rejected.reason is RejectReason.SLOT_CLOSED:
        return SlotClosedError(rejected.slot_id)
    if rejected.reason is RejectReason.SLOT_FROZEN:
        return SlotFrozenError(rejected.slot_id)
    return InsufficientCapacityError(rejected.slot_id, rejected.remaining or 0, requested)


class OrderService:
    """Service class for order operations."""

    def __init__(
        self,
        session: AsyncSession,
        engine: ReservationEngine,
        publisher: EventPublisher,
        tz: Optional[ZoneInfo] = None,
    ):
        self.session = session
        self.engine = engine
        self.publisher = publisher
        self.tz = tz or get_settings().tz

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def place_order(self, checkout) -> Order:
        """
        Validate a checkout, reserve its capacity and write the order.

        Args:
            checkout: CheckoutBody (or any object with the same fields)

        Returns:
            The committed Order with its items.

        Raises:
            SlotNotFoundError, PizzaDayMismatchError, PizzaDayUnavailableError,
            MenuItemUnavailableError, InvalidToppingError, EmptyOrderError:
                invalid checkout, nothing reserved
            SlotClosedError, SlotFrozenError, InsufficientCapacityError:
                reservation rejected
            OrderPlacementFailedError: the order write failed after the
                reservation; the reservation was released again
        """
        slot = await self.session.get(TimeSlot, checkout.time_slot_id)
        if not slot:
            raise SlotNotFoundError(checkout.time_slot_id)
        if checkout.pizza_day_id is not None and checkout.pizza_day_id != slot.pizza_day_id:
            raise PizzaDayMismatchError(slot.id, checkout.pizza_day_id)

        day = await self.session.get(PizzaDay, slot.pizza_day_id)
        if not day or not day.active or day.date < today_in(self.tz):
            raise PizzaDayUnavailableError(slot.pizza_day_id)

        wanted_ids = set()
        for entry in checkout.items:
            wanted_ids.add(entry.menu_item_id)
            wanted_ids.update(entry.topping_ids or [])
        menu = await get_menu_items_by_ids(self.session, wanted_ids)
        lines = build_order_lines(checkout.items, menu)
        pizza_count = count_pizzas(lines)
        if pizza_count <= 0:
            raise EmptyOrderError()
        total_price = order_total(lines)
        slot_id, pizza_day_id = slot.id, slot.pizza_day_id

        outcome = await self.engine.reserve(slot_id, pizza_count)
        if isinstance(outcome, Rejected):
            raise rejection_error(outcome, pizza_count)

        try:
            order = await self._write_order(
                checkout,
                lines,
                slot_id=slot_id,
                pizza_day_id=pizza_day_id,
                reservation_id=outcome.reservation_id,
                pizza_count=pizza_count,
                total_price=total_price,
            )
        except Exception as e:
            await self.session.rollback()
            release = await self.engine.release_reservation(outcome.reservation_id)
            order_placement_failures_total.inc()
            logger.error(
                "Order write failed after reservation, capacity released",
                slot_id=slot_id,
                reservation_id=outcome.reservation_id,
                pizza_count=pizza_count,
                release_ok=release.ok,
                exc_info=e,
            )
            raise OrderPlacementFailedError() from e

        await self.engine.bind(outcome.reservation_id, order.id)
        orders_placed_total.inc()
        logger.info(
            "Order placed",
            order_id=order.id,
            public_id=order.public_id,
            slot_id=slot_id,
            pizza_count=pizza_count,
            total_price=str(total_price),
            remaining=outcome.remaining,
        )
        await self._publish_status(order)
        return order

    async def _write_order(
        self,
        checkout,
        lines: list[OrderLine],
        *,
        slot_id: int,
        pizza_day_id: int,
        reservation_id: str,
        pizza_count: int,
        total_price: Decimal,
    ) -> Order:
        """Write the order and its lines in the request session and commit."""
        order = Order(
            time_slot_id=slot_id,
            pizza_day_id=pizza_day_id,
            reservation_id=reservation_id,
            customer_name=checkout.customer_name,
            customer_phone=checkout.customer_phone,
            customer_email=str(checkout.customer_email) if checkout.customer_email else None,
            customer_address=checkout.customer_address,
            customer_note=checkout.customer_note,
            status=STATUS_NEW,
            total_price=total_price,
            pizza_count=pizza_count,
            items=[
                OrderItem(
                    menu_item_id=line.menu_item_id,
                    item_name=line.item_name,
                    item_price=line.item_price,
                    quantity=line.quantity,
                    is_topping=line.is_topping,
                )
                for line in lines
            ],
        )
        self.session.add(order)
        await self.session.commit()
        return order

    # ------------------------------------------------------------------
    # Status lifecycle
    # ------------------------------------------------------------------

    async def update_status(self, order_id: int, new_status: str) -> Order:
        """
        Move an order to new_status.

        Any move between non-terminal statuses is allowed. Entering
        'cancelled' releases the order's capacity exactly once; leaving it,
        or cancelling again, is refused.

        The write is conditional on the row not being terminal, so an admin
        acting on a stale read cannot revive an order that someone else
        cancelled in the meantime.
        """
        if new_status not in VALID_ORDER_STATUSES:
            raise InvalidOrderStatusError(new_status)
        order = await self.get_order(order_id)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise InvalidStatusTransitionError(order_id, order.status, new_status)
        if order.status == new_status:
            return order

        old_status = order.status
        if new_status == STATUS_CANCELLED:
            # Exactly-once in the engine; a concurrent cancel sees ALREADY_RELEASED
            await self._release_capacity(order)

        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.notin_(TERMINAL_ORDER_STATUSES))
            .values(status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._refuse_stale_write(order_id, new_status)

        await self.session.commit()
        await self.session.refresh(order)
        if new_status == STATUS_CANCELLED:
            orders_cancelled_total.inc()
        logger.info("Order status changed", order_id=order_id, old_status=old_status, new_status=new_status)
        await self._publish_status(order)
        return order

    async def _refuse_stale_write(self, order_id: int, new_status: str) -> None:
        """The guarded write matched nothing: the order was cancelled or deleted after we read it."""
        current = await self.session.scalar(select(Order.status).where(Order.id == order_id))
        logger.warning(
            "Order changed concurrently, status write refused",
            order_id=order_id,
            current_status=current,
            new_status=new_status,
        )
        if current is None:
            raise OrderNotFoundError(order_id)
        raise InvalidStatusTransitionError(order_id, current, new_status)

    async def delete_order(self, order_id: int) -> None:
        """Delete an order. Capacity of a non-cancelled order is released first."""
        order = await self.get_order(order_id)
        if order.status != STATUS_CANCELLED:
            await self._release_capacity(order)
        public_id = order.public_id
        self.session.expunge(order)

        await self.session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        result = await self.session.execute(delete(Order).where(Order.id == order_id))
        if result.rowcount != 1:
            # Deleted by a concurrent request; its release already ran
            raise OrderNotFoundError(order_id)
        await self.session.commit()
        logger.info("Order deleted", order_id=order_id, public_id=public_id)
        await self.publisher.publish_order_event(public_id, {"public_id": public_id, "status": "deleted"})

    async def _release_capacity(self, order: Order) -> None:
        """
        Release the order's reservation through the engine.

        ALREADY_RELEASED is fine here (an earlier attempt released but did
        not get to update the order). A frozen slot or an over-release
        blocks the status change.
        """
        outcome = await self.engine.release_for_order(order)
        if not isinstance(outcome, ReleaseFailed):
            return
        if outcome.reason in (
            ReleaseError.ALREADY_RELEASED,
            ReleaseError.RESERVATION_NOT_FOUND,
            ReleaseError.SLOT_NOT_FOUND,
        ):
            logger.warning(
                "Order capacity was not released",
                order_id=order.id,
                reservation_id=order.reservation_id,
                reason=outcome.reason.value,
            )
            return
        if outcome.reason is ReleaseError.SLOT_FROZEN:
            raise SlotFrozenError(order.time_slot_id)
        raise CapacityReleaseError(order.id, outcome.reason.value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int) -> Order:
        order = await self.session.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def get_by_public_id(self, public_id: str) -> Order:
        result = await self.session.execute(select(Order).where(Order.public_id == public_id))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(public_id)
        return order

    async def list_orders(
        self,
        pizza_day_id: Optional[int] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> dict:
        """Newest first, filtered, paginated. search matches name or phone, case-insensitive."""
        if per_page not in PAGE_SIZE_OPTIONS:
            per_page = DEFAULT_PAGE_SIZE
        page = max(1, page)

        conditions = []
        if pizza_day_id is not None:
            conditions.append(Order.pizza_day_id == pizza_day_id)
        if status:
            if status not in VALID_ORDER_STATUSES:
                raise InvalidOrderStatusError(status)
            conditions.append(Order.status == status)
        if search:
            pattern = f"%{_escape_like(search.strip().lower())}%"
            conditions.append(or_(
                func.lower(Order.customer_name).like(pattern, escape="\\"),
                func.lower(Order.customer_phone).like(pattern, escape="\\"),
            ))

        total = await self.session.scalar(select(func.count(Order.id)).where(*conditions)) or 0
        result = await self.session.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return {
            "orders": list(result.scalars().all()),
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": (total + per_page - 1) // per_page,
        }

    async def get_stats(self, pizza_day_id: Optional[int] = None) -> dict:
        """Order count per status plus revenue and pizzas over non-cancelled orders."""
        conditions = [Order.pizza_day_id == pizza_day_id] if pizza_day_id is not None else []

        result = await self.session.execute(
            select(Order.status, func.count(Order.id)).where(*conditions).group_by(Order.status)
        )
        by_status = {s: 0 for s in VALID_ORDER_STATUSES}
        for status, count in result.all():
            by_status[status] = count

        totals = (await self.session.execute(
            select(
                func.coalesce(func.sum(Order.total_price), 0),
                func.coalesce(func.sum(Order.pizza_count), 0),
            ).where(Order.status != STATUS_CANCELLED, *conditions)
        )).one()

        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "total_revenue": Decimal(str(totals[0])).quantize(ONE_CENT),
            "total_pizzas": int(totals[1]),
        }

    async def _publish_status(self, order: Order) -> None:
        await self.publisher.publish_order_event(order.public_id, {
            "public_id": order.public_id,
            "status": order.status,
            "updated_at": order.updated_at.isoformat() if isinstance(order.updated_at, datetime) else None,
        })
