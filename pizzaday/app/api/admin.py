"""Admin API: catalog management, order lifecycle, slot quarantine. Mounted behind X-Admin-Token."""
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from pizzaday.app.api.deps import get_session, get_publisher, get_reservation_engine
from pizzaday.app.core.constants import DEFAULT_PAGE_SIZE
from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.schemas import (
    CategoryCreate,
    CategoryUpdate,
    CategoryResponse,
    MenuItemCreate,
    MenuItemUpdate,
    MenuItemResponse,
    PizzaDayCreate,
    PizzaDayUpdate,
    PizzaDayResponse,
    TimeSlotCreate,
    TimeSlotUpdate,
    TimeSlotResponse,
    SlotAuditResponse,
    OrderResponse,
    OrderListResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    SweepResponse,
)
from pizzaday.app.services import menu as menu_service
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.orders import OrderService, OrderServiceError
from pizzaday.app.services.pizza_days import PizzaDayService
from pizzaday.app.services.reservations import ReservationEngine
from pizzaday.app.services.time_slots import TimeSlotService

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


def _day_response(day) -> dict:
    # time_slots must already be loaded
    return {
        "id": day.id,
        "date": day.date,
        "active": day.active,
        "note": day.note,
        "created_at": day.created_at,
        "slot_count": len(day.time_slots),
    }


# ============================================
# CATEGORIES
# ============================================

@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(session: AsyncSession = Depends(get_session)):
    return await menu_service.list_categories_service(session)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(data: CategoryCreate, session: AsyncSession = Depends(get_session)):
    return await menu_service.create_category_service(session, data.model_dump())


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: int, data: CategoryUpdate, session: AsyncSession = Depends(get_session)):
    try:
        return await menu_service.update_category_service(session, category_id, data.model_dump(exclude_unset=True))
    except ServiceError as e:
        _handle_service_error(e)


@router.delete("/categories/{category_id}")
async def delete_category(category_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await menu_service.delete_category_service(session, category_id)
    except ServiceError as e:
        _handle_service_error(e)
    return {"status": "ok"}


# ============================================
# MENU ITEMS
# ============================================

@router.get("/menu-items", response_model=List[MenuItemResponse])
async def list_menu_items(
    active_only: bool = False,
    session: AsyncSession = Depends(get_session),
):
    return await menu_service.list_menu_items_service(session, active_only=active_only)


@router.post("/menu-items", response_model=MenuItemResponse, status_code=201)
async def create_menu_item(data: MenuItemCreate, session: AsyncSession = Depends(get_session)):
    try:
        return await menu_service.create_menu_item_service(session, data.model_dump())
    except ServiceError as e:
        _handle_service_error(e)


@router.patch("/menu-items/{item_id}", response_model=MenuItemResponse)
async def update_menu_item(item_id: int, data: MenuItemUpdate, session: AsyncSession = Depends(get_session)):
    try:
        return await menu_service.update_menu_item_service(session, item_id, data.model_dump(exclude_unset=True))
    except ServiceError as e:
        _handle_service_error(e)


@router.delete("/menu-items/{item_id}")
async def delete_menu_item(item_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await menu_service.delete_menu_item_service(session, item_id)
    except ServiceError as e:
        _handle_service_error(e)
    return {"status": "ok"}


# ============================================
# PIZZA DAYS
# ============================================

@router.get("/pizza-days", response_model=List[PizzaDayResponse])
async def list_pizza_days(session: AsyncSession = Depends(get_session)):
    return await PizzaDayService(session).list_days()


@router.post("/pizza-days", response_model=PizzaDayResponse, status_code=201)
async def create_pizza_day(data: PizzaDayCreate, session: AsyncSession = Depends(get_session)):
    try:
        return await PizzaDayService(session).create_day(data.model_dump())
    except ServiceError as e:
        _handle_service_error(e)


@router.get("/pizza-days/{pizza_day_id}", response_model=PizzaDayResponse)
async def get_pizza_day(pizza_day_id: int, session: AsyncSession = Depends(get_session)):
    try:
        day = await PizzaDayService(session).get_day(pizza_day_id)
    except ServiceError as e:
        _handle_service_error(e)
    return _day_response(day)


@router.patch("/pizza-days/{pizza_day_id}", response_model=PizzaDayResponse)
async def update_pizza_day(pizza_day_id: int, data: PizzaDayUpdate, session: AsyncSession = Depends(get_session)):
    try:
        day = await PizzaDayService(session).update_day(pizza_day_id, data.model_dump(exclude_unset=True))
    except ServiceError as e:
        _handle_service_error(e)
    return _day_response(day)


@router.delete("/pizza-days/{pizza_day_id}")
async def delete_pizza_day(pizza_day_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await PizzaDayService(session).delete_day(pizza_day_id)
    except ServiceError as e:
        _handle_service_error(e)
    return {"status": "ok"}


# ============================================
# TIME SLOTS
# ============================================

@router.get("/pizza-days/{pizza_day_id}/slots", response_model=List[TimeSlotResponse])
async def list_time_slots(
    pizza_day_id: int,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await TimeSlotService(session, publisher).list_for_day(pizza_day_id)
    except ServiceError as e:
        _handle_service_error(e)


@router.post("/pizza-days/{pizza_day_id}/slots", response_model=TimeSlotResponse, status_code=201)
async def create_time_slot(
    pizza_day_id: int,
    data: TimeSlotCreate,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await TimeSlotService(session, publisher).create_slot(pizza_day_id, data.model_dump())
    except ServiceError as e:
        _handle_service_error(e)


@router.get("/slots/{slot_id}", response_model=TimeSlotResponse)
async def get_time_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await TimeSlotService(session, publisher).get_slot(slot_id, refresh=True)
    except ServiceError as e:
        _handle_service_error(e)


@router.patch("/slots/{slot_id}", response_model=TimeSlotResponse)
async def update_time_slot(
    slot_id: int,
    data: TimeSlotUpdate,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Change times, capacity or is_open. committed_count is not editable."""
    try:
        return await TimeSlotService(session, publisher).update_slot(slot_id, data.model_dump(exclude_unset=True))
    except ServiceError as e:
        logger.warning("Time slot update refused", slot_id=slot_id, error=e.message)
        _handle_service_error(e)


@router.delete("/slots/{slot_id}")
async def delete_time_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        await TimeSlotService(session, publisher).delete_slot(slot_id)
    except ServiceError as e:
        _handle_service_error(e)
    return {"status": "ok"}


@router.post("/slots/{slot_id}/unfreeze", response_model=TimeSlotResponse)
async def unfreeze_time_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Lift a consistency quarantine after the counter was reconciled by hand."""
    state = await engine.unfreeze_slot(slot_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Time slot {slot_id} not found")
    return await TimeSlotService(session, publisher).get_slot(slot_id, refresh=True)


@router.post("/slots/{slot_id}/audit", response_model=SlotAuditResponse)
async def audit_time_slot(slot_id: int, engine: ReservationEngine = Depends(get_reservation_engine)):
    """Compare committed_count with the reservations behind it; a mismatch freezes the slot."""
    audit = await engine.audit_slot(slot_id)
    if audit is None:
        raise HTTPException(status_code=404, detail=f"Time slot {slot_id} not found")
    return audit


@router.post("/reservations/sweep", response_model=SweepResponse)
async def sweep_reservations(
    max_age_seconds: Optional[int] = Query(None, gt=0),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    """Release held reservations that never got an order."""
    max_age = max_age_seconds or get_settings().RESERVATION_HOLD_TTL_SECONDS
    released = await engine.sweep_stale_holds(timedelta(seconds=max_age))
    return {"released": released}


# ============================================
# ORDERS
# ============================================

@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    pizza_day_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await OrderService(session, engine, publisher).list_orders(
            pizza_day_id=pizza_day_id,
            status=status,
            search=search,
            page=page,
            per_page=per_page,
        )
    except OrderServiceError as e:
        _handle_service_error(e)


@router.get("/orders/stats", response_model=OrderStatsResponse)
async def get_order_stats(
    pizza_day_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    return await OrderService(session, engine, publisher).get_stats(pizza_day_id=pizza_day_id)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await OrderService(session, engine, publisher).get_order(order_id)
    except OrderServiceError as e:
        _handle_service_error(e)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Move an order through its lifecycle. Cancelling returns its pizzas to the slot."""
    logger.info("Updating order status", order_id=order_id, new_status=data.status)
    try:
        return await OrderService(session, engine, publisher).update_status(order_id, data.status)
    except OrderServiceError as e:
        await session.rollback()
        logger.warning(
            "Order status update failed",
            order_id=order_id,
            new_status=data.status,
            error=e.message,
            error_code=e.status_code,
        )
        _handle_service_error(e)


@router.delete("/orders/{order_id}")
async def delete_order(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        await OrderService(session, engine, publisher).delete_order(order_id)
    except OrderServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return {"status": "ok"}
