"""Customer-facing endpoints: upcoming pizza days, menu, checkout, order lookup."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from pizzaday.app.api.deps import get_session, get_publisher, get_reservation_engine
from pizzaday.app.core.limiter import limiter
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.schemas import (
    CheckoutBody,
    MenuCategoryResponse,
    PublicOrderResponse,
    PublicPizzaDayResponse,
    PublicTimeSlotResponse,
)
from pizzaday.app.services.menu import get_public_menu_service
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.orders import OrderService, OrderServiceError
from pizzaday.app.services.pizza_days import PizzaDayService
from pizzaday.app.services.reservations import ReservationEngine

router = APIRouter()
logger = get_logger(__name__)


def _checkout_rate_limit() -> str:
    return get_settings().CHECKOUT_RATE_LIMIT


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/pizza-days", response_model=List[PublicPizzaDayResponse])
async def list_upcoming_pizza_days(session: AsyncSession = Depends(get_session)):
    """Active pizza days from today on, with their slots and remaining capacity."""
    return await PizzaDayService(session).list_upcoming()


@router.get("/pizza-days/{pizza_day_id}", response_model=PublicPizzaDayResponse)
async def get_pizza_day(pizza_day_id: int, session: AsyncSession = Depends(get_session)):
    try:
        return await PizzaDayService(session).get_upcoming_day(pizza_day_id)
    except ServiceError as e:
        _handle_service_error(e)


@router.get("/pizza-days/{pizza_day_id}/slots", response_model=List[PublicTimeSlotResponse])
async def list_pizza_day_slots(pizza_day_id: int, session: AsyncSession = Depends(get_session)):
    try:
        day = await PizzaDayService(session).get_upcoming_day(pizza_day_id)
    except ServiceError as e:
        _handle_service_error(e)
    return day.time_slots


@router.get("/menu", response_model=List[MenuCategoryResponse])
async def get_menu(session: AsyncSession = Depends(get_session)):
    """Active menu items grouped by category, toppings included."""
    return await get_public_menu_service(session)


@router.post("/orders", response_model=PublicOrderResponse, status_code=201)
@limiter.limit(_checkout_rate_limit)
async def checkout(
    request: Request,
    data: CheckoutBody,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Place an order for a time slot.

    Capacity is reserved before the order is written; a full or closed slot
    answers 409 with how many pizzas remain.
    """
    logger.info(
        "Checkout",
        time_slot_id=data.time_slot_id,
        items=len(data.items),
    )
    service = OrderService(session, engine, publisher)
    try:
        return await service.place_order(data)
    except OrderServiceError as e:
        logger.warning(
            "Checkout failed",
            time_slot_id=data.time_slot_id,
            error=e.message,
            error_code=e.status_code,
        )
        _handle_service_error(e)


@router.get("/orders/{public_id}", response_model=PublicOrderResponse)
async def get_order_by_public_id(
    public_id: str,
    session: AsyncSession = Depends(get_session),
    engine: ReservationEngine = Depends(get_reservation_engine),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await OrderService(session, engine, publisher).get_by_public_id(public_id)
    except OrderServiceError as e:
        _handle_service_error(e)
