"""Pizza day service: admin CRUD and the customer-facing list of upcoming days."""
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.models.order import Order
from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot

logger = get_logger(__name__)


class PizzaDayServiceError(ServiceError):
    """Base exception for pizza day errors."""


class PizzaDayNotFoundError(PizzaDayServiceError):
    def __init__(self, pizza_day_id: int):
        super().__init__(f"Pizza day {pizza_day_id} not found", 404)


class PizzaDayExistsError(PizzaDayServiceError):
    def __init__(self, day: date):
        super().__init__(f"A pizza day on {day.isoformat()} already exists", 409)


class PizzaDayHasOrdersError(PizzaDayServiceError):
    def __init__(self, pizza_day_id: int, order_count: int):
        super().__init__(
            f"Pizza day {pizza_day_id} has {order_count} order(s) and cannot be deleted",
            409,
        )


def today_in(tz: ZoneInfo) -> date:
    """Calendar date in the shop's timezone; decides which days are still upcoming."""
    return datetime.now(tz).date()


class PizzaDayService:
    def __init__(self, session: AsyncSession, tz: Optional[ZoneInfo] = None):
        self.session = session
        self.tz = tz or get_settings().tz

    async def get_day(self, pizza_day_id: int) -> PizzaDay:
        day = await self.session.get(PizzaDay, pizza_day_id)
        if not day:
            raise PizzaDayNotFoundError(pizza_day_id)
        return day

    async def list_days(self) -> list[dict]:
        """All days, newest first, with their slot count."""
        slot_counts = (
            select(TimeSlot.pizza_day_id, func.count(TimeSlot.id).label("slot_count"))
            .group_by(TimeSlot.pizza_day_id)
            .subquery()
        )
        result = await self.session.execute(
            select(PizzaDay, func.coalesce(slot_counts.c.slot_count, 0))
            .outerjoin(slot_counts, slot_counts.c.pizza_day_id == PizzaDay.id)
            .order_by(PizzaDay.date.desc())
        )
        return [
            {
                "id": day.id,
                "date": day.date,
                "active": day.active,
                "note": day.note,
                "created_at": day.created_at,
                "slot_count": slot_count,
            }
            for day, slot_count in result.all()
        ]

    async def list_upcoming(self) -> list[PizzaDay]:
        """Active days from today on, soonest first, slots loaded."""
        result = await self.session.execute(
            select(PizzaDay)
            .where(PizzaDay.active.is_(True), PizzaDay.date >= today_in(self.tz))
            .order_by(PizzaDay.date)
        )
        return list(result.scalars().all())

    async def get_upcoming_day(self, pizza_day_id: int) -> PizzaDay:
        """A single day as customers may see it; inactive and past days are not found."""
        day = await self.get_day(pizza_day_id)
        if not day.active or day.date < today_in(self.tz):
            raise PizzaDayNotFoundError(pizza_day_id)
        return day

    async def _ensure_date_free(self, day: date, exclude_id: Optional[int] = None) -> None:
        query = select(PizzaDay.id).where(PizzaDay.date == day)
        if exclude_id is not None:
            query = query.where(PizzaDay.id != exclude_id)
        if await self.session.scalar(query):
            raise PizzaDayExistsError(day)

    async def create_day(self, data: dict) -> PizzaDay:
        await self._ensure_date_free(data["date"])
        day = PizzaDay(**data)
        self.session.add(day)
        await self.session.commit()
        logger.info("Pizza day created", pizza_day_id=day.id, date=day.date.isoformat())
        return day

    async def update_day(self, pizza_day_id: int, update_data: dict) -> PizzaDay:
        day = await self.get_day(pizza_day_id)
        if update_data.get("date") is not None:
            await self._ensure_date_free(update_data["date"], exclude_id=pizza_day_id)
        for field, value in update_data.items():
            if value is not None:
                setattr(day, field, value)
        await self.session.commit()
        return day

    async def delete_day(self, pizza_day_id: int) -> None:
        """Delete a day with its slots. Refused once any order was placed on it."""
        day = await self.get_day(pizza_day_id)
        order_count = await self.session.scalar(
            select(func.count(Order.id)).where(Order.pizza_day_id == pizza_day_id)
        )
        if order_count:
            raise PizzaDayHasOrdersError(pizza_day_id, order_count)
        await self.session.delete(day)
        await self.session.commit()
        logger.info("Pizza day deleted", pizza_day_id=pizza_day_id)
