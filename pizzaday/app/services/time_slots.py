"""Time slot admin service. committed_count is never written here."""
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.core.logging import get_logger
from pizzaday.app.models.order import Order
from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot
from pizzaday.app.services.notifications import EventPublisher

logger = get_logger(__name__)


class TimeSlotServiceError(ServiceError):
    """Base exception for time slot errors."""


class TimeSlotNotFoundError(TimeSlotServiceError):
    def __init__(self, slot_id: int):
        super().__init__(f"Time slot {slot_id} not found", 404)


class SlotPizzaDayNotFoundError(TimeSlotServiceError):
    def __init__(self, pizza_day_id: int):
        super().__init__(f"Pizza day {pizza_day_id} not found", 404)


class InvalidTimeRangeError(TimeSlotServiceError):
    def __init__(self):
        super().__init__("time_from must be before time_to", 400)


class CapacityBelowCommittedError(TimeSlotServiceError):
    def __init__(self, slot_id: int, capacity: int, committed_count: int):
        super().__init__(
            f"Time slot {slot_id} already has {committed_count} pizza(s) ordered; "
            f"capacity cannot be set to {capacity}",
            409,
        )


class TimeSlotInUseError(TimeSlotServiceError):
    def __init__(self, slot_id: int):
        super().__init__(f"Time slot {slot_id} has orders or reserved capacity and cannot be deleted", 409)


class TimeSlotService:
    def __init__(self, session: AsyncSession, publisher: EventPublisher):
        self.session = session
        self.publisher = publisher

    async def get_slot(self, slot_id: int, refresh: bool = False) -> TimeSlot:
        query = select(TimeSlot).where(TimeSlot.id == slot_id)
        if refresh:
            # committed_count moves in the engine's own transactions
            query = query.execution_options(populate_existing=True)
        slot = (await self.session.execute(query)).scalar_one_or_none()
        if not slot:
            raise TimeSlotNotFoundError(slot_id)
        return slot

    async def list_for_day(self, pizza_day_id: int) -> list[TimeSlot]:
        if not await self.session.get(PizzaDay, pizza_day_id):
            raise SlotPizzaDayNotFoundError(pizza_day_id)
        result = await self.session.execute(
            select(TimeSlot)
            .where(TimeSlot.pizza_day_id == pizza_day_id)
            .order_by(TimeSlot.time_from)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def create_slot(self, pizza_day_id: int, data: dict) -> TimeSlot:
        if not await self.session.get(PizzaDay, pizza_day_id):
            raise SlotPizzaDayNotFoundError(pizza_day_id)
        slot = TimeSlot(pizza_day_id=pizza_day_id, committed_count=0, **data)
        self.session.add(slot)
        await self.session.commit()
        logger.info(
            "Time slot created",
            slot_id=slot.id,
            pizza_day_id=pizza_day_id,
            capacity=slot.capacity,
        )
        await self._publish(slot)
        return slot

    async def update_slot(self, slot_id: int, update_data: dict) -> TimeSlot:
        """
        Change times, capacity or the is_open kill-switch.

        The capacity change is one conditional UPDATE so it cannot race a
        concurrent reserve below the committed count.
        """
        slot = await self.get_slot(slot_id, refresh=True)
        update_data = {k: v for k, v in update_data.items() if v is not None}

        time_from = update_data.get("time_from", slot.time_from)
        time_to = update_data.get("time_to", slot.time_to)
        if time_from >= time_to:
            raise InvalidTimeRangeError()

        capacity = update_data.pop("capacity", None)
        if capacity is not None:
            result = await self.session.execute(
                update(TimeSlot)
                .where(TimeSlot.id == slot_id, TimeSlot.committed_count <= capacity)
                .values(capacity=capacity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                slot = await self.get_slot(slot_id, refresh=True)
                raise CapacityBelowCommittedError(slot_id, capacity, slot.committed_count)

        for field, value in update_data.items():
            setattr(slot, field, value)
        await self.session.commit()

        slot = await self.get_slot(slot_id, refresh=True)
        logger.info(
            "Time slot updated",
            slot_id=slot_id,
            capacity=slot.capacity,
            is_open=slot.is_open,
            committed_count=slot.committed_count,
        )
        await self._publish(slot)
        return slot

    async def delete_slot(self, slot_id: int) -> None:
        slot = await self.get_slot(slot_id, refresh=True)
        order_count = await self.session.scalar(
            select(func.count(Order.id)).where(Order.time_slot_id == slot_id)
        )
        if order_count or slot.committed_count:
            raise TimeSlotInUseError(slot_id)
        pizza_day_id = slot.pizza_day_id
        await self.session.delete(slot)
        await self.session.commit()
        logger.info("Time slot deleted", slot_id=slot_id, pizza_day_id=pizza_day_id)
        await self.publisher.publish_slot_event(pizza_day_id, {"slot_id": slot_id, "deleted": True})

    async def _publish(self, slot: TimeSlot) -> None:
        await self.publisher.publish_slot_event(slot.pizza_day_id, {
            "slot_id": slot.id,
            "committed_count": slot.committed_count,
            "capacity": slot.capacity,
            "remaining": slot.remaining,
            "is_open": slot.is_open,
        })
