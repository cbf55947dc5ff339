"""
Shared test database, event publisher stand-in and data helpers.

Kept out of conftest.py so test modules and fixtures import one module
instance and therefore share one in-memory database.
"""
from datetime import date, time, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot


ADMIN_HEADERS = {"X-Admin-Token": "test_admin_secret"}

# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Create test engine with StaticPool for in-memory SQLite
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class MockEventPublisher:
    """Records events instead of publishing them to Redis."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, channel: str, payload: dict[str, Any]) -> bool:
        self.events.append((channel, payload))
        return True

    async def publish_slot_event(self, pizza_day_id: int, payload: dict[str, Any]) -> bool:
        return await self.publish(f"time_slots:{pizza_day_id}", {"type": "time_slot", **payload})

    async def publish_order_event(self, public_id: str, payload: dict[str, Any]) -> bool:
        return await self.publish(f"order:{public_id}", {"type": "order", **payload})

    def on_channel(self, channel: str) -> list[dict]:
        return [payload for ch, payload in self.events if ch == channel]


def upcoming_date(days: int = 3) -> date:
    return date.today() + timedelta(days=days)


async def make_slot(
    session: AsyncSession,
    pizza_day: PizzaDay,
    capacity: int = 10,
    committed_count: int = 0,
    is_open: bool = True,
    time_from: time = time(17, 0),
    time_to: time = time(17, 30),
) -> TimeSlot:
    """Insert a slot directly; committed_count here only seeds test state."""
    slot = TimeSlot(
        pizza_day_id=pizza_day.id,
        time_from=time_from,
        time_to=time_to,
        capacity=capacity,
        committed_count=committed_count,
        is_open=is_open,
    )
    session.add(slot)
    await session.commit()
    await session.refresh(slot)
    return slot


def checkout_payload(slot_id: int, items: list[dict], **overrides) -> dict:
    payload = {
        "time_slot_id": slot_id,
        "customer_name": "Jana Novakova",
        "customer_phone": "+421 905 123 456",
        "customer_email": "jana@example.com",
        "customer_note": "Ring twice",
        "items": items,
    }
    payload.update(overrides)
    return payload
