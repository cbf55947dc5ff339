"""
Test fixtures for pizza day backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- In-memory event publisher and a fresh slot lock registry per test
- Test data factories for creating catalog entities
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

os.environ.setdefault("ADMIN_LOGIN", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin")
os.environ.setdefault("ADMIN_SECRET", "test_admin_secret")
# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("TIMEZONE", "Europe/Bratislava")

import pytest
from decimal import Decimal
from typing import AsyncGenerator

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from pizzaday.app.core.base import Base
from pizzaday.app.core.limiter import limiter
from pizzaday.app.main import app
from pizzaday.app.api.deps import get_session, get_session_factory, get_slot_locks, get_publisher
from pizzaday.app.models.category import Category
from pizzaday.app.models.menu_item import MenuItem
from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot
from pizzaday.app.models.reservation import Reservation  # noqa: F401 - register with Base.metadata
from pizzaday.app.models.order import Order, OrderItem  # noqa: F401
from pizzaday.app.services.reservations import ReservationEngine
from pizzaday.app.services.slot_locks import SlotLockRegistry
from pizzaday.tests.support import (
    MockEventPublisher,
    TestSessionLocal,
    make_slot,
    test_engine,
    upcoming_date,
)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # New in-memory connection (and event loop binding) for the next test
    await test_engine.dispose()


@pytest.fixture
def publisher() -> MockEventPublisher:
    return MockEventPublisher()


@pytest.fixture
def slot_locks() -> SlotLockRegistry:
    return SlotLockRegistry()


@pytest.fixture
def engine(test_session: AsyncSession, slot_locks: SlotLockRegistry, publisher: MockEventPublisher) -> ReservationEngine:
    """Reservation engine on the test database."""
    return ReservationEngine(TestSessionLocal, slot_locks, publisher)


@pytest.fixture
async def client(
    test_session: AsyncSession,
    slot_locks: SlotLockRegistry,
    publisher: MockEventPublisher,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database, publisher and lock registry dependencies.

    Note: We create a fresh session for each API call to avoid
    transaction conflicts with the test_session used for fixtures.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    async def override_get_publisher():
        yield publisher

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_slot_locks] = lambda: slot_locks
    app.dependency_overrides[get_publisher] = override_get_publisher
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    limiter.enabled = True
    app.dependency_overrides.clear()


# --- Test Data Factories ---

@pytest.fixture
async def pizza_category(test_session: AsyncSession) -> Category:
    category = Category(name="Pizza", sort_order=1, is_topping=False)
    test_session.add(category)
    await test_session.commit()
    await test_session.refresh(category)
    return category


@pytest.fixture
async def topping_category(test_session: AsyncSession) -> Category:
    category = Category(name="Toppings", sort_order=2, is_topping=True)
    test_session.add(category)
    await test_session.commit()
    await test_session.refresh(category)
    return category


@pytest.fixture
async def margherita(test_session: AsyncSession, pizza_category: Category) -> MenuItem:
    item = MenuItem(
        category_id=pizza_category.id,
        name="Margherita",
        description="Tomato, mozzarella, basil",
        price=Decimal("8.50"),
        weight_grams=450,
        active=True,
    )
    test_session.add(item)
    await test_session.commit()
    await test_session.refresh(item)
    return item


@pytest.fixture
async def salami(test_session: AsyncSession, pizza_category: Category) -> MenuItem:
    item = MenuItem(
        category_id=pizza_category.id,
        name="Salami",
        price=Decimal("9.90"),
        active=True,
        sort_order=1,
    )
    test_session.add(item)
    await test_session.commit()
    await test_session.refresh(item)
    return item


@pytest.fixture
async def toppings(test_session: AsyncSession, topping_category: Category) -> list[MenuItem]:
    items = [
        MenuItem(category_id=topping_category.id, name=name, price=Decimal(price), active=True, sort_order=i)
        for i, (name, price) in enumerate([
            ("Extra cheese", "1.00"),
            ("Olives", "0.80"),
            ("Jalapeno", "0.70"),
            ("Egg", "0.90"),
        ])
    ]
    test_session.add_all(items)
    await test_session.commit()
    for item in items:
        await test_session.refresh(item)
    return items


@pytest.fixture
async def pizza_day(test_session: AsyncSession) -> PizzaDay:
    day = PizzaDay(date=upcoming_date(), active=True, note="Friday pizza")
    test_session.add(day)
    await test_session.commit()
    await test_session.refresh(day)
    return day


@pytest.fixture
async def time_slot(test_session: AsyncSession, pizza_day: PizzaDay) -> TimeSlot:
    return await make_slot(test_session, pizza_day, capacity=10)
