"""
Drop and recreate all tables, then seed a demo menu and the next pizza day.
Development only: every order and reservation is lost.
"""
import asyncio
from datetime import date, time, timedelta
from decimal import Decimal

from pizzaday.app.core.base import Base
from pizzaday.app.core.database import engine, async_session
from pizzaday.app.models import reservation, order  # noqa: F401 - register tables
from pizzaday.app.models.category import Category
from pizzaday.app.models.menu_item import MenuItem
from pizzaday.app.models.pizza_day import PizzaDay
from pizzaday.app.models.time_slot import TimeSlot

PIZZAS = [
    ("Margherita", "Tomato, mozzarella, basil", "8.50", 450),
    ("Salami", "Tomato, mozzarella, spicy salami", "9.90", 500),
    ("Quattro Formaggi", "Mozzarella, gorgonzola, parmesan, eidam", "10.40", 480),
    ("Funghi", "Tomato, mozzarella, mushrooms", "9.20", 480),
]

TOPPINGS = [
    ("Extra cheese", "1.00"),
    ("Olives", "0.80"),
    ("Jalapeno", "0.70"),
    ("Egg", "0.90"),
    ("Corn", "0.60"),
]

SLOTS = [
    (time(11, 30), time(12, 0), 12),
    (time(12, 0), time(12, 30), 12),
    (time(12, 30), time(13, 0), 8),
]


def _next_friday(today: date) -> date:
    return today + timedelta(days=(4 - today.weekday()) % 7 or 7)


async def reset_and_seed():
    print("Dropping all tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    print("Schema recreated.")

    async with async_session() as session:
        pizza = Category(name="Pizza", sort_order=1, is_topping=False)
        extras = Category(name="Toppings", sort_order=2, is_topping=True)
        session.add_all([pizza, extras])
        await session.flush()

        for i, (name, description, price, weight) in enumerate(PIZZAS):
            session.add(MenuItem(
                category_id=pizza.id,
                name=name,
                description=description,
                price=Decimal(price),
                weight_grams=weight,
                sort_order=i,
            ))
        for i, (name, price) in enumerate(TOPPINGS):
            session.add(MenuItem(category_id=extras.id, name=name, price=Decimal(price), sort_order=i))

        day = PizzaDay(date=_next_friday(date.today()), note="Demo pizza day")
        day.time_slots = [
            TimeSlot(time_from=start, time_to=end, capacity=capacity, committed_count=0)
            for start, end, capacity in SLOTS
        ]
        session.add(day)
        await session.commit()
        print(f"Seeded {len(PIZZAS)} pizzas, {len(TOPPINGS)} toppings and a pizza day on {day.date.isoformat()}.")


if __name__ == "__main__":
    asyncio.run(reset_and_seed())
