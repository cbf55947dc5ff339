# pizzaday/app/services/menu.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Iterable

from pizzaday.app.core.exceptions import ServiceError
from pizzaday.app.core.logging import get_logger
from pizzaday.app.models.category import Category
from pizzaday.app.models.menu_item import MenuItem

logger = get_logger(__name__)


class MenuServiceError(ServiceError):
    """Base exception for menu and category errors."""


class CategoryNotFoundError(MenuServiceError):
    def __init__(self, category_id: int):
        super().__init__(f"Category {category_id} not found", 404)


class CategoryInUseError(MenuServiceError):
    def __init__(self, category_id: int, item_count: int):
        super().__init__(
            f"Category {category_id} still has {item_count} menu item(s); move or delete them first",
            409,
        )


class MenuItemNotFoundError(MenuServiceError):
    def __init__(self, item_id: int):
        super().__init__(f"Menu item {item_id} not found", 404)


# --- Categories ---

async def list_categories_service(session: AsyncSession) -> list[Category]:
    result = await session.execute(select(Category).order_by(Category.sort_order, Category.id))
    return list(result.scalars().all())


async def get_category_service(session: AsyncSession, category_id: int) -> Category:
    category = await session.get(Category, category_id)
    if not category:
        raise CategoryNotFoundError(category_id)
    return category


async def create_category_service(session: AsyncSession, data: dict) -> Category:
    category = Category(**data)
    session.add(category)
    await session.commit()
    logger.info("Category created", category_id=category.id, name=category.name)
    return category


async def update_category_service(session: AsyncSession, category_id: int, update_data: dict) -> Category:
    category = await get_category_service(session, category_id)
    for field, value in update_data.items():
        if value is not None:
            setattr(category, field, value)
    await session.commit()
    return category


async def delete_category_service(session: AsyncSession, category_id: int) -> None:
    """Delete a category. Refused while menu items still point at it."""
    category = await get_category_service(session, category_id)
    item_count = await session.scalar(
        select(func.count(MenuItem.id)).where(MenuItem.category_id == category_id)
    )
    if item_count:
        raise CategoryInUseError(category_id, item_count)
    await session.delete(category)
    await session.commit()
    logger.info("Category deleted", category_id=category_id)


# --- Menu items ---

async def get_menu_item_service(session: AsyncSession, item_id: int) -> MenuItem:
    result = await session.execute(
        select(MenuItem).where(MenuItem.id == item_id).execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise MenuItemNotFoundError(item_id)
    return item


async def list_menu_items_service(session: AsyncSession, active_only: bool = False) -> list[MenuItem]:
    """All menu items with their category, in menu order."""
    query = select(MenuItem).join(Category, MenuItem.category_id == Category.id)
    if active_only:
        query = query.where(MenuItem.active.is_(True))
    query = query.order_by(Category.sort_order, Category.id, MenuItem.sort_order, MenuItem.id)
    result = await session.execute(query)
    return list(result.scalars().unique().all())


async def get_menu_items_by_ids(session: AsyncSession, item_ids: Iterable[int]) -> dict[int, MenuItem]:
    ids = set(item_ids)
    if not ids:
        return {}
    result = await session.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
    return {item.id: item for item in result.scalars().unique().all()}


async def get_public_menu_service(session: AsyncSession) -> list[dict]:
    """
    Active menu grouped by category.

    Categories without active items are left out. Returns a list of
    category dicts, each with an "items" list.
    """
    categories = await list_categories_service(session)
    items = await list_menu_items_service(session, active_only=True)

    grouped: dict[int, list[MenuItem]] = {}
    for item in items:
        grouped.setdefault(item.category_id, []).append(item)

    menu = []
    for category in categories:
        category_items = grouped.get(category.id)
        if not category_items:
            continue
        menu.append({
            "id": category.id,
            "name": category.name,
            "sort_order": category.sort_order,
            "is_topping": category.is_topping,
            "items": category_items,
        })
    return menu


async def create_menu_item_service(session: AsyncSession, data: dict) -> MenuItem:
    await get_category_service(session, data["category_id"])
    item = MenuItem(**data)
    session.add(item)
    await session.commit()
    logger.info("Menu item created", item_id=item.id, name=item.name)
    return await get_menu_item_service(session, item.id)


async def update_menu_item_service(session: AsyncSession, item_id: int, update_data: dict) -> MenuItem:
    item = await get_menu_item_service(session, item_id)
    if update_data.get("category_id") is not None:
        await get_category_service(session, update_data["category_id"])
    for field, value in update_data.items():
        if value is not None:
            setattr(item, field, value)
    await session.commit()
    return await get_menu_item_service(session, item_id)


async def delete_menu_item_service(session: AsyncSession, item_id: int) -> None:
    """Order lines keep their name/price snapshot; their menu_item_id becomes NULL."""
    item = await get_menu_item_service(session, item_id)
    await session.delete(item)
    await session.commit()
    logger.info("Menu item deleted", item_id=item_id)
