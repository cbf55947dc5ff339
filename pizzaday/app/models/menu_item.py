from sqlalchemy import String, ForeignKey, DECIMAL, Text, Boolean, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import Optional
from decimal import Decimal
from pizzaday.app.core.base import Base
from pizzaday.app.models.category import Category


class MenuItem(Base):
    __tablename__ = 'menu_items'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(ForeignKey('categories.id', ondelete='RESTRICT'))
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    weight_grams: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default='0')

    category: Mapped[Category] = relationship(lazy="joined")

    __table_args__ = (
        Index('ix_menu_items_category_id', 'category_id'),
        Index('ix_menu_items_category_active', 'category_id', 'active'),
    )

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    @property
    def is_topping(self) -> bool:
        return bool(self.category and self.category.is_topping)
