from sqlalchemy import String, Boolean, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column
from pizzaday.app.core.base import Base


class Category(Base):
    __tablename__ = 'categories'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default='0')
    # Items of a topping category are extras on a pizza and take no slot capacity
    is_topping: Mapped[bool] = mapped_column(Boolean, default=False, server_default='false')

    __table_args__ = (
        Index('ix_categories_sort_order', 'sort_order'),
    )
