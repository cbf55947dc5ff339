import uuid
from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Text, Index, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pizzaday.app.core.base import Base, utcnow
from pizzaday.app.core.constants import STATUS_NEW


class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid.uuid4()))
    time_slot_id: Mapped[int] = mapped_column(ForeignKey('time_slots.id', ondelete='RESTRICT'))
    pizza_day_id: Mapped[int] = mapped_column(ForeignKey('pizza_days.id', ondelete='RESTRICT'))
    reservation_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True
    )
    customer_name: Mapped[str] = mapped_column(String(100))
    customer_phone: Mapped[str] = mapped_column(String(20))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_NEW)
    total_price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    pizza_count: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="OrderItem.id",
    )

    __table_args__ = (
        Index('ix_orders_pizza_day_id', 'pizza_day_id'),
        Index('ix_orders_time_slot_id', 'time_slot_id'),
        Index('ix_orders_status', 'status'),
        Index('ix_orders_created_at', 'created_at'),
        Index('ix_orders_reservation_id', 'reservation_id'),
        Index('ix_orders_day_status', 'pizza_day_id', 'status'),
    )


class OrderItem(Base):
    __tablename__ = 'order_items'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    menu_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True
    )
    # Name and price are snapshots taken at checkout
    item_name: Mapped[str] = mapped_column(String(200))
    item_price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    quantity: Mapped[int] = mapped_column(Integer)
    is_topping: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    order: Mapped[Order] = relationship(back_populates="items")

    __table_args__ = (
        Index('ix_order_items_order_id', 'order_id'),
    )
