from sqlalchemy import Boolean, Date, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import date, datetime
from typing import Optional, TYPE_CHECKING
from pizzaday.app.core.base import Base, utcnow

if TYPE_CHECKING:
    from pizzaday.app.models.time_slot import TimeSlot


class PizzaDay(Base):
    __tablename__ = 'pizza_days'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    time_slots: Mapped[list["TimeSlot"]] = relationship(
        back_populates="pizza_day",
        order_by="TimeSlot.time_from",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index('ix_pizza_days_active_date', 'active', 'date'),
    )
