from sqlalchemy import Integer, Boolean, DateTime, ForeignKey, String, Time, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, time
from typing import Optional, TYPE_CHECKING
from pizzaday.app.core.base import Base, utcnow

if TYPE_CHECKING:
    from pizzaday.app.models.pizza_day import PizzaDay


class TimeSlot(Base):
    """
    Capacity-bounded ordering window of a pizza day.

    committed_count is written only by ReservationEngine; admin edits go
    through capacity/is_open and never touch it.
    """
    __tablename__ = 'time_slots'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pizza_day_id: Mapped[int] = mapped_column(ForeignKey('pizza_days.id', ondelete='CASCADE'))
    time_from: Mapped[time] = mapped_column(Time, nullable=False)
    time_to: Mapped[time] = mapped_column(Time, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    committed_count: Mapped[int] = mapped_column(Integer, default=0, server_default='0', nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    # Set after a consistency violation; blocks reserve/release until an admin clears it
    is_frozen: Mapped[bool] = mapped_column(Boolean, default=False, server_default='false')
    frozen_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    pizza_day: Mapped["PizzaDay"] = relationship(back_populates="time_slots")

    __table_args__ = (
        CheckConstraint('capacity > 0', name='ck_time_slots_capacity_positive'),
        CheckConstraint(
            'committed_count >= 0 AND committed_count <= capacity',
            name='ck_time_slots_committed_within_capacity',
        ),
        Index('ix_time_slots_pizza_day_id', 'pizza_day_id'),
    )

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.committed_count)

    @property
    def is_available(self) -> bool:
        return self.is_open and not self.is_frozen and self.committed_count < self.capacity
