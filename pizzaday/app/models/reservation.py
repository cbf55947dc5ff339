import uuid
from sqlalchemy import Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from pizzaday.app.core.base import Base, utcnow

RESERVATION_HELD = "held"
RESERVATION_BOUND = "bound"
RESERVATION_RELEASED = "released"


def _new_token() -> str:
    return str(uuid.uuid4())


class Reservation(Base):
    """Capacity committed against a slot; the id doubles as the reservation token."""
    __tablename__ = 'reservations'
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_token)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey('time_slots.id', ondelete='CASCADE'))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RESERVATION_HELD, nullable=False)
    order_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    bound_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_reservations_amount_positive'),
        Index('ix_reservations_slot_status', 'time_slot_id', 'status'),
        Index('ix_reservations_status_created', 'status', 'created_at'),
    )
