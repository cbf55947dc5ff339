"""
Slot-capacity reservation engine.

The engine is the only writer of TimeSlot.committed_count and keeps
0 <= committed_count <= capacity under concurrent checkouts:

- every mutation runs while holding the in-process lock for its slot;
- the counter moves through one conditional UPDATE ... WHERE ... RETURNING,
  which is atomic in the database as well, so several API instances stay
  consistent per slot;
- each reserved amount is recorded as a Reservation row, and releases for an
  order use that recorded amount exactly once.

Rejections are returned as typed results. Only programming errors (a
non-positive amount) raise.
"""
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Union

from sqlalchemy import select, update, func, exists
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pizzaday.app.core.base import utcnow
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.metrics import (
    reservations_total,
    releases_total,
    slot_freezes_total,
    stale_holds_released_total,
)
from pizzaday.app.models.order import Order
from pizzaday.app.models.reservation import (
    Reservation,
    RESERVATION_HELD,
    RESERVATION_BOUND,
    RESERVATION_RELEASED,
)
from pizzaday.app.models.time_slot import TimeSlot
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.slot_locks import SlotLockRegistry

logger = get_logger(__name__)


class RejectReason(str, Enum):
    SLOT_NOT_FOUND = "slot_not_found"
    SLOT_CLOSED = "slot_closed"
    SLOT_FROZEN = "slot_frozen"
    INSUFFICIENT_CAPACITY = "insufficient_capacity"


class ReleaseError(str, Enum):
    SLOT_NOT_FOUND = "slot_not_found"
    SLOT_FROZEN = "slot_frozen"
    OVER_RELEASE = "over_release"
    RESERVATION_NOT_FOUND = "reservation_not_found"
    ALREADY_RELEASED = "already_released"
    # Sweep only: an order or bind claimed the hold after it was listed
    NOT_STALE = "not_stale"


class InvalidAmountError(ValueError):
    """Reserve/release called with a non-positive amount."""

    def __init__(self, amount: int):
        self.amount = amount
        super().__init__(f"Amount must be positive, got {amount}")


@dataclass(frozen=True)
class Reserved:
    reservation_id: str
    slot_id: int
    pizza_day_id: int
    amount: int
    committed_count: int
    capacity: int
    ok = True

    @property
    def remaining(self) -> int:
        return self.capacity - self.committed_count


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    slot_id: int
    # Only set for INSUFFICIENT_CAPACITY
    remaining: Optional[int] = None
    ok = False


@dataclass(frozen=True)
class Released:
    slot_id: int
    amount: int
    committed_count: int
    reservation_id: Optional[str] = None
    ok = True


@dataclass(frozen=True)
class ReleaseFailed:
    reason: ReleaseError
    slot_id: Optional[int] = None
    reservation_id: Optional[str] = None
    ok = False


ReserveResult = Union[Reserved, Rejected]
ReleaseResult = Union[Released, ReleaseFailed]


@dataclass(frozen=True)
class SlotState:
    slot_id: int
    pizza_day_id: int
    capacity: int
    committed_count: int
    is_open: bool
    is_frozen: bool
    frozen_reason: Optional[str]

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.committed_count)

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "SlotState":
        return cls(
            slot_id=slot.id,
            pizza_day_id=slot.pizza_day_id,
            capacity=slot.capacity,
            committed_count=slot.committed_count,
            is_open=slot.is_open,
            is_frozen=slot.is_frozen,
            frozen_reason=slot.frozen_reason,
        )


@dataclass(frozen=True)
class SlotAudit:
    slot_id: int
    committed_count: int
    reserved_total: int
    frozen: bool

    @property
    def consistent(self) -> bool:
        return self.committed_count == self.reserved_total


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmountError(amount)


class ReservationEngine:
    """
    Owns the committed_count of every time slot.

    Each mutating call opens its own short transaction from session_factory
    and commits it before returning, so callers never hold a slot row across
    their own work.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: SlotLockRegistry,
        publisher: EventPublisher,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.publisher = publisher

    # ------------------------------------------------------------------
    # Reserve
    # ------------------------------------------------------------------

    async def reserve(self, slot_id: int, requested_count: int) -> ReserveResult:
        """
        Commit requested_count units of capacity on a slot.

        Succeeds only when the slot exists, is open, is not frozen and
        committed_count + requested_count <= capacity. On success a held
        Reservation is written in the same transaction; its id is the token
        the caller uses to bind or release.
        """
        _check_amount(requested_count)

        async with self.locks.hold(slot_id):
            async with self.session_factory() as session:
                row = (await session.execute(
                    update(TimeSlot)
                    .where(
                        TimeSlot.id == slot_id,
                        TimeSlot.is_open.is_(True),
                        TimeSlot.is_frozen.is_(False),
                        TimeSlot.committed_count + requested_count <= TimeSlot.capacity,
                    )
                    .values(committed_count=TimeSlot.committed_count + requested_count)
                    .returning(TimeSlot.pizza_day_id, TimeSlot.committed_count, TimeSlot.capacity)
                    .execution_options(synchronize_session=False)
                )).one_or_none()

                if row is None:
                    rejected = await self._diagnose_reject(session, slot_id, requested_count)
                    await session.rollback()
                    reservations_total.labels(outcome=rejected.reason.value).inc()
                    logger.info(
                        "Reservation rejected",
                        slot_id=slot_id,
                        requested=requested_count,
                        reason=rejected.reason.value,
                        remaining=rejected.remaining,
                    )
                    return rejected

                reservation = Reservation(
                    id=str(uuid.uuid4()),
                    time_slot_id=slot_id,
                    amount=requested_count,
                    status=RESERVATION_HELD,
                )
                session.add(reservation)
                await session.commit()

        result = Reserved(
            reservation_id=reservation.id,
            slot_id=slot_id,
            pizza_day_id=row.pizza_day_id,
            amount=requested_count,
            committed_count=row.committed_count,
            capacity=row.capacity,
        )
        reservations_total.labels(outcome="reserved").inc()
        logger.info(
            "Capacity reserved",
            slot_id=slot_id,
            reservation_id=result.reservation_id,
            amount=requested_count,
            committed_count=result.committed_count,
            capacity=result.capacity,
        )
        await self._publish_slot(result.pizza_day_id, slot_id, result.committed_count, result.capacity)
        return result

    async def _diagnose_reject(self, session: AsyncSession, slot_id: int, requested_count: int) -> Rejected:
        slot = await session.get(TimeSlot, slot_id)
        if slot is None:
            return Rejected(RejectReason.SLOT_NOT_FOUND, slot_id)
        if slot.is_frozen:
            return Rejected(RejectReason.SLOT_FROZEN, slot_id)
        if not slot.is_open:
            return Rejected(RejectReason.SLOT_CLOSED, slot_id)
        return Rejected(
            RejectReason.INSUFFICIENT_CAPACITY,
            slot_id,
            remaining=max(0, slot.capacity - slot.committed_count),
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, slot_id: int, amount: int) -> ReleaseResult:
        """
        Return amount units to a slot without a reservation record.

        Decrements only when committed_count >= amount. Anything else is an
        over-release: the counter is left untouched and the slot is frozen.
        Prefer release_reservation(), which uses the recorded amount.
        """
        _check_amount(amount)

        async with self.locks.hold(slot_id):
            async with self.session_factory() as session:
                outcome = await self._decrement(session, slot_id, amount)
                await session.commit()

        return await self._finish_release(outcome, slot_id, amount)

    async def release_reservation(self, reservation_id: str) -> ReleaseResult:
        """
        Release a reservation exactly once, using its recorded amount.

        A reservation that is already released yields ALREADY_RELEASED and
        the counter is not touched again.
        """
        return await self._release_reservation(reservation_id, stale_only=False)

    async def release_for_order(self, order: Order) -> ReleaseResult:
        if not order.reservation_id:
            logger.error("Order has no reservation to release", order_id=order.id)
            return ReleaseFailed(ReleaseError.RESERVATION_NOT_FOUND, slot_id=order.time_slot_id)
        return await self.release_reservation(order.reservation_id)

    async def _release_reservation(self, reservation_id: str, stale_only: bool) -> ReleaseResult:
        async with self.session_factory() as session:
            reservation = await session.get(Reservation, reservation_id)
            slot_id = reservation.time_slot_id if reservation else None
        if slot_id is None:
            releases_total.labels(outcome=ReleaseError.RESERVATION_NOT_FOUND.value).inc()
            logger.warning("Release of unknown reservation", reservation_id=reservation_id)
            return ReleaseFailed(ReleaseError.RESERVATION_NOT_FOUND, reservation_id=reservation_id)

        async with self.locks.hold(slot_id):
            async with self.session_factory() as session:
                reservation = (await session.execute(
                    select(Reservation).where(Reservation.id == reservation_id).with_for_update()
                )).scalar_one_or_none()
                if reservation is None:
                    releases_total.labels(outcome=ReleaseError.RESERVATION_NOT_FOUND.value).inc()
                    return ReleaseFailed(ReleaseError.RESERVATION_NOT_FOUND, slot_id, reservation_id)

                if reservation.status == RESERVATION_RELEASED:
                    releases_total.labels(outcome=ReleaseError.ALREADY_RELEASED.value).inc()
                    logger.warning(
                        "Reservation already released",
                        reservation_id=reservation_id,
                        slot_id=slot_id,
                        released_at=reservation.released_at,
                    )
                    return ReleaseFailed(ReleaseError.ALREADY_RELEASED, slot_id, reservation_id)

                if stale_only and not await self._is_stale(session, reservation):
                    logger.info(
                        "Sweep skipped reservation claimed by an order",
                        reservation_id=reservation_id,
                        slot_id=slot_id,
                        status=reservation.status,
                    )
                    return ReleaseFailed(ReleaseError.NOT_STALE, slot_id, reservation_id)

                amount = reservation.amount
                outcome = await self._decrement(session, slot_id, amount)
                if not isinstance(outcome, ReleaseError):
                    reservation.status = RESERVATION_RELEASED
                    reservation.released_at = utcnow()
                await session.commit()

        return await self._finish_release(outcome, slot_id, amount, reservation_id)

    async def _decrement(self, session: AsyncSession, slot_id: int, amount: int):
        """
        Conditional decrement inside the caller's transaction.

        Returns the new (pizza_day_id, committed_count, capacity) row on
        success, or a ReleaseError. An over-release freezes the slot in the
        same transaction.
        """
        row = (await session.execute(
            update(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.is_frozen.is_(False),
                TimeSlot.committed_count >= amount,
            )
            .values(committed_count=TimeSlot.committed_count - amount)
            .returning(TimeSlot.pizza_day_id, TimeSlot.committed_count, TimeSlot.capacity)
            .execution_options(synchronize_session=False)
        )).one_or_none()
        if row is not None:
            return row

        slot = await session.get(TimeSlot, slot_id)
        if slot is None:
            return ReleaseError.SLOT_NOT_FOUND
        if slot.is_frozen:
            return ReleaseError.SLOT_FROZEN

        reason = f"over-release of {amount} with committed_count {slot.committed_count}"
        self._freeze(slot, reason)
        return ReleaseError.OVER_RELEASE

    async def _finish_release(
        self,
        outcome,
        slot_id: int,
        amount: int,
        reservation_id: Optional[str] = None,
    ) -> ReleaseResult:
        if isinstance(outcome, ReleaseError):
            releases_total.labels(outcome=outcome.value).inc()
            if outcome is ReleaseError.OVER_RELEASE:
                logger.critical(
                    "Over-release detected, slot frozen",
                    slot_id=slot_id,
                    amount=amount,
                    reservation_id=reservation_id,
                )
            else:
                logger.warning(
                    "Release refused",
                    slot_id=slot_id,
                    amount=amount,
                    reservation_id=reservation_id,
                    reason=outcome.value,
                )
            return ReleaseFailed(outcome, slot_id, reservation_id)

        releases_total.labels(outcome="released").inc()
        logger.info(
            "Capacity released",
            slot_id=slot_id,
            amount=amount,
            reservation_id=reservation_id,
            committed_count=outcome.committed_count,
        )
        await self._publish_slot(outcome.pizza_day_id, slot_id, outcome.committed_count, outcome.capacity)
        return Released(
            slot_id=slot_id,
            amount=amount,
            committed_count=outcome.committed_count,
            reservation_id=reservation_id,
        )

    # ------------------------------------------------------------------
    # Binding, sweep, audit
    # ------------------------------------------------------------------

    async def bind(self, reservation_id: str, order_id: int) -> bool:
        """Mark a held reservation as backing an order. False if it is no longer held."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == RESERVATION_HELD)
                .values(status=RESERVATION_BOUND, order_id=order_id, bound_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount != 1:
            logger.error("Bind failed, reservation not held", reservation_id=reservation_id, order_id=order_id)
            return False
        return True

    async def _is_stale(self, session: AsyncSession, reservation: Reservation) -> bool:
        if reservation.status != RESERVATION_HELD:
            return False
        referenced = await session.scalar(
            select(exists().where(Order.reservation_id == reservation.id))
        )
        return not referenced

    async def sweep_stale_holds(self, max_age: timedelta) -> int:
        """
        Release held reservations older than max_age that no order references.

        These are left behind when a caller crashed between reserving and
        writing its order. Returns how many were released.
        """
        cutoff = utcnow() - max_age
        async with self.session_factory() as session:
            result = await session.execute(
                select(Reservation.id).where(
                    Reservation.status == RESERVATION_HELD,
                    Reservation.created_at < cutoff,
                    ~exists().where(Order.reservation_id == Reservation.id),
                )
            )
            candidates = list(result.scalars().all())

        released = 0
        for reservation_id in candidates:
            outcome = await self._release_reservation(reservation_id, stale_only=True)
            if outcome.ok:
                released += 1
                stale_holds_released_total.inc()

        if released:
            logger.warning("Stale reservations released", count=released, candidates=len(candidates))
        return released

    async def audit_slot(self, slot_id: int) -> Optional[SlotAudit]:
        """
        Compare committed_count with the sum of unreleased reservations.

        A mismatch freezes the slot. Returns None for an unknown slot.
        """
        async with self.locks.hold(slot_id):
            async with self.session_factory() as session:
                slot = (await session.execute(
                    select(TimeSlot).where(TimeSlot.id == slot_id).with_for_update()
                )).scalar_one_or_none()
                if slot is None:
                    return None
                reserved_total = await session.scalar(
                    select(func.coalesce(func.sum(Reservation.amount), 0)).where(
                        Reservation.time_slot_id == slot_id,
                        Reservation.status != RESERVATION_RELEASED,
                    )
                )
                audit = SlotAudit(
                    slot_id=slot_id,
                    committed_count=slot.committed_count,
                    reserved_total=int(reserved_total or 0),
                    frozen=slot.is_frozen,
                )
                if not audit.consistent and not slot.is_frozen:
                    self._freeze(
                        slot,
                        f"audit drift: committed_count {audit.committed_count}, reserved {audit.reserved_total}",
                    )
                    await session.commit()
                    logger.critical(
                        "Slot counter drift detected, slot frozen",
                        slot_id=slot_id,
                        committed_count=audit.committed_count,
                        reserved_total=audit.reserved_total,
                    )
                    audit = SlotAudit(slot_id, audit.committed_count, audit.reserved_total, frozen=True)
        return audit

    async def unfreeze_slot(self, slot_id: int) -> Optional[SlotState]:
        """Lift the quarantine after manual reconciliation. committed_count is not changed."""
        async with self.locks.hold(slot_id):
            async with self.session_factory() as session:
                slot = await session.get(TimeSlot, slot_id)
                if slot is None:
                    return None
                was_reason = slot.frozen_reason
                slot.is_frozen = False
                slot.frozen_reason = None
                await session.commit()
                state = SlotState.from_slot(slot)
        logger.warning("Slot unfrozen", slot_id=slot_id, previous_reason=was_reason)
        await self._publish_slot(state.pizza_day_id, slot_id, state.committed_count, state.capacity)
        return state

    async def get_slot_state(self, slot_id: int) -> Optional[SlotState]:
        async with self.session_factory() as session:
            slot = await session.get(TimeSlot, slot_id)
            return SlotState.from_slot(slot) if slot else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _freeze(self, slot: TimeSlot, reason: str) -> None:
        slot.is_frozen = True
        slot.frozen_reason = reason[:255]
        slot_freezes_total.inc()

    async def _publish_slot(self, pizza_day_id: int, slot_id: int, committed_count: int, capacity: int) -> None:
        await self.publisher.publish_slot_event(pizza_day_id, {
            "slot_id": slot_id,
            "committed_count": committed_count,
            "capacity": capacity,
            "remaining": max(0, capacity - committed_count),
        })
