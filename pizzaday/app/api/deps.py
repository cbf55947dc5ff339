from typing import AsyncGenerator, Optional
from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pizzaday.app.core.database import async_session
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.reservations import ReservationEngine
from pizzaday.app.services.slot_locks import SlotLockRegistry

logger = get_logger(__name__)

# One registry per process: every request must see the same per-slot locks
_slot_locks = SlotLockRegistry()


# Session for the request; services commit it themselves
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Factory the reservation engine opens its own short transactions from
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


def get_slot_locks() -> SlotLockRegistry:
    return _slot_locks


async def get_publisher() -> AsyncGenerator[EventPublisher, None]:
    redis = await EventPublisher.get_redis()
    yield EventPublisher(redis)


def get_reservation_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    locks: SlotLockRegistry = Depends(get_slot_locks),
    publisher: EventPublisher = Depends(get_publisher),
) -> ReservationEngine:
    return ReservationEngine(session_factory, locks, publisher)


async def require_admin_token(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    """Require admin token. If ADMIN_SECRET is not configured, reject all requests (fail-closed)."""
    admin_secret = get_settings().ADMIN_SECRET
    if not admin_secret:
        logger.warning("ADMIN_SECRET not configured, admin endpoints are blocked")
        raise HTTPException(status_code=503, detail="Admin panel not configured (ADMIN_SECRET missing)")
    if not x_admin_token or x_admin_token != admin_secret:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")
