#!/usr/bin/env python3
"""
Release abandoned slot reservations.

A reservation stays 'held' if checkout crashed between reserving capacity and
writing the order. The API runs the same sweep in the background; this script
is for deployments that prefer cron, e.g.:
    */5 * * * * cd /src && python -m scripts.sweep_stale_reservations

Optional argument: max age in seconds (default RESERVATION_HOLD_TTL_SECONDS).
"""
import asyncio
import sys
from datetime import timedelta

from pizzaday.app.core.database import async_session
from pizzaday.app.core.logging import setup_logging
from pizzaday.app.core.settings import get_settings
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.reservations import ReservationEngine
from pizzaday.app.services.slot_locks import SlotLockRegistry


async def sweep(max_age_seconds: int) -> int:
    print(f"Releasing held reservations older than {max_age_seconds}s")
    redis = await EventPublisher.get_redis()
    engine = ReservationEngine(async_session, SlotLockRegistry(), EventPublisher(redis))
    try:
        released = await engine.sweep_stale_holds(timedelta(seconds=max_age_seconds))
    finally:
        await EventPublisher.close()
    print(f"Released {released} reservation(s).")
    return released


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
    max_age = int(sys.argv[1]) if len(sys.argv) > 1 else settings.RESERVATION_HOLD_TTL_SECONDS
    asyncio.run(sweep(max_age))
