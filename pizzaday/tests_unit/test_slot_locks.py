"""Tests for the per-slot lock registry (services.slot_locks)."""
import asyncio

import pytest

from pizzaday.app.services.slot_locks import SlotLockRegistry


@pytest.mark.asyncio
async def test_same_slot_is_serialized():
    registry = SlotLockRegistry()
    inside = 0
    peak = 0

    async def worker():
        nonlocal inside, peak
        async with registry.hold(1):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert peak == 1
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_different_slots_do_not_wait():
    registry = SlotLockRegistry()
    second_entered = asyncio.Event()

    async def holder():
        async with registry.hold(1):
            # Only finishes if slot 2 can be entered while slot 1 is held
            await asyncio.wait_for(second_entered.wait(), timeout=1)

    async def other():
        async with registry.hold(2):
            assert registry.is_locked(1)
            second_entered.set()

    await asyncio.gather(holder(), other())

    assert not registry.is_locked(1)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_entry_dropped_after_error():
    registry = SlotLockRegistry()

    with pytest.raises(RuntimeError):
        async with registry.hold(3):
            assert registry.is_locked(3)
            raise RuntimeError("boom")

    assert len(registry) == 0
    async with registry.hold(3):
        assert len(registry) == 1
