"""Tests for per-key locked state."""

import asyncio
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders.keyed_state import KeyedState


@pytest.mark.asyncio
async def test_lock_released_when_value_popped_inside_block():
    state = KeyedState()

    async with state.locked("time:r1"):
        state.set("time:r1", 1)
        state.pop("time:r1")

    assert state.lock_count() == 0


@pytest.mark.asyncio
async def test_lock_kept_while_value_present():
    state = KeyedState()

    async with state.locked("time:r1"):
        state.set("time:r1", 1)

    assert state.lock_count() == 1
    assert state.pop("time:r1") == 1
    assert state.lock_count() == 0


@pytest.mark.asyncio
async def test_lock_survives_while_others_wait():
    """Test a waiter still serialises with later callers after the value is popped."""
    state = KeyedState()
    order = []

    async def worker(name, pop):
        async with state.locked("owner"):
            order.append(f"{name}-in")
            if pop:
                state.pop("owner")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    state.set("owner", [])
    await asyncio.gather(worker("a", True), worker("b", False), worker("c", False))

    assert order == ["a-in", "a-out", "b-in", "b-out", "c-in", "c-out"]
    assert state.lock_count() == 0


def test_pop_missing_key():
    state = KeyedState()
    assert state.pop("nothing") is None
    assert state.lock_count() == 0
