"""Tests for timers module."""

import asyncio

import pytest

from bleak_peripheral_session.timers import PhaseTimer


@pytest.mark.asyncio
async def test_timer_fires_with_generation():
    fired = []
    timer = PhaseTimer("test", fired.append)
    timer.arm(0.01, 7)
    assert timer.armed
    assert timer.generation == 7

    await asyncio.sleep(0.05)

    assert fired == [7]
    assert not timer.armed
    assert timer.generation is None


@pytest.mark.asyncio
async def test_cancel_prevents_firing():
    fired = []
    timer = PhaseTimer("test", fired.append)
    timer.arm(0.01, 1)
    timer.cancel()

    await asyncio.sleep(0.05)

    assert fired == []
    assert not timer.armed


@pytest.mark.asyncio
async def test_rearm_replaces_pending_firing():
    fired = []
    timer = PhaseTimer("test", fired.append)
    timer.arm(0.01, 1)
    timer.arm(0.02, 2)

    await asyncio.sleep(0.06)

    assert fired == [2]


def test_cancel_before_arm_is_safe():
    timer = PhaseTimer("test", lambda generation: None)
    timer.cancel()
    timer.cancel()
    assert not timer.armed
