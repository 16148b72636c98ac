import asyncio

import pytest

from live_assist.orchestrator import TimerSet
from live_assist.orchestrator.cooldown import CooldownManager


@pytest.mark.asyncio
async def test_rearming_restarts_countdown():
    fired = []
    timers = TimerSet()
    hold = timers.add("hold", 0.05, lambda: fired.append("hold"))

    hold.arm()
    await asyncio.sleep(0.03)
    hold.arm()
    await asyncio.sleep(0.03)
    assert fired == []

    await asyncio.sleep(0.05)
    assert fired == ["hold"]
    assert not hold.armed


@pytest.mark.asyncio
async def test_disarming_one_action_leaves_others_armed():
    fired = []
    timers = TimerSet()
    timers.add("silence", 0.02, lambda: fired.append("silence")).arm()
    timers.add("fallback", 0.02, lambda: fired.append("fallback")).arm()

    timers.get("silence").disarm()
    assert timers.pending() == ["fallback"]

    await asyncio.sleep(0.05)
    assert fired == ["fallback"]
    assert timers.pending() == []


@pytest.mark.asyncio
async def test_cancel_all_and_failing_callback():
    timers = TimerSet()

    def _boom():
        raise RuntimeError("boom")

    timers.add("boom", 0.01, _boom).arm()
    timers.add("later", 10.0, lambda: None).arm()
    await asyncio.sleep(0.03)

    assert timers.pending() == ["later"]
    timers.cancel_all()
    assert timers.pending() == []


def test_cooldown_allows_first_then_waits_interval():
    cooldowns = CooldownManager()
    assert cooldowns.can_fire("end_turn", now=10.0, cooldown=3.0)
    assert not cooldowns.can_fire("end_turn", now=12.0, cooldown=3.0)
    assert cooldowns.can_fire("end_turn", now=13.0, cooldown=3.0)
    assert cooldowns.can_fire("other", now=13.0, cooldown=3.0)

    cooldowns.reset()
    assert cooldowns.can_fire("end_turn", now=13.5, cooldown=3.0)
