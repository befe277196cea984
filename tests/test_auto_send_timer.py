"""
Tests for the per-message auto-send timer

Most tests use a long tick interval and drive ticks by hand so that the
countdown is deterministic; a few run on the real event loop with a
compressed interval.
"""

import asyncio
from unittest.mock import Mock

import pytest

from staging_service.services.auto_send_timer import AutoSendTimer, TimerState

SLOW = 60.0  # no scheduled tick fires during a test


def make_timer(countdown=3, tick_interval=SLOW, **kwargs):
    on_expire = kwargs.pop("on_expire", Mock())
    on_tick = kwargs.pop("on_tick", Mock())
    timer = AutoSendTimer(
        "staged_test",
        countdown,
        on_expire=on_expire,
        on_tick=on_tick,
        tick_interval=tick_interval,
        **kwargs,
    )
    return timer, on_expire, on_tick


class TestTimerStateMachine:

    @pytest.mark.asyncio
    async def test_auto_start_is_active(self):
        timer, _, _ = make_timer()
        assert timer.state == TimerState.ACTIVE
        assert timer.countdown == 3
        timer.cancel()

    @pytest.mark.asyncio
    async def test_without_auto_start_is_idle(self):
        timer, _, _ = make_timer(auto_start=False)
        assert timer.state == TimerState.IDLE

    @pytest.mark.asyncio
    async def test_tick_decrements_and_reports(self):
        timer, on_expire, on_tick = make_timer()

        timer.tick()

        assert timer.countdown == 2
        on_tick.assert_called_once_with(2)
        on_expire.assert_not_called()
        timer.cancel()

    @pytest.mark.asyncio
    async def test_expires_exactly_once_at_zero(self):
        timer, on_expire, on_tick = make_timer()

        for _ in range(5):
            timer.tick()

        assert timer.countdown == 0
        assert timer.state == TimerState.EXPIRED
        on_expire.assert_called_once()
        assert [c.args[0] for c in on_tick.call_args_list] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_pause_freezes_countdown(self):
        timer, _, on_tick = make_timer()
        timer.tick()
        timer.pause()

        timer.tick()
        timer.tick()

        assert timer.state == TimerState.PAUSED
        assert timer.countdown == 2
        assert on_tick.call_count == 1

    @pytest.mark.asyncio
    async def test_resume_continues_from_frozen_value(self):
        timer, _, _ = make_timer()
        timer.tick()
        timer.pause()
        timer.resume()
        timer.tick()

        assert timer.state == TimerState.ACTIVE
        assert timer.countdown == 1
        timer.cancel()

    @pytest.mark.asyncio
    async def test_cancel_never_fires_expire(self):
        timer, on_expire, _ = make_timer()

        timer.cancel()
        timer.tick()
        timer.send_now()

        assert timer.countdown == 0
        assert timer.state == TimerState.EXPIRED
        on_expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_now_fires_expire_synchronously(self):
        timer, on_expire, _ = make_timer()

        timer.send_now()

        on_expire.assert_called_once()
        assert timer.countdown == 0
        assert timer.state == TimerState.EXPIRED

    @pytest.mark.asyncio
    async def test_send_now_from_paused(self):
        timer, on_expire, _ = make_timer()
        timer.pause()

        timer.send_now()

        on_expire.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_now_after_expiry_is_ignored(self):
        timer, on_expire, _ = make_timer(countdown=1)
        timer.tick()

        timer.send_now()

        on_expire.assert_called_once()

    @pytest.mark.asyncio
    async def test_reset_returns_to_idle(self):
        timer, _, _ = make_timer()
        timer.tick()

        timer.reset()

        assert timer.state == TimerState.IDLE
        assert timer.countdown == 3

    @pytest.mark.asyncio
    async def test_reset_after_expiry_is_ignored(self):
        timer, on_expire, _ = make_timer(countdown=1)
        timer.tick()

        timer.reset()

        assert timer.state == TimerState.EXPIRED
        assert timer.countdown == 0

    @pytest.mark.asyncio
    async def test_starting_countdown_is_clamped(self):
        timer, _, _ = make_timer(countdown=10, auto_start=False)
        assert AutoSendTimer("x", 10, Mock(), countdown=25, auto_start=False).countdown == 10
        assert AutoSendTimer("x", 10, Mock(), countdown=-4, auto_start=False).countdown == 0
        assert timer.countdown == 10


class TestTimerScheduling:
    """Ticks driven by the event loop"""

    @pytest.mark.asyncio
    async def test_runs_down_on_event_loop(self):
        expired = asyncio.Event()
        timer, _, on_tick = make_timer(countdown=3, tick_interval=0.01, on_expire=expired.set)

        await asyncio.wait_for(expired.wait(), timeout=2.0)

        assert timer.countdown == 0
        assert on_tick.call_count == 3

    @pytest.mark.asyncio
    async def test_no_zombie_tick_after_cancel(self):
        timer, on_expire, on_tick = make_timer(countdown=3, tick_interval=0.01)

        timer.cancel()
        await asyncio.sleep(0.08)

        on_tick.assert_not_called()
        on_expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_scheduled_tick_is_ignored(self):
        timer, _, on_tick = make_timer(countdown=3, tick_interval=0.01)
        stale_generation = timer._generation

        timer.pause()
        timer.resume()
        timer._on_scheduled_tick(stale_generation)

        on_tick.assert_not_called()
        timer.cancel()

    @pytest.mark.asyncio
    async def test_pause_stops_loop_ticks(self):
        timer, _, on_tick = make_timer(countdown=50, tick_interval=0.01)
        timer.pause()

        await asyncio.sleep(0.08)

        assert timer.countdown == 50
        on_tick.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_one_tick_outstanding(self):
        timer, _, _ = make_timer(countdown=50, tick_interval=SLOW)
        scheduled = timer._handle

        # A manual tick replaces the scheduled one instead of adding to it
        timer.tick()

        assert scheduled.cancelled()
        assert timer._handle is not scheduled
        assert not timer._handle.cancelled()
        timer.cancel()
        assert timer._handle is None
