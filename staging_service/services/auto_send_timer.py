"""
Per-message auto-send countdown timer

Ticks are scheduled on the running asyncio event loop with call_later, so
they never run concurrently with each other or with queue operations.
"""

from enum import Enum
from typing import Callable, Optional
import asyncio
import structlog

logger = structlog.get_logger()


class TimerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"


class AutoSendTimer:
    """
    Countdown driving a single staged message.

    Usage:
        timer = AutoSendTimer("staged_1", 60, on_expire=send, on_tick=show)
        timer.pause()
        timer.resume()
        timer.send_now()   # fires on_expire synchronously
    """

    def __init__(
        self,
        message_id: str,
        initial_countdown: int,
        on_expire: Callable[[], None],
        on_tick: Optional[Callable[[int], None]] = None,
        tick_interval: float = 1.0,
        auto_start: bool = True,
        countdown: Optional[int] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.message_id = message_id
        self.initial_countdown = initial_countdown
        self.tick_interval = tick_interval
        self.countdown = initial_countdown if countdown is None else max(0, min(countdown, initial_countdown))
        self.state = TimerState.IDLE
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        # Bumped whenever ticking stops; stale scheduled ticks see a mismatch
        self._generation = 0

        if auto_start:
            self.start()

    @property
    def is_running(self) -> bool:
        return self.state == TimerState.ACTIVE

    def start(self) -> None:
        if self.state != TimerState.IDLE:
            return
        self.state = TimerState.ACTIVE
        self._schedule()

    def pause(self) -> None:
        if self.state != TimerState.ACTIVE:
            return
        self._stop()
        self.state = TimerState.PAUSED

    def resume(self) -> None:
        if self.state != TimerState.PAUSED:
            return
        self.state = TimerState.ACTIVE
        self._schedule()

    def reset(self) -> None:
        """Back to idle with the initial countdown. Expired timers stay expired."""
        if self.state == TimerState.EXPIRED:
            return
        self._stop()
        self.countdown = self.initial_countdown
        self.state = TimerState.IDLE

    def cancel(self) -> None:
        """Stop without firing on_expire"""
        self._stop()
        self.countdown = 0
        self.state = TimerState.EXPIRED

    def send_now(self) -> None:
        """Force expiry and fire on_expire synchronously"""
        if self.state == TimerState.EXPIRED:
            return
        self._stop()
        self.countdown = 0
        self._expire()

    def tick(self) -> None:
        """Advance the countdown by one step"""
        if self.state != TimerState.ACTIVE:
            return

        # At most one scheduled tick outstanding
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        self.countdown = max(0, self.countdown - 1)
        if self._on_tick:
            self._on_tick(self.countdown)

        # on_tick may have stopped this timer
        if self.state != TimerState.ACTIVE:
            return

        if self.countdown <= 0:
            self._stop()
            self._expire()
        else:
            self._schedule()

    def _expire(self) -> None:
        self.state = TimerState.EXPIRED
        logger.debug("Timer expired", message_id=self.message_id)
        self._on_expire()

    def _schedule(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        generation = self._generation
        self._handle = loop.call_later(self.tick_interval, self._on_scheduled_tick, generation)

    def _on_scheduled_tick(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        self.tick()

    def _stop(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
