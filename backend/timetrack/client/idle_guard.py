import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from timetrack.errors import TimeTrackError
from timetrack.utils.logger import logger


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IdleGuard:
    """Stop a running timer once the user has been inactive long enough.

    Only foregrounded time counts; the agent handles time spent in the
    background when the app comes back. At most one stop is issued per idle
    episode, and the next qualifying activity re-arms the guard.
    """

    def __init__(
        self,
        on_idle: Callable[[float], Awaitable[None]],
        timeout_seconds: float = 600,
        check_interval: float = 5.0,
        clock: Callable[[], datetime] = _now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._on_idle = on_idle
        self.timeout_seconds = timeout_seconds
        self.check_interval = check_interval
        self._clock = clock
        self._sleep = sleep

        self.last_activity_at = clock()
        self.fired = False
        self.foreground = True
        self.timer_running = False
        self._task: Optional[asyncio.Task] = None

    def record_activity(self, at: Optional[datetime] = None) -> None:
        self.last_activity_at = at or self._clock()
        self.fired = False

    def set_foreground(self, foreground: bool) -> None:
        if foreground and not self.foreground:
            self.record_activity()
        self.foreground = foreground

    def set_timer_running(self, running: bool) -> None:
        if running and not self.timer_running:
            self.record_activity()
        self.timer_running = running

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or self._clock()) - self.last_activity_at).total_seconds()

    async def evaluate(self, now: Optional[datetime] = None) -> bool:
        """Run one check. Returns True if a stop was issued."""
        if not self.foreground or not self.timer_running or self.fired:
            return False
        idle = self.idle_seconds(now)
        if idle < self.timeout_seconds:
            return False

        self.fired = True
        logger.info("Idle for %.0fs (threshold %ss); stopping timer", idle, self.timeout_seconds)
        try:
            await self._on_idle(idle)
        except TimeTrackError as e:
            logger.warning("Idle stop failed, not retrying: %s", e.message)
        return True

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.check_interval)
            await self.evaluate()
