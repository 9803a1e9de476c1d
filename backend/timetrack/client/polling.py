import asyncio
from typing import Any, Awaitable, Callable, Optional

from timetrack.errors import AuthError, TimeTrackError, TransientIOError
from timetrack.utils.logger import logger


class PollingFallback:
    """Pull the current entry while push is unavailable.

    The interval starts at ``min_interval`` and grows by ``factor`` after
    each successful pull (``error_factor`` after a transient failure), never
    beyond ``max_interval``. :meth:`stop` resets it. An auth failure ends
    polling; retrying with the same credential cannot succeed.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], Awaitable[None]],
        on_error: Optional[Callable[[TimeTrackError], Awaitable[None]]] = None,
        min_interval: float = 5.0,
        max_interval: float = 60.0,
        factor: float = 1.3,
        error_factor: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._fetch = fetch
        self._on_result = on_result
        self._on_error = on_error
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.factor = factor
        self.error_factor = error_factor
        self._sleep = sleep

        self.interval = min_interval
        self.polls = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_polling:
            return
        self.interval = self.min_interval
        logger.info("Polling fallback started (every %.1fs)", self.interval)
        self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        task, self._task = self._task, None
        self.interval = self.min_interval
        if task is not None and not task.done():
            task.cancel()
            logger.info("Polling fallback stopped after %d polls", self.polls)

    async def close(self) -> None:
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _grow(self, factor: float) -> None:
        self.interval = min(self.interval * factor, self.max_interval)

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.interval)
            self.polls += 1
            try:
                result = await self._fetch()
            except AuthError as e:
                logger.warning("Polling stopped: %s", e.reason)
                if self._on_error:
                    await self._on_error(e)
                self._task = None
                return
            except TransientIOError as e:
                logger.info("Poll failed (%s); backing off", e.message)
                self._grow(self.error_factor)
                continue
            except TimeTrackError as e:
                logger.warning("Poll rejected: %s", e.message)
                if self._on_error:
                    await self._on_error(e)
                self._grow(self.factor)
                continue

            await self._on_result(result)
            self._grow(self.factor)
