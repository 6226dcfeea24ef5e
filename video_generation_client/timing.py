import asyncio
from typing import Any, Callable, Optional

from loguru import logger


class TimingTracker:
    """Publishes elapsed whole seconds once per tick while a job is running.

    The tracker is purely observational: stopping or starting it never changes
    the state of the job it measures.
    """

    def __init__(
        self,
        tick_interval: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
        on_elapsed: Optional[Callable[[int], Any]] = None,
        on_total: Optional[Callable[[Optional[int]], Any]] = None,
    ):
        self.tick_interval = tick_interval
        self.clock = clock
        self.on_elapsed = on_elapsed
        self.on_total = on_total
        self.logger = logger

        self.started_at: Optional[float] = None
        self.elapsed_seconds = 0
        self.total_seconds: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _now(self) -> float:
        if self.clock is None:
            self.clock = asyncio.get_running_loop().time
        return self.clock()

    def _duration(self) -> int:
        return int(self._now() - self.started_at)

    def _publish_elapsed(self, seconds: int) -> None:
        self.elapsed_seconds = seconds
        if self.on_elapsed is not None:
            self.on_elapsed(seconds)

    def _publish_total(self, seconds: Optional[int]) -> None:
        self.total_seconds = seconds
        if self.on_total is not None:
            self.on_total(seconds)

    def start(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self.started_at = self._now()
        self._running = True
        self._publish_elapsed(0)
        self._publish_total(None)
        self._task = asyncio.create_task(self._tick())

    async def _tick(self) -> None:
        while self._running:
            self._publish_elapsed(self._duration())
            await asyncio.sleep(self.tick_interval)

    def stop(self, success: bool) -> int:
        """Cancels the tick and freezes elapsed time; the total is published only on success"""
        if not self._running:
            return self.elapsed_seconds
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

        duration = self._duration()
        self._publish_elapsed(duration)
        if success:
            self._publish_total(duration)
        self.logger.debug(f"Timer stopped after {duration}s (success={success})")
        return duration
