from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from signstream.core.logger import get_logger

log = get_logger(__name__)


PeriodicCallable = Callable[[], Awaitable[object]]


class PeriodicScheduler:
    """Very small periodic task scheduler.

    schedule(coro_func, interval) will run the coroutine indefinitely at
    approximately the given interval until stop() is called. A failing run is
    logged and the next one still happens.
    """

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def schedule(self, func: PeriodicCallable, interval_sec: float, name: Optional[str] = None) -> None:
        label = name or getattr(func, "__name__", "task")

        async def _loop() -> None:
            while self._running:
                # first run happens one interval after scheduling
                await asyncio.sleep(interval_sec)
                start = time.time()
                try:
                    await func()
                except Exception:
                    log.exception("Periodic task %s failed", label)
                elapsed = time.time() - start
                if elapsed > interval_sec:
                    log.warning("Periodic task %s took %.1fs (interval %.1fs)", label, elapsed, interval_sec)

        task = asyncio.create_task(_loop(), name=f"periodic-{label}")
        self._tasks.append(task)


_scheduler: Optional[PeriodicScheduler] = None


def get_scheduler() -> PeriodicScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = PeriodicScheduler()
    return _scheduler
