"""
Recurring background task runner.

Runs a cycle function immediately on start and then once per interval until
shutdown is requested. Used for the delivery dispatcher (short period) and
the behavioral trigger scanner (long period). Each task is owned by the
application lifespan and can be stopped independently.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")

CycleFunction = Callable[[], Union[Any, Awaitable[Any]]]


class RecurringTask:
    """
    Self-rescheduling task driven by an asyncio event loop.

    Attributes:
        name: Task name used in log records
        interval_seconds: Seconds to wait between the end of one cycle
            and the start of the next
        run_at_startup: Run a cycle immediately instead of waiting one interval
    """

    def __init__(
        self,
        name: str,
        cycle: CycleFunction,
        interval_seconds: float,
        run_at_startup: bool = True,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.run_at_startup = run_at_startup
        self._cycle = cycle
        self._shutdown_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cycle_count = 0
        self._consecutive_failures = 0

    async def run_once(self) -> Any:
        """Run a single cycle and return its result."""
        result = self._cycle()
        if inspect.isawaitable(result):
            result = await result
        self._cycle_count += 1
        return result

    async def run(self) -> None:
        """Run cycles until shutdown is requested or the task is cancelled."""
        logger.info(
            f"Starting recurring task {self.name} (interval: {self.interval_seconds}s)"
        )

        try:
            if not self.run_at_startup:
                await self._wait_for_next_cycle()

            while not self._shutdown_event.is_set():
                try:
                    await self.run_once()
                    self._consecutive_failures = 0
                except Exception as e:
                    self._consecutive_failures += 1
                    logger.error(
                        f"Recurring task {self.name} cycle failed: {e}",
                        exc_info=True,
                        extra={
                            "task": self.name,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )

                await self._wait_for_next_cycle()

        except asyncio.CancelledError:
            logger.info(f"Recurring task {self.name} cancelled")
            raise

        logger.info(f"Recurring task {self.name} stopped")

    def start(self) -> asyncio.Task:
        """Schedule the task on the running event loop."""
        if self._task is None or self._task.done():
            self._shutdown_event.clear()
            self._task = asyncio.create_task(self.run(), name=self.name)
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """Request shutdown and wait for the current cycle to finish."""
        self.request_shutdown()
        if self._task is None:
            return

        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Recurring task {self.name} did not stop in time, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def _wait_for_next_cycle(self) -> None:
        """Wait for the next interval or shutdown signal."""
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(),
                timeout=self.interval_seconds,
            )
        except asyncio.TimeoutError:
            # Normal timeout, run the next cycle
            pass

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the task."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_count(self) -> int:
        return self._cycle_count
