"""
Periodic background tasks.

A :class:`PeriodicTask` calls an async function, sleeps for its interval
and repeats until stopped. A tick that raises is logged and the loop goes
on; cancellation stops the loop cleanly. :class:`TaskRunner` owns a set of
periodic tasks and starts and stops them together.

Example:
    >>> runner = TaskRunner()
    >>> runner.add(PeriodicTask("outbox.publish", 5.0, publisher.publish_pending_events))
    >>> async with runner:
    ...     await shutdown_event.wait()
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

logger = logging.getLogger(__name__)


@dataclass
class TaskStats:
    runs: int = 0
    failures: int = 0
    last_error: str | None = None


class PeriodicTask:
    """
    One named function called every ``interval`` seconds.

    The interval is measured from the end of one tick to the start of the
    next, so ticks never overlap.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[Any]],
        *,
        initial_delay: float = 0.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.initial_delay = initial_delay
        self._func = func
        self._task: asyncio.Task[None] | None = None
        self.stats = TaskStats()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """Run a single tick; failures are logged and counted, never raised."""
        self.stats.runs += 1
        try:
            await self._func()
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = str(e)
            logger.error(
                "Periodic task %s failed: %s",
                self.name,
                e,
                exc_info=True,
                extra={"task": self.name, "failures": self.stats.failures},
            )

    async def _loop(self) -> None:
        if self.initial_delay:
            await asyncio.sleep(self.initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.is_running:
            logger.warning("Periodic task %s already running", self.name)
            return
        self._task = asyncio.create_task(self._loop(), name=f"payrelay:{self.name}")
        logger.info(
            "Started periodic task %s every %.1fs",
            self.name,
            self.interval,
            extra={"task": self.name, "interval": self.interval},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped periodic task %s", self.name, extra={"task": self.name})


class TaskRunner:
    """Starts and stops a group of :class:`PeriodicTask` objects."""

    def __init__(self, tasks: list[PeriodicTask] | None = None) -> None:
        self._tasks: dict[str, PeriodicTask] = {}
        for task in tasks or []:
            self.add(task)

    def add(self, task: PeriodicTask) -> None:
        if task.name in self._tasks:
            raise ValueError(f"duplicate task name {task.name!r}")
        self._tasks[task.name] = task

    def get(self, name: str) -> PeriodicTask:
        return self._tasks[name]

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks.values())

    @property
    def is_running(self) -> bool:
        return any(task.is_running for task in self._tasks.values())

    def start(self) -> None:
        for task in self._tasks.values():
            task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self._tasks.values()))

    async def run_all_once(self) -> None:
        """Run every task's tick once, in registration order."""
        for task in self._tasks.values():
            await task.run_once()

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


__all__ = ["PeriodicTask", "TaskRunner", "TaskStats"]
