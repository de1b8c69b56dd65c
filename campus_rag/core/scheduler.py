"""
Scheduled-task queue for delayed one-shot jobs (verification) and periodic
jobs (stale eviction), consumed by a background asyncio worker.
"""

import asyncio
import heapq
import inspect
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..util.logging import logger


@dataclass(order=True)
class ScheduledTask:
    """A one-shot task waiting in the queue."""
    due: float
    seq: int
    name: str = field(compare=False)
    func: Callable = field(compare=False)
    args: Tuple[Any, ...] = field(default=(), compare=False)


@dataclass
class PeriodicTask:
    """A recurring task."""
    name: str
    interval: int
    func: Callable
    registered_at: float
    last_run: Optional[float] = None


async def _call(func: Callable, *args) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class TaskScheduler:
    """
    Cooperative scheduler on the asyncio event loop.

    Clock values are time.monotonic() seconds. A failing task is logged and
    never stops the worker.
    """

    def __init__(self, poll_interval: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.poll_interval = poll_interval
        self.clock = clock
        self._queue: List[ScheduledTask] = []
        self._periodic: Dict[str, PeriodicTask] = {}
        self._seq = itertools.count()
        self._worker: Optional[asyncio.Task] = None
        self.running = False
        self.completed = 0
        self.failed = 0

    def schedule(self, name: str, delay_sec: float, func: Callable, *args) -> ScheduledTask:
        """
        Enqueue a one-shot task to run after delay_sec.

        Args:
            name: Task label used in logs
            delay_sec: Seconds to wait, >= 0
            func: Sync or async callable
            *args: Positional arguments for func
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if delay_sec < 0:
            raise ValueError(f"Delay must be >= 0 seconds: {delay_sec}")

        task = ScheduledTask(due=self.clock() + delay_sec, seq=next(self._seq), name=name, func=func, args=args)
        heapq.heappush(self._queue, task)
        logger.log_operation("scheduler.enqueue", "queued", {"task": name, "delay_sec": delay_sec})
        return task

    def register_periodic(self, name: str, interval_sec: int, func: Callable):
        """Register a task to run every interval_sec; the first run is one interval from now."""
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        self._periodic[name] = PeriodicTask(name=name, interval=interval_sec, func=func, registered_at=self.clock())
        logger.log_operation("scheduler.register", "success", {"task": name, "interval_sec": interval_sec})

    def unregister_periodic(self, name: str):
        self._periodic.pop(name, None)

    def pending_count(self) -> int:
        return len(self._queue)

    def should_run_periodic(self, task: PeriodicTask, now: float) -> bool:
        """Check if a periodic task is due."""
        reference = task.last_run if task.last_run is not None else task.registered_at
        return now - reference >= task.interval

    async def _run(self, name: str, func: Callable, args: Tuple[Any, ...]) -> bool:
        start_time = time.monotonic()
        try:
            await _call(func, *args)
        except Exception as e:
            # Error isolation: log and keep going
            self.failed += 1
            logger.log_scheduler_task(name, start_time, time.monotonic(), "failed", {"error": str(e)[:200]})
            return False

        self.completed += 1
        logger.log_scheduler_task(name, start_time, time.monotonic())
        return True

    async def run_pending(self, now: Optional[float] = None) -> int:
        """Run every task due at now (default: the clock). Returns the number executed."""
        now = now if now is not None else self.clock()
        executed = 0

        while self._queue and self._queue[0].due <= now:
            task = heapq.heappop(self._queue)
            await self._run(task.name, task.func, task.args)
            executed += 1

        for task in list(self._periodic.values()):
            if self.should_run_periodic(task, now):
                task.last_run = now
                await self._run(task.name, task.func, ())
                executed += 1

        return executed

    async def _loop(self):
        while self.running:
            await self.run_pending()
            await asyncio.sleep(self.poll_interval)

    def start(self):
        """Start the background worker on the running event loop."""
        if self.running:
            raise RuntimeError("Scheduler already running")

        loop = asyncio.get_running_loop()
        self.running = True
        self._worker = loop.create_task(self._loop())
        logger.log_operation("scheduler.start", "running", {"periodic": list(self._periodic)})

    async def stop(self):
        """Stop the background worker; queued tasks stay queued."""
        if not self.running:
            return

        self.running = False
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.log_operation("scheduler.stop", "stopped", {"pending": len(self._queue)})

    def get_status(self) -> Dict[str, Any]:
        """Return current scheduler status for monitoring."""
        return {
            "status": "running" if self.running else "stopped",
            "pending": len(self._queue),
            "next_due": self._queue[0].due if self._queue else None,
            "completed": self.completed,
            "failed": self.failed,
            "periodic": {
                name: {
                    "interval_sec": task.interval,
                    "last_run": task.last_run,
                    "next_run": (task.last_run if task.last_run is not None else task.registered_at) + task.interval
                }
                for name, task in self._periodic.items()
            }
        }
