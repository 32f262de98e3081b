"""
Bounded-concurrency, rate-windowed dispatch queue for upstream calls.
"""

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TYPE_CHECKING

from shared.errors import SchedulerClosedError, SchedulerTimeoutError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


Action = Callable[[], Awaitable[Any]]


@dataclass
class SchedulerWindow:
    """Dispatch count for the current fixed-length interval."""

    window_start: Optional[float] = None
    count: int = 0

    def roll(self, now: float, interval: float) -> None:
        """Start a new window once the current one has elapsed."""
        if self.window_start is None or now - self.window_start >= interval:
            self.window_start = now
            self.count = 0

    def remaining(self, now: float, interval: float) -> float:
        if self.window_start is None:
            return 0.0
        return max(0.0, self.window_start + interval - now)


@dataclass(eq=False)
class DispatchTask:
    """A submitted action waiting for, or holding, a concurrency slot."""

    id: int
    action: Action
    enqueued_at: float
    future: "asyncio.Future[Any]"
    worker: Optional["asyncio.Task[None]"] = field(default=None, repr=False)


class DispatchScheduler:
    """FIFO admission queue with a fixed slot pool and a per-window cap.

    A queued task starts only while fewer than ``concurrency`` tasks are
    running and fewer than ``interval_cap`` tasks have started in the current
    window of ``interval`` seconds. Windows reset at interval boundaries, so a
    full cap may be spent right before a boundary and again right after it.
    Every running task is cancelled after ``timeout`` seconds and its caller
    receives ``SchedulerTimeoutError``.

    Lifecycle: build once at startup, share it, ``close()`` at shutdown.
    """

    def __init__(
        self,
        concurrency: int = 3,
        interval_cap: int = 10,
        interval: float = 2.0,
        timeout: float = 30.0,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if interval_cap < 1:
            raise ValueError("interval_cap must be >= 1")
        if interval <= 0 or timeout <= 0:
            raise ValueError("interval and timeout must be positive")

        self.concurrency = concurrency
        self.interval_cap = interval_cap
        self.interval = interval
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("museum.scheduler")

        self._queue: Deque[DispatchTask] = deque()
        self._running: Dict[int, DispatchTask] = {}
        self._window = SchedulerWindow()
        self._ids = itertools.count(1)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

        self._dispatched = 0
        self._completed = 0
        self._timeouts = 0

        self.logger.info(
            "Dispatch scheduler initialized",
            concurrency=concurrency,
            interval_cap=interval_cap,
            interval_seconds=interval,
            timeout_seconds=timeout,
        )

    @property
    def size(self) -> int:
        """Tasks waiting for admission."""
        return len(self._queue)

    @property
    def running(self) -> int:
        """Tasks currently holding a slot."""
        return len(self._running)

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, action: Action) -> Any:
        """Queue ``action`` and return its result once it has run."""
        if self._closed:
            raise SchedulerClosedError()

        self._loop = asyncio.get_running_loop()
        task = DispatchTask(
            id=next(self._ids),
            action=action,
            enqueued_at=time.monotonic(),
            future=self._loop.create_future(),
        )
        self._queue.append(task)
        self._drain()

        try:
            return await task.future
        except asyncio.CancelledError:
            self._abandon(task)
            raise

    def _drain(self) -> None:
        """Start as many queued tasks as the slot pool and window allow."""
        while self._queue and len(self._running) < self.concurrency:
            now = time.monotonic()
            self._window.roll(now, self.interval)
            if self._window.count >= self.interval_cap:
                self._arm_timer(self._window.remaining(now, self.interval))
                break

            task = self._queue.popleft()
            if task.future.done():
                # caller gave up while the task was queued
                continue

            self._window.count += 1
            self._dispatched += 1
            self._running[task.id] = task
            task.worker = self._loop.create_task(self._run(task))

        self._update_gauges()

    def _arm_timer(self, delay: float) -> None:
        if self._timer is not None:
            return
        self.logger.debug("Window cap reached, deferring admission", delay_seconds=round(delay, 3), queued=len(self._queue))
        self._timer = self._loop.call_later(delay, self._on_window_elapsed)

    def _on_window_elapsed(self) -> None:
        self._timer = None
        if not self._closed:
            self._drain()

    async def _run(self, task: DispatchTask) -> None:
        waited = time.monotonic() - task.enqueued_at
        self.logger.debug("Task admitted", task_id=task.id, waited_ms=round(waited * 1000, 2))
        try:
            result = await asyncio.wait_for(task.action(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._timeouts += 1
            if self.metrics:
                self.metrics.increment_counter("scheduler_timeouts_total")
            self.logger.warning("Task exceeded scheduler timeout", task_id=task.id, timeout_seconds=self.timeout)
            self._settle(task, error=SchedulerTimeoutError(self.timeout, task.id))
        except asyncio.CancelledError:
            if self._closed:
                self._settle(task, error=SchedulerClosedError("Scheduler closed while task was running"))
            raise
        except Exception as exc:
            self._settle(task, error=exc)
        else:
            self._settle(task, result=result)
        finally:
            self._running.pop(task.id, None)
            self._completed += 1
            if not self._closed:
                self._drain()

    @staticmethod
    def _settle(task: DispatchTask, result: Any = None, error: Optional[BaseException] = None) -> None:
        if task.future.done():
            return
        if error is not None:
            task.future.set_exception(error)
        else:
            task.future.set_result(result)

    def _abandon(self, task: DispatchTask) -> None:
        """Drop a task whose caller stopped waiting for it."""
        try:
            self._queue.remove(task)
        except ValueError:
            pass
        if task.worker is not None and not task.worker.done():
            task.worker.cancel()
        self._update_gauges()

    def _update_gauges(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("scheduler_queue_depth", len(self._queue))
            self.metrics.set_gauge("scheduler_running_tasks", len(self._running))

    async def close(self) -> None:
        """Reject queued tasks, cancel running ones and stop admitting."""
        if self._closed:
            return
        self._closed = True

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        rejected = 0
        while self._queue:
            task = self._queue.popleft()
            if not task.future.done():
                task.future.set_exception(SchedulerClosedError())
                rejected += 1

        workers = [task.worker for task in self._running.values() if task.worker is not None]
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        self._update_gauges()
        self.logger.info("Dispatch scheduler closed", rejected=rejected, cancelled=len(workers))

    def stats(self) -> Dict[str, Any]:
        """Snapshot of queue, slot and window state."""
        return {
            "queued": len(self._queue),
            "running": len(self._running),
            "window_count": self._window.count,
            "dispatched": self._dispatched,
            "completed": self._completed,
            "timeouts": self._timeouts,
            "concurrency": self.concurrency,
            "interval_cap": self.interval_cap,
            "interval_seconds": self.interval,
            "timeout_seconds": self.timeout,
            "closed": self._closed,
        }
