"""
Task Scheduler

Runs tasks on a fixed pool of worker threads. Workers claim tasks through a
shared cursor, so each task is executed at most once and no more than
``parallelism`` tasks are ever in flight.

Cancellation is cooperative: a worker checks the token before claiming the
next task and during the inter-task pause. A task already running is left
to finish on its own. A KeyboardInterrupt in the calling thread cancels the
token and returns at once without waiting for running tasks.
"""

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Event, Lock
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Process-wide stop flag, set once on interrupt."""

    def __init__(self):
        self._event = Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True early if cancelled."""
        return self._event.wait(timeout)


@dataclass
class TaskOutcome(Generic[T]):
    """Result of one executed task: either ``result`` or ``error`` is set."""
    task: T
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SchedulerStats:
    total: int = 0
    executed: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def unclaimed(self) -> int:
        return self.total - self.executed - self.skipped


@dataclass
class _Cursor:
    """Hands out task indexes exactly once."""
    size: int
    position: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def claim(self) -> Optional[int]:
        with self._lock:
            if self.position >= self.size:
                return None
            index = self.position
            self.position += 1
            return index


class TaskScheduler:
    """
    Bounded-concurrency executor for a list of tasks.

    Args:
        parallelism: Max tasks inside ``execute`` at the same time (>= 1)
        cancel_token: Stops workers from claiming further tasks
        delay_range: (min, max) seconds to pause after each executed task
    """

    def __init__(
        self,
        parallelism: int = 1,
        cancel_token: Optional[CancellationToken] = None,
        delay_range: Tuple[float, float] = (0.0, 0.0),
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.parallelism = parallelism
        self.cancel_token = cancel_token or CancellationToken()
        self.delay_range = delay_range

    def run(
        self,
        tasks: Sequence[T],
        should_skip: Callable[[T], bool],
        execute: Callable[[T], Any],
        on_complete: Callable[[T, TaskOutcome], None],
    ) -> SchedulerStats:
        """
        Execute ``tasks`` and report every outcome through ``on_complete``.

        ``on_complete`` runs on worker threads and may be called concurrently;
        callers serialize any shared state they touch there.
        """
        stats = SchedulerStats(total=len(tasks))
        if not tasks:
            return stats

        cursor = _Cursor(size=len(tasks))
        stats_lock = Lock()
        workers = min(self.parallelism, len(tasks))

        def worker():
            while not self.cancel_token.cancelled:
                index = cursor.claim()
                if index is None:
                    return
                task = tasks[index]

                try:
                    skip = should_skip(task)
                except Exception:
                    logger.exception("Skip check failed for task %s; running it", task)
                    skip = False
                if skip:
                    with stats_lock:
                        stats.skipped += 1
                    continue

                try:
                    outcome = TaskOutcome(task=task, result=execute(task))
                except Exception as e:
                    outcome = TaskOutcome(task=task, error=e)

                with stats_lock:
                    stats.executed += 1
                    if outcome.ok:
                        stats.succeeded += 1
                    else:
                        stats.failed += 1

                try:
                    on_complete(task, outcome)
                except Exception:
                    logger.exception("Completion handler failed for task %s", task)

                self._pause()

        logger.debug("Running %d tasks on %d workers", len(tasks), workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="worker")
        try:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            # Workers quit after their current task; do not wait for them
            self.cancel_token.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        stats.cancelled = self.cancel_token.cancelled
        return stats

    def _pause(self):
        low, high = self.delay_range
        if high <= 0:
            return
        self.cancel_token.wait(random.uniform(low, high))
