from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

logger = logging.getLogger(__name__)

Job = Callable[[], object]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Where timers and background work run.

    Production code uses threads; tests drive a virtual clock.
    """

    def call_later(self, delay: float, fn: Job) -> TimerHandle: ...

    def submit(self, fn: Job) -> None: ...

    def sleep(self, seconds: float) -> None: ...

    def monotonic(self) -> float: ...


def _run_job(fn: Job) -> None:
    try:
        fn()
    except Exception:
        logger.exception("Background job %r failed", fn)


class ThreadScheduler:
    def __init__(self, max_workers: int = 8) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="irpro"
        )

    def call_later(self, delay: float, fn: Job) -> TimerHandle:
        timer = threading.Timer(max(delay, 0.0), _run_job, args=(fn,))
        timer.daemon = True
        timer.start()
        return timer

    def submit(self, fn: Job) -> None:
        self._executor.submit(_run_job, fn)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def monotonic(self) -> float:
        return time.monotonic()

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)


class _ManualTimer:
    def __init__(self, fn: Job) -> None:
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler with a virtual clock.

    Submitted jobs queue until ``run_pending``; timers fire only from
    ``advance``, in due order, draining submitted jobs after each one.
    ``sleep`` moves the clock without firing anything.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._seq = itertools.count()
        self._timers: list[tuple[float, int, _ManualTimer]] = []
        self._jobs: deque[Job] = deque()
        self._lock = threading.RLock()

    def monotonic(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self._now += max(seconds, 0.0)

    def call_later(self, delay: float, fn: Job) -> TimerHandle:
        timer = _ManualTimer(fn)
        with self._lock:
            due = self._now + max(delay, 0.0)
            heapq.heappush(self._timers, (due, next(self._seq), timer))
        return timer

    def submit(self, fn: Job) -> None:
        with self._lock:
            self._jobs.append(fn)

    @property
    def pending_timers(self) -> int:
        with self._lock:
            return sum(1 for _, _, timer in self._timers if not timer.cancelled)

    @property
    def pending_jobs(self) -> int:
        with self._lock:
            return len(self._jobs)

    def run_pending(self) -> int:
        ran = 0
        while True:
            with self._lock:
                if not self._jobs:
                    return ran
                job = self._jobs.popleft()
            job()
            ran += 1

    def advance(self, seconds: float) -> None:
        self.run_pending()
        with self._lock:
            target = self._now + seconds
        while True:
            with self._lock:
                if not self._timers or self._timers[0][0] > target:
                    break
                due, _, timer = heapq.heappop(self._timers)
                self._now = max(self._now, due)
            if not timer.cancelled:
                timer.fn()
            self.run_pending()
        with self._lock:
            self._now = max(self._now, target)
