from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from .scheduler import Scheduler, TimerHandle

T = TypeVar("T")


class CompletionLatch:
    """A flag that can be set exactly once, from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._finished = False

    @property
    def finished(self) -> bool:
        with self._lock:
            return self._finished

    def finish(self) -> bool:
        """Set the flag; return True only for the caller that set it."""
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            return True


class BoundedCall(Generic[T]):
    """Run ``fn`` on a worker and race it against a deadline.

    Exactly one of ``on_success``, ``on_failure`` or ``on_timeout`` is called,
    unless the call is cancelled first, in which case none is.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        fn: Callable[[], T],
        timeout: float,
        on_success: Callable[[T], None],
        on_failure: Callable[[Exception], None],
        on_timeout: Callable[[], None],
    ) -> None:
        self._scheduler = scheduler
        self._fn = fn
        self._timeout = timeout
        self._on_success = on_success
        self._on_failure = on_failure
        self._on_timeout = on_timeout
        self._latch = CompletionLatch()
        self._timer: TimerHandle | None = None

    @property
    def finished(self) -> bool:
        return self._latch.finished

    def start(self) -> BoundedCall[T]:
        self._timer = self._scheduler.call_later(self._timeout, self._expire)
        self._scheduler.submit(self._run)
        return self

    def cancel(self) -> bool:
        if not self._latch.finish():
            return False
        self._cancel_timer()
        return True

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def _expire(self) -> None:
        if self._latch.finish():
            self._on_timeout()

    def _run(self) -> None:
        try:
            result = self._fn()
        except Exception as exc:
            if self._latch.finish():
                self._cancel_timer()
                self._on_failure(exc)
            return
        if self._latch.finish():
            self._cancel_timer()
            self._on_success(result)
