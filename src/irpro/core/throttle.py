from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from irpro.models import Peripheral

from .scheduler import Scheduler

logger = logging.getLogger(__name__)

REQUEST_SPACING = 1.0


def throttle_key(peripheral: Peripheral) -> str:
    """Requests to one device share a key, before and after it has a device id."""
    return peripheral.device_id or peripheral.hostname.lower()


class RequestThrottler:
    """Keeps requests to the same device at least ``spacing`` seconds apart.

    Spacing counts from the later of a request's reserved start and its end,
    so a slow request still leaves the device a full gap afterwards.
    """

    def __init__(self, scheduler: Scheduler, spacing: float = REQUEST_SPACING) -> None:
        self._scheduler = scheduler
        self._spacing = spacing
        self._lock = threading.Lock()
        self._next_free: dict[str, float] = {}

    @property
    def spacing(self) -> float:
        return self._spacing

    def reserve(self, key: str) -> float:
        """Claim the next slot for ``key``; return how long to wait for it."""
        with self._lock:
            now = self._scheduler.monotonic()
            start = max(now, self._next_free.get(key, now))
            self._next_free[key] = start + self._spacing
        return start - now

    def done(self, key: str) -> None:
        with self._lock:
            now = self._scheduler.monotonic()
            self._next_free[key] = max(
                self._next_free.get(key, now), now + self._spacing
            )

    @contextmanager
    def slot(self, key: str) -> Iterator[None]:
        """Blocking form of ``reserve``/``done`` for worker threads."""
        wait = self.reserve(key)
        if wait > 0:
            logger.debug("Waiting %.2fs before the next request to %s", wait, key)
            self._scheduler.sleep(wait)
        try:
            yield
        finally:
            self.done(key)
