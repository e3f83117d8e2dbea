from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Protocol

from zeroconf import ServiceBrowser, ServiceListener, Zeroconf

from .scheduler import Scheduler

logger = logging.getLogger(__name__)

MDNS_SERVICE_TYPE = "_irkit._tcp.local."


class DiscoveryBackend(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class ZeroconfBrowser:
    """Owns the multicast socket and the browser for one service type."""

    def __init__(
        self,
        listener: ServiceListener,
        service_type: str = MDNS_SERVICE_TYPE,
        zeroconf_factory: Callable[[], Zeroconf] = Zeroconf,
    ) -> None:
        self._listener = listener
        self._service_type = service_type
        self._zeroconf_factory = zeroconf_factory
        self._zeroconf: Zeroconf | None = None
        self._browser: ServiceBrowser | None = None

    @property
    def running(self) -> bool:
        return self._zeroconf is not None

    def start(self) -> None:
        if self._zeroconf is not None:
            return
        zeroconf = self._zeroconf_factory()
        self._browser = ServiceBrowser(zeroconf, self._service_type, self._listener)
        self._zeroconf = zeroconf
        logger.info("Browsing for %s", self._service_type)

    def stop(self) -> None:
        if self._zeroconf is None:
            return
        if self._browser is not None:
            self._browser.cancel()
        self._zeroconf.close()
        self._zeroconf = None
        self._browser = None
        logger.info("Stopped browsing for %s", self._service_type)


class DiscoveryQueue:
    """Serializes start/stop requests for a discovery backend.

    Requests coalesce: a repeated request is dropped, and a request that
    reverses a pending one cancels it when another is still queued ahead.
    Only one backend operation runs at a time.
    """

    def __init__(self, backend: DiscoveryBackend, scheduler: Scheduler) -> None:
        self._backend = backend
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._queue: deque[bool] = deque()
        self._busy = False

    @property
    def pending(self) -> list[bool]:
        with self._lock:
            return list(self._queue)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def start(self) -> None:
        self.request(True)

    def stop(self) -> None:
        self.request(False)

    def request(self, start: bool) -> None:
        with self._lock:
            original_size = len(self._queue)
            while self._queue:
                if self._queue[-1] == start:
                    return
                if len(self._queue) >= 2:
                    self._queue.pop()
                    continue
                break
            self._queue.append(start)
            idle = original_size == 0 and not self._busy
        if idle:
            self._next()

    def _next(self) -> None:
        with self._lock:
            if self._busy or not self._queue:
                return
            start = self._queue.popleft()
            self._busy = True
        self._scheduler.submit(lambda: self._process(start))

    def _process(self, start: bool) -> None:
        try:
            if start:
                self._backend.start()
            else:
                self._backend.stop()
        except (OSError, RuntimeError) as exc:
            action = "start" if start else "stop"
            logger.error("Failed to %s discovery: %s", action, exc)
        finally:
            with self._lock:
                self._busy = False
            self._next()
