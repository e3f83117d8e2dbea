from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .bounded import CompletionLatch
from .credentials import raw_ssid
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# Failures this long after start are real; earlier ones may be a stale
# supplicant state left over from the previous network.
AUTH_FAILURE_GRACE = 3.0
AUTH_ERROR = "authentication error"


@dataclass(frozen=True)
class AssociationEvent:
    ssid: str | None
    connected: bool
    ip_address: int | str = 0


@dataclass(frozen=True)
class AuthenticationFailedEvent:
    ssid: str | None = None


RadioEvent = AssociationEvent | AuthenticationFailedEvent


class MatchMode(Enum):
    EXACT = "exact"
    PREFIX = "prefix"


class WatchState(Enum):
    WAITING = "waiting"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"
    TIMED_OUT = "timed_out"


class ConnectivityWatcher:
    """Wait for the radio to associate with a target network.

    Exactly one of ``on_connected``, ``on_error`` or ``on_timeout`` fires.
    """

    def __init__(
        self,
        target_ssid: str,
        scheduler: Scheduler,
        on_connected: Callable[[str], None],
        on_error: Callable[[str], None],
        on_timeout: Callable[[], None] | None = None,
        match: MatchMode = MatchMode.EXACT,
        timeout: float = 0.0,
    ) -> None:
        self.target_ssid = raw_ssid(target_ssid)
        self.match = match
        self.timeout = timeout
        self._scheduler = scheduler
        self._on_connected = on_connected
        self._on_error = on_error
        self._on_timeout = on_timeout
        self._latch = CompletionLatch()
        self._lock = threading.Lock()
        self._timer: TimerHandle | None = None
        self._started_at = 0.0
        self._last_ssid: str | None = None
        self._auth_failures = 0
        self.state = WatchState.WAITING

    def matches(self, ssid: str | None) -> bool:
        if ssid is None:
            return False
        ssid = raw_ssid(ssid)
        if self.match is MatchMode.PREFIX:
            return ssid.startswith(self.target_ssid)
        return ssid == self.target_ssid

    def start(self) -> ConnectivityWatcher:
        self._started_at = self._scheduler.monotonic()
        if self.timeout > 0:
            self._timer = self._scheduler.call_later(self.timeout, self._expire)
        return self

    def cancel(self) -> None:
        if self._latch.finish():
            self._cancel_timer()

    @property
    def finished(self) -> bool:
        return self._latch.finished

    def handle_event(self, event: RadioEvent) -> None:
        if self._latch.finished:
            return
        if isinstance(event, AssociationEvent):
            self._handle_association(event)
        elif isinstance(event, AuthenticationFailedEvent):
            self._handle_auth_failure(event)

    def _handle_association(self, event: AssociationEvent) -> None:
        with self._lock:
            self._last_ssid = event.ssid
        if not event.connected or not event.ip_address:
            return
        if self.matches(event.ssid):
            self._finish(WatchState.CONNECTED, raw_ssid(event.ssid or ""))

    def _handle_auth_failure(self, event: AuthenticationFailedEvent) -> None:
        with self._lock:
            ssid = event.ssid or self._last_ssid
            if not self.matches(ssid):
                return
            self._auth_failures += 1
            failures = self._auth_failures
        elapsed = self._scheduler.monotonic() - self._started_at
        logger.debug(
            "Authentication failure #%d for %s after %.1fs",
            failures,
            self.target_ssid,
            elapsed,
        )
        if failures >= 2 or elapsed >= AUTH_FAILURE_GRACE:
            self._finish(WatchState.AUTH_FAILED, AUTH_ERROR)

    def _expire(self) -> None:
        if self._latch.finish():
            self.state = WatchState.TIMED_OUT
            logger.debug("Timed out waiting for %s", self.target_ssid)
            if self._on_timeout is not None:
                self._on_timeout()
            else:
                self._on_error("timeout")

    def _finish(self, state: WatchState, detail: str) -> None:
        if not self._latch.finish():
            return
        self._cancel_timer()
        self.state = state
        if state is WatchState.CONNECTED:
            logger.debug("Connected to %s", detail)
            self._on_connected(detail)
        else:
            self._on_error(detail)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
