from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from irpro.core.watcher import RadioEvent
from irpro.models import NetworkProfile, SecurityMode

logger = logging.getLogger(__name__)

RadioListener = Callable[[RadioEvent], None]


class WifiRadio(Protocol):
    """The host's Wi-Fi interface, as provisioning needs it.

    ``connect`` only starts association; the outcome arrives as events to
    registered listeners.
    """

    def is_enabled(self) -> bool: ...

    def set_enabled(self, enabled: bool) -> None: ...

    def current_network(self) -> NetworkProfile | None: ...

    def scan(self) -> list[str]: ...

    def add_network(
        self, ssid: str, password: str, security: SecurityMode
    ) -> NetworkProfile: ...

    def connect(self, profile: NetworkProfile) -> None: ...

    def disconnect(self) -> None: ...

    def remove_network(self, profile: NetworkProfile) -> None: ...

    def add_listener(self, listener: RadioListener) -> None: ...

    def remove_listener(self, listener: RadioListener) -> None: ...


class ListenerSet:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[RadioListener] = []

    def add(self, listener: RadioListener) -> bool:
        """Register ``listener``; return True if it is the first one."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
            return len(self._listeners) == 1

    def remove(self, listener: RadioListener) -> bool:
        """Unregister ``listener``; return True if none remain."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
            return not self._listeners

    def emit(self, event: RadioEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("Radio event: %s", event)
        for listener in listeners:
            listener(event)
