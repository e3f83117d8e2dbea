from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from irpro.api import DeviceClient, RelayClient
from irpro.errors import IRProError, TransientNetworkError
from irpro.models import Peripheral, Signal
from irpro.storage import PeripheralRegistry

from .bounded import BoundedCall
from .scheduler import Scheduler
from .throttle import RequestThrottler

logger = logging.getLogger(__name__)

LOCAL_SEND_TIMEOUT = 3.0


class SendCallback(Protocol):
    def on_success(self) -> None: ...

    def on_error(self, message: str) -> None: ...


@dataclass
class _DispatchItem:
    signal: Signal
    callback: SendCallback


class SignalDispatchQueue:
    """Sends signals one at a time, in submission order.

    A signal goes straight to the device when its LAN address is known, and
    through the relay otherwise or when the local attempt does not succeed.
    Consecutive sends to one device are spaced by the throttler.
    """

    def __init__(
        self,
        registry: PeripheralRegistry,
        device_client: DeviceClient,
        relay_client: RelayClient,
        scheduler: Scheduler,
        local_timeout: float = LOCAL_SEND_TIMEOUT,
        throttler: RequestThrottler | None = None,
    ) -> None:
        self._registry = registry
        self._device = device_client
        self._relay = relay_client
        self._scheduler = scheduler
        self._local_timeout = local_timeout
        self._throttler = throttler or RequestThrottler(scheduler)
        self._lock = threading.Lock()
        self._queue: deque[_DispatchItem] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def send(self, signal: Signal, callback: SendCallback) -> None:
        with self._lock:
            self._queue.append(_DispatchItem(signal, callback))
            first = len(self._queue) == 1
        if first:
            self._dispatch()

    def _head(self) -> _DispatchItem | None:
        with self._lock:
            return self._queue[0] if self._queue else None

    def _finish_head(self, item: _DispatchItem) -> None:
        if item.signal.device_id:
            self._throttler.done(item.signal.device_id)
        with self._lock:
            self._queue.popleft()
            more = bool(self._queue)
        if more:
            self._dispatch()

    def _complete(self, item: _DispatchItem, error: str | None = None) -> None:
        try:
            if error is None:
                item.callback.on_success()
            else:
                item.callback.on_error(error)
        except Exception:
            logger.exception("Send callback for %s raised", item.signal.id)
        self._finish_head(item)

    def _dispatch(self) -> None:
        item = self._head()
        if item is None:
            return
        signal = item.signal
        if not signal.device_id:
            self._complete(item, f"Signal {signal.name or signal.id} has no device")
            return

        wait = self._throttler.reserve(signal.device_id)
        if wait > 0:
            logger.debug("Holding %s for %.2fs", signal.id, wait)
            self._scheduler.call_later(wait, lambda: self._send(item))
        else:
            self._send(item)

    def _send(self, item: _DispatchItem) -> None:
        signal = item.signal
        assert signal.device_id is not None
        peripheral = self._registry.get_by_device_id(signal.device_id)
        endpoint = peripheral.device_api_endpoint() if peripheral else None
        if peripheral is None or endpoint is None:
            self._scheduler.submit(lambda: self._send_via_relay(item))
            return

        logger.debug("Sending %s to %s locally", signal.id, peripheral.hostname)
        BoundedCall(
            self._scheduler,
            lambda: self._device.post_messages(endpoint, signal.message_payload()),
            self._local_timeout,
            on_success=lambda server: self._local_succeeded(item, peripheral, server),
            on_failure=lambda exc: self._local_failed(item, peripheral, exc),
            on_timeout=lambda: self._local_timed_out(item, peripheral),
        ).start()

    def _local_succeeded(
        self, item: _DispatchItem, peripheral: Peripheral, server: str | None
    ) -> None:
        if peripheral.store_server_header(server):
            self._registry.save()
        self._complete(item)

    def _local_failed(
        self, item: _DispatchItem, peripheral: Peripheral, exc: Exception
    ) -> None:
        logger.info("Local send to %s failed: %s", peripheral.hostname, exc)
        if isinstance(exc, TransientNetworkError):
            peripheral.lost_local_address()
        self._send_via_relay(item)

    def _local_timed_out(self, item: _DispatchItem, peripheral: Peripheral) -> None:
        logger.info("Local send to %s timed out", peripheral.hostname)
        peripheral.lost_local_address()
        self._scheduler.submit(lambda: self._send_via_relay(item))

    def _send_via_relay(self, item: _DispatchItem) -> None:
        signal = item.signal
        assert signal.device_id is not None
        try:
            self._relay.ensure_client_key()
            self._relay.post_messages(signal.device_id, signal.message_payload())
        except IRProError as exc:
            logger.warning("Relay send of %s failed: %s", signal.id, exc)
            self._complete(item, str(exc))
            return
        self._complete(item)
