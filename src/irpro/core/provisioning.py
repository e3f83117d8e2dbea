"""Moving a factory-fresh device from its own access point onto a home network.

A session walks a fixed sequence of phases. All work happens on scheduler
workers and reports back as events; a single ``_advance`` consumes those
events one at a time. Each phase entry and each retry attempt takes a new
token, and events carrying an older token are dropped, so a late answer from
an abandoned attempt can never move the session.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from irpro.api import DeviceClient, RelayClient
from irpro.config import DeviceConfig, ProvisioningConfig
from irpro.errors import (
    AuthenticationError,
    DeviceLeftNetworkError,
    IRProError,
    PhaseTimeout,
    RadioError,
    RetryBudgetExceeded,
    TransientNetworkError,
)
from irpro.models import (
    DeviceKeyLease,
    NetworkProfile,
    Peripheral,
    SecurityMode,
    WifiCredentials,
)
from irpro.radio import WifiRadio
from irpro.storage import PeripheralRegistry

from .bounded import BoundedCall, CompletionLatch
from .credentials import (
    default_country_code,
    encode_credentials,
    is_device_ap_ssid,
    raw_ssid,
    reg_domain_for_country,
)
from .scheduler import Scheduler, TimerHandle
from .watcher import AUTH_ERROR, ConnectivityWatcher, MatchMode, RadioEvent

logger = logging.getLogger(__name__)


def _watch_error(reason: str) -> IRProError:
    if reason == AUTH_ERROR:
        return AuthenticationError(reason)
    return RadioError(reason)


class Phase(Enum):
    INIT = "init"
    OBTAIN_CLIENT_KEY = "obtain_client_key"
    OBTAIN_DEVICE_KEY = "obtain_device_key"
    SCAN_FOR_DEVICE_AP = "scan_for_device_ap"
    CONNECT_DEVICE_AP = "connect_device_ap"
    TRANSMIT_CREDENTIALS = "transmit_credentials"
    WAIT_HOME_NETWORK = "wait_home_network"
    CONFIRM_CONNECTIVITY = "confirm_connectivity"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({Phase.COMPLETE, Phase.FAILED, Phase.CANCELLED})

STATUS_MESSAGES = {
    Phase.OBTAIN_CLIENT_KEY: "Obtaining client key",
    Phase.OBTAIN_DEVICE_KEY: "Obtaining device key",
    Phase.SCAN_FOR_DEVICE_AP: "Scanning for the device's Wi-Fi",
    Phase.CONNECT_DEVICE_AP: "Connecting to the device's Wi-Fi",
    Phase.TRANSMIT_CREDENTIALS: "Sending Wi-Fi settings to the device",
    Phase.CONFIRM_CONNECTIVITY: "Waiting for the device to reach the server",
}


class ProvisioningListener(Protocol):
    def on_status(self, message: str) -> None: ...

    def on_error(self, message: str) -> None: ...

    def on_complete(self) -> None: ...


@dataclass(frozen=True)
class SetupRequest:
    credentials: WifiCredentials
    ap_password: str
    country_code: str = ""


@dataclass(frozen=True)
class _Event:
    token: int


@dataclass(frozen=True)
class StepSucceeded(_Event):
    value: Any = None


@dataclass(frozen=True)
class StepFailed(_Event):
    error: Exception


@dataclass(frozen=True)
class StepTimedOut(_Event):
    pass


@dataclass(frozen=True)
class Tick(_Event):
    """A scheduled delay elapsed (settle, backoff or rescan)."""


@dataclass(frozen=True)
class LocalDeviceFound:
    peripheral: Peripheral


@dataclass(frozen=True)
class CancelRequested:
    pass


SessionEvent = StepSucceeded | StepFailed | StepTimedOut | Tick
AnyEvent = SessionEvent | LocalDeviceFound | CancelRequested


class ProvisioningSession:
    def __init__(
        self,
        request: SetupRequest,
        listener: ProvisioningListener,
        radio: WifiRadio,
        device_client: DeviceClient,
        relay_client: RelayClient,
        registry: PeripheralRegistry,
        scheduler: Scheduler,
        config: ProvisioningConfig | None = None,
        device_config: DeviceConfig | None = None,
    ) -> None:
        self.request = request
        self._listener = listener
        self._radio = radio
        self._device = device_client
        self._relay = relay_client
        self._registry = registry
        self._scheduler = scheduler
        self._config = config or ProvisioningConfig()
        self._device_config = device_config or DeviceConfig()

        self.phase = Phase.INIT
        self.error_message: str | None = None
        self.retries: dict[Phase, int] = {}
        self.ap_ssid: str | None = None
        self.local_device_found = False
        self.server_confirmed = False

        self._state_lock = threading.Lock()
        self._active = False
        self._token = 0
        self._events: deque[AnyEvent] = deque()
        self._draining = False

        self._original_network: NetworkProfile | None = None
        self._radio_was_enabled = True
        self._ap_profile: NetworkProfile | None = None
        self._lease: DeviceKeyLease | None = None
        self._encoded_credentials: str | None = None
        self._checking_ap = False
        self._watcher: ConnectivityWatcher | None = None
        self._watcher_listener: Callable[[RadioEvent], None] | None = None
        self._inflight: BoundedCall[Any] | None = None
        self._timers: list[TimerHandle] = []
        self._door_cancelled = threading.Event()
        self._rollback_latch = CompletionLatch()
        self._done = threading.Event()

    @property
    def active(self) -> bool:
        with self._state_lock:
            return self._active

    @property
    def listener(self) -> ProvisioningListener:
        with self._state_lock:
            return self._listener

    @listener.setter
    def listener(self, listener: ProvisioningListener) -> None:
        with self._state_lock:
            self._listener = listener

    @property
    def lease(self) -> DeviceKeyLease | None:
        return self._lease

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the session reaches a terminal phase."""
        return self._done.wait(timeout)

    def start(self) -> None:
        with self._state_lock:
            if self._active or self.phase is not Phase.INIT:
                return
            self._active = True
        logger.info("Starting setup onto %s", self.request.credentials.ssid)
        self._enter(Phase.INIT)

    def cancel(self) -> None:
        with self._state_lock:
            if not self._active:
                return
            self._active = False
        self._door_cancelled.set()
        logger.info("Setup cancelled during %s", self.phase.value)
        self._post(CancelRequested())

    def device_found(self, peripheral: Peripheral) -> None:
        self._post(LocalDeviceFound(peripheral))

    # event plumbing

    def _post(self, event: AnyEvent) -> None:
        with self._state_lock:
            self._events.append(event)
            if self._draining:
                return
            self._draining = True
        while True:
            with self._state_lock:
                if not self._events:
                    self._draining = False
                    return
                next_event = self._events.popleft()
            try:
                self._advance(next_event)
            except BaseException:
                with self._state_lock:
                    self._draining = False
                raise

    def _advance(self, event: AnyEvent) -> None:
        if isinstance(event, CancelRequested):
            self._finish_cancelled()
            return
        if self.phase in TERMINAL_PHASES or not self.active:
            logger.debug("Dropping %s after session ended", event)
            return
        if isinstance(event, LocalDeviceFound):
            self._handle_local_device(event.peripheral)
            return
        if event.token != self._token:
            logger.debug("Dropping stale %s in %s", event, self.phase.value)
            return
        handler = self._handlers[self.phase]
        handler(event)

    @property
    def _handlers(self) -> dict[Phase, Callable[[SessionEvent], None]]:
        return {
            Phase.INIT: self._on_init,
            Phase.OBTAIN_CLIENT_KEY: self._on_client_key,
            Phase.OBTAIN_DEVICE_KEY: self._on_device_key,
            Phase.SCAN_FOR_DEVICE_AP: self._on_scan,
            Phase.CONNECT_DEVICE_AP: self._on_connect_ap,
            Phase.TRANSMIT_CREDENTIALS: self._on_transmit,
            Phase.WAIT_HOME_NETWORK: self._on_home_network,
            Phase.CONFIRM_CONNECTIVITY: self._on_confirm,
        }

    def _new_token(self) -> int:
        self._token += 1
        return self._token

    def _enter(self, phase: Phase) -> None:
        self._clear_pending()
        self.phase = phase
        self._new_token()
        logger.debug("Entering %s", phase.value)
        message = STATUS_MESSAGES.get(phase)
        if message:
            self.listener.on_status(message)
        starters: dict[Phase, Callable[[], None]] = {
            Phase.INIT: self._start_init,
            Phase.OBTAIN_CLIENT_KEY: self._start_client_key,
            Phase.OBTAIN_DEVICE_KEY: self._start_device_key,
            Phase.SCAN_FOR_DEVICE_AP: self._start_scan,
            Phase.CONNECT_DEVICE_AP: self._start_connect_ap,
            Phase.TRANSMIT_CREDENTIALS: self._start_transmit,
            Phase.WAIT_HOME_NETWORK: self._start_home_network,
            Phase.CONFIRM_CONNECTIVITY: self._start_confirm,
        }
        starters[phase]()

    def _run(self, fn: Callable[..., Any], *args: Any) -> None:
        """Run a blocking step on a worker and report back with the current token."""
        token = self._token

        def job() -> None:
            try:
                value = fn(*args)
            except IRProError as exc:
                self._post(StepFailed(token, exc))
                return
            self._post(StepSucceeded(token, value))

        self._scheduler.submit(job)

    def _bounded(self, fn: Callable[[], Any], timeout: float) -> None:
        token = self._token
        self._inflight = BoundedCall(
            self._scheduler,
            fn,
            timeout,
            on_success=lambda value: self._post(StepSucceeded(token, value)),
            on_failure=lambda exc: self._post(StepFailed(token, exc)),
            on_timeout=lambda: self._post(StepTimedOut(token)),
        ).start()

    def _after(self, delay: float, event: _Event) -> None:
        self._timers.append(
            self._scheduler.call_later(delay, lambda: self._post(event))
        )

    def _tick_after(self, delay: float) -> None:
        self._after(delay, Tick(self._token))

    def _timeout_after(self, delay: float) -> None:
        self._after(delay, StepTimedOut(self._token))

    def _clear_pending(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
        self._detach_watcher()

    def _watch(self, ssid: str, timeout: float) -> ConnectivityWatcher:
        token = self._token
        watcher = ConnectivityWatcher(
            ssid,
            self._scheduler,
            on_connected=lambda connected: self._post(StepSucceeded(token, connected)),
            on_error=lambda reason: self._post(StepFailed(token, _watch_error(reason))),
            on_timeout=lambda: self._post(StepTimedOut(token)),
            match=MatchMode.EXACT,
            timeout=timeout,
        )
        self._watcher = watcher
        self._watcher_listener = watcher.handle_event
        self._radio.add_listener(watcher.handle_event)
        watcher.start()
        return watcher

    def _detach_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None
        if self._watcher_listener is not None:
            self._radio.remove_listener(self._watcher_listener)
            self._watcher_listener = None

    # INIT

    def _start_init(self) -> None:
        self._run(self._capture_network_state)

    def _capture_network_state(self) -> None:
        self._radio_was_enabled = self._radio.is_enabled()
        if not self._radio_was_enabled:
            self._radio.set_enabled(True)
            self._original_network = None
            return
        original = self._radio.current_network()
        prefix = self._device_config.ap_ssid_prefix
        if original is not None and is_device_ap_ssid(original.ssid, prefix):
            logger.info("Leaving device access point %s", original.ssid)
            self._radio.disconnect()
            original = None
        self._original_network = original

    def _on_init(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded):
            self._enter(Phase.OBTAIN_CLIENT_KEY)
        elif isinstance(event, StepFailed):
            self._fail(f"Could not read Wi-Fi state: {event.error}")

    # OBTAIN_CLIENT_KEY

    def _start_client_key(self) -> None:
        self._run(self._relay.ensure_client_key)

    def _on_client_key(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded):
            self._enter(Phase.OBTAIN_DEVICE_KEY)
        elif isinstance(event, StepFailed):
            self._fail(f"Could not obtain a client key: {event.error}")

    # OBTAIN_DEVICE_KEY

    def _start_device_key(self) -> None:
        self._bounded(self._relay.create_device, self._config.device_key_timeout)

    def _on_device_key(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded):
            self._lease = event.value
            self._enter(Phase.SCAN_FOR_DEVICE_AP)
        elif isinstance(event, StepFailed):
            self._fail(f"Could not obtain a device key: {event.error}")
        elif isinstance(event, StepTimedOut):
            self._fail("Timed out obtaining a device key")

    # SCAN_FOR_DEVICE_AP

    def _start_scan(self) -> None:
        self._timeout_after(self._config.scan_timeout)
        self._run(self._scan_once)

    def _scan_once(self) -> str | None:
        prefix = self._device_config.ap_ssid_prefix
        for ssid in self._radio.scan():
            if is_device_ap_ssid(ssid, prefix):
                return raw_ssid(ssid)
        return None

    def _on_scan(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded) and event.value:
            self.ap_ssid = event.value
            logger.info("Found device access point %s", self.ap_ssid)
            self._enter(Phase.CONNECT_DEVICE_AP)
        elif isinstance(event, StepSucceeded | StepFailed):
            if isinstance(event, StepFailed):
                logger.info("Scan failed: %s", event.error)
            self._tick_after(self._config.rescan_interval)
        elif isinstance(event, Tick):
            self._run(self._scan_once)
        elif isinstance(event, StepTimedOut):
            self._fail("The device's Wi-Fi was not found")

    # CONNECT_DEVICE_AP

    def _start_connect_ap(self) -> None:
        self._run(self._join_device_ap)

    def _join_device_ap(self) -> str:
        assert self.ap_ssid is not None
        self._ap_profile = self._radio.add_network(
            self.ap_ssid, self.request.ap_password, SecurityMode.WPA_WPA2
        )
        return "added"

    def _on_connect_ap(self, event: SessionEvent) -> None:
        if self._checking_ap:
            self._on_ap_check(event)
        elif isinstance(event, StepSucceeded) and event.value == "added":
            assert self.ap_ssid is not None and self._ap_profile is not None
            self._watch(self.ap_ssid, self._config.connect_ap_timeout)
            self._run(self._radio.connect, self._ap_profile)
        elif isinstance(event, StepSucceeded) and event.value is not None:
            self._detach_watcher()
            self._tick_after(self._config.ap_settle_delay)
        elif isinstance(event, StepSucceeded):
            # radio.connect returned; the watcher reports the outcome
            return
        elif isinstance(event, Tick):
            self._check_device_ap()
        elif isinstance(event, StepFailed):
            self._fail(f"Could not connect to the device's Wi-Fi: {event.error}")
        elif isinstance(event, StepTimedOut):
            self._fail("Timed out connecting to the device's Wi-Fi")

    def _check_device_ap(self) -> None:
        endpoint = self._device_config.ap_endpoint
        self._checking_ap = True
        self._new_token()
        self._bounded(
            lambda: self._device.is_device(endpoint), self._config.ap_check_timeout
        )

    def _on_ap_check(self, event: SessionEvent) -> None:
        self._checking_ap = False
        if isinstance(event, StepSucceeded) and event.value is False:
            self._fail(f"{self.ap_ssid} did not answer like an IRKit")
            return
        if isinstance(event, StepFailed):
            logger.info("Checking the device's Wi-Fi failed: %s", event.error)
        elif isinstance(event, StepTimedOut):
            logger.info("Checking the device's Wi-Fi timed out")
        else:
            logger.debug("%s answered as an IRKit", self.ap_ssid)
        self._enter(Phase.TRANSMIT_CREDENTIALS)

    # TRANSMIT_CREDENTIALS

    def _start_transmit(self) -> None:
        assert self._lease is not None
        country = (
            self.request.country_code
            or self._config.country_code
            or default_country_code()
        )
        self._encoded_credentials = encode_credentials(
            self.request.credentials,
            self._lease.device_key,
            reg_domain_for_country(country),
        )
        self.retries[Phase.TRANSMIT_CREDENTIALS] = 0
        self._transmit_attempt()

    def _transmit_attempt(self) -> None:
        encoded = self._encoded_credentials
        assert encoded is not None
        endpoint = self._device_config.ap_endpoint
        self._bounded(
            lambda: self._device.post_wifi(endpoint, encoded),
            self._config.transmit_timeout,
        )

    def _on_transmit(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded):
            self._relay.clear_device_key_cache()
            self._enter(Phase.WAIT_HOME_NETWORK)
        elif isinstance(event, StepFailed) and isinstance(
            event.error, DeviceLeftNetworkError
        ):
            # the device dropped its access point, which it does after accepting
            logger.info("Device left its access point; treating as accepted")
            self._relay.clear_device_key_cache()
            self._enter(Phase.WAIT_HOME_NETWORK)
        elif isinstance(event, StepFailed | StepTimedOut):
            reason = (
                event.error if isinstance(event, StepFailed) else "attempt timed out"
            )
            self._retry_transmit(str(reason))
        elif isinstance(event, Tick):
            self._transmit_attempt()

    def _retry_transmit(self, reason: str) -> None:
        attempts = self.retries.get(Phase.TRANSMIT_CREDENTIALS, 0) + 1
        self.retries[Phase.TRANSMIT_CREDENTIALS] = attempts
        if attempts >= self._config.transmit_attempts:
            error = RetryBudgetExceeded(
                f"Could not send Wi-Fi settings after {attempts} attempts: {reason}"
            )
            self._fail(str(error))
            return
        logger.info("Sending Wi-Fi settings failed (%s); retrying", reason)
        self._new_token()
        self._tick_after(self._config.transmit_backoff)

    # WAIT_HOME_NETWORK

    def _start_home_network(self) -> None:
        original = self._original_network
        if original is not None:
            self.listener.on_status(f"Connecting to {original.ssid}")
        else:
            self.listener.on_status("Disconnecting from the device's Wi-Fi")
        self._run(self._leave_device_ap)

    def _leave_device_ap(self) -> str:
        if self._ap_profile is not None:
            self._radio.remove_network(self._ap_profile)
            self._ap_profile = None
        if self._original_network is None:
            self._radio.disconnect()
            if not self._radio_was_enabled:
                self._radio.set_enabled(False)
            return "disconnected"
        return "removed"

    def _on_home_network(self, event: SessionEvent) -> None:
        original = self._original_network
        if isinstance(event, StepSucceeded) and event.value == "removed":
            assert original is not None
            self._watch(original.ssid, self._config.home_network_timeout)
            self._run(self._radio.connect, original)
        elif isinstance(event, StepSucceeded) and event.value == "disconnected":
            self._tick_after(self._config.home_settle_delay)
        elif isinstance(event, StepSucceeded):
            if event.value is not None:
                self._detach_watcher()
                self._tick_after(self._config.home_settle_delay)
        elif isinstance(event, Tick):
            self._enter(Phase.CONFIRM_CONNECTIVITY)
        elif isinstance(event, StepFailed):
            self._fail(f"Could not reconnect to the home network: {event.error}")
        elif isinstance(event, StepTimedOut):
            self._fail("Timed out reconnecting to the home network")

    # CONFIRM_CONNECTIVITY

    def _start_confirm(self) -> None:
        if not self._config.require_local_discovery:
            self.local_device_found = True
        self.retries[Phase.CONFIRM_CONNECTIVITY] = 0
        self._confirm_attempt()

    def _confirm_attempt(self) -> None:
        assert self._lease is not None
        device_id = self._lease.device_id
        self._door_cancelled = threading.Event()
        cancelled = self._door_cancelled
        self._bounded(
            lambda: self._relay.wait_for_door(device_id, cancelled),
            self._config.confirm_timeout,
        )

    def _on_confirm(self, event: SessionEvent) -> None:
        if isinstance(event, StepSucceeded):
            self.server_confirmed = True
            logger.info("Relay confirmed device %s as %s", self.ap_ssid, event.value)
            if not self.local_device_found:
                self.listener.on_status(
                    "Waiting for the device to appear on the local network"
                )
                self._new_token()
                self._timeout_after(self._config.confirm_timeout)
            self._complete_if_confirmed()
        elif isinstance(event, StepFailed):
            attempts = self.retries.get(Phase.CONFIRM_CONNECTIVITY, 0) + 1
            self.retries[Phase.CONFIRM_CONNECTIVITY] = attempts
            retryable = isinstance(event.error, TransientNetworkError)
            if retryable and attempts < self._config.confirm_attempts:
                logger.info("Door poll failed (%s); retrying", event.error)
                self._new_token()
                self._tick_after(self._config.confirm_backoff)
            else:
                self._fail(f"Could not confirm the device is online: {event.error}")
        elif isinstance(event, Tick):
            self._confirm_attempt()
        elif isinstance(event, StepTimedOut):
            self._door_cancelled.set()
            self._fail(str(PhaseTimeout("Timed out waiting for the device to connect")))

    def _handle_local_device(self, peripheral: Peripheral) -> None:
        if self.ap_ssid is None or self._lease is None:
            return
        if peripheral.hostname.lower() != raw_ssid(self.ap_ssid).lower():
            return
        self._registry.assign_device_id(peripheral, self._lease.device_id)
        self._registry.save()
        self.local_device_found = True
        logger.info("Found %s on the local network", peripheral.hostname)
        if self.phase is Phase.CONFIRM_CONNECTIVITY:
            self._complete_if_confirmed()

    def _complete_if_confirmed(self) -> None:
        if self.server_confirmed and self.local_device_found:
            self._finish_complete()

    # terminal phases

    def _end(self, phase: Phase) -> bool:
        with self._state_lock:
            if self.phase in TERMINAL_PHASES:
                return False
            self._active = False
        self._clear_pending()
        self._door_cancelled.set()
        self.phase = phase
        self._relay.clear_device_key_cache()
        return True

    def _finish_complete(self) -> None:
        assert self.ap_ssid is not None and self._lease is not None
        if not self._end(Phase.COMPLETE):
            return
        hostname = raw_ssid(self.ap_ssid)
        peripheral, _ = self._registry.get_or_add(hostname)
        self._registry.assign_device_id(peripheral, self._lease.device_id)
        self._registry.save()
        logger.info("Set up %s as %s", hostname, self._lease.device_id)
        self.listener.on_complete()
        self._done.set()

    def _fail(self, message: str) -> None:
        if not self._end(Phase.FAILED):
            return
        self.error_message = message
        logger.warning("Setup failed: %s", message)
        self._rollback()
        self.listener.on_error(message)
        self._done.set()

    def _finish_cancelled(self) -> None:
        if self.phase in TERMINAL_PHASES:
            return
        self._end(Phase.CANCELLED)
        self._rollback()
        self._done.set()

    def _rollback(self) -> None:
        if not self._rollback_latch.finish():
            return
        logger.info("Restoring original Wi-Fi state")
        try:
            original = self._original_network
            if original is not None:
                current = self._radio.current_network()
                if current is None or raw_ssid(current.ssid) != raw_ssid(original.ssid):
                    self._radio.connect(original)
            else:
                self._radio.disconnect()
                if not self._radio_was_enabled:
                    self._radio.set_enabled(False)
            if self._ap_profile is not None:
                self._radio.remove_network(self._ap_profile)
                self._ap_profile = None
        except RadioError as exc:
            logger.warning("Could not fully restore Wi-Fi state: %s", exc)

    @property
    def rolled_back(self) -> bool:
        return self._rollback_latch.finished


class Provisioner:
    """Owns at most one active provisioning session."""

    def __init__(
        self,
        radio: WifiRadio,
        device_client: DeviceClient,
        relay_client: RelayClient,
        registry: PeripheralRegistry,
        scheduler: Scheduler,
        config: ProvisioningConfig | None = None,
        device_config: DeviceConfig | None = None,
    ) -> None:
        self._radio = radio
        self._device = device_client
        self._relay = relay_client
        self._registry = registry
        self._scheduler = scheduler
        self._config = config or ProvisioningConfig()
        self._device_config = device_config or DeviceConfig()
        self._lock = threading.Lock()
        self._session: ProvisioningSession | None = None

    @property
    def session(self) -> ProvisioningSession | None:
        with self._lock:
            return self._session

    def start(
        self, request: SetupRequest, listener: ProvisioningListener
    ) -> ProvisioningSession:
        with self._lock:
            session = self._session
            if session is not None and session.active:
                logger.info("Setup already running; attaching new listener")
                session.listener = listener
                return session
            session = ProvisioningSession(
                request,
                listener,
                self._radio,
                self._device,
                self._relay,
                self._registry,
                self._scheduler,
                config=self._config,
                device_config=self._device_config,
            )
            self._session = session
        session.start()
        return session

    def cancel(self) -> None:
        session = self.session
        if session is not None:
            session.cancel()
        self._relay.clear_device_key_cache()

    def device_found(self, peripheral: Peripheral) -> None:
        session = self.session
        if session is not None and session.active:
            session.device_found(peripheral)
