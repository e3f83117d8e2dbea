from __future__ import annotations

import logging
import threading

import tenacity

from irpro.api import DeviceClient, RelayClient
from irpro.errors import IRProError, TransientNetworkError
from irpro.models import Peripheral
from irpro.storage import PeripheralRegistry

from .scheduler import Scheduler
from .throttle import RequestThrottler, throttle_key

logger = logging.getLogger(__name__)

FETCH_ATTEMPTS = 3
FETCH_BACKOFF = 1.0


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    outcome = retry_state.outcome
    logger.debug(
        "%s attempt %d failed (%s); retrying",
        retry_state.fn.__name__ if retry_state.fn else "fetch",
        retry_state.attempt_number,
        outcome.exception() if outcome is not None else None,
    )


class MetadataFetcher:
    """Fills in device ids and model info for peripherals found on the LAN."""

    def __init__(
        self,
        registry: PeripheralRegistry,
        device_client: DeviceClient,
        relay_client: RelayClient,
        scheduler: Scheduler,
        attempts: int = FETCH_ATTEMPTS,
        backoff: float = FETCH_BACKOFF,
        throttler: RequestThrottler | None = None,
    ) -> None:
        self._registry = registry
        self._device = device_client
        self._relay = relay_client
        self._scheduler = scheduler
        self._attempts = attempts
        self._backoff = backoff
        self._throttler = throttler or RequestThrottler(scheduler)
        self._lock = threading.Lock()

    def _retrying(
        self, retry_on: type[BaseException] | tuple[type[BaseException], ...]
    ) -> tenacity.Retrying:
        return tenacity.Retrying(
            stop=tenacity.stop_after_attempt(self._attempts),
            wait=tenacity.wait_fixed(self._backoff),
            retry=tenacity.retry_if_exception_type(retry_on),
            before_sleep=_log_retry,
            sleep=self._scheduler.sleep,
            reraise=True,
        )

    def fetch_device_id(self, peripheral: Peripheral) -> bool:
        if not peripheral.is_local_address_resolved():
            logger.debug("%s has no local address yet", peripheral.hostname)
            return False
        with self._lock:
            if peripheral.is_fetching_device_id:
                return False
            peripheral.is_fetching_device_id = True
        try:
            device_id = self._retrying(IRProError)(self._device_id_once, peripheral)
        except IRProError as exc:
            logger.warning(
                "Could not fetch device id for %s: %s", peripheral.hostname, exc
            )
            return False
        finally:
            with self._lock:
                peripheral.is_fetching_device_id = False

        self._registry.assign_device_id(peripheral, device_id)
        self._registry.save()
        logger.info("%s has device id %s", peripheral.hostname, device_id)
        return True

    def _device_id_once(self, peripheral: Peripheral) -> str:
        endpoint = peripheral.device_api_endpoint()
        if endpoint is None:
            raise TransientNetworkError(f"{peripheral.hostname} lost its address")
        self._relay.ensure_client_key()
        with self._throttler.slot(throttle_key(peripheral)):
            client_token, server = self._device.post_keys(endpoint)
        peripheral.store_server_header(server)
        return self._relay.exchange_client_token(client_token)

    def _get_home(self, peripheral: Peripheral, endpoint: str) -> str | None:
        with self._throttler.slot(throttle_key(peripheral)):
            return self._device.get_home(endpoint)

    def fetch_model_info(self, peripheral: Peripheral) -> bool:
        endpoint = peripheral.device_api_endpoint()
        if endpoint is None:
            return False
        try:
            server = self._retrying(TransientNetworkError)(
                self._get_home, peripheral, endpoint
            )
        except TransientNetworkError as exc:
            logger.warning(
                "Could not fetch model info for %s: %s", peripheral.hostname, exc
            )
            return False
        if peripheral.store_server_header(server):
            self._registry.save()
            logger.debug(
                "%s is %s %s",
                peripheral.hostname,
                peripheral.model_name,
                peripheral.firmware_version,
            )
        return True
