from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial

from zeroconf import ServiceListener, Zeroconf

from irpro.models import Peripheral
from irpro.storage import PeripheralRegistry

from .discovery import MDNS_SERVICE_TYPE
from .metadata import MetadataFetcher
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

DEVICE_ID_FETCH_DELAY = 2.0
MODEL_INFO_FETCH_DELAY = 0.5

PeripheralCallback = Callable[[Peripheral], None]


def pick_ipv4(addresses: list[str]) -> str | None:
    for address in addresses:
        if ":" not in address:
            return address
    return None


def strip_service_suffix(name: str, service_type: str = MDNS_SERVICE_TYPE) -> str:
    suffix = f".{service_type}"
    if name.endswith(suffix):
        return name[: -len(suffix)]
    return name.rstrip(".")


class ServiceResolutionListener(ServiceListener):
    """Keeps the registry in step with devices announced over mDNS."""

    def __init__(
        self,
        registry: PeripheralRegistry,
        fetcher: MetadataFetcher,
        scheduler: Scheduler,
        service_type: str = MDNS_SERVICE_TYPE,
        resolve_timeout: float = 3.0,
        device_id_fetch_delay: float = DEVICE_ID_FETCH_DELAY,
        model_info_fetch_delay: float = MODEL_INFO_FETCH_DELAY,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._scheduler = scheduler
        self._service_type = service_type
        self._resolve_timeout_ms = max(int(resolve_timeout * 1000), 1)
        self._device_id_fetch_delay = device_id_fetch_delay
        self._model_info_fetch_delay = model_info_fetch_delay
        self._new_device_callbacks: list[PeripheralCallback] = []
        self._existing_device_callbacks: list[PeripheralCallback] = []

    def on_new_device(self, callback: PeripheralCallback) -> None:
        self._new_device_callbacks.append(callback)

    def on_existing_device(self, callback: PeripheralCallback) -> None:
        self._existing_device_callbacks.append(callback)

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._scheduler.submit(partial(self._resolve, zc, type_, name))

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._scheduler.submit(partial(self._resolve, zc, type_, name))

    def remove_service(self, _zc: Zeroconf, _type_: str, name: str) -> None:
        hostname = strip_service_suffix(name, self._service_type)
        peripheral = self._registry.get(hostname)
        if peripheral is not None:
            peripheral.lost_local_address()
            logger.info("%s left the network", hostname)

    def _resolve(self, zc: Zeroconf, type_: str, name: str) -> None:
        info = zc.get_service_info(type_, name, timeout=self._resolve_timeout_ms)
        if info is None or info.port is None:
            logger.debug("Could not resolve %s", name)
            return
        self.service_resolved(name, info.parsed_addresses(), info.port)

    def service_resolved(self, name: str, addresses: list[str], port: int) -> None:
        host = pick_ipv4(addresses)
        if host is None:
            logger.debug("%s has no IPv4 address: %s", name, addresses)
            return
        hostname = strip_service_suffix(name, self._service_type)

        peripheral, created = self._registry.get_or_add(hostname)
        peripheral.set_local_address(host, port)
        logger.debug("Resolved %s at %s:%d", hostname, host, port)
        if created:
            self._registry.save()
            callbacks = self._new_device_callbacks
        else:
            callbacks = self._existing_device_callbacks
        for callback in callbacks:
            callback(peripheral)

        if not peripheral.has_device_id():
            self._schedule(
                self._device_id_fetch_delay,
                partial(self._fetcher.fetch_device_id, peripheral),
            )
        elif not peripheral.has_model_info():
            self._schedule(
                self._model_info_fetch_delay,
                partial(self._fetcher.fetch_model_info, peripheral),
            )

    def _schedule(self, delay: float, job: Callable[[], object]) -> None:
        self._scheduler.call_later(delay, partial(self._scheduler.submit, job))
