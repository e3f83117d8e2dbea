"""Wiring of the long-lived components behind the CLI."""

from __future__ import annotations

import logging

import httpx

from irpro.api import DeviceClient, RelayClient
from irpro.config import Settings, data_dir_from_settings
from irpro.core.discovery import DiscoveryQueue, ZeroconfBrowser
from irpro.core.dispatch import SignalDispatchQueue
from irpro.core.metadata import MetadataFetcher
from irpro.core.provisioning import Provisioner
from irpro.core.resolver import ServiceResolutionListener
from irpro.core.scheduler import Scheduler, ThreadScheduler
from irpro.core.throttle import RequestThrottler
from irpro.radio import NmcliRadio, WifiRadio
from irpro.storage import Database, PeripheralRegistry, SignalStore

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the stores, clients and queues for one process.

    Nothing here is global; tests build a context with a fake radio, a manual
    scheduler and mock HTTP transports.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database | None = None,
        scheduler: Scheduler | None = None,
        radio: WifiRadio | None = None,
        device_transport: httpx.BaseTransport | None = None,
        relay_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.database = database or Database(data_dir_from_settings(settings))
        self.scheduler: Scheduler = scheduler or ThreadScheduler()
        self._radio = radio

        self.peripherals = PeripheralRegistry(self.database)
        self.peripherals.load()
        self.signals = SignalStore(self.database)
        self.signals.load()

        self.device_client = DeviceClient(
            connect_timeout=settings.device.connect_timeout,
            read_timeout=settings.device.read_timeout,
            transport=device_transport,
        )
        self.relay_client = RelayClient(
            base_url=settings.relay.base_url,
            api_key=settings.relay.api_key,
            client_key=self.database.load_client_key(),
            connect_timeout=settings.relay.connect_timeout,
            transport=relay_transport,
            on_client_key=self.database.save_client_key,
            sleep=self.scheduler.sleep,
        )

        self.throttler = RequestThrottler(
            self.scheduler, settings.dispatch.request_spacing
        )
        self.fetcher = MetadataFetcher(
            self.peripherals,
            self.device_client,
            self.relay_client,
            self.scheduler,
            throttler=self.throttler,
        )
        discovery = settings.discovery
        self.resolver = ServiceResolutionListener(
            self.peripherals,
            self.fetcher,
            self.scheduler,
            service_type=discovery.service_type,
            resolve_timeout=discovery.resolve_timeout,
            device_id_fetch_delay=discovery.device_id_fetch_delay,
            model_info_fetch_delay=discovery.model_info_fetch_delay,
        )
        self.browser = ZeroconfBrowser(self.resolver, discovery.service_type)
        self.discovery = DiscoveryQueue(self.browser, self.scheduler)

        self.dispatch = SignalDispatchQueue(
            self.peripherals,
            self.device_client,
            self.relay_client,
            self.scheduler,
            local_timeout=settings.dispatch.local_timeout,
            throttler=self.throttler,
        )
        self._provisioner: Provisioner | None = None

    @property
    def radio(self) -> WifiRadio:
        if self._radio is None:
            self._radio = NmcliRadio(
                interface=self.settings.radio.interface,
                poll_interval=self.settings.radio.poll_interval,
            )
        return self._radio

    @property
    def provisioner(self) -> Provisioner:
        if self._provisioner is None:
            provisioner = Provisioner(
                self.radio,
                self.device_client,
                self.relay_client,
                self.peripherals,
                self.scheduler,
                config=self.settings.provisioning,
                device_config=self.settings.device,
            )
            self.resolver.on_new_device(provisioner.device_found)
            self.resolver.on_existing_device(provisioner.device_found)
            self._provisioner = provisioner
        return self._provisioner

    def close(self) -> None:
        if self._provisioner is not None:
            self._provisioner.cancel()
        self.browser.stop()
        self.device_client.close()
        self.relay_client.close()
        if isinstance(self.scheduler, ThreadScheduler):
            self.scheduler.shutdown()
        logger.debug("Closed application context")

    def __enter__(self) -> AppContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
