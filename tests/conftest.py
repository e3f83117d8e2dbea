from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from irpro.api import DeviceClient, RelayClient
from irpro.config import get_settings
from irpro.core.scheduler import ManualScheduler
from irpro.core.watcher import AssociationEvent, AuthenticationFailedEvent
from irpro.models import NetworkProfile, SecurityMode
from irpro.radio import ListenerSet, RadioListener
from irpro.storage import Database, PeripheralRegistry

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("IRPRO_CONFIG", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeRadio:
    """In-memory radio that associates instantly unless told otherwise."""

    def __init__(
        self,
        enabled: bool = True,
        current: NetworkProfile | None = None,
        ssids: list[str] | None = None,
    ) -> None:
        self.enabled = enabled
        self.current = current
        self.ssids = ssids or []
        self.reject: set[str] = set()
        self.silent: set[str] = set()
        self.calls: list[tuple[str, object]] = []
        self._listeners = ListenerSet()

    def calls_to(self, name: str) -> list[object]:
        return [arg for call, arg in self.calls if call == name]

    def is_enabled(self) -> bool:
        return self.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.calls.append(("set_enabled", enabled))
        self.enabled = enabled

    def current_network(self) -> NetworkProfile | None:
        return self.current

    def scan(self) -> list[str]:
        self.calls.append(("scan", None))
        return list(self.ssids)

    def add_network(
        self, ssid: str, password: str, security: SecurityMode
    ) -> NetworkProfile:
        self.calls.append(("add_network", ssid))
        return NetworkProfile(ssid=ssid, security=security, id=f"irpro-{ssid}")

    def connect(self, profile: NetworkProfile) -> None:
        self.calls.append(("connect", profile.ssid))
        if profile.ssid in self.silent:
            return
        if profile.ssid in self.reject:
            self._listeners.emit(AuthenticationFailedEvent(profile.ssid))
            self._listeners.emit(AuthenticationFailedEvent(profile.ssid))
            return
        self.current = profile
        self._listeners.emit(AssociationEvent(profile.ssid, True, "192.168.1.20"))

    def disconnect(self) -> None:
        self.calls.append(("disconnect", None))
        self.current = None

    def remove_network(self, profile: NetworkProfile) -> None:
        self.calls.append(("remove_network", profile.ssid))

    def add_listener(self, listener: RadioListener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: RadioListener) -> None:
        self._listeners.remove(listener)


class RecordingListener:
    def __init__(self) -> None:
        self.statuses: list[str] = []
        self.errors: list[str] = []
        self.completed = 0

    def on_status(self, message: str) -> None:
        self.statuses.append(message)

    def on_error(self, message: str) -> None:
        self.errors.append(message)

    def on_complete(self) -> None:
        self.completed += 1


class RecordingCallback:
    def __init__(self) -> None:
        self.successes = 0
        self.errors: list[str] = []

    def on_success(self) -> None:
        self.successes += 1

    def on_error(self, message: str) -> None:
        self.errors.append(message)


class Router:
    """Routes mock HTTP requests by ``METHOD /path`` and records them."""

    def __init__(self, routes: dict[str, Handler] | None = None) -> None:
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def hits(self, route: str) -> int:
        method, _, path = route.partition(" ")
        return sum(
            1 for r in self.requests if r.method == method and r.url.path == path
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.method} {request.url.path}")
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def database(tmp_path) -> Database:
    return Database(tmp_path / "data")


@pytest.fixture
def registry(database: Database) -> PeripheralRegistry:
    registry = PeripheralRegistry(database)
    registry.load()
    return registry


@pytest.fixture
def fake_radio() -> Callable[..., FakeRadio]:
    return FakeRadio


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def callback() -> RecordingCallback:
    return RecordingCallback()


def _json(payload: object, status: int = 200) -> Handler:
    return lambda request: httpx.Response(status, json=payload)


@pytest.fixture
def relay_router() -> Router:
    """A relay that registers clients, issues keys and sees the device check in."""
    return Router(
        {
            "POST /1/clients": _json({"clientkey": "CLIENTKEY"}),
            "POST /1/devices": _json({"devicekey": "DEVICEKEY", "deviceid": "DEVID"}),
            "POST /1/keys": _json({"deviceid": "DEVID"}),
            "POST /1/door": _json({"hostname": "IRKitD2A4"}),
            "POST /1/messages": lambda request: httpx.Response(200),
        }
    )


@pytest.fixture
def device_router() -> Router:
    server = {"Server": "IRKit/3.0.0.0.g85190b1"}
    return Router(
        {
            "POST /wifi": lambda request: httpx.Response(200, headers=server),
            "POST /keys": lambda request: httpx.Response(
                200, json={"clienttoken": "TOKEN"}, headers=server
            ),
            "POST /messages": lambda request: httpx.Response(200, headers=server),
            "GET /": lambda request: httpx.Response(404, headers=server),
        }
    )


@pytest.fixture
def relay_client(relay_router: Router):
    client = RelayClient(api_key="APIKEY", transport=relay_router.transport())
    yield client
    client.close()


@pytest.fixture
def device_client(device_router: Router):
    client = DeviceClient(transport=device_router.transport())
    yield client
    client.close()
