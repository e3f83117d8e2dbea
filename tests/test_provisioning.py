from __future__ import annotations

import httpx
import pytest

from irpro.config import ProvisioningConfig
from irpro.core.provisioning import (
    Phase,
    Provisioner,
    ProvisioningSession,
    SetupRequest,
    StepSucceeded,
)
from irpro.models import NetworkProfile, Peripheral, SecurityMode, WifiCredentials

HOME = NetworkProfile(ssid="Home", security=SecurityMode.WPA_WPA2, id="home")


@pytest.fixture
def request_() -> SetupRequest:
    return SetupRequest(
        credentials=WifiCredentials(ssid="Home", password="secret123"),
        ap_password="XXXXXXXXXX",
        country_code="JP",
    )


@pytest.fixture
def make_session(
    request_, listener, fake_radio, device_client, relay_client, registry, scheduler
):
    def make(radio=None, **config):
        radio = radio or fake_radio(current=HOME, ssids=["Neighbour", "IRKitD2A4"])
        session = ProvisioningSession(
            request_,
            listener,
            radio,
            device_client,
            relay_client,
            registry,
            scheduler,
            config=ProvisioningConfig(**config),
        )
        return session, radio

    return make


def test_happy_path_registers_device(make_session, scheduler, listener, registry):
    session, radio = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert listener.completed == 1
    assert listener.errors == []
    assert listener.statuses[:3] == [
        "Obtaining client key",
        "Obtaining device key",
        "Scanning for the device's Wi-Fi",
    ]
    assert "Connecting to Home" in listener.statuses

    peripheral = registry.get("irkitd2a4")
    assert peripheral is not None
    assert peripheral.device_id == "DEVID"
    assert peripheral.customized_name == "IRKitD2A4"
    assert radio.calls_to("connect") == ["IRKitD2A4", "Home"]
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]
    assert not session.rolled_back


def test_transmitted_credentials_are_encoded(
    make_session, scheduler, device_router
):
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    (wifi,) = [r for r in device_router.requests if r.url.path == "/wifi"]
    body = wifi.content.decode()
    assert body.startswith("8/486F6D65/736563726574313233/DEVICEKEY/2//////")
    assert wifi.headers["X-Requested-With"] == "IRKit Android SDK"


def test_settles_before_transmitting(make_session, scheduler, device_router):
    session, _ = make_session()
    session.start()
    scheduler.run_pending()
    assert session.phase is Phase.CONNECT_DEVICE_AP
    assert device_router.hits("POST /wifi") == 0

    scheduler.advance(1.5)
    assert device_router.hits("POST /wifi") == 0
    scheduler.advance(0.5)
    assert device_router.hits("POST /wifi") == 1


def test_device_leaving_network_counts_as_accepted(
    make_session, scheduler, device_router, listener
):
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno 101] Network is unreachable", request=request)

    device_router.routes["POST /wifi"] = unreachable
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert device_router.hits("POST /wifi") == 1
    assert listener.completed == 1


def test_transmit_gives_up_after_retry_budget(
    make_session, scheduler, device_router, listener
):
    device_router.routes["POST /wifi"] = lambda request: httpx.Response(500)
    session, radio = make_session()
    session.start()
    scheduler.advance(30)

    assert session.phase is Phase.FAILED
    assert device_router.hits("POST /wifi") == 5
    assert len(listener.errors) == 1
    assert "after 5 attempts" in listener.errors[0]
    assert session.rolled_back
    # back home, and the device's profile is gone
    assert radio.calls_to("connect")[-1] == "Home"
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]


def test_missing_access_point_fails_after_scan_timeout(
    make_session, fake_radio, scheduler, listener
):
    radio = fake_radio(current=HOME, ssids=["Neighbour"])
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.advance(49)
    assert session.phase is Phase.SCAN_FOR_DEVICE_AP

    scheduler.advance(2)
    assert session.phase is Phase.FAILED
    assert listener.errors == ["The device's Wi-Fi was not found"]
    assert len(radio.calls_to("scan")) == 5


def test_device_key_failure_rolls_back_without_touching_wifi(
    make_session, scheduler, relay_router, listener
):
    relay_router.routes["POST /1/devices"] = lambda request: httpx.Response(500)
    session, radio = make_session()
    session.start()
    scheduler.advance(1)

    assert session.phase is Phase.FAILED
    assert listener.errors[0].startswith("Could not obtain a device key")
    assert session.rolled_back
    assert radio.calls_to("connect") == []


def test_wrong_access_point_password_fails(
    make_session, fake_radio, scheduler, listener
):
    radio = fake_radio(current=HOME, ssids=["IRKitD2A4"])
    radio.reject.add("IRKitD2A4")
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.advance(5)

    assert session.phase is Phase.FAILED
    assert listener.errors == [
        "Could not connect to the device's Wi-Fi: authentication error"
    ]
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]


def test_access_point_connect_timeout(make_session, fake_radio, scheduler, listener):
    radio = fake_radio(current=HOME, ssids=["IRKitD2A4"])
    radio.silent.add("IRKitD2A4")
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.advance(29)
    assert session.phase is Phase.CONNECT_DEVICE_AP

    scheduler.advance(2)
    assert session.phase is Phase.FAILED
    assert listener.errors == ["Timed out connecting to the device's Wi-Fi"]


def test_restores_disabled_radio(make_session, fake_radio, scheduler):
    radio = fake_radio(enabled=False, current=None, ssids=["IRKitD2A4"])
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert radio.calls_to("set_enabled") == [True, False]
    assert radio.calls_to("connect") == ["IRKitD2A4"]
    assert "Disconnecting from the device's Wi-Fi" in session.listener.statuses


def test_leaves_device_access_point_on_start(make_session, fake_radio, scheduler):
    radio = fake_radio(
        current=NetworkProfile(ssid="IRKitAAAA"), ssids=["IRKitD2A4"]
    )
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.advance(10)

    assert radio.calls[0] == ("disconnect", None)
    assert session.phase is Phase.COMPLETE
    # no home network to return to
    assert radio.calls_to("connect") == ["IRKitD2A4"]


def test_door_poll_retries_once_after_network_error(
    make_session, scheduler, relay_router, listener
):
    attempts = []

    def flaky_door(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"hostname": "IRKitD2A4"})

    relay_router.routes["POST /1/door"] = flaky_door
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert len(attempts) == 2
    assert session.retries[Phase.CONFIRM_CONNECTIVITY] == 1


def test_door_poll_skips_empty_hostnames(make_session, scheduler, relay_router):
    answers = iter([httpx.Response(408), httpx.Response(200, json={})])

    def door(request: httpx.Request) -> httpx.Response:
        return next(answers, httpx.Response(200, json={"hostname": "IRKitD2A4"}))

    relay_router.routes["POST /1/door"] = door
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert relay_router.hits("POST /1/door") == 3


def test_waits_for_local_discovery_when_required(
    make_session, scheduler, listener, registry
):
    session, _ = make_session(require_local_discovery=True)
    session.start()
    scheduler.advance(10)

    assert session.server_confirmed
    assert session.phase is Phase.CONFIRM_CONNECTIVITY
    assert listener.statuses[-1] == (
        "Waiting for the device to appear on the local network"
    )

    found = registry.add("irkitd2a4")
    session.device_found(found)

    assert session.phase is Phase.COMPLETE
    assert found.device_id == "DEVID"
    assert len(registry) == 1


def test_local_discovery_timeout_fails(make_session, scheduler, listener):
    session, _ = make_session(require_local_discovery=True)
    session.start()
    scheduler.advance(10)
    session.device_found(Peripheral(hostname="IRKitFFFF"))

    scheduler.advance(40)
    assert session.phase is Phase.FAILED
    assert "Timed out waiting for the device" in listener.errors[0]


def test_cancel_rolls_back_once_and_stays_quiet(make_session, scheduler, listener):
    session, radio = make_session()
    session.start()
    scheduler.run_pending()
    assert session.phase is Phase.CONNECT_DEVICE_AP

    session.cancel()
    session.cancel()
    scheduler.advance(60)

    assert session.phase is Phase.CANCELLED
    assert session.rolled_back
    assert listener.errors == []
    assert listener.completed == 0
    assert radio.calls_to("connect") == ["IRKitD2A4", "Home"]
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]
    assert session.wait(0)


def test_stale_events_are_dropped(make_session, fake_radio, scheduler):
    radio = fake_radio(current=HOME, ssids=[])
    session, _ = make_session(radio=radio)
    session.start()
    scheduler.run_pending()
    assert session.phase is Phase.SCAN_FOR_DEVICE_AP

    session._post(StepSucceeded(token=0, value="IRKitD2A4"))

    assert session.phase is Phase.SCAN_FOR_DEVICE_AP
    assert session.ap_ssid is None


def test_provisioner_keeps_one_session(
    request_, fake_radio, device_client, relay_client, registry, scheduler, listener
):
    radio = fake_radio(current=HOME, ssids=[])
    provisioner = Provisioner(
        radio, device_client, relay_client, registry, scheduler
    )
    first = provisioner.start(request_, listener)

    class Other:
        def on_status(self, message: str) -> None:
            pass

        def on_error(self, message: str) -> None:
            pass

        def on_complete(self) -> None:
            pass

    other = Other()
    second = provisioner.start(request_, other)

    assert second is first
    assert first.listener is other

    provisioner.cancel()
    assert first.phase is Phase.CANCELLED
    third = provisioner.start(request_, listener)
    assert third is not first


def test_cancel_while_sending_wifi_settings(
    make_session, scheduler, device_router, relay_router, listener
):
    session, radio = make_session()

    def cancel_then_accept(request: httpx.Request) -> httpx.Response:
        session.cancel()
        return httpx.Response(200)

    device_router.routes["POST /wifi"] = cancel_then_accept
    session.start()
    scheduler.advance(60)

    assert device_router.hits("POST /wifi") == 1
    assert session.phase is Phase.CANCELLED
    assert session.rolled_back
    assert listener.errors == []
    assert listener.completed == 0
    assert radio.calls_to("connect") == ["IRKitD2A4", "Home"]
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]
    assert relay_router.hits("POST /1/door") == 0


def test_door_poll_keeps_going_through_timeouts(
    make_session, scheduler, relay_router, listener
):
    answers = iter([httpx.Response(408)] * 3)

    def door(request: httpx.Request) -> httpx.Response:
        return next(answers, httpx.Response(200, json={"hostname": "IRKitD2A4"}))

    relay_router.routes["POST /1/door"] = door
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert relay_router.hits("POST /1/door") == 4
    # 408 is polled again inside one attempt, not counted as a failure
    assert session.retries[Phase.CONFIRM_CONNECTIVITY] == 0
    assert listener.completed == 1
    assert listener.errors == []


def test_other_access_point_is_not_sent_credentials(
    make_session, scheduler, device_router, listener
):
    device_router.routes["GET /"] = lambda request: httpx.Response(
        404, headers={"Server": "Apache/2"}
    )
    session, radio = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.FAILED
    assert listener.errors == ["IRKitD2A4 did not answer like an IRKit"]
    assert device_router.hits("POST /wifi") == 0
    assert session.rolled_back
    assert radio.calls_to("remove_network") == ["IRKitD2A4"]


def test_unanswered_access_point_check_still_transmits(
    make_session, scheduler, device_router
):
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    device_router.routes["GET /"] = refused
    session, _ = make_session()
    session.start()
    scheduler.advance(10)

    assert session.phase is Phase.COMPLETE
    assert device_router.hits("GET /") == 1
    assert device_router.hits("POST /wifi") == 1
