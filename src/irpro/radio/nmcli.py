"""Wi-Fi radio backed by NetworkManager's ``nmcli``."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable

from irpro.core.watcher import AssociationEvent, AuthenticationFailedEvent
from irpro.errors import RadioError
from irpro.models import NetworkProfile, SecurityMode

from .base import ListenerSet, RadioListener

logger = logging.getLogger(__name__)

CONNECTION_PREFIX = "irpro-"
COMMAND_TIMEOUT = 30.0
CONNECT_TIMEOUT = 45.0

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

_AUTH_FAILURE_MARKERS = ("secrets were required", "802-1x", "authentication")


def split_terse(line: str) -> list[str]:
    """Split an ``nmcli -t`` line on unescaped colons."""
    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def security_from_nmcli(value: str) -> SecurityMode:
    value = value.upper()
    if "WPA" in value or "SAE" in value:
        return SecurityMode.WPA_WPA2
    if "WEP" in value:
        return SecurityMode.WEP
    return SecurityMode.OPEN


class NmcliRadio:
    def __init__(
        self,
        interface: str = "wlan0",
        poll_interval: float = 1.0,
        runner: Runner = subprocess.run,
    ) -> None:
        self.interface = interface
        self.poll_interval = poll_interval
        self._runner = runner
        self._listeners = ListenerSet()
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None
        self._last_state: tuple[str | None, bool, str] | None = None

    def _nmcli(self, *args: str, timeout: float = COMMAND_TIMEOUT) -> str:
        command = ["nmcli", *args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = self._runner(
                command, capture_output=True, text=True, timeout=timeout
            )
        except FileNotFoundError as exc:
            raise RadioError("nmcli not found; is NetworkManager installed?") from exc
        except subprocess.TimeoutExpired as exc:
            raise RadioError(f"nmcli timed out: {' '.join(args)}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise RadioError(f"nmcli {' '.join(args[:2])} failed: {message}")
        return result.stdout

    def is_enabled(self) -> bool:
        return self._nmcli("radio", "wifi").strip().lower() == "enabled"

    def set_enabled(self, enabled: bool) -> None:
        self._nmcli("radio", "wifi", "on" if enabled else "off")

    def current_network(self) -> NetworkProfile | None:
        output = self._nmcli(
            "-t",
            "-f",
            "ACTIVE,SSID,SECURITY",
            "device",
            "wifi",
            "list",
            "ifname",
            self.interface,
            "--rescan",
            "no",
        )
        for line in output.splitlines():
            parts = split_terse(line)
            if len(parts) < 3 or parts[0].lower() != "yes" or not parts[1]:
                continue
            return NetworkProfile(
                ssid=parts[1],
                security=security_from_nmcli(parts[2]),
                id=self._active_connection(),
            )
        return None

    def _active_connection(self) -> str | None:
        output = self._nmcli(
            "-g", "GENERAL.CONNECTION", "device", "show", self.interface
        )
        name = output.strip()
        return name or None

    def _ip_address(self) -> str:
        output = self._nmcli("-g", "IP4.ADDRESS", "device", "show", self.interface)
        first = output.strip().split("|")[0].strip()
        return first.split("/")[0]

    def scan(self) -> list[str]:
        try:
            self._nmcli("device", "wifi", "rescan", "ifname", self.interface)
        except RadioError as exc:
            # NetworkManager refuses rescans that come too close together
            logger.debug("Rescan not accepted: %s", exc)
        output = self._nmcli(
            "-t",
            "-f",
            "SSID",
            "device",
            "wifi",
            "list",
            "ifname",
            self.interface,
            "--rescan",
            "no",
        )
        ssids: list[str] = []
        for line in output.splitlines():
            ssid = split_terse(line)[0]
            if ssid and ssid not in ssids:
                ssids.append(ssid)
        return ssids

    def add_network(
        self, ssid: str, password: str, security: SecurityMode
    ) -> NetworkProfile:
        name = f"{CONNECTION_PREFIX}{ssid}"
        self._delete_connection(name)
        args = [
            "connection",
            "add",
            "type",
            "wifi",
            "ifname",
            self.interface,
            "con-name",
            name,
            "autoconnect",
            "no",
            "ssid",
            ssid,
        ]
        if security is SecurityMode.WPA_WPA2:
            args += ["wifi-sec.key-mgmt", "wpa-psk", "wifi-sec.psk", password]
        elif security is SecurityMode.WEP:
            args += ["wifi-sec.key-mgmt", "none", "wifi-sec.wep-key0", password]
        self._nmcli(*args)
        return NetworkProfile(ssid=ssid, security=security, id=name)

    def connect(self, profile: NetworkProfile) -> None:
        if profile.id is None:
            raise RadioError(f"Network {profile.ssid} has no connection profile")
        thread = threading.Thread(
            target=self._connection_up,
            args=(profile,),
            name=f"nmcli-up-{profile.ssid}",
            daemon=True,
        )
        thread.start()

    def _connection_up(self, profile: NetworkProfile) -> None:
        assert profile.id is not None
        try:
            self._nmcli("connection", "up", profile.id, timeout=CONNECT_TIMEOUT)
        except RadioError as exc:
            message = str(exc).lower()
            logger.info("Activating %s failed: %s", profile.ssid, exc)
            if any(marker in message for marker in _AUTH_FAILURE_MARKERS):
                self._listeners.emit(AuthenticationFailedEvent(ssid=profile.ssid))
            else:
                self._listeners.emit(
                    AssociationEvent(ssid=profile.ssid, connected=False)
                )
            return
        self._poll_once()

    def disconnect(self) -> None:
        self._nmcli("device", "disconnect", self.interface)

    def remove_network(self, profile: NetworkProfile) -> None:
        if profile.id:
            self._delete_connection(profile.id)

    def _delete_connection(self, name: str) -> None:
        output = self._nmcli("-t", "-f", "NAME", "connection", "show")
        if name in (split_terse(line)[0] for line in output.splitlines()):
            self._nmcli("connection", "delete", name)

    def add_listener(self, listener: RadioListener) -> None:
        if self._listeners.add(listener):
            self._start_polling()

    def remove_listener(self, listener: RadioListener) -> None:
        if self._listeners.remove(listener):
            self._stop.set()

    def _start_polling(self) -> None:
        if self._poller is not None and self._poller.is_alive():
            self._stop.clear()
            return
        self._stop.clear()
        self._last_state = None
        self._poller = threading.Thread(
            target=self._poll_loop, name="nmcli-poll", daemon=True
        )
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self._poll_once()
            except RadioError as exc:
                logger.warning("Polling Wi-Fi state failed: %s", exc)
            self._stop.wait(self.poll_interval)

    def _poll_once(self) -> None:
        network = self.current_network()
        ssid = network.ssid if network else None
        ip_address = self._ip_address() if network else ""
        state = (ssid, network is not None, ip_address)
        if state == self._last_state:
            return
        self._last_state = state
        self._listeners.emit(
            AssociationEvent(
                ssid=ssid, connected=network is not None, ip_address=ip_address
            )
        )
