from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, model_validator


class SecurityMode(str, Enum):
    OPEN = "open"
    WEP = "wep"
    WPA_WPA2 = "wpa"


class WifiCredentials(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    ssid: str
    security: SecurityMode = SecurityMode.WPA_WPA2
    password: str = ""

    @model_validator(mode="after")
    def _password_required(self) -> WifiCredentials:
        if not self.ssid:
            raise ValueError("ssid must not be empty")
        if self.security is not SecurityMode.OPEN and not self.password:
            raise ValueError(f"password is required for {self.security.value} networks")
        return self


@dataclass(frozen=True)
class DeviceKeyLease:
    """A device key and the device id it was issued for."""

    device_key: str
    device_id: str


@dataclass(frozen=True)
class NetworkProfile:
    """A Wi-Fi network as the radio knows it."""

    ssid: str
    security: SecurityMode = SecurityMode.WPA_WPA2
    id: str | None = None
