from __future__ import annotations

from .device import DEVICE_AP_ENDPOINT, DeviceClient
from .relay import DEFAULT_BASE_URL, RelayClient

__all__ = ["DEFAULT_BASE_URL", "DEVICE_AP_ENDPOINT", "DeviceClient", "RelayClient"]
