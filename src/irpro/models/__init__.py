"""Data models for IRPro."""

from irpro.models.peripheral import Peripheral, parse_server_header
from irpro.models.signal import ReceivedSignal, Signal, new_signal_id
from irpro.models.wifi import (
    DeviceKeyLease,
    NetworkProfile,
    SecurityMode,
    WifiCredentials,
)

__all__ = [
    "DeviceKeyLease",
    "NetworkProfile",
    "Peripheral",
    "ReceivedSignal",
    "SecurityMode",
    "Signal",
    "WifiCredentials",
    "new_signal_id",
    "parse_server_header",
]
