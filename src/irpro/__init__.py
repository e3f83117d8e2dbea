"""irpro - set up IRKit infrared bridges, find them on the LAN and send signals."""

from __future__ import annotations

from importlib.metadata import version

from .config import Settings, get_settings
from .models import Peripheral, SecurityMode, Signal, WifiCredentials
from .services import AppContext
from .storage import Database, PeripheralRegistry, SignalStore

__all__ = [
    "AppContext",
    "Database",
    "Peripheral",
    "PeripheralRegistry",
    "SecurityMode",
    "Settings",
    "Signal",
    "SignalStore",
    "WifiCredentials",
    "__version__",
    "get_settings",
]

__version__ = version("irpro")
