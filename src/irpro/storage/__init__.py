from __future__ import annotations

from .database import Database
from .registry import PeripheralRegistry, SignalStore

__all__ = ["Database", "PeripheralRegistry", "SignalStore"]
