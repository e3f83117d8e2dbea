from __future__ import annotations

from .base import ListenerSet, RadioListener, WifiRadio
from .nmcli import NmcliRadio

__all__ = ["ListenerSet", "NmcliRadio", "RadioListener", "WifiRadio"]
