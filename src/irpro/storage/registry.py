from __future__ import annotations

import itertools
import logging
import threading

from irpro.models import Peripheral, Signal

from .database import Database

logger = logging.getLogger(__name__)


class PeripheralRegistry:
    """Thread-safe set of known peripherals backed by the database.

    When several peripherals carry the same device id, lookups by device id
    return the one whose id was assigned most recently.
    """

    def __init__(self, database: Database) -> None:
        self._database = database
        self._lock = threading.RLock()
        self._peripherals: list[Peripheral] = []
        self._assigned_order: dict[str, int] = {}
        self._counter = itertools.count(1)

    def load(self) -> None:
        peripherals = self._database.load_peripherals()
        with self._lock:
            self._peripherals = peripherals
            self._assigned_order = {
                p.hostname.lower(): next(self._counter)
                for p in peripherals
                if p.device_id
            }
        logger.debug("Loaded %d peripherals", len(peripherals))

    def save(self) -> None:
        with self._lock:
            snapshot = list(self._peripherals)
            self._database.save_peripherals(snapshot)

    def all(self) -> list[Peripheral]:
        with self._lock:
            return list(self._peripherals)

    def __len__(self) -> int:
        with self._lock:
            return len(self._peripherals)

    def get(self, hostname: str) -> Peripheral | None:
        key = hostname.lower()
        with self._lock:
            for peripheral in self._peripherals:
                if peripheral.hostname.lower() == key:
                    return peripheral
        return None

    def add(self, hostname: str) -> Peripheral:
        peripheral = Peripheral(hostname=hostname, customized_name=hostname)
        with self._lock:
            self._peripherals.append(peripheral)
        logger.info("Added peripheral %s", hostname)
        return peripheral

    def get_or_add(self, hostname: str) -> tuple[Peripheral, bool]:
        with self._lock:
            existing = self.get(hostname)
            if existing is not None:
                return existing, False
            return self.add(hostname), True

    def remove(self, hostname: str) -> Peripheral | None:
        key = hostname.lower()
        with self._lock:
            for index, peripheral in enumerate(self._peripherals):
                if peripheral.hostname.lower() == key:
                    del self._peripherals[index]
                    self._assigned_order.pop(key, None)
                    return peripheral
        return None

    def get_by_device_id(self, device_id: str) -> Peripheral | None:
        with self._lock:
            matches = [p for p in self._peripherals if p.device_id == device_id]
            if not matches:
                return None
            return max(
                matches,
                key=lambda p: self._assigned_order.get(p.hostname.lower(), 0),
            )

    def assign_device_id(self, peripheral: Peripheral, device_id: str) -> None:
        with self._lock:
            peripheral.device_id = device_id
            self._assigned_order[peripheral.hostname.lower()] = next(self._counter)
        logger.debug("Assigned device id %s to %s", device_id, peripheral.hostname)


class SignalStore:
    def __init__(self, database: Database) -> None:
        self._database = database
        self._lock = threading.RLock()
        self._signals: list[Signal] = []

    def load(self) -> None:
        signals = self._database.load_signals()
        with self._lock:
            self._signals = signals

    def save(self) -> None:
        with self._lock:
            self._database.save_signals(list(self._signals))

    def all(self) -> list[Signal]:
        with self._lock:
            return list(self._signals)

    def get(self, signal_id: str) -> Signal | None:
        with self._lock:
            for signal in self._signals:
                if signal.id == signal_id:
                    return signal
        return None

    def find(self, name_or_id: str) -> Signal | None:
        signal = self.get(name_or_id)
        if signal is not None:
            return signal
        with self._lock:
            for candidate in self._signals:
                if candidate.name == name_or_id:
                    return candidate
        return None

    def add(self, signal: Signal) -> None:
        with self._lock:
            if self.get(signal.id) is not None:
                raise ValueError(f"Signal id already in use: {signal.id}")
            self._signals.append(signal)

    def remove(self, signal_id: str) -> bool:
        with self._lock:
            before = len(self._signals)
            self._signals = [s for s in self._signals if s.id != signal_id]
            return len(self._signals) != before

    def for_device(self, device_id: str) -> list[Signal]:
        with self._lock:
            return [s for s in self._signals if s.device_id == device_id]

    def remove_for_device(self, device_id: str) -> int:
        with self._lock:
            before = len(self._signals)
            self._signals = [s for s in self._signals if s.device_id != device_id]
            return before - len(self._signals)
