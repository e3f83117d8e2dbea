from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from irpro.models import Peripheral, Signal

PERIPHERALS_FILE = "peripherals.json"
SIGNALS_FILE = "signals.json"
CLIENT_FILE = "client.json"


class Database:
    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._peripherals_path = data_dir / PERIPHERALS_FILE
        self._signals_path = data_dir / SIGNALS_FILE
        self._client_path = data_dir / CLIENT_FILE

    @property
    def path(self) -> Path:
        return self._data_dir

    @property
    def peripherals_path(self) -> Path:
        return self._peripherals_path

    @property
    def signals_path(self) -> Path:
        return self._signals_path

    @property
    def client_path(self) -> Path:
        return self._client_path

    def ensure_dirs(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            with path.open("r") as handle:
                return json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in data file: {path}\n{exc}") from exc

    def _write_json(self, path: Path, data: Any) -> None:
        self.ensure_dirs()
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w") as handle:
            json.dump(data, handle, indent=2)
        tmp_path.replace(path)

    def load_peripherals(self) -> list[Peripheral]:
        data = self._read_json(self._peripherals_path) or []
        try:
            return [Peripheral.model_validate(item) for item in data]
        except ValidationError as exc:
            raise ValueError(
                f"Invalid peripherals file: {self._peripherals_path}\n{exc}"
            ) from exc

    def save_peripherals(self, peripherals: list[Peripheral]) -> None:
        self._write_json(
            self._peripherals_path,
            [peripheral.model_dump(mode="json") for peripheral in peripherals],
        )

    def load_signals(self) -> list[Signal]:
        data = self._read_json(self._signals_path) or []
        try:
            return [Signal.model_validate(item) for item in data]
        except ValidationError as exc:
            raise ValueError(
                f"Invalid signals file: {self._signals_path}\n{exc}"
            ) from exc

    def save_signals(self, signals: list[Signal]) -> None:
        self._write_json(
            self._signals_path, [signal.model_dump(mode="json") for signal in signals]
        )

    def load_client_key(self) -> str | None:
        data = self._read_json(self._client_path) or {}
        return data.get("clientkey") or None

    def save_client_key(self, client_key: str) -> None:
        self._write_json(self._client_path, {"clientkey": client_key})

    def init(self) -> None:
        self.ensure_dirs()
        if not self._peripherals_path.exists():
            self.save_peripherals([])
        if not self._signals_path.exists():
            self.save_signals([])
