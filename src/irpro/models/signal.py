from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, Field


def new_signal_id() -> str:
    return uuid.uuid4().hex


class Signal(BaseModel):
    model_config = {"extra": "forbid"}

    id: str = Field(default_factory=new_signal_id)
    name: str = ""
    format: str = "raw"
    frequency: float = 38.0
    data: list[int] = Field(default_factory=list)
    device_id: str | None = None

    def message_payload(self) -> dict[str, Any]:
        """The ``{format, freq, data}`` body both HTTP APIs expect."""
        return {"format": self.format, "freq": self.frequency, "data": self.data}

    @classmethod
    def from_message(
        cls, message: dict[str, Any], device_id: str | None = None, name: str = ""
    ) -> Signal:
        return cls(
            name=name,
            format=message.get("format", "raw"),
            frequency=float(message.get("freq", 38.0)),
            data=list(message.get("data") or []),
            device_id=device_id,
        )


class ReceivedSignal(BaseModel):
    """A message handed back by the relay's long-poll."""

    model_config = {"extra": "ignore"}

    message: dict[str, Any]
    hostname: str = ""
    deviceid: str = ""

    def to_signal(self, name: str = "") -> Signal:
        return Signal.from_message(
            self.message, device_id=self.deviceid or None, name=name
        )
