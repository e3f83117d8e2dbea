from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_server_header(value: str) -> tuple[str, str] | None:
    """Split a ``Server`` header such as ``IRKit/2.0.2.0.g838e0ea``."""
    model_name, sep, firmware_version = value.partition("/")
    if not sep:
        return None
    return model_name, firmware_version


class Peripheral(BaseModel):
    """An IRKit device known to this host.

    ``host``, ``port`` and ``is_fetching_device_id`` describe the current
    session only and are never written to disk.
    """

    model_config = {"extra": "ignore"}

    hostname: str
    customized_name: str = ""
    found_date: datetime = Field(default_factory=_utcnow)
    device_id: str | None = None
    model_name: str | None = None
    firmware_version: str | None = None

    host: str | None = Field(default=None, exclude=True)
    port: int = Field(default=0, exclude=True)
    is_fetching_device_id: bool = Field(default=False, exclude=True)

    @property
    def display_name(self) -> str:
        return self.customized_name or self.hostname

    def has_device_id(self) -> bool:
        return bool(self.device_id)

    def has_model_info(self) -> bool:
        return self.model_name is not None

    def is_local_address_resolved(self) -> bool:
        return self.host is not None

    def device_api_endpoint(self) -> str | None:
        if self.host is None:
            return None
        return f"http://{self.host}:{self.port}"

    def set_local_address(self, host: str, port: int) -> None:
        self.host = host
        self.port = port

    def lost_local_address(self) -> None:
        self.host = None
        self.port = 0

    def store_server_header(self, value: str | None) -> bool:
        """Update model info from a ``Server`` header; return True if it changed."""
        if not value:
            return False
        parsed = parse_server_header(value)
        if parsed is None:
            return False
        model_name, firmware_version = parsed
        modified = False
        if self.model_name != model_name:
            self.model_name = model_name
            modified = True
        if self.firmware_version != firmware_version:
            self.firmware_version = firmware_version
            modified = True
        return modified
