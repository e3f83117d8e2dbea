from __future__ import annotations

import json
import os
import tomllib
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .paths import default_config_path, default_data_dir, expand_path

CONFIG_ENV_VAR = "IRPRO_CONFIG"


class DatabaseConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    path: str = Field(default_factory=lambda: str(default_data_dir()))


class RelayConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    base_url: str = "https://api.getirkit.com"
    api_key: str = ""
    connect_timeout: float = Field(default=10.0, gt=0)


class DeviceConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    ap_endpoint: str = "http://192.168.1.1"
    ap_password: str = "XXXXXXXXXX"
    ap_ssid_prefix: str = "IRKit"
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=30.0, gt=0)


class DiscoveryConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    service_type: str = "_irkit._tcp.local."
    resolve_timeout: float = Field(default=3.0, gt=0)
    device_id_fetch_delay: float = Field(default=2.0, ge=0)
    model_info_fetch_delay: float = Field(default=0.5, ge=0)


class ProvisioningConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    country_code: str = ""
    device_key_timeout: float = Field(default=30.0, gt=0)
    scan_timeout: float = Field(default=50.0, gt=0)
    rescan_interval: float = Field(default=10.0, gt=0)
    connect_ap_timeout: float = Field(default=30.0, gt=0)
    ap_settle_delay: float = Field(default=2.0, ge=0)
    ap_check_timeout: float = Field(default=3.0, gt=0)
    transmit_timeout: float = Field(default=30.0, gt=0)
    transmit_attempts: int = Field(default=5, ge=1)
    transmit_backoff: float = Field(default=1.0, ge=0)
    home_settle_delay: float = Field(default=0.5, ge=0)
    home_network_timeout: float = Field(default=0.0, ge=0)
    confirm_timeout: float = Field(default=30.0, gt=0)
    confirm_attempts: int = Field(default=2, ge=1)
    confirm_backoff: float = Field(default=1.0, ge=0)
    require_local_discovery: bool = False


class DispatchConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    local_timeout: float = Field(default=3.0, gt=0)
    request_spacing: float = Field(default=1.0, ge=0)


class RadioConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    interface: str = "wlan0"
    poll_interval: float = Field(default=1.0, gt=0)


class Settings(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    radio: RadioConfig = Field(default_factory=RadioConfig)


def resolve_config_path(allow_missing: bool = False) -> tuple[Path, bool]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = expand_path(env_path)
        if not allow_missing and not path.exists():
            raise FileNotFoundError(f"{CONFIG_ENV_VAR} points to missing file: {path}")
        return path, path.exists()

    path = default_config_path()
    return path, path.exists()


def load_settings(path: Path) -> Settings:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in config file: {path}\n{exc}") from exc

    try:
        return Settings.model_validate(data or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid config file: {path}\n{exc}") from exc


@lru_cache
def get_settings() -> Settings:
    path, exists = resolve_config_path(allow_missing=False)
    if exists:
        return load_settings(path)
    return Settings()


def data_dir_from_settings(settings: Settings) -> Path:
    return expand_path(settings.database.path)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return json.dumps(value)
    return str(value)


def _render_section(name: str, section: BaseModel) -> list[str]:
    lines = [f"[{name}]"]
    for key, value in section.model_dump().items():
        lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")
    return lines


def render_settings_toml(settings: Settings) -> str:
    lines = ["# IRPro configuration", ""]
    for name in Settings.model_fields:
        lines.extend(_render_section(name, getattr(settings, name)))
    return "\n".join(lines)


def write_settings(settings: Settings, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_settings_toml(settings))
