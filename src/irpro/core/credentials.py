"""Encoding of Wi-Fi credentials for ``POST /wifi``.

The device expects::

    {security}/{ssid hex}/{password hex}/{device key}/{regdomain}//////{crc}

where the CRC8 covers fixed-size windows of each field, exactly as the
firmware stores them. Fields longer than their window are truncated for
the checksum only; the hex fields still carry the full value.
"""

from __future__ import annotations

import locale
import re
from enum import IntEnum

from irpro.models import SecurityMode, WifiCredentials

CRC8_INIT = 0x00
CRC8_POLY = 0x31

SSID_WINDOW = 33
PASSWORD_WINDOW = 64
DEVICE_KEY_WINDOW = 33

SECURITY_CODES = {
    SecurityMode.OPEN: 0,
    SecurityMode.WEP: 2,
    SecurityMode.WPA_WPA2: 8,
}

DEVICE_AP_SSID_PREFIX = "IRKit"

_FCC_COUNTRIES = re.compile(
    r"^(?:CA|MX|US|AU|HK|IN|MY|NZ|PH|TW|RU|AR|BR|CL|CO|CR|DO|DM|EC|PA|PY|PE|PR|VE)$"
)


class RegDomain(IntEnum):
    FCC = 0
    ETSI = 1
    TELEC = 2


def crc8(data: bytes, size: int, crc: int = CRC8_INIT) -> int:
    """CRC8 over ``size`` bytes of ``data``.

    Positions past the end of ``data`` shift the register without XOR-ing.
    """
    for i in range(size):
        if i < len(data):
            crc ^= data[i]
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ CRC8_POLY) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
    return crc


def to_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return data.hex().upper()


def password_for_device(credentials: WifiCredentials) -> str:
    if credentials.security is SecurityMode.OPEN:
        return ""
    password = credentials.password
    if credentials.security is SecurityMode.WEP:
        # 5 and 13 byte WEP keys are ASCII keys the firmware wants as hex
        if len(password.encode("utf-8")) in (5, 13):
            return to_hex(password)
    return password


def credentials_checksum(
    credentials: WifiCredentials, password: str, device_key: str
) -> int:
    crc = crc8(bytes([SECURITY_CODES[credentials.security]]), 1)
    crc = crc8(credentials.ssid.encode("utf-8"), SSID_WINDOW, crc)
    crc = crc8(password.encode("utf-8"), PASSWORD_WINDOW, crc)
    crc = crc8(b"\x01", 1, crc)  # wifi is set
    crc = crc8(b"\x00", 1, crc)  # wifi was not valid
    crc = crc8(device_key.encode("utf-8"), DEVICE_KEY_WINDOW, crc)
    return crc


def encode_credentials(
    credentials: WifiCredentials, device_key: str, reg_domain: int
) -> str:
    password = password_for_device(credentials)
    crc = credentials_checksum(credentials, password, device_key)
    return (
        f"{SECURITY_CODES[credentials.security]}"
        f"/{to_hex(credentials.ssid)}"
        f"/{to_hex(password)}"
        f"/{device_key}"
        f"/{int(reg_domain)}"
        f"//////{crc:02X}"
    )


def reg_domain_for_country(country_code: str) -> RegDomain:
    code = country_code.upper()
    if code == "JP":
        return RegDomain.TELEC
    if _FCC_COUNTRIES.match(code):
        return RegDomain.FCC
    return RegDomain.ETSI


def default_country_code() -> str:
    name = locale.getlocale()[0] or ""
    _, _, country = name.partition("_")
    return country[:2].upper()


def raw_ssid(ssid: str) -> str:
    if len(ssid) >= 2 and ssid.startswith('"') and ssid.endswith('"'):
        return ssid[1:-1]
    return ssid


def is_device_ap_ssid(ssid: str | None, prefix: str = DEVICE_AP_SSID_PREFIX) -> bool:
    if not ssid:
        return False
    return raw_ssid(ssid).startswith(prefix)
