from __future__ import annotations

import locale

import pytest

from irpro.core.credentials import (
    RegDomain,
    credentials_checksum,
    crc8,
    default_country_code,
    encode_credentials,
    is_device_ap_ssid,
    password_for_device,
    raw_ssid,
    reg_domain_for_country,
)
from irpro.models import SecurityMode, WifiCredentials


def test_crc8_single_byte():
    assert crc8(b"", 0) == 0
    assert crc8(b"\x01", 1) == 0x31


def test_crc8_pads_short_fields_with_zeros():
    assert crc8(b"A", 4) == crc8(b"A\x00\x00\x00", 4)


def test_crc8_truncates_long_fields():
    assert crc8(b"x" * 40, 33) == crc8(b"x" * 33, 33)


def test_encode_wpa_credentials():
    creds = WifiCredentials(ssid="Home", password="secret123")
    encoded = encode_credentials(creds, "DEVICEKEY", RegDomain.TELEC)

    parts = encoded.split("/")
    assert parts[:5] == ["8", "486F6D65", "736563726574313233", "DEVICEKEY", "2"]
    assert parts[5:10] == ["", "", "", "", ""]
    crc = credentials_checksum(creds, "secret123", "DEVICEKEY")
    assert parts[10] == f"{crc:02X}"
    assert len(parts[10]) == 2


def test_encode_open_network_has_empty_password():
    creds = WifiCredentials(ssid="cafe", security=SecurityMode.OPEN, password="ignored")
    encoded = encode_credentials(creds, "KEY", RegDomain.FCC)

    assert encoded.startswith("0/63616665//KEY/0//////")


def test_checksum_depends_on_device_key():
    creds = WifiCredentials(ssid="Home", password="secret123")
    assert credentials_checksum(creds, "secret123", "A") != credentials_checksum(
        creds, "secret123", "B"
    )


@pytest.mark.parametrize(
    ("password", "expected"),
    [("12345", "3132333435"), ("ABCDEF0123", "ABCDEF0123")],
)
def test_wep_ascii_keys_are_hex_armored(password, expected):
    creds = WifiCredentials(ssid="old", security=SecurityMode.WEP, password=password)
    assert password_for_device(creds) == expected


def test_password_is_required_for_secured_networks():
    with pytest.raises(ValueError, match="password is required"):
        WifiCredentials(ssid="Home", security=SecurityMode.WPA_WPA2)
    with pytest.raises(ValueError, match="ssid"):
        WifiCredentials(ssid="", security=SecurityMode.OPEN)


@pytest.mark.parametrize(
    ("country", "domain"),
    [
        ("JP", RegDomain.TELEC),
        ("us", RegDomain.FCC),
        ("BR", RegDomain.FCC),
        ("DE", RegDomain.ETSI),
        ("", RegDomain.ETSI),
    ],
)
def test_reg_domain_for_country(country, domain):
    assert reg_domain_for_country(country) is domain


def test_default_country_code_from_locale(monkeypatch):
    monkeypatch.setattr(locale, "getlocale", lambda: ("ja_JP", "UTF-8"))
    assert default_country_code() == "JP"

    monkeypatch.setattr(locale, "getlocale", lambda: (None, None))
    assert default_country_code() == ""


def test_device_access_point_names():
    assert is_device_ap_ssid("IRKitD2A4")
    assert is_device_ap_ssid('"IRKitD2A4"')
    assert not is_device_ap_ssid("Home")
    assert not is_device_ap_ssid(None)
    assert raw_ssid('"Home"') == "Home"
    assert raw_ssid('"') == '"'


def reference_crc8(data: bytes) -> int:
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = ((crc << 1) ^ 0x31) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
    return crc


def firmware_layout(security: int, ssid: bytes, password: bytes, key: bytes) -> bytes:
    """Credentials as the device stores them before checksumming."""
    return (
        bytes([security])
        + ssid.ljust(33, b"\0")
        + password.ljust(64, b"\0")
        + b"\x01\x00"
        + key.ljust(33, b"\0")
    )


def test_open_network_checksum_matches_device_layout():
    creds = WifiCredentials(ssid="home", security=SecurityMode.OPEN)
    fields = encode_credentials(creds, "abc123", RegDomain.TELEC).split("/")

    assert fields[:5] == ["0", "686F6D65", "", "abc123", "2"]
    expected = reference_crc8(firmware_layout(0, b"home", b"", b"abc123"))
    assert int(fields[-1], 16) == expected


def test_one_character_ssid_change_changes_checksum():
    home = WifiCredentials(ssid="home", security=SecurityMode.OPEN)
    hone = WifiCredentials(ssid="hone", security=SecurityMode.OPEN)
    home_crc = encode_credentials(home, "abc123", RegDomain.TELEC).split("/")[-1]
    hone_crc = encode_credentials(hone, "abc123", RegDomain.TELEC).split("/")[-1]

    assert home_crc != hone_crc
    expected = reference_crc8(firmware_layout(0, b"hone", b"", b"abc123"))
    assert int(hone_crc, 16) == expected
