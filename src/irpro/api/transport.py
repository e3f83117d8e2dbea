from __future__ import annotations

import errno
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from irpro.errors import (
    APIStatusError,
    DeviceLeftNetworkError,
    ProtocolError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

_UNREACHABLE_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ENETDOWN}
_UNREACHABLE_TEXT = ("network is unreachable", "no route to host", "network is down")


def _is_unreachable(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno in _UNREACHABLE_ERRNOS:
            return True
        if any(text in str(current).lower() for text in _UNREACHABLE_TEXT):
            return True
        current = current.__cause__ or current.__context__
    return False


@contextmanager
def translate_errors(description: str) -> Iterator[None]:
    """Turn httpx failures raised inside the block into irpro errors."""
    try:
        yield
    except httpx.TimeoutException as exc:
        raise TransientNetworkError(f"{description}: timed out") from exc
    except httpx.ConnectError as exc:
        if _is_unreachable(exc):
            raise DeviceLeftNetworkError(f"{description}: {exc}") from exc
        raise TransientNetworkError(f"{description}: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientNetworkError(f"{description}: {exc}") from exc


def check_status(response: httpx.Response, description: str) -> None:
    if response.status_code >= 400:
        logger.debug(
            "%s failed with HTTP %d: %s",
            description,
            response.status_code,
            response.text[:200],
        )
        raise APIStatusError(
            response.status_code, f"{description}: HTTP {response.status_code}"
        )


def decode_json(response: httpx.Response, description: str) -> Any:
    if not response.content.strip():
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"{description}: invalid JSON response") from exc


def require_field(data: Any, field: str, description: str) -> str:
    if not isinstance(data, dict) or not data.get(field):
        raise ProtocolError(f"{description}: response has no {field}")
    return str(data[field])
