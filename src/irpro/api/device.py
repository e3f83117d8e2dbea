"""HTTP API served by the device itself.

The same API is reachable on the device's own access point during setup and
on its LAN address afterwards, so every call takes the endpoint explicitly.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

import httpx

from irpro.errors import CancellationError

from .transport import check_status, decode_json, require_field, translate_errors

logger = logging.getLogger(__name__)

DEVICE_AP_ENDPOINT = "http://192.168.1.1"
REQUESTED_WITH = "IRKit Android SDK"


def server_header(response: httpx.Response) -> str | None:
    return response.headers.get("server")


class DeviceClient:
    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            headers={"X-Requested-With": REQUESTED_WITH},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DeviceClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        path: str,
        *,
        check: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        description = f"{method} {path}"
        url = endpoint.rstrip("/") + path
        with translate_errors(description):
            response = self._client.request(method, url, **kwargs)
        if check:
            check_status(response, description)
        return response

    def post_keys(self, endpoint: str) -> tuple[str, str | None]:
        """Ask the device for a client token; return it with the Server header."""
        response = self._request("POST", endpoint, "/keys")
        data = decode_json(response, "POST /keys")
        client_token = require_field(data, "clienttoken", "POST /keys")
        return client_token, server_header(response)

    def get_messages(self, endpoint: str) -> dict[str, Any] | None:
        """Return the last IR message the device received, if any."""
        response = self._request("GET", endpoint, "/messages")
        data = decode_json(response, "GET /messages")
        return data or None

    def wait_for_signal(
        self,
        endpoint: str,
        cancelled: threading.Event | None = None,
        poll_interval: float = 1.0,
    ) -> dict[str, Any]:
        """Poll the device until it has learned a signal."""
        cancelled = cancelled or threading.Event()
        while not cancelled.is_set():
            message = self.get_messages(endpoint)
            if message is not None:
                return message
            cancelled.wait(poll_interval)
        raise CancellationError("signal wait cancelled")

    def post_messages(self, endpoint: str, message: dict[str, Any]) -> str | None:
        response = self._request(
            "POST",
            endpoint,
            "/messages",
            content=json.dumps(message),
        )
        return server_header(response)

    def post_wifi(self, endpoint: str, encoded_credentials: str) -> str | None:
        response = self._request(
            "POST",
            endpoint,
            "/wifi",
            content=encoded_credentials,
        )
        return server_header(response)

    def get_home(self, endpoint: str) -> str | None:
        """Fetch ``GET /``.

        The device answers 404 here; any response carries the Server header.
        """
        response = self._request("GET", endpoint, "/", check=False)
        return server_header(response)

    def is_device(self, endpoint: str, model_name: str = "IRKit") -> bool:
        server = self.get_home(endpoint)
        if not server:
            return False
        return server.split("/", 1)[0] == model_name
