"""Client for the cloud relay that pairs devices and forwards messages."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import httpx
import tenacity

from irpro.errors import APIStatusError, CancellationError, ProtocolError
from irpro.models import DeviceKeyLease, ReceivedSignal

from .transport import check_status, decode_json, require_field, translate_errors

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.getirkit.com"


class EmptyDoorResponse(ProtocolError):
    """``POST /1/door`` answered without a hostname."""


def _should_retry_door(exc: BaseException) -> bool:
    if isinstance(exc, EmptyDoorResponse):
        return True
    return isinstance(exc, APIStatusError) and exc.is_client_error


def _log_door_retry(retry_state: tenacity.RetryCallState) -> None:
    outcome = retry_state.outcome
    logger.debug(
        "Door poll attempt %d returned %s; polling again",
        retry_state.attempt_number,
        outcome.exception() if outcome is not None else None,
    )


class RelayClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        client_key: str | None = None,
        connect_timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        on_client_key: Callable[[str], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self._client_key = client_key
        self._on_client_key = on_client_key
        self._sleep = sleep
        self._lease: DeviceKeyLease | None = None
        self._lock = threading.Lock()
        # long-polls hold the connection open as long as the relay wants
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(None, connect=connect_timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RelayClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def client_key(self) -> str | None:
        return self._client_key

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        description = f"{method} {path}"
        with translate_errors(description):
            response = self._client.request(method, path, **kwargs)
        check_status(response, description)
        return decode_json(response, description)

    def _with_client_key(self, **params: str) -> dict[str, str]:
        if self._client_key is None:
            raise ProtocolError("client key is not set")
        return {"clientkey": self._client_key, **params}

    def register_client(self, api_key: str | None = None) -> str:
        data = self._request(
            "POST", "/1/clients", data={"apikey": api_key or self.api_key}
        )
        client_key = require_field(data, "clientkey", "POST /1/clients")
        self._client_key = client_key
        logger.info("Registered relay client")
        if self._on_client_key is not None:
            self._on_client_key(client_key)
        return client_key

    def ensure_client_key(self) -> str:
        if self._client_key:
            return self._client_key
        return self.register_client()

    def exchange_client_token(self, client_token: str) -> str:
        """Trade a token from the device's ``POST /keys`` for its device id."""
        data = self._request(
            "POST", "/1/keys", data=self._with_client_key(clienttoken=client_token)
        )
        return require_field(data, "deviceid", "POST /1/keys")

    def create_device(self) -> DeviceKeyLease:
        with self._lock:
            if self._lease is not None:
                return self._lease
        data = self._request("POST", "/1/devices", data=self._with_client_key())
        lease = DeviceKeyLease(
            device_key=require_field(data, "devicekey", "POST /1/devices"),
            device_id=require_field(data, "deviceid", "POST /1/devices"),
        )
        with self._lock:
            self._lease = lease
        logger.debug("Obtained device key for %s", lease.device_id)
        return lease

    def clear_device_key_cache(self) -> None:
        with self._lock:
            self._lease = None

    def post_door(self, device_id: str) -> str | None:
        data = self._request(
            "POST", "/1/door", data=self._with_client_key(deviceid=device_id)
        )
        if isinstance(data, dict) and data.get("hostname"):
            return str(data["hostname"])
        return None

    def wait_for_door(
        self, device_id: str, cancelled: threading.Event | None = None
    ) -> str:
        """Long-poll until the device checks in with the relay.

        The relay answers 408 when nothing happened within its own window; any
        4xx and an empty hostname are polled again until ``cancelled`` is set.
        """
        cancelled = cancelled or threading.Event()

        def attempt() -> str:
            if cancelled.is_set():
                raise CancellationError("door poll cancelled")
            hostname = self.post_door(device_id)
            if not hostname:
                raise EmptyDoorResponse("POST /1/door: response has no hostname")
            return hostname

        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_should_retry_door),
            wait=tenacity.wait_none(),
            before_sleep=_log_door_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(attempt)

    def get_messages(self, clear: bool = False) -> ReceivedSignal | None:
        params = self._with_client_key()
        if clear:
            params["clear"] = "1"
        data = self._request("GET", "/1/messages", params=params)
        if not data:
            return None
        return ReceivedSignal.model_validate(data)

    def wait_for_signal(
        self, cancelled: threading.Event | None = None, clear: bool = True
    ) -> ReceivedSignal:
        """Long-poll for the next IR signal the device learns."""
        cancelled = cancelled or threading.Event()
        while not cancelled.is_set():
            received = self.get_messages(clear=clear)
            if received is not None:
                return received
            # an empty answer means the relay's window elapsed; poll again
            clear = False
        raise CancellationError("signal wait cancelled")

    def post_messages(self, device_id: str, message: dict[str, Any]) -> None:
        self._request(
            "POST",
            "/1/messages",
            data=self._with_client_key(
                deviceid=device_id, message=json.dumps(message)
            ),
        )
