from __future__ import annotations


class IRProError(Exception):
    """Base class for errors raised by irpro."""


class TransientNetworkError(IRProError):
    """A request failed at the transport level and may succeed if repeated."""


class DeviceLeftNetworkError(TransientNetworkError):
    """The host lost its route to the peer, usually because Wi-Fi switched away."""


class AuthenticationError(IRProError):
    pass


class ProtocolError(IRProError):
    """The peer answered, but not with something we understand."""


class APIStatusError(IRProError):
    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class RetryBudgetExceeded(IRProError):
    pass


class PhaseTimeout(IRProError, TimeoutError):
    pass


class CancellationError(IRProError):
    pass


class RadioError(IRProError):
    pass
