"""Gateway error taxonomy.

Every error the gateway raises derives from ``GatewayError``. The ``retryable``
class attribute tells the retry controller whether another attempt can help.
"""

from __future__ import annotations

CIRCUIT_OPEN_MESSAGE = "Circuit breaker is OPEN"
NO_TEXT_CONTENT_MESSAGE = "No text content found in response"


class GatewayError(Exception):
    """Base class for all gateway errors."""

    retryable: bool = False


class ConfigurationError(GatewayError):
    """Invalid or missing configuration."""


class CircuitOpenError(GatewayError):
    """Raised without any network attempt while the circuit is open."""

    def __init__(self, message: str = CIRCUIT_OPEN_MESSAGE):
        super().__init__(message)


class TransientTransportError(GatewayError):
    """Network, timeout, rate-limit or 5xx failure; worth retrying."""

    retryable = True

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class TransportRequestError(GatewayError):
    """The endpoint rejected the request itself (4xx other than 429)."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(GatewayError):
    """The response was empty or could not be parsed."""


def is_retryable(exc: BaseException) -> bool:
    """Whether a failed attempt should be tried again.

    Exceptions raised by a transport that are not gateway errors are treated
    as transport-level failures.
    """
    if isinstance(exc, GatewayError):
        return exc.retryable
    return isinstance(exc, Exception)
