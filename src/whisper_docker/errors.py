"""
Error taxonomy for the Whisper Docker provider.

Every failure surfaced by the provider is one of these types, so callers can
branch on the cause (for example retry on ServiceUnavailable but never on
UnsupportedFormat). The ``kind`` attribute is a stable string for logging and
serialization.
"""

from __future__ import annotations


class WhisperProviderError(Exception):
    """Base class for all provider errors."""

    kind = "WhisperProviderError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Serializable form used by the CLI."""
        return {"kind": self.kind, "message": self.message}


class UnsupportedFormat(WhisperProviderError):
    """The audio filename has an extension the service does not accept."""

    kind = "UnsupportedFormat"


class PayloadTooLarge(WhisperProviderError):
    """The audio payload exceeds the maximum upload size."""

    kind = "PayloadTooLarge"

    def __init__(self, message: str, size: int, limit: int):
        super().__init__(message)
        self.size = size
        self.limit = limit


class ServiceUnavailable(WhisperProviderError):
    """The service is not running, or every attempt failed at the transport level."""

    kind = "ServiceUnavailable"

    def __init__(
        self,
        message: str,
        last_error: BaseException | None = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class InvalidRequest(WhisperProviderError):
    """The request was rejected (locally, or by the service with a 4xx)."""

    kind = "InvalidRequest"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MalformedResponse(WhisperProviderError):
    """The service answered 2xx but the body could not be normalized."""

    kind = "MalformedResponse"


class UnsupportedCapability(WhisperProviderError):
    """The bound model does not advertise the requested task."""

    kind = "UnsupportedCapability"


class EndpointUnavailable(WhisperProviderError):
    """The orchestration layer reported no usable port for the service."""

    kind = "EndpointUnavailable"


class LifecycleError(WhisperProviderError):
    """Starting or stopping the service failed."""

    kind = "LifecycleError"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(WhisperProviderError, ValueError):
    """Configuration options have an unknown shape or invalid values."""

    kind = "ConfigurationError"


class ModelNotFound(WhisperProviderError, LookupError):
    """The requested model id is not declared by the provider."""

    kind = "ModelNotFound"
