"""
Whisper Docker Provider Package.

Speech-to-text through an OpenAI Whisper HTTP service running in Docker:
- Container lifecycle with dynamic port discovery and health tracking
- Validated, retried transcription requests with normalized results
"""

from whisper_docker.errors import (
    ConfigurationError,
    EndpointUnavailable,
    InvalidRequest,
    LifecycleError,
    MalformedResponse,
    ModelNotFound,
    PayloadTooLarge,
    ServiceUnavailable,
    UnsupportedCapability,
    UnsupportedFormat,
    WhisperProviderError,
)
from whisper_docker.models import (
    ServiceState,
    ServiceStatus,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionTask,
)
from whisper_docker.provider import WhisperDockerProvider
from whisper_docker.version import get_version

__version__ = get_version()

__all__ = [
    "ConfigurationError",
    "EndpointUnavailable",
    "InvalidRequest",
    "LifecycleError",
    "MalformedResponse",
    "ModelNotFound",
    "PayloadTooLarge",
    "ServiceState",
    "ServiceStatus",
    "ServiceUnavailable",
    "TranscriptionRequest",
    "TranscriptionResult",
    "TranscriptionTask",
    "UnsupportedCapability",
    "UnsupportedFormat",
    "WhisperDockerProvider",
    "WhisperProviderError",
    "__version__",
]
