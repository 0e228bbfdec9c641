"""
Shared data models for the Whisper Docker provider.

Defines service state enums, orchestration reports, transcription requests and
results, and the retry policy used by the transcription client.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from whisper_docker.errors import MalformedResponse

if TYPE_CHECKING:
    from whisper_docker.errors import WhisperProviderError


class ServiceState(Enum):
    """Lifecycle state of the inference service."""

    UNKNOWN = "unknown"  # Nothing observed yet
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"  # Running, but the latest health probe failed
    STOPPING = "stopping"
    ERROR = "error"


class TranscriptionTask(Enum):
    """Task requested from the Whisper service."""

    TRANSCRIBE = "transcribe"
    TRANSLATE = "translate"

    @classmethod
    def parse(cls, value: "TranscriptionTask | str") -> "TranscriptionTask":
        """Accept an enum member or its wire value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        raise ValueError(
            f"Unknown task {value!r}; expected one of "
            + ", ".join(m.value for m in cls)
        )


@dataclass(frozen=True)
class ServiceEndpoint:
    """Network location where the service currently accepts requests."""

    host: str
    port: int
    scheme: str = "http"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    def url(self, path: str) -> str:
        """Join an absolute API path onto the base URL."""
        return f"{self.base_url}/{path.lstrip('/')}"


@dataclass(frozen=True)
class ServiceInfo:
    """Service metadata reported by the orchestration backend."""

    ports: tuple[int, ...] = ()
    host: str = "localhost"
    container_name: str | None = None


@dataclass(frozen=True)
class OrchestrationStatus:
    """Running/health report from the orchestration backend."""

    running: bool
    health: str = "unknown"  # "healthy" | "unhealthy" | "unknown"
    error: str | None = None


@dataclass(frozen=True)
class ServiceStatus:
    """Point-in-time snapshot of the service lifecycle."""

    state: ServiceState
    endpoint: ServiceEndpoint | None = None
    error: str | None = None
    healthy: bool | None = None
    checked_at: float | None = None  # time.monotonic() of the last probe

    @property
    def is_running(self) -> bool:
        return self.state is ServiceState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "base_url": self.endpoint.base_url if self.endpoint else None,
            "error": self.error,
            "healthy": self.healthy,
        }


@dataclass
class LifecycleResult:
    """Result of a start/stop operation."""

    success: bool
    message: str
    status: ServiceStatus
    error: WhisperProviderError | None = None


@dataclass(frozen=True)
class TranscriptionRequest:
    """A validated-before-send transcription request."""

    audio_bytes: bytes
    filename: str
    language: str = "auto"
    task: TranscriptionTask = TranscriptionTask.TRANSCRIBE
    word_timestamps: bool = False

    @property
    def extension(self) -> str:
        """Lower-cased file extension without the dot ("" if none)."""
        name = self.filename.rsplit("/", 1)[-1]
        if "." not in name:
            return ""
        return name.rsplit(".", 1)[-1].lower()


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry behavior for transport-level failures.

    Attributes:
        max_attempts: Total attempts including the first one
        timeout_ms: Per-attempt request timeout in milliseconds
        backoff: "fixed" waits backoff_ms between attempts, "linear" waits
            backoff_ms * attempt_number
        backoff_ms: Base delay between attempts in milliseconds
    """

    max_attempts: int = 2
    timeout_ms: int = 300_000
    backoff: str = "fixed"
    backoff_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.backoff not in ("fixed", "linear"):
            raise ValueError("backoff must be 'fixed' or 'linear'")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must be >= 0")

    @classmethod
    def from_retries(
        cls, retries: int, timeout_ms: int = 300_000, **kwargs: Any
    ) -> "RetryPolicy":
        """Build a policy from the 'additional attempts' configuration value."""
        return cls(max_attempts=retries + 1, timeout_ms=timeout_ms, **kwargs)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def delay_seconds(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.backoff == "linear":
            return self.backoff_ms * attempt / 1000.0
        return self.backoff_ms / 1000.0


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return min(1.0, max(0.0, value))


def _number(value: Any, field_name: str) -> float:
    # bool is an int subclass; a boolean here is a malformed payload
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedResponse(f"Field {field_name!r} is not a number: {value!r}")
    number = float(value)
    if math.isnan(number):
        raise MalformedResponse(f"Field {field_name!r} is NaN")
    return number


def _optional_score(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    return clamp_unit(_number(value, field_name))


@dataclass
class Word:
    """Word-level timestamp."""

    start: float
    end: float
    word: str
    confidence: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "Word":
        if not isinstance(data, dict):
            raise MalformedResponse(f"Word entry is not an object: {data!r}")
        return cls(
            start=_number(data.get("start"), "words.start"),
            end=_number(data.get("end"), "words.end"),
            word=str(data.get("word", "")),
            confidence=_optional_score(
                data.get("confidence", data.get("probability")), "words.confidence"
            ),
        )


@dataclass
class Segment:
    """A timed span of transcribed text."""

    start: float
    end: float
    text: str
    confidence: float | None = None
    words: list[Word] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Segment":
        if not isinstance(data, dict):
            raise MalformedResponse(f"Segment entry is not an object: {data!r}")
        words = data.get("words") or []
        if not isinstance(words, list):
            raise MalformedResponse("Segment 'words' is not a list")
        return cls(
            start=_number(data.get("start"), "segments.start"),
            end=_number(data.get("end"), "segments.end"),
            text=str(data.get("text", "")),
            confidence=_optional_score(data.get("confidence"), "segments.confidence"),
            words=[Word.from_dict(w) for w in words],
        )


@dataclass
class TranscriptionResult:
    """Normalized result of a transcription request."""

    text: str
    language: str
    confidence: float
    segments: list[Segment] = field(default_factory=list)
    processing_time_ms: int = 0
    model_id: str = ""
    duration: float | None = None

    @classmethod
    def from_response(
        cls,
        data: Any,
        *,
        model_id: str = "",
        requested_language: str = "auto",
        processing_time_ms: int = 0,
    ) -> "TranscriptionResult":
        """
        Normalize a service JSON body into a result.

        Args:
            data: Decoded JSON body
            model_id: Model the request was issued for
            requested_language: Language sent with the request, used when the
                service does not report the detected language
            processing_time_ms: Locally measured wall-clock time

        Raises:
            MalformedResponse: If the body is not an object, lacks the text
                field, or carries non-numeric scores/timestamps
        """
        if not isinstance(data, dict):
            raise MalformedResponse("Response body is not a JSON object")

        text = data.get("text")
        if not isinstance(text, str):
            raise MalformedResponse("Response is missing the transcribed 'text' field")

        confidence = data.get("confidence")
        confidence = 0.0 if confidence is None else clamp_unit(
            _number(confidence, "confidence")
        )

        raw_segments = data.get("segments")
        if raw_segments is None:
            raw_segments = []
        elif not isinstance(raw_segments, list):
            raise MalformedResponse("Response 'segments' is not a list")

        duration = data.get("duration")
        if duration is not None:
            duration = _number(duration, "duration")

        language = data.get("language")
        if not isinstance(language, str) or not language:
            language = requested_language

        return cls(
            text=text.strip(),
            language=language,
            confidence=confidence,
            segments=[Segment.from_dict(s) for s in raw_segments],
            processing_time_ms=processing_time_ms,
            model_id=model_id,
            duration=duration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "language": self.language,
            "confidence": self.confidence,
            "segments": [
                {
                    "start": s.start,
                    "end": s.end,
                    "text": s.text,
                    "confidence": s.confidence,
                    "words": [
                        {
                            "start": w.start,
                            "end": w.end,
                            "word": w.word,
                            "confidence": w.confidence,
                        }
                        for w in s.words
                    ],
                }
                for s in self.segments
            ],
            "processing_time_ms": self.processing_time_ms,
            "model_id": self.model_id,
            "duration": self.duration,
        }
