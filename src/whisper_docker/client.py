"""
HTTP client for the Whisper transcription service.

Handles:
- Validation of format, size and service state before any network I/O
- Multipart upload of audio plus transcription options
- Retry with timeout for transport-level failures
- Normalization of responses and errors into typed results
"""

import asyncio
import json
import logging
import mimetypes
import platform
import time
from typing import Any, Protocol

import aiohttp

from whisper_docker.errors import (
    InvalidRequest,
    MalformedResponse,
    PayloadTooLarge,
    ServiceUnavailable,
    UnsupportedFormat,
)
from whisper_docker.health import HEALTH_PATH
from whisper_docker.models import (
    RetryPolicy,
    ServiceState,
    ServiceStatus,
    TranscriptionRequest,
    TranscriptionResult,
)
from whisper_docker.version import __version__

logger = logging.getLogger(__name__)

TRANSCRIBE_PATH = "/transcribe"

SUPPORTED_INPUT_FORMATS = frozenset(
    {"mp3", "wav", "flac", "m4a", "ogg", "wma", "aac", "opus", "webm"}
)
MAX_PAYLOAD_BYTES = 25 * 1024 * 1024

SUPPORTED_LANGUAGES = (
    "auto", "en", "es", "fr", "de", "it", "pt", "ru", "ja", "ko",
    "zh", "ar", "hi", "nl", "sv", "da", "no", "fi", "pl", "tr",
)

# Failures worth another attempt; 4xx responses are never retried
_TRANSPORT_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


class ServiceStatusSource(Protocol):
    """Read-only view of the service lifecycle (implemented by the controller)."""

    def snapshot(self) -> ServiceStatus: ...


class _ServerError(Exception):
    """5xx from the service; treated like a transport failure."""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status


def validate_audio_format(filename: str) -> bool:
    """Return True if filename has a supported audio extension."""
    name = (filename or "").rsplit("/", 1)[-1]
    if "." not in name:
        return False
    return name.rsplit(".", 1)[-1].lower() in SUPPORTED_INPUT_FORMATS


def _error_message(body: str) -> str:
    """Extract a human-readable message from an error response body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip() or "no details"
    if isinstance(data, dict):
        for key in ("error", "detail", "message"):
            if data.get(key):
                return str(data[key])
    return body.strip() or "no details"


class TranscriptionClient:
    """
    Sends transcription requests to the service's current endpoint.

    The client never caches the endpoint: every attempt reads the lifecycle
    controller's snapshot, so a restart on a new port is picked up.
    """

    def __init__(
        self,
        service: ServiceStatusSource,
        retry_policy: RetryPolicy | None = None,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
    ):
        """
        Initialize the client.

        Args:
            service: Source of the current status and endpoint (read-only)
            retry_policy: Attempts, timeout and backoff (immutable)
            max_payload_bytes: Upload size limit
        """
        self.service = service
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_payload_bytes = max_payload_bytes

        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"whisper-docker-provider/{__version__} ({platform.system()})",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session bound to the running event loop."""
        loop = asyncio.get_running_loop()
        if self._session is not None and self._session_loop is not loop:
            # Sessions cannot be shared across event loops
            stale, self._session = self._session, None
            try:
                await stale.close()
            except Exception as e:
                logger.debug(f"Closing stale session failed: {e}")

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.retry_policy.timeout_seconds),
                headers=self._get_headers(),
            )
            self._session_loop = loop
            logger.debug("New aiohttp session created")

        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_loop = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: TranscriptionRequest) -> None:
        """
        Check a request locally.

        Raises:
            UnsupportedFormat: Extension not in the supported set
            PayloadTooLarge: Audio larger than the upload limit
            InvalidRequest: Empty audio
        """
        if not validate_audio_format(request.filename):
            raise UnsupportedFormat(
                f"Unsupported audio format for '{request.filename}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_INPUT_FORMATS))}"
            )

        size = len(request.audio_bytes)
        if size > self.max_payload_bytes:
            raise PayloadTooLarge(
                f"Audio payload is {size} bytes; the limit is {self.max_payload_bytes} bytes",
                size=size,
                limit=self.max_payload_bytes,
            )
        if size == 0:
            raise InvalidRequest("Audio payload is empty")

    def _require_running(self) -> ServiceStatus:
        status = self.service.snapshot()
        if status.state is not ServiceState.RUNNING or status.endpoint is None:
            detail = f": {status.error}" if status.error else ""
            raise ServiceUnavailable(
                f"Transcription service is {status.state.value}{detail}"
            )
        return status

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _build_form(self, request: TranscriptionRequest) -> aiohttp.FormData:
        content_type = mimetypes.guess_type(request.filename)[0] or "application/octet-stream"
        data = aiohttp.FormData()
        data.add_field(
            "audio",
            request.audio_bytes,
            filename=request.filename,
            content_type=content_type,
        )
        data.add_field("language", request.language)
        data.add_field("task", request.task.value)
        data.add_field("word_timestamps", str(request.word_timestamps).lower())
        return data

    async def _post_once(self, url: str, request: TranscriptionRequest) -> Any:
        """One attempt. Returns the decoded JSON body."""
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.retry_policy.timeout_seconds)

        async with session.post(
            url, data=self._build_form(request), timeout=timeout
        ) as resp:
            if 400 <= resp.status < 500:
                message = _error_message(await resp.text(errors="replace"))
                raise InvalidRequest(
                    f"Service rejected the request (HTTP {resp.status}): {message}",
                    status=resp.status,
                )
            if resp.status >= 500:
                message = _error_message(await resp.text(errors="replace"))
                raise _ServerError(resp.status, message)
            if resp.status >= 300:
                raise MalformedResponse(f"Unexpected HTTP {resp.status} from service")

            raw = await resp.read()

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedResponse(f"Response body is not valid JSON: {e}") from e

    async def transcribe(
        self, request: TranscriptionRequest, *, model_id: str = ""
    ) -> TranscriptionResult:
        """
        Transcribe one audio payload.

        Args:
            request: Audio and options
            model_id: Model the result is attributed to

        Returns:
            Normalized transcription result

        Raises:
            UnsupportedFormat, PayloadTooLarge, InvalidRequest: Rejected locally
                before any request is sent
            ServiceUnavailable: Service not running, or all attempts failed
            InvalidRequest: The service answered 4xx (never retried)
            MalformedResponse: The service answered 2xx with an unusable body
        """
        self.validate(request)
        self._require_running()

        policy = self.retry_policy
        started = time.perf_counter()
        last_error: BaseException | None = None

        for attempt in range(1, policy.max_attempts + 1):
            # Re-read every attempt; the port changes if the service restarts
            status = self._require_running()
            url = status.endpoint.url(TRANSCRIBE_PATH)
            logger.info(
                f"Transcribing {request.filename} ({len(request.audio_bytes)} bytes, "
                f"task={request.task.value}, language={request.language}) "
                f"attempt {attempt}/{policy.max_attempts}"
            )

            try:
                payload = await self._post_once(url, request)
            except _TRANSPORT_ERRORS + (_ServerError,) as e:
                last_error = e
                reason = (
                    f"timeout after {policy.timeout_seconds:g}s"
                    if isinstance(e, asyncio.TimeoutError)
                    else f"{type(e).__name__}: {e}"
                )
                logger.warning(f"Transcription attempt {attempt} failed: {reason}")
                if attempt < policy.max_attempts:
                    await asyncio.sleep(policy.delay_seconds(attempt))
                continue

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            result = TranscriptionResult.from_response(
                payload,
                model_id=model_id,
                requested_language=request.language,
                processing_time_ms=elapsed_ms,
            )
            logger.info(
                f"Transcription complete in {elapsed_ms} ms "
                f"({len(result.segments)} segments, language={result.language})"
            )
            return result

        raise ServiceUnavailable(
            f"Transcription failed after {policy.max_attempts} attempt(s): {last_error}",
            last_error=last_error,
            attempts=policy.max_attempts,
        ) from last_error

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_supported_languages(self) -> list[str]:
        return list(SUPPORTED_LANGUAGES)

    def validate_audio_format(self, filename: str) -> bool:
        return validate_audio_format(filename)

    def get_info(self) -> dict[str, Any]:
        """Describe the client configuration and current target."""
        status = self.service.snapshot()
        return {
            "base_url": status.endpoint.base_url if status.endpoint else None,
            "timeout": self.retry_policy.timeout_ms,
            "max_attempts": self.retry_policy.max_attempts,
            "backoff": self.retry_policy.backoff,
            "endpoints": {"transcribe": TRANSCRIBE_PATH, "health": HEALTH_PATH},
            "supported_formats": sorted(SUPPORTED_INPUT_FORMATS),
            "max_payload_bytes": self.max_payload_bytes,
        }
