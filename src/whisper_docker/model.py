"""
Model facade: one manifest model bound to the shared client and controller.

WhisperDockerModel turns caller-facing audio inputs and option mappings into
validated TranscriptionRequests. All option and capability checks happen here,
before any I/O.
"""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, BinaryIO

from whisper_docker.catalog import (
    DEFAULT_MODEL_OPTIONS,
    ModelSpec,
    translation_unsupported_reason,
)
from whisper_docker.client import TranscriptionClient
from whisper_docker.errors import (
    InvalidRequest,
    PayloadTooLarge,
    UnsupportedCapability,
    UnsupportedFormat,
)
from whisper_docker.lifecycle import ServiceLifecycleController
from whisper_docker.models import TranscriptionRequest, TranscriptionResult, TranscriptionTask

logger = logging.getLogger(__name__)

AudioInput = bytes | bytearray | memoryview | BinaryIO | Path

OPTION_NAMES = frozenset({"language", "task", "word_timestamps", "filename"})


class WhisperDockerModel:
    """Speech-to-text model served by the Whisper Docker service."""

    def __init__(
        self,
        spec: ModelSpec,
        client: TranscriptionClient,
        controller: ServiceLifecycleController,
    ):
        self.spec = spec
        self.client = client
        self.controller = controller

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def description(self) -> str:
        return self.spec.description

    @property
    def capabilities(self) -> list[str]:
        return sorted(self.spec.capabilities)

    @property
    def supports_translation(self) -> bool:
        return self.spec.supports_translation

    def __repr__(self) -> str:
        return f"WhisperDockerModel(id={self.id!r})"

    async def is_available(self) -> bool:
        """True when the service is running and answered its latest health probe."""
        return await self.controller.is_available()

    def _merge_options(self, options: Mapping[str, Any] | None) -> dict[str, Any]:
        if options is None:
            options = {}
        elif not isinstance(options, Mapping):
            raise InvalidRequest(
                f"Options must be a mapping, got {type(options).__name__}"
            )

        unknown = sorted(set(options) - OPTION_NAMES)
        if unknown:
            raise InvalidRequest(
                f"Unknown option(s): {', '.join(map(str, unknown))}. "
                f"Accepted: {', '.join(sorted(OPTION_NAMES))}"
            )

        merged = dict(DEFAULT_MODEL_OPTIONS)
        merged.update(self.spec.defaults)
        merged.update({k: v for k, v in options.items() if v is not None})
        return merged

    def resolve_options(self, options: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """
        Merge options over the model defaults and validate them.

        Raises:
            InvalidRequest: Unknown option keys or badly typed values
            UnsupportedCapability: translate requested on a model without it
        """
        merged = self._merge_options(options)

        language = merged["language"]
        if not isinstance(language, str) or not language.strip():
            raise InvalidRequest(f"'language' must be a non-empty string, got {language!r}")

        try:
            task = TranscriptionTask.parse(merged["task"])
        except ValueError as e:
            raise InvalidRequest(str(e)) from e

        word_timestamps = merged["word_timestamps"]
        if not isinstance(word_timestamps, bool):
            raise InvalidRequest(
                f"'word_timestamps' must be a boolean, got {word_timestamps!r}"
            )

        filename = merged.get("filename")
        if filename is not None and not isinstance(filename, str):
            raise InvalidRequest(f"'filename' must be a string, got {filename!r}")

        if task is TranscriptionTask.TRANSLATE:
            reason = translation_unsupported_reason(self.spec)
            if reason:
                raise UnsupportedCapability(reason)

        return {
            "language": language.strip(),
            "task": task,
            "word_timestamps": word_timestamps,
            "filename": filename,
        }

    async def _read_audio(self, audio: AudioInput) -> tuple[bytes, str | None]:
        """Return (bytes, inferred filename) for any accepted audio input."""
        if isinstance(audio, (bytes, bytearray, memoryview)):
            return bytes(audio), None
        if isinstance(audio, Path):
            limit = self.client.max_payload_bytes
            try:
                size = (await asyncio.to_thread(audio.stat)).st_size
                if size > limit:
                    raise PayloadTooLarge(
                        f"Audio file {audio} is {size} bytes; the limit is {limit} bytes",
                        size=size,
                        limit=limit,
                    )
                data = await asyncio.to_thread(audio.read_bytes)
            except OSError as e:
                raise InvalidRequest(f"Could not read audio file {audio}: {e}") from e
            return data, audio.name
        if hasattr(audio, "read"):
            # Streams may be files or sockets; keep blocking reads off the loop
            data = await asyncio.to_thread(audio.read)
            if not isinstance(data, (bytes, bytearray)):
                raise InvalidRequest("Audio stream must be opened in binary mode")
            stream_name = getattr(audio, "name", None)
            return bytes(data), Path(stream_name).name if isinstance(stream_name, str) else None
        raise InvalidRequest(
            f"Unsupported audio input type: {type(audio).__name__}"
        )

    async def transform(
        self, audio: AudioInput, options: Mapping[str, Any] | None = None
    ) -> TranscriptionResult:
        """
        Transcribe audio with this model.

        Args:
            audio: Raw bytes, a binary stream, or a file path
            options: Any of language, task, word_timestamps, filename

        Returns:
            TranscriptionResult attributed to this model
        """
        resolved = self.resolve_options(options)
        audio_bytes, inferred_name = await self._read_audio(audio)

        filename = resolved["filename"] or inferred_name
        if not filename:
            raise UnsupportedFormat(
                "Cannot determine the audio format: pass options['filename'] "
                "or a named file/stream"
            )

        request = TranscriptionRequest(
            audio_bytes=audio_bytes,
            filename=filename,
            language=resolved["language"],
            task=resolved["task"],
            word_timestamps=resolved["word_timestamps"],
        )
        logger.debug(f"{self.id}: transcribing {request.filename}")
        return await self.client.transcribe(request, model_id=self.id)
