"""
Provider facade exposed to the plugin layer.

WhisperDockerProvider wires the manifest, the orchestration backend, the
lifecycle controller and the transcription client together, and hands out
model facades bound to them.
"""

import logging
from collections.abc import Mapping
from typing import Any

from whisper_docker.catalog import ModelSpec, ProviderManifest, load_manifest
from whisper_docker.client import TranscriptionClient, validate_audio_format
from whisper_docker.config import ProviderConfig, Settings, load_settings
from whisper_docker.docker_backend import DockerComposeBackend
from whisper_docker.endpoint import EndpointResolver
from whisper_docker.errors import ConfigurationError, ModelNotFound
from whisper_docker.health import HealthMonitor
from whisper_docker.lifecycle import ServiceLifecycleController
from whisper_docker.model import WhisperDockerModel
from whisper_docker.models import LifecycleResult, RetryPolicy, ServiceState, ServiceStatus
from whisper_docker.orchestration import ExternalServiceBackend, OrchestrationBackend
from whisper_docker.version import __version__

logger = logging.getLogger(__name__)

# Reconfiguring while any of these is in flight would orphan the service
_BUSY_STATES = (
    ServiceState.STARTING,
    ServiceState.RUNNING,
    ServiceState.DEGRADED,
    ServiceState.STOPPING,
)


class WhisperDockerProvider:
    """Speech-to-text provider backed by a Dockerized Whisper service."""

    def __init__(
        self,
        settings: Settings | None = None,
        backend: OrchestrationBackend | None = None,
        manifest: ProviderManifest | None = None,
    ):
        """
        Initialize the provider.

        Args:
            settings: Loaded settings (read from the default settings file if omitted)
            backend: Orchestration backend. Defaults to Docker Compose, or to an
                external service when settings.provider.base_url is set
            manifest: Model catalog (the packaged provider.yml if omitted)
        """
        self.settings = settings or load_settings()
        self.manifest = manifest or load_manifest()
        self._default_backend = backend

        self.id = self.manifest.id
        self.name = self.manifest.name
        self.type = self.manifest.type
        self.capabilities = list(self.manifest.capabilities)
        self.models: list[ModelSpec] = list(self.manifest.models)

        self.config = self.settings.provider
        self._build(self.config)

    def _build(self, config: ProviderConfig) -> None:
        if config.base_url:
            backend: OrchestrationBackend = ExternalServiceBackend(config.base_url)
            scheme = backend.scheme
        else:
            backend = self._default_backend or DockerComposeBackend(self.settings.docker)
            scheme = "http"

        docker = self.settings.docker
        health = self.settings.health
        self.backend = backend
        self.controller = ServiceLifecycleController(
            backend,
            resolver=EndpointResolver(scheme=scheme),
            monitor=HealthMonitor(timeout=health.timeout, max_age=health.max_age),
            startup_timeout=docker.startup_timeout,
            poll_interval=docker.poll_interval,
        )
        self.client = TranscriptionClient(
            self.controller,
            RetryPolicy.from_retries(config.retries, timeout_ms=config.timeout),
        )
        self._models: dict[str, WhisperDockerModel] = {}

    async def configure(self, options: "Mapping[str, Any] | ProviderConfig | None") -> None:
        """
        Apply provider options (base_url, timeout, retries, service_url).

        Raises:
            ConfigurationError: On unknown keys, invalid values, or when the
                service is not stopped
        """
        config = ProviderConfig.from_options(options)

        state = self.controller.snapshot().state
        if state in _BUSY_STATES:
            raise ConfigurationError(
                f"Cannot reconfigure while the service is {state.value}; stop it first"
            )

        await self.close()
        self.config = config
        self._build(config)
        logger.info(
            f"Provider configured (base_url={config.base_url or 'docker'}, "
            f"timeout={config.timeout}ms, retries={config.retries})"
        )

    # ------------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------------

    async def start_service(self) -> LifecycleResult:
        result = await self.controller.start()
        interval = self.settings.health.interval
        if result.success and interval > 0:
            self.controller.start_health_checks(interval)
        return result

    async def stop_service(self) -> LifecycleResult:
        self.controller.stop_health_checks()
        return await self.controller.stop()

    async def get_service_status(self) -> ServiceStatus:
        """Status after reconciling with the orchestration backend."""
        return await self.controller.refresh()

    async def is_available(self) -> bool:
        """Running and answering health probes. Does not start the service."""
        return await self.controller.is_available()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def get_model(self, model_id: str) -> WhisperDockerModel:
        """
        Get a model facade bound to this provider's client.

        Raises:
            ModelNotFound: If the manifest does not declare model_id
        """
        model = self._models.get(model_id)
        if model is not None:
            return model

        spec = self.manifest.get_model(model_id)
        if spec is None:
            raise ModelNotFound(
                f"Model '{model_id}' not found. "
                f"Available: {', '.join(self.manifest.model_ids)}"
            )
        model = WhisperDockerModel(spec, self.client, self.controller)
        self._models[model_id] = model
        return model

    def get_available_models(self) -> list[ModelSpec]:
        return list(self.models)

    def supports_model(self, model_id: str) -> bool:
        return self.manifest.get_model(model_id) is not None

    def get_models_for_capability(self, capability: str) -> list[ModelSpec]:
        return self.manifest.models_for_capability(capability)

    def get_supported_languages(self) -> dict[str, str]:
        return dict(self.manifest.languages)

    def validate_audio_format(self, filename: str) -> bool:
        return validate_audio_format(filename)

    def get_info(self) -> dict[str, Any]:
        """Describe the provider, its configuration and the current service state."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.manifest.description,
            "version": self.manifest.version,
            "package_version": __version__,
            "type": self.type,
            "capabilities": list(self.capabilities),
            "models": self.manifest.model_ids,
            "service_url": self.config.service_url or self.manifest.service_url,
            "config": {
                "base_url": self.config.base_url,
                "timeout": self.config.timeout,
                "retries": self.config.retries,
            },
            "client": self.client.get_info(),
            "status": self.controller.snapshot().to_dict(),
            "supported_formats": {
                "input": list(self.manifest.input_formats),
                "output": list(self.manifest.output_formats),
            },
            "supported_languages": list(self.manifest.languages),
        }

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop background health checks and release the HTTP session."""
        await self.controller.aclose()
        await self.client.close()

    async def __aenter__(self) -> "WhisperDockerProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
