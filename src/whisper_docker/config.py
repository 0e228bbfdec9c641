"""
Configuration management for the Whisper Docker provider.

Handles:
- Platform-specific config directories
- Loading the YAML settings file (deep-merged over defaults)
- Validating provider options passed through configure()

Provider options have exactly one accepted spelling per field; unknown keys
are rejected with ConfigurationError instead of being probed under aliases.
"""

import os
import platform
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from whisper_docker.errors import ConfigurationError

CONFIG_FILENAME = "whisper-docker.yaml"

DEFAULT_TIMEOUT_MS = 300_000
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 600_000
DEFAULT_RETRIES = 1
MAX_RETRIES = 5


def get_config_dir() -> Path:
    """
    Get platform-specific configuration directory.

    Returns:
        Path to user config directory:
        - Linux: ~/.config/WhisperDocker/ (honours XDG_CONFIG_HOME)
        - Windows: ~/Documents/WhisperDocker/
        - macOS: ~/Library/Application Support/WhisperDocker/
    """
    system = platform.system()

    if system == "Windows":
        config_dir = Path.home() / "Documents" / "WhisperDocker"
    elif system == "Darwin":
        config_dir = Path.home() / "Library" / "Application Support" / "WhisperDocker"
    else:
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            config_dir = Path(xdg_config) / "WhisperDocker"
        else:
            config_dir = Path.home() / ".config" / "WhisperDocker"

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_config() -> dict[str, Any]:
    """Get default settings."""
    return {
        "provider": {
            "base_url": None,  # Direct HTTP endpoint; skips Docker when set
            "timeout": DEFAULT_TIMEOUT_MS,  # Request timeout in milliseconds
            "retries": DEFAULT_RETRIES,  # Attempts beyond the first
            "service_url": "https://github.com/MediaConduit/whisper-service",
        },
        "docker": {
            "compose_dir": None,  # Defaults to <config dir>/whisper-service
            "service_name": "whisper",
            "container_name": "whisper-service",
            "internal_port": 9000,
            "host": "localhost",
            "startup_timeout": 120.0,  # seconds
            "poll_interval": 1.0,  # seconds
        },
        "health": {
            "timeout": 5.0,  # seconds, per probe
            "max_age": 30.0,  # seconds before a probe result is stale
            "interval": 0.0,  # seconds between background probes, 0 disables
        },
    }


def _deep_merge(base: dict, override: Mapping) -> None:
    """Deep merge override into base dict."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, Mapping):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _require_int(name: str, value: Any, low: int, high: int) -> int:
    # bool is an int subclass and never a valid count or duration here
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ConfigurationError(f"'{name}' must be between {low} and {high}, got {value}")
    return value


def _require_number(name: str, value: Any, low: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{name}' must be a number, got {value!r}")
    if value < low:
        raise ConfigurationError(f"'{name}' must be >= {low}, got {value}")
    return float(value)


def _reject_unknown(section: str, options: Mapping, allowed: set[str]) -> None:
    unknown = sorted(set(options) - allowed)
    if unknown:
        raise ConfigurationError(
            f"Unknown {section} option(s): {', '.join(map(str, unknown))}. "
            f"Accepted: {', '.join(sorted(allowed))}"
        )


def parse_base_url(base_url: str) -> tuple[str, str, int]:
    """
    Split a base URL into (scheme, host, port).

    Raises:
        ConfigurationError: If the URL is not an absolute http(s) URL, or
            carries a path, query or fragment
    """
    try:
        parts = urlsplit(base_url)
        port = parts.port
    except ValueError as e:
        raise ConfigurationError(f"Invalid base_url {base_url!r}: {e}") from e

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigurationError(
            f"base_url must look like http://host:port, got {base_url!r}"
        )
    # The client builds /transcribe and /health from host and port alone
    if parts.path not in ("", "/") or parts.query or parts.fragment:
        raise ConfigurationError(
            f"base_url must not include a path, query or fragment, got {base_url!r}"
        )
    if port is None:
        port = 443 if parts.scheme == "https" else 80
    return parts.scheme, parts.hostname, port


@dataclass(frozen=True)
class ProviderConfig:
    """Options accepted by WhisperDockerProvider.configure()."""

    base_url: str | None = None
    timeout: int = DEFAULT_TIMEOUT_MS
    retries: int = DEFAULT_RETRIES
    service_url: str | None = None

    def __post_init__(self) -> None:
        if self.base_url is not None:
            if not isinstance(self.base_url, str):
                raise ConfigurationError("'base_url' must be a string")
            parse_base_url(self.base_url)
        if self.service_url is not None and not isinstance(self.service_url, str):
            raise ConfigurationError("'service_url' must be a string")
        _require_int("timeout", self.timeout, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
        _require_int("retries", self.retries, 0, MAX_RETRIES)

    @classmethod
    def from_options(cls, options: "Mapping[str, Any] | ProviderConfig | None") -> "ProviderConfig":
        """
        Validate a configuration mapping.

        Args:
            options: Mapping with any of base_url, timeout, retries, service_url

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, Mapping):
            raise ConfigurationError(
                f"Provider options must be a mapping, got {type(options).__name__}"
            )
        _reject_unknown("provider", options, {f.name for f in fields(cls)})
        values = {k: v for k, v in options.items() if v is not None}
        return cls(**values)


@dataclass(frozen=True)
class DockerConfig:
    """Settings for the Docker Compose orchestration backend."""

    compose_dir: Path | None = None
    service_name: str = "whisper"
    container_name: str = "whisper-service"
    internal_port: int = 9000
    host: str = "localhost"
    startup_timeout: float = 120.0
    poll_interval: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DockerConfig":
        _reject_unknown("docker", data, {f.name for f in fields(cls)})
        compose_dir = data.get("compose_dir")
        return cls(
            compose_dir=Path(compose_dir).expanduser() if compose_dir else None,
            service_name=str(data.get("service_name", cls.service_name)),
            container_name=str(data.get("container_name", cls.container_name)),
            internal_port=_require_int(
                "internal_port", data.get("internal_port", cls.internal_port), 1, 65535
            ),
            host=str(data.get("host", cls.host)),
            startup_timeout=_require_number(
                "startup_timeout", data.get("startup_timeout", cls.startup_timeout)
            ),
            poll_interval=_require_number(
                "poll_interval", data.get("poll_interval", cls.poll_interval)
            ),
        )


@dataclass(frozen=True)
class HealthConfig:
    """Settings for liveness probing."""

    timeout: float = 5.0
    max_age: float = 30.0
    interval: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HealthConfig":
        _reject_unknown("health", data, {f.name for f in fields(cls)})
        return cls(
            timeout=_require_number("health.timeout", data.get("timeout", cls.timeout)),
            max_age=_require_number("health.max_age", data.get("max_age", cls.max_age)),
            interval=_require_number(
                "health.interval", data.get("interval", cls.interval)
            ),
        )


@dataclass(frozen=True)
class Settings:
    """All settings loaded from the YAML file."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    source: Path | None = None


def load_settings(config_path: Path | str | None = None) -> Settings:
    """
    Load settings from a YAML file, deep-merged over the defaults.

    Args:
        config_path: Path to the settings file. Defaults to
            <config dir>/whisper-docker.yaml

    Returns:
        Settings with every section validated. A missing file yields defaults.

    Raises:
        ConfigurationError: If the file cannot be parsed or holds invalid values
    """
    path = Path(config_path) if config_path else get_config_dir() / CONFIG_FILENAME
    data = get_default_config()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not load settings from {path}: {e}") from e
        if not isinstance(loaded, Mapping):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")
        _reject_unknown("top-level", loaded, set(data))
        _deep_merge(data, loaded)

    for section in ("provider", "docker", "health"):
        if not isinstance(data[section], Mapping):
            raise ConfigurationError(f"Section '{section}' in {path} must be a mapping")

    return Settings(
        provider=ProviderConfig.from_options(data["provider"]),
        docker=DockerConfig.from_dict(data["docker"]),
        health=HealthConfig.from_dict(data["health"]),
        source=path if path.exists() else None,
    )


def save_settings(settings_data: Mapping[str, Any], config_path: Path | str) -> Path:
    """
    Write a settings mapping to YAML with an atomic replace.

    Returns:
        The path written.
    """
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(dict(settings_data), f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path
