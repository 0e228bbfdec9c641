"""
Provider manifest and model capability checks.

The manifest (provider.yml, shipped as package data) declares the provider
metadata, the models with their capabilities and parameter defaults, and the
supported input formats and languages.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from whisper_docker.errors import ConfigurationError

MANIFEST_FILENAME = "provider.yml"

TRANSLATION_CAPABILITY = "translation"

# Manifest parameter names -> option names used by the Python API
PARAMETER_NAMES = {
    "language": "language",
    "task": "task",
    "wordTimestamps": "word_timestamps",
}

# Applied when a model declares no parameter defaults of its own
DEFAULT_MODEL_OPTIONS: dict[str, Any] = {
    "language": "auto",
    "task": "transcribe",
    "word_timestamps": False,
}


@dataclass(frozen=True)
class ModelSpec:
    """A model declared in the manifest."""

    id: str
    name: str
    description: str = ""
    capabilities: frozenset[str] = frozenset()
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def supports_translation(self) -> bool:
        return translation_unsupported_reason(self) is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "capabilities": sorted(self.capabilities),
            "defaults": dict(self.defaults),
        }


@dataclass(frozen=True)
class ProviderManifest:
    """Parsed provider.yml."""

    id: str
    name: str
    description: str
    version: str
    type: str
    capabilities: tuple[str, ...]
    models: tuple[ModelSpec, ...]
    input_formats: tuple[str, ...]
    output_formats: tuple[str, ...] = ("text",)
    languages: Mapping[str, str] = field(default_factory=dict)
    service_url: str | None = None
    config_defaults: Mapping[str, Any] = field(default_factory=dict)

    def get_model(self, model_id: str) -> ModelSpec | None:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    @property
    def model_ids(self) -> list[str]:
        return [m.id for m in self.models]

    def models_for_capability(self, capability: str) -> list[ModelSpec]:
        return [m for m in self.models if m.supports(capability)]


def normalize_model_name(model_name: str | None) -> str:
    """Normalize model name for capability checks."""
    return (model_name or "").strip().lower()


def translation_unsupported_reason(model: ModelSpec) -> str | None:
    """Return reason string if the model cannot run the translate task."""
    if TRANSLATION_CAPABILITY not in model.capabilities:
        return f"Model '{model.id}' does not advertise translation."

    name = normalize_model_name(model.id)
    if "turbo" in name:
        return "Whisper turbo variants are not intended for translation."

    if name.endswith(".en"):
        return "English-only Whisper models (.en) cannot translate from other languages."

    return None


def supports_translation(model: ModelSpec) -> bool:
    """Return True if the model supports the translate task."""
    return translation_unsupported_reason(model) is None


def _parse_defaults(model_id: str, parameters: Any) -> dict[str, Any]:
    if parameters is None:
        return dict(DEFAULT_MODEL_OPTIONS)
    if not isinstance(parameters, Mapping):
        raise ConfigurationError(f"Model '{model_id}' parameters must be a mapping")

    defaults = dict(DEFAULT_MODEL_OPTIONS)
    for name, spec in parameters.items():
        option = PARAMETER_NAMES.get(name)
        if option is None:
            raise ConfigurationError(f"Model '{model_id}' declares unknown parameter '{name}'")
        if isinstance(spec, Mapping) and "default" in spec:
            defaults[option] = spec["default"]
    return defaults


def _parse_model(entry: Any) -> ModelSpec:
    if not isinstance(entry, Mapping) or not entry.get("id"):
        raise ConfigurationError(f"Invalid model entry in manifest: {entry!r}")
    model_id = str(entry["id"])
    return ModelSpec(
        id=model_id,
        name=str(entry.get("name", model_id)),
        description=str(entry.get("description", "")),
        capabilities=frozenset(str(c) for c in entry.get("capabilities") or ()),
        defaults=_parse_defaults(model_id, entry.get("parameters")),
    )


def parse_manifest(data: Any) -> ProviderManifest:
    """
    Build a ProviderManifest from decoded YAML.

    Raises:
        ConfigurationError: If required sections are missing or malformed
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError("Provider manifest must be a mapping")
    for key in ("id", "name", "models"):
        if not data.get(key):
            raise ConfigurationError(f"Provider manifest is missing '{key}'")

    formats = data.get("supportedFormats") or {}
    config_defaults = {
        name: spec["default"]
        for name, spec in (data.get("configSchema") or {}).items()
        if isinstance(spec, Mapping) and "default" in spec
    }
    return ProviderManifest(
        id=str(data["id"]),
        name=str(data["name"]),
        description=str(data.get("description", "")),
        version=str(data.get("version", "0.0.0")),
        type=str(data.get("type", "local")),
        capabilities=tuple(str(c) for c in data.get("capabilities") or ()),
        models=tuple(_parse_model(m) for m in data["models"]),
        input_formats=tuple(str(f).lower() for f in formats.get("input") or ()),
        output_formats=tuple(str(f) for f in formats.get("output") or ("text",)),
        languages={str(k): str(v) for k, v in (data.get("supportedLanguages") or {}).items()},
        service_url=data.get("serviceUrl"),
        config_defaults=config_defaults,
    )


def load_manifest(path: Path | str | None = None) -> ProviderManifest:
    """
    Load the provider manifest.

    Args:
        path: Alternative manifest file. Defaults to the packaged provider.yml.
    """
    try:
        if path is None:
            text = resources.files("whisper_docker").joinpath(MANIFEST_FILENAME).read_text(
                encoding="utf-8"
            )
        else:
            text = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load provider manifest: {e}") from e
    return parse_manifest(data)
