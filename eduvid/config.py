"""Configuration management with YAML and environment variable support.

Two layers:
- Settings: process-level settings (provider credentials, TTS, assembly,
  storage) from environment variables, .env and an optional YAML file.
- load_pipeline_definition(): the one-shot merge that produces the frozen
  PipelineDefinition for a run. Environment-derived values are merged in
  here, before any capability is built, never afterwards.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, ClassVar, Mapping, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from eduvid.defaults import DEFAULT_PIPELINE, PRESETS
from eduvid.orchestrator.errors import ConfigurationError
from eduvid.orchestrator.validation import ensure_valid, parse_definition
from eduvid.schemas.pipeline import PipelineDefinition

logger = logging.getLogger(__name__)

SETTINGS_FILE_ENV = "EDUVID_SETTINGS_FILE"
DEFAULT_SETTINGS_FILE = "eduvid.yaml"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from a YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path(os.environ.get(SETTINGS_FILE_ENV, DEFAULT_SETTINGS_FILE))
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ProvidersConfig(BaseModel):
    """Credentials and endpoints for LLM and speech providers."""

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: Optional[str] = None


class TTSConfig(BaseModel):
    """Narration synthesis parameters."""

    provider: str = "system"
    voice: Optional[str] = None
    model: str = "tts-1"
    speed: float = 1.0


class AssemblyConfig(BaseModel):
    """Final muxing parameters."""

    video_codec: str = "libx264"
    audio_codec: str = "aac"
    video_bitrate: str = "5M"
    audio_bitrate: str = "192k"
    output_format: str = "mp4"


class StorageConfig(BaseModel):
    """Working directory for runs and capability artifacts."""

    working_dir: Path = Path("video-generation-output")

    @field_validator("working_dir", mode="before")
    @classmethod
    def convert_working_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class PipelineSettings(BaseModel):
    """Pipeline document selection and overrides."""

    config_path: Optional[Path] = None
    preset: Optional[str] = None
    video_duration: Optional[float] = None


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: EDUVID_, delimiter: __)
    2. .env file
    3. YAML file (eduvid.yaml, or the path in EDUVID_SETTINGS_FILE)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="EDUVID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProvidersConfig = ProvidersConfig()
    tts: TTSConfig = TTSConfig()
    assembly: AssemblyConfig = AssemblyConfig()
    storage: StorageConfig = StorageConfig()
    pipeline: PipelineSettings = PipelineSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Init settings come first so tests and callers can pass explicit
        values; then environment, .env and the YAML file.
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict:
    """Merge ``override`` into a copy of ``base``.

    Mappings merge recursively; lists and scalars replace; None values in
    ``override`` are ignored.
    """
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_document(path: str | Path) -> dict:
    """Load a YAML or JSON pipeline document."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError([f"Configuration file not found: {path}"])
    try:
        # JSON is a subset of YAML
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError([f"Could not parse {path}: {e}"]) from e
    if not isinstance(data, dict):
        raise ConfigurationError([f"{path} must contain a mapping at the top level"])
    return data


def apply_provider_credentials(document: dict, providers: ProvidersConfig) -> dict:
    """Fill in API keys and endpoints for capabilities that do not set their own."""
    keys = {
        "openai": (providers.openai_api_key, providers.openai_base_url),
        "anthropic": (providers.anthropic_api_key, providers.anthropic_base_url),
        "ollama": (providers.ollama_api_key, providers.ollama_endpoint),
    }
    result = copy.deepcopy(document)
    for capability in result.get("capabilities", []):
        model = capability.get("model") or {}
        api_key, base_url = keys.get(model.get("provider"), (None, None))
        if api_key and not model.get("api_key"):
            model["api_key"] = api_key
        if base_url and not model.get("base_url"):
            model["base_url"] = base_url
    return result


def load_pipeline_definition(
    config_path: Optional[str | Path] = None,
    *,
    preset: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> PipelineDefinition:
    """Merge every configuration layer and return a validated definition.

    Layers, lowest to highest: built-in defaults, the document at
    ``config_path`` (or settings.pipeline.config_path), the preset (or
    settings.pipeline.preset), settings.pipeline.video_duration, explicit
    ``overrides``, then provider credentials from settings.

    Raises:
        ConfigurationError: Listing every validation problem.
    """
    settings = settings or Settings()

    document = copy.deepcopy(DEFAULT_PIPELINE)

    config_path = config_path or settings.pipeline.config_path
    if config_path:
        document = deep_merge(document, load_document(config_path))
        logger.info(f"Loaded pipeline configuration from {config_path}")

    preset = preset or settings.pipeline.preset
    if preset:
        if preset not in PRESETS:
            raise ConfigurationError(
                [f"Unknown preset '{preset}'. Available: {', '.join(sorted(PRESETS))}"]
            )
        document = deep_merge(document, PRESETS[preset])
        logger.info(f"Applied preset {preset}")

    if settings.pipeline.video_duration is not None:
        document = deep_merge(document, {"video": {"duration": settings.pipeline.video_duration}})

    if overrides:
        document = deep_merge(document, overrides)

    document = apply_provider_credentials(document, settings.providers)

    definition = parse_definition(document)
    return ensure_valid(definition)


# Singleton instance
settings = Settings()
