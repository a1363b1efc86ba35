"""
sessionscribe.config - YAML config loading, environment secrets, validation.

Handles loading sessionscribe.yaml, filling credentials from the environment,
and validating all parameters.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from sessionscribe.exceptions import ConfigError
from sessionscribe.models import AudioFormat
from sessionscribe.transcribe.registry import WHISPER_MODELS

CONFIG_FILENAME = "sessionscribe.yaml"

ENV_SECRETS = {
    "openai_api_key": "OPENAI_API_KEY",
    "api_token": "SESSIONSCRIBE_API_TOKEN",
}


class SessionScribeConfig(BaseModel):
    """Resolved configuration for one sessionscribe process."""

    recordings_dir: Path = Path("./recordings")

    transcription_engine: str = "openai"
    openai_api_key: str | None = None
    cloud_model: str = "whisper-1"
    cloud_request_delay: float = Field(default=0.5, ge=0.0)

    whisper_model_size: str = "base"
    whisper_models_dir: Path = Path("./models")
    whisper_use_gpu: bool = True
    whisper_cli_binary: str = "whisper-cli"
    whisper_threads: int = Field(default=4, gt=0)

    language: str | None = "en"
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    prompt: str | None = None

    audio_format: AudioFormat = Field(default_factory=AudioFormat)
    speaker_names: dict[str, str] = Field(default_factory=dict)

    api_url: str = "http://localhost:3000/api"
    api_token: str | None = None
    upload_max_retries: int = Field(default=3, ge=1)
    upload_timeout_seconds: float = Field(default=300.0, gt=0.0)
    cleanup_after_upload: bool = True

    config_path: Path | None = None

    @field_validator("transcription_engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        valid = {"openai", "local", "gpu"}
        if v not in valid:
            raise ValueError(f"transcription_engine must be one of: {valid}")
        return v

    @field_validator("whisper_model_size")
    @classmethod
    def validate_model_size(cls, v: str) -> str:
        if v not in WHISPER_MODELS:
            raise ValueError(f"whisper_model_size must be one of: {sorted(WHISPER_MODELS)}")
        return v

    @field_validator("speaker_names", mode="before")
    @classmethod
    def coerce_speaker_ids(cls, v: Any) -> Any:
        # YAML reads unquoted snowflake ids as integers
        if isinstance(v, dict):
            return {str(k): str(name) for k, name in v.items()}
        return v


def find_config_file(start: Path | None = None) -> Path | None:
    """Find sessionscribe.yaml in the start directory or any parent."""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        if current == current.parent:
            return None
        current = current.parent


def apply_env_secrets(raw: dict[str, Any]) -> dict[str, Any]:
    """Fill credentials missing from the file from environment variables."""
    merged = dict(raw)
    for key, env_var in ENV_SECRETS.items():
        if not merged.get(key) and os.environ.get(env_var):
            merged[key] = os.environ[env_var]
    return merged


def load_config(path: Path | None = None) -> SessionScribeConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file; searched upwards from the cwd when None

    Returns:
        Validated configuration (defaults when no file exists)

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ConfigError: If the file contents fail validation
    """
    if path is not None and not path.exists():
        raise FileNotFoundError(f"No config file found at {path}")

    config_file = path or find_config_file()
    raw_config: dict[str, Any] = {}
    if config_file is not None:
        with open(config_file) as f:
            raw_config = yaml.safe_load(f) or {}
        if not isinstance(raw_config, dict):
            raise ConfigError(f"{config_file} must contain a mapping")

    merged = apply_env_secrets(raw_config)
    merged["config_path"] = config_file

    try:
        return SessionScribeConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file or 'defaults'}: {e}") from e


def create_default_config(engine: str = "openai") -> dict[str, Any]:
    """Create a default config mapping for a new deployment."""
    return {
        "recordings_dir": "./recordings",
        "transcription_engine": engine,
        "whisper_model_size": "base",
        "whisper_models_dir": "./models",
        "whisper_use_gpu": True,
        "language": "en",
        "audio_format": {"sample_rate": 48000, "channels": 2, "sample_format": "s16le"},
        "speaker_names": {},
        "api_url": "http://localhost:3000/api",
        "upload_max_retries": 3,
        "cleanup_after_upload": True,
    }


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
