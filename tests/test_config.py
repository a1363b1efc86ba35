"""Tests for sessionscribe.config module."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml

from sessionscribe.config import (
    SessionScribeConfig,
    create_default_config,
    find_config_file,
    load_config,
    write_config,
)
from sessionscribe.exceptions import ConfigError


class TestSessionScribeConfig:
    def test_defaults(self) -> None:
        config = SessionScribeConfig()
        assert config.transcription_engine == "openai"
        assert config.whisper_model_size == "base"
        assert config.audio_format.sample_rate == 48000
        assert config.audio_format.channels == 2
        assert config.upload_max_retries == 3
        assert config.cleanup_after_upload is True

    def test_invalid_engine_raises(self) -> None:
        with pytest.raises(ValueError):
            SessionScribeConfig(transcription_engine="mlx")

    def test_invalid_model_size_raises(self) -> None:
        with pytest.raises(ValueError):
            SessionScribeConfig(whisper_model_size="huge")

    def test_invalid_sample_format_raises(self) -> None:
        with pytest.raises(ValueError):
            SessionScribeConfig(audio_format={"sample_format": "f32le"})

    def test_retries_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            SessionScribeConfig(upload_max_retries=0)

    def test_speaker_ids_coerced_to_strings(self) -> None:
        config = SessionScribeConfig(speaker_names={451606006120710144: "Alice"})
        assert config.speaker_names == {"451606006120710144": "Alice"}


class TestLoadConfig:
    def test_explicit_missing_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_loads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text("transcription_engine: local\nwhisper_model_size: small\n")

        config = load_config(path)

        assert config.transcription_engine == "local"
        assert config.whisper_model_size == "small"
        assert config.config_path == path

    def test_invalid_file_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text("transcription_engine: nope\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_secrets_from_environment(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text("api_url: https://example.test/api\n")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("SESSIONSCRIBE_API_TOKEN", "token-env")

        config = load_config(path)

        assert config.openai_api_key == "sk-env"
        assert config.api_token == "token-env"

    def test_file_secret_wins(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text("openai_api_key: sk-file\n")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

        assert load_config(path).openai_api_key == "sk-file"

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        original_cwd = os.getcwd()
        try:
            os.chdir(tmp_path)
            config = load_config()
        finally:
            os.chdir(original_cwd)
        assert config.transcription_engine == "openai"


class TestFindConfigFile:
    def test_searches_parents(self, tmp_path: Path) -> None:
        (tmp_path / "sessionscribe.yaml").write_text("{}\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_config_file(nested) == (tmp_path / "sessionscribe.yaml").resolve()


class TestWriteConfig:
    def test_default_config_round_trips(self, tmp_path: Path) -> None:
        path = tmp_path / "sessionscribe.yaml"
        write_config(create_default_config("gpu"), path)

        with open(path) as f:
            raw = yaml.safe_load(f)
        assert raw["transcription_engine"] == "gpu"
        assert load_config(path).transcription_engine == "gpu"
