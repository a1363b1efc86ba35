"""Tests for sessionscribe CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from conftest import SPEAKER_A, SPEAKER_B, FakeEngine
from typer.testing import CliRunner

from sessionscribe.cli import app
from sessionscribe.upload.client import UploadResult, UploadState

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "sessionscribe.yaml"
    config = {
        "transcription_engine": "openai",
        "whisper_models_dir": str(tmp_path / "models"),
        "speaker_names": {SPEAKER_A: "Alice", SPEAKER_B: "Bob"},
        "cleanup_after_upload": False,
    }
    with open(path, "w") as f:
        yaml.dump(config, f)
    return path


def invoke(config_file: Path, *args: str):
    return runner.invoke(app, ["--config", str(config_file), *args])


class TestMain:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config_file(self, tmp_path: Path, session_dir: Path) -> None:
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "scan", str(session_dir)])
        assert result.exit_code == 1
        assert "No config file" in result.output


class TestInitCommand:
    def test_creates_config(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["init", "--engine", "local", "--path", str(tmp_path)])

        assert result.exit_code == 0
        config = yaml.safe_load((tmp_path / "sessionscribe.yaml").read_text())
        assert config["transcription_engine"] == "local"

    def test_fails_if_exists(self, tmp_path: Path) -> None:
        (tmp_path / "sessionscribe.yaml").write_text("{}\n")
        result = runner.invoke(app, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_rejects_unknown_engine(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["init", "--engine", "mlx", "--path", str(tmp_path)])
        assert result.exit_code == 1
        assert not (tmp_path / "sessionscribe.yaml").exists()


class TestScanCommand:
    def test_lists_segments(self, config_file: Path, session_dir: Path) -> None:
        result = invoke(config_file, "scan", str(session_dir))

        assert result.exit_code == 0
        assert "3 segments from 2 speakers" in result.output

    def test_missing_directory(self, config_file: Path, tmp_path: Path) -> None:
        result = invoke(config_file, "scan", str(tmp_path / "missing"))
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_empty_directory(self, config_file: Path, tmp_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        result = invoke(config_file, "scan", str(empty))
        assert result.exit_code == 0
        assert "No segments found" in result.output


class TestConvertCommand:
    def test_writes_manifest(self, config_file: Path, session_dir: Path) -> None:
        result = invoke(config_file, "convert", str(session_dir))

        assert result.exit_code == 0
        assert "Converted 3" in result.output
        assert (session_dir / "manifest.json").exists()
        assert (session_dir / "Alice" / "segment_001.wav").exists()


class TestTranscribeCommand:
    def test_engine_unavailable(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        result = invoke(config_file, "transcribe", str(session_dir))

        assert result.exit_code == 1
        assert "unavailable" in result.output

    def test_transcribes_session(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        engine = FakeEngine()
        monkeypatch.setattr(
            "sessionscribe.transcribe.factory.create_engine", lambda config, **kwargs: engine
        )

        result = invoke(config_file, "transcribe", str(session_dir))

        assert result.exit_code == 0
        assert "Transcribed 3, failed 0" in result.output
        assert (session_dir / "transcript.md").exists()
        assert not engine.is_available()

    def test_failed_file_exits_nonzero(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        engine = FakeEngine(fail_on={"segment_001.wav"})
        monkeypatch.setattr(
            "sessionscribe.transcribe.factory.create_engine", lambda config, **kwargs: engine
        )

        result = invoke(config_file, "transcribe", str(session_dir))

        assert result.exit_code == 1
        assert "Transcribed 2, failed 1" in result.output

    def test_invalid_override(self, config_file: Path, session_dir: Path) -> None:
        result = invoke(config_file, "transcribe", str(session_dir), "--engine", "nope")
        assert result.exit_code == 1


class TestMergeCommand:
    def test_requires_transcript(self, config_file: Path, session_dir: Path) -> None:
        result = invoke(config_file, "merge", str(session_dir))
        assert result.exit_code == 1
        assert "No transcript found" in result.output

    def test_rebuilds_markdown(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        monkeypatch.setattr(
            "sessionscribe.transcribe.factory.create_engine", lambda config, **kwargs: FakeEngine()
        )
        invoke(config_file, "transcribe", str(session_dir))
        (session_dir / "transcript.md").unlink()

        result = invoke(config_file, "merge", str(session_dir))

        assert result.exit_code == 0
        assert "Merged 3 lines" in result.output
        assert "**Alice** [00:00]" in (session_dir / "transcript.md").read_text()


class TestUploadCommand:
    def test_success(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        uploader = MagicMock()
        uploader.api_url = "http://api.test/api"
        uploader.upload_with_retry.return_value = UploadResult(
            success=True, state=UploadState.COMPLETED, recording_id="rec_1", attempts=1
        )
        monkeypatch.setattr("sessionscribe.pipeline.create_uploader", lambda config: uploader)

        result = invoke(config_file, "upload", str(session_dir))

        assert result.exit_code == 0
        assert "rec_1" in result.output
        assert session_dir.exists()

    def test_failure(self, config_file: Path, session_dir: Path, monkeypatch) -> None:
        uploader = MagicMock()
        uploader.api_url = "http://api.test/api"
        uploader.upload_with_retry.return_value = UploadResult(
            success=False,
            state=UploadState.FAILED,
            error="Server error 503",
            retryable=True,
            attempts=3,
        )
        monkeypatch.setattr("sessionscribe.pipeline.create_uploader", lambda config: uploader)

        result = invoke(config_file, "upload", str(session_dir))

        assert result.exit_code == 1
        assert "3 attempt(s)" in result.output


class TestRecoverCommand:
    def test_recovers_session(self, config_file: Path, session_dir: Path) -> None:
        result = invoke(config_file, "recover", str(session_dir))

        assert result.exit_code == 0
        assert (session_dir / "RECOVERY_REPORT.txt").exists()
        assert (session_dir / "Bob" / "segment_000.wav").exists()

    def test_nothing_to_recover(self, config_file: Path, tmp_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        result = invoke(config_file, "recover", str(empty))
        assert result.exit_code == 1
        assert "No segment files found" in result.output


class TestModelsCommand:
    def test_lists_cached(self, config_file: Path, tmp_path: Path) -> None:
        models = tmp_path / "models"
        models.mkdir()
        (models / "ggml-base.bin").write_bytes(b"model")

        result = invoke(config_file, "models")

        assert result.exit_code == 0
        assert "Cached" in result.output

    def test_unknown_download(self, config_file: Path) -> None:
        result = invoke(config_file, "models", "--download", "gigantic")
        assert result.exit_code == 1
        assert "Unknown Whisper model size" in result.output


class TestEngineCommand:
    def test_missing_gpu_binary(self, tmp_path: Path) -> None:
        path = tmp_path / "sessionscribe.yaml"
        path.write_text(
            "transcription_engine: gpu\nwhisper_cli_binary: definitely-not-whisper-cli\n"
        )

        result = runner.invoke(app, ["--config", str(path), "engine"])

        assert result.exit_code == 1
        assert "not found in PATH" in result.output

    def test_cloud_with_key(self, config_file: Path, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        result = invoke(config_file, "engine")
        assert result.exit_code == 0
        assert "can run on this host" in result.output


class TestStatusCommand:
    def test_prints_status(self, config_file: Path, monkeypatch) -> None:
        uploader = MagicMock()
        uploader.check_status.return_value = {
            "status": "completed",
            "transcript": {"word_count": 12, "confidence": 0.9},
        }
        monkeypatch.setattr("sessionscribe.pipeline.create_uploader", lambda config: uploader)

        result = invoke(config_file, "status", "rec_1")

        assert result.exit_code == 0
        assert "completed" in result.output
        assert "12 words" in result.output

    def test_unreachable(self, config_file: Path, monkeypatch) -> None:
        uploader = MagicMock()
        uploader.check_status.return_value = None
        monkeypatch.setattr("sessionscribe.pipeline.create_uploader", lambda config: uploader)

        result = invoke(config_file, "status", "rec_1")

        assert result.exit_code == 1
