"""
sessionscribe.transcribe.gpu - GPU whisper.cpp CLI backend.

Drives a Vulkan or CUDA build of the whisper.cpp command-line tool. The CLI
only prints text, so segments are recovered from its timestamped stdout.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any

from sessionscribe.exceptions import TranscriptionFailedError, UnsupportedPlatformError
from sessionscribe.models import TranscriptionOptions, TranscriptSegment
from sessionscribe.scan.audio import WHISPER_SAMPLE_RATE, load_mono_16k, write_mono_16k
from sessionscribe.transcribe.base import TranscriptionEngine
from sessionscribe.transcribe.registry import ProgressCallback, ensure_model_downloaded
from sessionscribe.transcribe.timestamps import parse_timestamped_lines

logger = logging.getLogger(__name__)


class GpuWhisperEngine(TranscriptionEngine):
    """whisper.cpp CLI run as a subprocess per file."""

    name = "gpu"

    def __init__(
        self,
        model_size: str = "base",
        models_dir: Path = Path("./models"),
        binary: str = "whisper-cli",
        use_gpu: bool = True,
        threads: int = 4,
        default_options: TranscriptionOptions | None = None,
        on_download_progress: ProgressCallback | None = None,
    ) -> None:
        super().__init__(default_options)
        self.model_size = model_size
        self.models_dir = Path(models_dir)
        self.use_gpu = use_gpu
        self.threads = threads
        self.on_download_progress = on_download_progress
        self.realtime_factor = 1 / 15 if use_gpu else 1.0
        self.model_path: Path | None = None
        self._ready = False

        self.binary_path = shutil.which(binary)
        self.platform_supported = self.binary_path is not None
        self.unsupported_reason = (
            None
            if self.platform_supported
            else f"{binary} not found in PATH. Build whisper.cpp with -DGGML_VULKAN=1 "
            "(or -DGGML_CUDA=1) and add whisper-cli to PATH"
        )
        if not self.platform_supported:
            logger.warning(f"GPU Whisper unavailable: {self.unsupported_reason}")

    def is_available(self) -> bool:
        return self.platform_supported and self._ready

    def initialize(self) -> None:
        """Make sure the model is cached and the CLI is runnable.

        Raises:
            UnsupportedPlatformError: If the CLI binary is missing
            ModelDownloadError: If the model cannot be fetched
        """
        if not self.platform_supported:
            raise UnsupportedPlatformError(self.unsupported_reason or "whisper-cli unavailable")
        if self._ready:
            return

        self.model_path = ensure_model_downloaded(
            self.model_size, self.models_dir, on_progress=self.on_download_progress
        )
        self._ready = True
        logger.info(f"GPU Whisper ready ({self.binary_path}, model {self.model_size})")

    def release(self) -> None:
        self._ready = False

    def build_command(self, wav_path: Path, options: TranscriptionOptions) -> list[str]:
        command = [
            str(self.binary_path),
            "-m",
            str(self.model_path),
            "-f",
            str(wav_path),
            "-t",
            str(self.threads),
            "--temperature",
            str(options.temperature),
        ]
        if options.language:
            command += ["-l", options.language]
        if options.prompt:
            command += ["--prompt", options.prompt]
        if not self.use_gpu:
            command.append("-ng")
        return command

    def _transcribe(
        self,
        path: Path,
        options: TranscriptionOptions,
    ) -> tuple[list[TranscriptSegment], str | None, float | None]:
        samples = load_mono_16k(path)

        with tempfile.TemporaryDirectory(prefix="sessionscribe-") as tmp_dir:
            wav_path = write_mono_16k(samples, Path(tmp_dir) / "input.wav")
            command = self.build_command(wav_path, options)
            logger.debug(f"Running: {' '.join(command)}")
            result = subprocess.run(command, capture_output=True, text=True)

        if result.returncode != 0:
            stderr = result.stderr.strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {result.returncode}"
            raise TranscriptionFailedError(f"whisper-cli failed: {detail}")

        segments = parse_timestamped_lines(result.stdout)
        return segments, None, len(samples) / WHISPER_SAMPLE_RATE if len(samples) else None

    def info(self) -> dict[str, Any]:
        return {
            **super().info(),
            "model_size": self.model_size,
            "model_path": str(self.model_path) if self.model_path else None,
            "binary": self.binary_path,
            "use_gpu": self.use_gpu,
            "platform_supported": self.platform_supported,
            "unsupported_reason": self.unsupported_reason,
        }
