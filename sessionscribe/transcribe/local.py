"""
sessionscribe.transcribe.local - In-process whisper.cpp backend.

Runs ggml Whisper models through the pywhispercpp binding. Whether the
binding can load on this host is probed once at construction, so an
unsupported platform reports itself unavailable up front instead of failing
on the first transcription.
"""

from __future__ import annotations

import importlib.util
import logging
import platform
from pathlib import Path
from typing import Any

from sessionscribe.exceptions import UnsupportedPlatformError
from sessionscribe.models import TranscriptionOptions, TranscriptSegment
from sessionscribe.scan.audio import WHISPER_SAMPLE_RATE, load_mono_16k
from sessionscribe.transcribe.base import TranscriptionEngine
from sessionscribe.transcribe.registry import ProgressCallback, ensure_model_downloaded

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.95


def probe_native_runtime(module: str = "pywhispercpp") -> tuple[bool, str | None]:
    """Check whether the native binding is importable on this host."""
    if importlib.util.find_spec(module) is None:
        return False, (
            f"{module} not installed for {platform.system()}/{platform.machine()}. "
            f"Install with: pip install {module}"
        )
    return True, None


class LocalWhisperEngine(TranscriptionEngine):
    """whisper.cpp model held in this process.

    pywhispercpp fixes its compute backend when the wheel is built, so
    ``use_gpu`` only scales the ETA here. Use the ``gpu`` engine to turn
    GPU offload on or off per run.
    """

    name = "local"

    def __init__(
        self,
        model_size: str = "base",
        models_dir: Path = Path("./models"),
        use_gpu: bool = True,
        threads: int = 4,
        default_options: TranscriptionOptions | None = None,
        on_download_progress: ProgressCallback | None = None,
        runtime_probe=probe_native_runtime,
    ) -> None:
        super().__init__(default_options)
        self.model_size = model_size
        self.models_dir = Path(models_dir)
        self.use_gpu = use_gpu
        self.threads = threads
        self.on_download_progress = on_download_progress
        self.realtime_factor = 0.2 if use_gpu else 1.0
        self.model_path: Path | None = None
        self._model: Any = None
        self.platform_supported, self.unsupported_reason = runtime_probe()
        if not self.platform_supported:
            logger.warning(f"Local Whisper unavailable: {self.unsupported_reason}")

    def is_available(self) -> bool:
        return self.platform_supported and self._model is not None

    def initialize(self) -> None:
        """Download the model if needed and load it.

        Raises:
            UnsupportedPlatformError: If the native binding cannot load here
            ModelDownloadError: If the model cannot be fetched
        """
        if not self.platform_supported:
            raise UnsupportedPlatformError(self.unsupported_reason or "Local Whisper unsupported")
        if self._model is not None:
            return

        self.model_path = ensure_model_downloaded(
            self.model_size, self.models_dir, on_progress=self.on_download_progress
        )

        try:
            from pywhispercpp.model import Model
        except ImportError as e:
            raise UnsupportedPlatformError(
                "pywhispercpp failed to load. Install with: pip install pywhispercpp"
            ) from e

        logger.info(f"Loading Whisper model {self.model_size} from {self.model_path}")
        self._model = Model(str(self.model_path), n_threads=self.threads, print_progress=False)

    def release(self) -> None:
        if self._model is not None:
            logger.debug(f"Releasing Whisper model {self.model_size}")
        self._model = None

    def _transcribe(
        self,
        path: Path,
        options: TranscriptionOptions,
    ) -> tuple[list[TranscriptSegment], str | None, float | None]:
        samples = load_mono_16k(path)

        params: dict[str, Any] = {"temperature": options.temperature}
        if options.language:
            params["language"] = options.language
        if options.prompt:
            params["initial_prompt"] = options.prompt

        raw_segments = self._model.transcribe(samples, **params)

        # t0/t1 are in 10ms ticks
        segments = [
            TranscriptSegment(
                text=seg.text.strip(),
                start=seg.t0 / 100,
                end=seg.t1 / 100,
                confidence=DEFAULT_CONFIDENCE,
            )
            for seg in raw_segments
            if seg.text.strip()
        ]
        return segments, None, len(samples) / WHISPER_SAMPLE_RATE if len(samples) else None

    def info(self) -> dict[str, Any]:
        return {
            **super().info(),
            "model_size": self.model_size,
            "model_path": str(self.model_path) if self.model_path else None,
            "use_gpu": self.use_gpu,
            "platform_supported": self.platform_supported,
            "unsupported_reason": self.unsupported_reason,
        }
