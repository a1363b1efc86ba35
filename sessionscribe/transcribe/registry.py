"""
sessionscribe.transcribe.registry - whisper.cpp model registry and cache.

Static table of ggml model sizes plus the download-to-cache logic shared by
the local and GPU engines. Downloads are streamed to a temp file in the
cache directory and renamed into place, so concurrent readers never see a
partial model.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from sessionscribe.exceptions import ModelDownloadError

logger = logging.getLogger(__name__)

MODEL_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"
PROGRESS_STEP_PERCENT = 5
DOWNLOAD_CHUNK_BYTES = 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 60

ProgressCallback = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class WhisperModelInfo:
    size: str
    filename: str
    url: str
    file_size: str


def _model(size: str, file_size: str) -> WhisperModelInfo:
    filename = f"ggml-{size}.bin"
    return WhisperModelInfo(
        size=size,
        filename=filename,
        url=f"{MODEL_BASE_URL}/{filename}",
        file_size=file_size,
    )


WHISPER_MODELS: dict[str, WhisperModelInfo] = {
    info.size: info
    for info in [
        _model("tiny", "75 MB"),
        _model("tiny.en", "75 MB"),
        _model("base", "142 MB"),
        _model("base.en", "142 MB"),
        _model("small", "466 MB"),
        _model("small.en", "466 MB"),
        _model("medium", "1.5 GB"),
        _model("medium.en", "1.5 GB"),
        _model("large-v1", "2.9 GB"),
        _model("large-v2", "2.9 GB"),
        _model("large-v3", "2.9 GB"),
        _model("large-v3-turbo", "1.6 GB"),
    ]
}


def resolve_model(size: str) -> WhisperModelInfo:
    """Look up a model size in the registry.

    Raises:
        ModelDownloadError: If the size is not a known model
    """
    try:
        return WHISPER_MODELS[size]
    except KeyError:
        raise ModelDownloadError(
            f"Unknown Whisper model size '{size}'. Available: {', '.join(WHISPER_MODELS)}"
        ) from None


def model_path(models_dir: Path, size: str) -> Path:
    return models_dir / resolve_model(size).filename


def download_model(
    info: WhisperModelInfo,
    models_dir: Path,
    on_progress: ProgressCallback | None = None,
    session: requests.Session | None = None,
) -> Path:
    """Stream a model file into the cache directory.

    Args:
        info: Registry entry to fetch
        models_dir: Cache directory
        on_progress: Called with ``{downloaded_bytes, total_bytes, percentage}``
            roughly every 5%, and once on completion
        session: Optional requests session (for connection reuse)

    Returns:
        Path to the cached model file

    Raises:
        ModelDownloadError: On HTTP or filesystem failure
    """
    models_dir.mkdir(parents=True, exist_ok=True)
    destination = models_dir / info.filename
    http = session or requests

    logger.info(f"Downloading {info.size} model ({info.file_size}) from {info.url}")

    tmp_path: Path | None = None
    try:
        with http.get(info.url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
            response.raise_for_status()
            total_bytes = int(response.headers.get("content-length", 0) or 0)
            downloaded = 0
            next_report = PROGRESS_STEP_PERCENT

            with tempfile.NamedTemporaryFile(
                dir=models_dir, delete=False, suffix=".download"
            ) as tmp:
                tmp_path = Path(tmp.name)
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                    if not chunk:
                        continue
                    tmp.write(chunk)
                    downloaded += len(chunk)
                    if on_progress and total_bytes:
                        percentage = downloaded / total_bytes * 100
                        if percentage >= next_report:
                            on_progress(
                                {
                                    "downloaded_bytes": downloaded,
                                    "total_bytes": total_bytes,
                                    "percentage": round(percentage, 1),
                                }
                            )
                            while next_report <= percentage:
                                next_report += PROGRESS_STEP_PERCENT

        os.replace(tmp_path, destination)
    except (requests.RequestException, OSError) as e:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise ModelDownloadError(f"Failed to download {info.size} model: {e}") from e

    if on_progress and not total_bytes:
        on_progress({"downloaded_bytes": downloaded, "total_bytes": downloaded, "percentage": 100.0})

    logger.info(f"Model {info.size} downloaded to {destination}")
    return destination


def ensure_model_downloaded(
    size: str,
    models_dir: Path,
    on_progress: ProgressCallback | None = None,
) -> Path:
    """Return the cached model path, downloading it first when absent."""
    info = resolve_model(size)
    path = models_dir / info.filename
    if path.exists():
        logger.debug(f"Model {size} already cached at {path}")
        return path
    return download_model(info, models_dir, on_progress=on_progress)


def list_downloaded_models(models_dir: Path) -> list[str]:
    """Sizes whose model file is present in the cache directory."""
    if not models_dir.is_dir():
        return []
    return [size for size, info in WHISPER_MODELS.items() if (models_dir / info.filename).exists()]
