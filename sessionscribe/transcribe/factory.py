"""
sessionscribe.transcribe.factory - Engine selection from configuration.

Builds exactly one engine per call. Nothing is cached at module level; the
caller owns the engine and passes it to whatever needs it.
"""

from __future__ import annotations

import logging

from sessionscribe.config import SessionScribeConfig
from sessionscribe.exceptions import ConfigError
from sessionscribe.models import TranscriptionOptions
from sessionscribe.transcribe.base import TranscriptionEngine
from sessionscribe.transcribe.cloud import CloudWhisperEngine
from sessionscribe.transcribe.gpu import GpuWhisperEngine
from sessionscribe.transcribe.local import LocalWhisperEngine
from sessionscribe.transcribe.registry import ProgressCallback

logger = logging.getLogger(__name__)

ENGINE_NAMES = ("openai", "local", "gpu")


def options_from_config(config: SessionScribeConfig) -> TranscriptionOptions:
    return TranscriptionOptions(
        language=config.language,
        temperature=config.temperature,
        prompt=config.prompt,
    )


def create_engine(
    config: SessionScribeConfig,
    on_download_progress: ProgressCallback | None = None,
) -> TranscriptionEngine:
    """Construct the engine named by ``config.transcription_engine``.

    The engine is returned uninitialized; call ``initialize()`` before use.

    Raises:
        ConfigError: If the engine name is unknown
    """
    engine_name = config.transcription_engine
    options = options_from_config(config)

    if engine_name == "openai":
        engine: TranscriptionEngine = CloudWhisperEngine(
            api_key=config.openai_api_key,
            model=config.cloud_model,
            request_delay=config.cloud_request_delay,
            default_options=options,
        )
    elif engine_name == "local":
        engine = LocalWhisperEngine(
            model_size=config.whisper_model_size,
            models_dir=config.whisper_models_dir,
            use_gpu=config.whisper_use_gpu,
            threads=config.whisper_threads,
            default_options=options,
            on_download_progress=on_download_progress,
        )
    elif engine_name == "gpu":
        engine = GpuWhisperEngine(
            model_size=config.whisper_model_size,
            models_dir=config.whisper_models_dir,
            binary=config.whisper_cli_binary,
            use_gpu=config.whisper_use_gpu,
            threads=config.whisper_threads,
            default_options=options,
            on_download_progress=on_download_progress,
        )
    else:
        raise ConfigError(
            f"Unknown transcription engine '{engine_name}'. Use one of: {', '.join(ENGINE_NAMES)}"
        )

    logger.info(f"Created {engine.name} transcription engine")
    return engine


def switch_engine(
    current: TranscriptionEngine | None,
    config: SessionScribeConfig,
    on_download_progress: ProgressCallback | None = None,
) -> TranscriptionEngine:
    """Release the current engine, then build the one ``config`` names."""
    if current is not None:
        logger.info(f"Releasing {current.name} engine before switching")
        current.release()
    return create_engine(config, on_download_progress=on_download_progress)
