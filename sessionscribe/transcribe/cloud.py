"""
sessionscribe.transcribe.cloud - Hosted Whisper API backend.

Sends each file to the Whisper API through litellm. There is no model to
download; the handle is just a validated credential.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from sessionscribe.exceptions import (
    AuthError,
    PayloadTooLargeError,
    RateLimitedError,
    TranscriptionFailedError,
)
from sessionscribe.models import TranscriptionOptions, TranscriptSegment
from sessionscribe.transcribe.base import TranscriptionEngine

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_MB = 25


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a response field whether litellm handed back a dict or an object."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def classify_error(error: Exception, size_mb: float = 0.0) -> Exception:
    """Map a provider error onto the transcription error taxonomy.

    ``size_mb`` is the size of the rejected upload, reported when the
    provider refuses the payload (HTTP 413).
    """
    status = getattr(error, "status_code", None)
    message = str(error)
    lowered = message.lower()

    if status == 429 or "rate limit" in lowered:
        return RateLimitedError(f"Whisper API rate limit reached: {message}")
    if status in (401, 403) or "invalid api key" in lowered or "incorrect api key" in lowered:
        return AuthError(f"Whisper API rejected credentials: {message}")
    if status == 413:
        return PayloadTooLargeError(size_mb, MAX_FILE_SIZE_MB)
    return TranscriptionFailedError(f"Whisper API request failed: {message}")


class CloudWhisperEngine(TranscriptionEngine):
    """Whisper API via litellm."""

    name = "openai"
    realtime_factor = 0.1

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "whisper-1",
        request_delay: float = 0.5,
        default_options: TranscriptionOptions | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(default_options)
        self.api_key = api_key
        self.model = model
        self.request_delay = request_delay
        self._sleep = sleep
        self._litellm: Any = None

    def is_available(self) -> bool:
        return self._litellm is not None

    def initialize(self) -> None:
        """Validate credentials and load the litellm client module.

        Raises:
            AuthError: If no API key is configured
            TranscriptionFailedError: If litellm is not installed
        """
        if self.is_available():
            return

        api_key = self.api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise AuthError(
                "No OpenAI API key configured. Set openai_api_key in sessionscribe.yaml "
                "or the OPENAI_API_KEY environment variable."
            )

        try:
            import litellm
        except ImportError as e:
            raise TranscriptionFailedError(
                "litellm not installed. Install with: pip install litellm"
            ) from e

        litellm.telemetry = False
        self.api_key = api_key
        self._litellm = litellm
        logger.info(f"Cloud transcription ready (model: {self.model})")

    def release(self) -> None:
        self._litellm = None

    def _transcribe(
        self,
        path: Path,
        options: TranscriptionOptions,
    ) -> tuple[list[TranscriptSegment], str | None, float | None]:
        size_mb = path.stat().st_size / (1024 * 1024)
        if size_mb > MAX_FILE_SIZE_MB:
            raise PayloadTooLargeError(size_mb, MAX_FILE_SIZE_MB)

        kwargs: dict[str, Any] = {
            "model": options.model or self.model,
            "response_format": "verbose_json",
            "temperature": options.temperature,
            "api_key": self.api_key,
        }
        if options.language:
            kwargs["language"] = options.language
        if options.prompt:
            kwargs["prompt"] = options.prompt

        with open(path, "rb") as audio:
            try:
                response = self._litellm.transcription(file=audio, **kwargs)
            except Exception as e:
                raise classify_error(e, size_mb) from e

        return self._parse_response(response)

    @staticmethod
    def _parse_response(
        response: Any,
    ) -> tuple[list[TranscriptSegment], str | None, float | None]:
        segments = []
        for seg in _field(response, "segments") or []:
            no_speech = _field(seg, "no_speech_prob", 0.0) or 0.0
            segments.append(
                TranscriptSegment(
                    text=(_field(seg, "text", "") or "").strip(),
                    start=float(_field(seg, "start", 0.0) or 0.0),
                    end=float(_field(seg, "end", 0.0) or 0.0),
                    confidence=min(1.0, max(0.0, 1.0 - float(no_speech))),
                )
            )

        duration = _field(response, "duration")
        return segments, _field(response, "text"), float(duration) if duration else None

    def _after_file(self) -> None:
        if self.request_delay > 0:
            self._sleep(self.request_delay)

    def info(self) -> dict[str, Any]:
        return {
            **super().info(),
            "model": self.model,
            "max_file_size_mb": MAX_FILE_SIZE_MB,
        }
