"""
sessionscribe.transcribe.base - Engine contract shared by every backend.

Callers only ever talk to TranscriptionEngine; each backend fills in how a
handle is acquired, how one file is transcribed and how the handle is freed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sessionscribe.exceptions import (
    NotInitializedError,
    TranscriptionError,
    TranscriptionFailedError,
    UnsupportedPlatformError,
)
from sessionscribe.models import TranscriptionOptions, TranscriptSegment, UserTranscript
from sessionscribe.utils import count_words, format_eta

logger = logging.getLogger(__name__)


@dataclass
class AudioFile:
    """One file queued for batch transcription."""

    path: Path
    speaker_id: str
    speaker_name: str
    audio_start_time: int = 0


@dataclass
class BatchFailure:
    file: Path
    error: TranscriptionError


@dataclass
class BatchResult:
    transcripts: list[UserTranscript] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.transcripts)

    @property
    def failed(self) -> int:
        return len(self.failures)


def build_user_transcript(
    segments: list[TranscriptSegment],
    audio_path: Path,
    speaker_id: str,
    speaker_name: str,
    audio_start_time: int,
    text: str | None = None,
    duration: float | None = None,
) -> UserTranscript:
    """Assemble a UserTranscript from backend segments.

    Args:
        segments: Segments with offsets relative to this file's audio
        audio_path: Source file, recorded by name only
        speaker_id: Speaker the audio belongs to
        speaker_name: Display name
        audio_start_time: Absolute ms anchor of the file's first sample
        text: Full text when the backend returns it separately
        duration: Audio duration in seconds; last segment end when None

    Returns:
        UserTranscript with word count and mean segment confidence
    """
    full_text = (text if text is not None else " ".join(s.text for s in segments if s.text)).strip()
    if duration is None:
        duration = max((s.end for s in segments), default=0.0)
    average = sum(s.confidence for s in segments) / len(segments) if segments else 0.0

    return UserTranscript(
        speaker_id=speaker_id,
        speaker_name=speaker_name,
        audio_file=audio_path.name,
        audio_start_time=audio_start_time,
        text=full_text,
        segments=segments,
        duration=duration,
        word_count=count_words(full_text),
        average_confidence=round(average, 4),
    )


class TranscriptionEngine(ABC):
    """Uniform speech-to-text contract.

    ``initialize()`` acquires the backend handle; only after that does
    ``is_available()`` report True and transcription calls succeed.
    """

    name: str = "engine"
    # Seconds of processing per second of audio, for ETA strings only
    realtime_factor: float = 1.0
    # Native backends clear this when their runtime cannot load on the host
    platform_supported: bool = True
    unsupported_reason: str | None = None

    def __init__(self, default_options: TranscriptionOptions | None = None) -> None:
        self.default_options = default_options or TranscriptionOptions()

    @abstractmethod
    def is_available(self) -> bool:
        """True once a usable handle is loaded."""

    @abstractmethod
    def initialize(self) -> None:
        """Acquire the client or model handle."""

    @abstractmethod
    def release(self) -> None:
        """Free the handle. Safe to call repeatedly."""

    @abstractmethod
    def _transcribe(
        self,
        path: Path,
        options: TranscriptionOptions,
    ) -> tuple[list[TranscriptSegment], str | None, float | None]:
        """Backend call returning (segments, full text or None, duration or None)."""

    def _after_file(self) -> None:
        """Hook run between batch items."""

    def _ensure_ready(self) -> None:
        if not self.platform_supported:
            raise UnsupportedPlatformError(
                self.unsupported_reason or f"{self.name} engine unsupported on this host"
            )
        if not self.is_available():
            raise NotInitializedError(
                f"{self.name} engine not initialized. Call initialize() first."
            )

    def transcribe_audio_file(
        self,
        path: Path,
        speaker_id: str,
        speaker_name: str,
        audio_start_time: int = 0,
        options: TranscriptionOptions | None = None,
    ) -> UserTranscript:
        """Transcribe one file for one speaker.

        Raises:
            UnsupportedPlatformError: If the backend cannot run on this host
            NotInitializedError: If called before initialize()
            TranscriptionError: Backend-specific subclasses; anything
                unexpected is wrapped in TranscriptionFailedError
        """
        self._ensure_ready()

        path = Path(path)
        opts = options or self.default_options
        logger.info(f"Transcribing {path.name} for {speaker_name} ({speaker_id}) with {self.name}")

        try:
            if not path.exists():
                raise FileNotFoundError(f"Audio file not found: {path}")
            segments, text, duration = self._transcribe(path, opts)
        except TranscriptionError:
            raise
        except Exception as e:
            raise TranscriptionFailedError(f"{self.name} failed on {path.name}: {e}") from e

        transcript = build_user_transcript(
            segments,
            path,
            speaker_id,
            speaker_name,
            audio_start_time,
            text=text,
            duration=duration,
        )
        logger.debug(
            f"{path.name}: {len(segments)} segments, {transcript.word_count} words, "
            f"{transcript.duration:.2f}s"
        )
        return transcript

    def transcribe_multiple_files(
        self,
        files: list[AudioFile],
        options: TranscriptionOptions | None = None,
    ) -> BatchResult:
        """Transcribe files one after another.

        A failing file is recorded in ``failures`` and the batch moves on.

        Raises:
            UnsupportedPlatformError: If the backend cannot run on this host
            NotInitializedError: If called before initialize()
        """
        self._ensure_ready()

        logger.info(f"Transcribing {len(files)} audio files with {self.name}")
        result = BatchResult()

        for i, audio in enumerate(files):
            try:
                result.transcripts.append(
                    self.transcribe_audio_file(
                        audio.path,
                        audio.speaker_id,
                        audio.speaker_name,
                        audio.audio_start_time,
                        options,
                    )
                )
            except TranscriptionError as e:
                logger.error(f"Failed to transcribe {audio.path}: {e}")
                result.failures.append(BatchFailure(file=Path(audio.path), error=e))

            if i < len(files) - 1:
                self._after_file()

        if result.failures:
            logger.warning(f"Transcription completed with {result.failed} errors")
        logger.info(f"Transcription batch completed: {result.succeeded}/{len(files)} successful")
        return result

    def estimate_time(self, duration_seconds: float) -> str:
        """Rough processing ETA for an audio duration, for display only."""
        return format_eta(duration_seconds * self.realtime_factor)

    def info(self) -> dict[str, Any]:
        return {"engine": self.name, "available": self.is_available()}
