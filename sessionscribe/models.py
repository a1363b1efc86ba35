"""
sessionscribe.models - Typed records shared by every pipeline stage.

Segments come from the scanner, transcripts from the engines, timeline
entries and session transcripts from the merge. Everything serialises with
camelCase keys so manifests and transcript files keep the field names the
upload API expects.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SUPPORTED_SAMPLE_FORMATS = {"s16le": 2}


class CamelModel(BaseModel):
    """Base model emitting camelCase JSON and accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AudioFormat(CamelModel):
    """Layout of headerless PCM written by the capturer."""

    sample_rate: int = Field(default=48000, gt=0)
    channels: int = Field(default=2, gt=0)
    sample_format: str = "s16le"

    @field_validator("sample_format")
    @classmethod
    def validate_sample_format(cls, v: str) -> str:
        if v not in SUPPORTED_SAMPLE_FORMATS:
            raise ValueError(f"sample_format must be one of: {set(SUPPORTED_SAMPLE_FORMATS)}")
        return v

    @property
    def sample_width(self) -> int:
        return SUPPORTED_SAMPLE_FORMATS[self.sample_format]

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.channels * self.sample_width


class Segment(CamelModel):
    """One contiguous audio chunk for one speaker, as found on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    speaker_id: str
    speaker_name: str
    segment_index: int = Field(ge=0)
    capture_timestamp: int | None = None
    sample_rate: int = 48000
    channel_count: int = 2
    sample_format: str = "s16le"
    file_path: Path
    byte_size: int = 0
    kind: str = "pcm"
    random: str | None = None

    @property
    def audio_format(self) -> AudioFormat:
        return AudioFormat(
            sample_rate=self.sample_rate,
            channels=self.channel_count,
            sample_format=self.sample_format,
        )


class Session(CamelModel):
    """A recording unit derived from a directory name and its segments."""

    session_id: str
    participants: dict[str, str] = Field(default_factory=dict)
    start_time: int | None = None
    end_time: int | None = None
    duration_ms: int = 0
    estimated: bool = True


class TranscriptSegment(CamelModel):
    text: str
    start: float = 0.0
    end: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class UserTranscript(CamelModel):
    """Transcript of one speaker's audio, anchored at ``audio_start_time`` (ms)."""

    speaker_id: str
    speaker_name: str
    audio_file: str = ""
    audio_start_time: int = 0
    text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    duration: float = 0.0
    word_count: int = 0
    average_confidence: float = 0.0


class TranscriptionOptions(CamelModel):
    language: str | None = "en"
    temperature: float = 0.0
    prompt: str | None = None
    model: str | None = None


class TimelineEntry(CamelModel):
    """One transcript segment projected onto session time."""

    speaker_id: str
    speaker_name: str
    text: str
    absolute_start: float
    absolute_end: float
    offset: float = 0.0
    confidence: float = 0.0


class SessionTranscript(CamelModel):
    session_id: str
    session_start_time: int | None = None
    session_end_time: int | None = None
    duration_ms: int = 0
    timing_estimated: bool = True
    participants: dict[str, str] = Field(default_factory=dict)
    participant_count: int = 0
    entries: list[TimelineEntry] = Field(default_factory=list)
    full_transcript: str = ""
    word_count: int = 0
    average_confidence: float = 0.0
    user_transcripts: list[UserTranscript] = Field(default_factory=list)
    transcribed_at: str | None = None


class ManifestParticipant(CamelModel):
    speaker_id: str
    speaker_name: str
    segment_count: int = 0


class ManifestSegment(CamelModel):
    speaker_id: str
    speaker_name: str
    segment_index: int
    file_name: str
    file_path: str
    absolute_start_time: int | None = None
    absolute_end_time: int | None = None
    duration: int = 0
    file_size: int = 0


class SessionManifest(CamelModel):
    """Contents of ``manifest.json`` beside a session's audio."""

    session_id: str
    session_start_time: int | None = None
    session_end_time: int | None = None
    timing_estimated: bool = True
    audio_format: AudioFormat = Field(default_factory=AudioFormat)
    participants: list[ManifestParticipant] = Field(default_factory=list)
    segments: list[ManifestSegment] = Field(default_factory=list)
    recovered: bool = False
    created_at: str | None = None
