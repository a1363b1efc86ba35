"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from sessionscribe.exceptions import TranscriptionFailedError
from sessionscribe.models import TranscriptionOptions, TranscriptSegment, UserTranscript
from sessionscribe.transcribe.base import TranscriptionEngine

# 100ms of 48kHz stereo s16le
PCM_CHUNK = b"\x01\x00\xff\xff" * 4800

SPEAKER_A = "111111111111111111"
SPEAKER_B = "222222222222222222"
SESSION_START = 1_700_000_000_000


def pcm_name(speaker_id: str, index: int, timestamp: int, random: str = "abc123") -> str:
    return f"temp_{speaker_id}_seg{index}_{timestamp}_{random}.pcm"


def write_pcm(directory: Path, speaker_id: str, index: int, timestamp: int, chunks: int = 1) -> Path:
    path = directory / pcm_name(speaker_id, index, timestamp)
    path.write_bytes(PCM_CHUNK * chunks)
    return path


@pytest.fixture
def session_dir(tmp_path: Path) -> Path:
    """Session directory with raw segments for two speakers."""
    directory = tmp_path / "session_001"
    directory.mkdir()
    write_pcm(directory, SPEAKER_A, 0, SESSION_START)
    write_pcm(directory, SPEAKER_A, 1, SESSION_START + 5_000, chunks=2)
    write_pcm(directory, SPEAKER_B, 0, SESSION_START + 2_000)
    return directory


@pytest.fixture
def speaker_names() -> dict[str, str]:
    return {SPEAKER_A: "Alice", SPEAKER_B: "Bob"}


def make_transcript(
    speaker_id: str,
    speaker_name: str,
    anchor: int,
    segments: list[tuple[float, float, str]],
    confidence: float = 0.9,
) -> UserTranscript:
    segs = [
        TranscriptSegment(text=text, start=start, end=end, confidence=confidence)
        for start, end, text in segments
    ]
    text = " ".join(s.text for s in segs)
    return UserTranscript(
        speaker_id=speaker_id,
        speaker_name=speaker_name,
        audio_file="segment_000.wav",
        audio_start_time=anchor,
        text=text,
        segments=segs,
        duration=max((s.end for s in segs), default=0.0),
        word_count=len(text.split()),
        average_confidence=confidence,
    )


class FakeEngine(TranscriptionEngine):
    """Engine returning canned segments, optionally failing on chosen files."""

    name = "fake"

    def __init__(self, fail_on: set[str] | None = None) -> None:
        super().__init__()
        self.fail_on = fail_on or set()
        self.ready = False
        self.calls: list[Path] = []
        self.between = 0

    def is_available(self) -> bool:
        return self.ready

    def initialize(self) -> None:
        self.ready = True

    def release(self) -> None:
        self.ready = False

    def _transcribe(self, path: Path, options: TranscriptionOptions):
        self.calls.append(path)
        if path.name in self.fail_on or str(path) in self.fail_on:
            raise TranscriptionFailedError(f"cannot transcribe {path.name}")
        speaker = path.parent.name
        return (
            [TranscriptSegment(text=f"hello from {speaker}", start=0.0, end=0.5, confidence=0.8)],
            None,
            0.5,
        )

    def _after_file(self) -> None:
        self.between += 1


@pytest.fixture
def fake_engine() -> FakeEngine:
    engine = FakeEngine()
    engine.initialize()
    return engine
