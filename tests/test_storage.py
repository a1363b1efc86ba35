"""Tests for sessionscribe.merge.storage module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import SESSION_START, SPEAKER_A, make_transcript

from sessionscribe.merge.storage import load_transcript, save_transcript
from sessionscribe.merge.timeline import merge_transcripts


class TestSaveTranscript:
    def test_writes_both_artifacts(self, tmp_path: Path) -> None:
        merged = merge_transcripts(
            "s1", [make_transcript(SPEAKER_A, "Alice", SESSION_START, [(0.0, 1.0, "Hello")])]
        )

        json_path, md_path = save_transcript(tmp_path, merged)

        assert json_path.name == "transcript.json"
        assert md_path.name == "transcript.md"
        data = json.loads(json_path.read_text())
        assert data["sessionId"] == "s1"
        assert data["entries"][0]["speakerName"] == "Alice"
        assert "**Alice** [00:00]: Hello" in md_path.read_text()

    def test_saved_transcript_loads_back(self, tmp_path: Path) -> None:
        merged = merge_transcripts(
            "s1", [make_transcript(SPEAKER_A, "Alice", SESSION_START, [(0.0, 1.0, "Hello")])]
        )
        save_transcript(tmp_path, merged)

        assert load_transcript(tmp_path) == merged

    def test_load_missing_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_transcript(tmp_path)
