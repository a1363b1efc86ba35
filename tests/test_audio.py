"""Tests for sessionscribe.scan.audio module."""

from __future__ import annotations

import wave
from pathlib import Path

import numpy as np
import pytest
from conftest import PCM_CHUNK

from sessionscribe.exceptions import ConversionError
from sessionscribe.models import AudioFormat
from sessionscribe.scan.audio import (
    convert_to_container,
    estimate_pcm_duration_ms,
    estimate_wav_duration_ms,
    load_mono_16k,
    read_wav_duration_ms,
    read_wav_format,
    write_mono_16k,
)


@pytest.fixture
def raw_pcm(tmp_path: Path) -> Path:
    path = tmp_path / "raw.pcm"
    path.write_bytes(PCM_CHUNK * 10)
    return path


class TestConvertToContainer:
    def test_writes_wav_with_format(self, raw_pcm: Path, tmp_path: Path) -> None:
        wav_path = convert_to_container(raw_pcm, tmp_path / "Alice" / "segment_000.wav")

        with wave.open(str(wav_path), "rb") as reader:
            assert reader.getframerate() == 48000
            assert reader.getnchannels() == 2
            assert reader.getsampwidth() == 2
            assert reader.getnframes() == 48000

    def test_preserves_samples(self, raw_pcm: Path, tmp_path: Path) -> None:
        wav_path = convert_to_container(raw_pcm, tmp_path / "out.wav")

        with wave.open(str(wav_path), "rb") as reader:
            assert reader.readframes(reader.getnframes()) == raw_pcm.read_bytes()

    def test_idempotent(self, raw_pcm: Path, tmp_path: Path) -> None:
        wav_path = convert_to_container(raw_pcm, tmp_path / "out.wav")
        first_bytes = wav_path.read_bytes()
        first_mtime = wav_path.stat().st_mtime_ns

        raw_pcm.write_bytes(b"\x00\x00" * 100)
        convert_to_container(raw_pcm, wav_path)

        assert wav_path.read_bytes() == first_bytes
        assert wav_path.stat().st_mtime_ns == first_mtime

    def test_drops_partial_trailing_frame(self, tmp_path: Path) -> None:
        raw = tmp_path / "odd.pcm"
        raw.write_bytes(PCM_CHUNK + b"\x01\x02\x03")

        wav_path = convert_to_container(raw, tmp_path / "odd.wav")

        with wave.open(str(wav_path), "rb") as reader:
            assert reader.getnframes() == len(PCM_CHUNK) // 4

    def test_custom_format(self, raw_pcm: Path, tmp_path: Path) -> None:
        fmt = AudioFormat(sample_rate=16000, channels=1)
        wav_path = convert_to_container(raw_pcm, tmp_path / "mono.wav", fmt)

        assert read_wav_format(wav_path) == fmt

    def test_missing_source_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConversionError):
            convert_to_container(tmp_path / "missing.pcm", tmp_path / "out.wav")
        assert not (tmp_path / "out.wav").exists()
        assert list(tmp_path.glob("*.tmp")) == []


class TestDurations:
    def test_pcm_estimate_default_format(self) -> None:
        assert estimate_pcm_duration_ms(192000) == 1000

    def test_pcm_estimate_mono_16k(self) -> None:
        fmt = AudioFormat(sample_rate=16000, channels=1)
        assert estimate_pcm_duration_ms(16000, fmt) == 500

    def test_empty_pcm(self) -> None:
        assert estimate_pcm_duration_ms(0) == 0

    def test_wav_estimate_subtracts_header(self) -> None:
        assert estimate_wav_duration_ms(192000 + 44) == 1000

    def test_header_duration(self, raw_pcm: Path, tmp_path: Path) -> None:
        wav_path = convert_to_container(raw_pcm, tmp_path / "out.wav")
        assert read_wav_duration_ms(wav_path) == 1000

    def test_header_duration_of_garbage(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.wav"
        bad.write_bytes(b"nope")
        assert read_wav_duration_ms(bad) == 0


class TestMono16k:
    def test_downmix_and_resample(self, raw_pcm: Path, tmp_path: Path) -> None:
        wav_path = convert_to_container(raw_pcm, tmp_path / "out.wav")

        samples = load_mono_16k(wav_path)

        assert samples.dtype == np.float32
        assert len(samples) == 16000
        # left 1/32768, right -1/32768 average to silence
        assert np.allclose(samples, 0.0, atol=1e-4)

    def test_write_then_load_keeps_length(self, tmp_path: Path) -> None:
        samples = np.linspace(-0.5, 0.5, 8000, dtype=np.float32)

        path = write_mono_16k(samples, tmp_path / "tone.wav")
        loaded = load_mono_16k(path)

        assert len(loaded) == 8000
        assert np.allclose(loaded, samples, atol=1e-3)

    def test_unreadable_file_raises(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.wav"
        bad.write_bytes(b"nope")
        with pytest.raises(ConversionError):
            load_mono_16k(bad)
