"""
sessionscribe.scan.audio - PCM/WAV container handling.

Wraps headerless capture output in WAV containers, estimates durations from
byte counts, and produces the 16kHz mono sample arrays native Whisper
engines expect.
"""

from __future__ import annotations

import logging
import os
import tempfile
import wave
from pathlib import Path

import numpy as np

from sessionscribe.exceptions import ConversionError
from sessionscribe.models import AudioFormat

logger = logging.getLogger(__name__)

WAV_HEADER_BYTES = 44
WHISPER_SAMPLE_RATE = 16000
COPY_CHUNK_BYTES = 1024 * 1024


def convert_to_container(
    raw_pcm_path: Path,
    wav_path: Path,
    audio_format: AudioFormat | None = None,
) -> Path:
    """Wrap a raw PCM stream in a WAV container.

    Idempotent: an existing destination is returned untouched, never
    re-encoded. The WAV is written to a temp file in the destination
    directory and renamed into place.

    Args:
        raw_pcm_path: Headerless sample stream written by the capturer
        wav_path: Destination WAV path
        audio_format: Layout of the raw samples (48kHz stereo s16le default)

    Returns:
        Path to the WAV file

    Raises:
        ConversionError: If the source cannot be read or the WAV written
    """
    if wav_path.exists():
        logger.debug(f"WAV already exists, skipping conversion: {wav_path}")
        return wav_path

    fmt = audio_format or AudioFormat()
    block_align = fmt.channels * fmt.sample_width
    chunk_size = COPY_CHUNK_BYTES - (COPY_CHUNK_BYTES % block_align)

    wav_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Path | None = None
    try:
        with open(raw_pcm_path, "rb") as src, tempfile.NamedTemporaryFile(
            dir=wav_path.parent, delete=False, suffix=".tmp"
        ) as tmp:
            tmp_path = Path(tmp.name)
            writer = wave.open(tmp, "wb")
            try:
                writer.setnchannels(fmt.channels)
                writer.setsampwidth(fmt.sample_width)
                writer.setframerate(fmt.sample_rate)
                pending = b""
                while True:
                    chunk = src.read(chunk_size)
                    if not chunk:
                        break
                    data = pending + chunk
                    usable = len(data) - (len(data) % block_align)
                    writer.writeframesraw(data[:usable])
                    pending = data[usable:]
                if pending:
                    logger.warning(
                        f"Dropped {len(pending)} trailing bytes (partial frame) "
                        f"from {raw_pcm_path.name}"
                    )
            finally:
                writer.close()
        os.replace(tmp_path, wav_path)
    except (OSError, wave.Error) as e:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise ConversionError(f"Failed to convert {raw_pcm_path} to WAV: {e}") from e

    logger.info(f"Converted {raw_pcm_path.name} -> {wav_path}")
    return wav_path


def estimate_pcm_duration_ms(byte_size: int, audio_format: AudioFormat | None = None) -> int:
    """Estimate the duration of raw PCM from its byte size."""
    fmt = audio_format or AudioFormat()
    if byte_size <= 0:
        return 0
    return round(byte_size / fmt.byte_rate * 1000)


def estimate_wav_duration_ms(byte_size: int, audio_format: AudioFormat | None = None) -> int:
    """Estimate a WAV duration from file size, assuming the canonical 44-byte header."""
    return estimate_pcm_duration_ms(max(0, byte_size - WAV_HEADER_BYTES), audio_format)


def read_wav_duration_ms(path: Path) -> int:
    """Read a WAV duration from its header; 0 when the header is unusable."""
    try:
        with wave.open(str(path), "rb") as reader:
            rate = reader.getframerate()
            if rate <= 0:
                return 0
            return round(reader.getnframes() / rate * 1000)
    except (OSError, EOFError, wave.Error) as e:
        logger.warning(f"Cannot read WAV header of {path.name}: {e}")
        return 0


def read_wav_format(path: Path) -> AudioFormat:
    """Read the sample layout from a WAV header.

    Raises:
        ConversionError: If the file is not a readable 16-bit PCM WAV
    """
    try:
        with wave.open(str(path), "rb") as reader:
            if reader.getsampwidth() != 2:
                raise ConversionError(
                    f"{path.name}: unsupported sample width {reader.getsampwidth()}"
                )
            return AudioFormat(
                sample_rate=reader.getframerate(),
                channels=reader.getnchannels(),
                sample_format="s16le",
            )
    except (OSError, EOFError, wave.Error) as e:
        raise ConversionError(f"{path.name}: not a readable WAV file: {e}") from e


def load_mono_16k(path: Path) -> np.ndarray:
    """Load a 16-bit WAV as float32 mono samples at 16kHz.

    Multi-channel audio is averaged down; other sample rates are linearly
    resampled.
    """
    try:
        with wave.open(str(path), "rb") as reader:
            channels = reader.getnchannels()
            sample_rate = reader.getframerate()
            sample_width = reader.getsampwidth()
            frames = reader.readframes(reader.getnframes())
    except (OSError, EOFError, wave.Error) as e:
        raise ConversionError(f"{path.name}: not a readable WAV file: {e}") from e

    if sample_width != 2:
        raise ConversionError(f"{path.name}: unsupported sample width {sample_width}")

    audio = np.frombuffer(frames, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        audio = audio[: len(audio) - len(audio) % channels].reshape(-1, channels).mean(axis=1)

    if sample_rate != WHISPER_SAMPLE_RATE and len(audio) > 0:
        target_len = int(len(audio) * WHISPER_SAMPLE_RATE / sample_rate)
        indices = np.linspace(0, len(audio) - 1, target_len)
        audio = np.interp(indices, np.arange(len(audio)), audio)

    return audio.astype(np.float32)


def write_mono_16k(samples: np.ndarray, path: Path) -> Path:
    """Write float32 samples in [-1, 1] as a 16kHz mono 16-bit WAV."""
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2")
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as writer:
        writer.setnchannels(1)
        writer.setsampwidth(2)
        writer.setframerate(WHISPER_SAMPLE_RATE)
        writer.writeframes(pcm.tobytes())
    return path
