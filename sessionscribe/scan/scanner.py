"""
sessionscribe.scan.scanner - Segment discovery from on-disk remnants.

Rebuilds the speaker -> ordered segments mapping of a session directory from
file names alone, so a directory left behind by a crashed capturer can be
processed without any of the capture-time state.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from sessionscribe.exceptions import ConversionError, ParseError
from sessionscribe.io import read_document
from sessionscribe.models import AudioFormat, Segment, SessionManifest, Session
from sessionscribe.scan.audio import read_wav_format

logger = logging.getLogger(__name__)

GRAMMAR_VERSION = 1

RAW_SEGMENT_PATTERN = re.compile(
    r"^temp_(?P<speaker_id>\d+)_seg(?P<index>\d+)_(?P<timestamp>\d+)_(?P<random>[A-Za-z0-9]+)\.pcm$"
)
CONVERTED_SEGMENT_PATTERN = re.compile(r"^segment_(?P<index>\d{3,})\.wav$")

AUDIO_SUFFIXES = {".pcm", ".wav"}
MANIFEST_FILENAME = "manifest.json"


@dataclass(frozen=True)
class ParsedName:
    """Metadata recovered from one segment file name."""

    kind: str
    segment_index: int
    speaker_id: str | None = None
    speaker_dir: str | None = None
    capture_timestamp: int | None = None
    random: str | None = None
    grammar_version: int = GRAMMAR_VERSION


@dataclass
class ScanResult:
    """Segments found in a directory plus what was skipped and why."""

    segments: list[Segment] = field(default_factory=list)
    skipped: int = 0
    skip_reasons: list[tuple[Path, str]] = field(default_factory=list)

    def skip(self, path: Path, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons.append((path, reason))
        logger.warning(f"Skipping {path}: {reason}")

    @property
    def is_empty(self) -> bool:
        return not self.segments


def parse_segment_filename(path: Path, session_dir: Path | None = None) -> ParsedName:
    """Parse a segment file name against the capture grammar.

    Raw capture files carry everything in the name. Converted WAVs carry only
    their index; the speaker comes from the directory they sit in.

    Raises:
        ParseError: If the name matches neither grammar
    """
    name = path.name

    match = RAW_SEGMENT_PATTERN.match(name)
    if match:
        return ParsedName(
            kind="pcm",
            speaker_id=match.group("speaker_id"),
            segment_index=int(match.group("index")),
            capture_timestamp=int(match.group("timestamp")),
            random=match.group("random"),
        )

    match = CONVERTED_SEGMENT_PATTERN.match(name)
    if match:
        if session_dir is not None and path.parent.resolve() == session_dir.resolve():
            raise ParseError(str(path), "converted segment is not inside a speaker directory")
        return ParsedName(
            kind="wav",
            segment_index=int(match.group("index")),
            speaker_dir=path.parent.name,
        )

    raise ParseError(str(path), f"name does not match segment grammar v{GRAMMAR_VERSION}")


def load_manifest(directory: Path) -> SessionManifest | None:
    """Read a session's manifest.json; None when absent or unreadable."""
    manifest_path = directory / MANIFEST_FILENAME
    if not manifest_path.exists():
        return None
    try:
        return read_document(manifest_path, SessionManifest)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable manifest {manifest_path}: {e}")
        return None


def _load_manifest_index(directory: Path) -> tuple[dict[str, dict], AudioFormat | None]:
    manifest = load_manifest(directory)
    if manifest is None:
        return {}, None

    index = {
        Path(seg.file_path).as_posix(): {
            "speaker_id": seg.speaker_id,
            "speaker_name": seg.speaker_name,
            "capture_timestamp": seg.absolute_start_time,
        }
        for seg in manifest.segments
    }
    return index, manifest.audio_format


def scan(
    directory: Path,
    audio_format: AudioFormat | None = None,
    speaker_names: dict[str, str] | None = None,
) -> ScanResult:
    """Recursively collect segments from a session directory.

    A file that fails to parse or read is skipped and counted; the scan
    itself never aborts because of one bad file. An empty result is not an
    error.

    Args:
        directory: Session directory to walk
        audio_format: Layout of raw PCM files; falls back to the manifest's
            stored format, then to 48kHz stereo s16le
        speaker_names: Optional speaker_id -> display name mapping

    Returns:
        ScanResult with segments in discovery order

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Session directory not found: {directory}")

    speaker_names = speaker_names or {}
    manifest_index, manifest_format = _load_manifest_index(directory)
    pcm_format = audio_format or manifest_format or AudioFormat()

    result = ScanResult()
    for path in sorted(directory.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in AUDIO_SUFFIXES:
            continue

        try:
            parsed = parse_segment_filename(path, directory)
        except ParseError as e:
            result.skip(path, e.reason)
            continue

        try:
            byte_size = path.stat().st_size
        except OSError as e:
            result.skip(path, f"cannot stat: {e}")
            continue
        if byte_size == 0:
            result.skip(path, "empty file")
            continue

        if parsed.kind == "pcm":
            speaker_id = parsed.speaker_id or ""
            segment = Segment(
                speaker_id=speaker_id,
                speaker_name=speaker_names.get(speaker_id, f"User_{speaker_id}"),
                segment_index=parsed.segment_index,
                capture_timestamp=parsed.capture_timestamp,
                sample_rate=pcm_format.sample_rate,
                channel_count=pcm_format.channels,
                sample_format=pcm_format.sample_format,
                file_path=path,
                byte_size=byte_size,
                kind="pcm",
                random=parsed.random,
            )
        else:
            try:
                wav_format = read_wav_format(path)
            except ConversionError as e:
                result.skip(path, str(e))
                continue
            rel_path = path.relative_to(directory).as_posix()
            known = manifest_index.get(rel_path, {})
            speaker_id = known.get("speaker_id") or parsed.speaker_dir or "unknown"
            segment = Segment(
                speaker_id=speaker_id,
                speaker_name=known.get("speaker_name")
                or speaker_names.get(speaker_id, parsed.speaker_dir or speaker_id),
                segment_index=parsed.segment_index,
                capture_timestamp=known.get("capture_timestamp"),
                sample_rate=wav_format.sample_rate,
                channel_count=wav_format.channels,
                sample_format=wav_format.sample_format,
                file_path=path,
                byte_size=byte_size,
                kind="wav",
            )

        result.segments.append(segment)

    logger.info(
        f"Scanned {directory}: {len(result.segments)} segments, {result.skipped} skipped"
    )
    return result


def group_by_user(segments: list[Segment]) -> dict[str, list[Segment]]:
    """Group segments by speaker, each list ordered by segment index.

    Gaps in the index sequence are kept as-is. Speakers are returned in
    sorted id order.
    """
    grouped: dict[str, list[Segment]] = {}
    for segment in segments:
        grouped.setdefault(segment.speaker_id, []).append(segment)
    return {
        speaker_id: sorted(grouped[speaker_id], key=lambda s: s.segment_index)
        for speaker_id in sorted(grouped)
    }


def derive_session(session_id: str, segments: list[Segment]) -> Session:
    """Estimate session timing from capture timestamps.

    Start and end are the earliest and latest capture times, which are an
    approximation of the real session bounds.
    """
    participants: dict[str, str] = {}
    for segment in segments:
        participants.setdefault(segment.speaker_id, segment.speaker_name)

    timestamps = [s.capture_timestamp for s in segments if s.capture_timestamp is not None]
    start = min(timestamps) if timestamps else None
    end = max(timestamps) if timestamps else None

    return Session(
        session_id=session_id,
        participants=dict(sorted(participants.items())),
        start_time=start,
        end_time=end,
        duration_ms=(end - start) if start is not None and end is not None else 0,
        estimated=True,
    )
