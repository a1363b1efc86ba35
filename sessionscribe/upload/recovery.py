"""
sessionscribe.upload.recovery - Rebuild sessions from on-disk remnants.

Works only from what is on disk: the scanner recovers segments from file
names, raw PCM is wrapped into per-speaker WAVs, durations are estimated from
byte counts and the stored audio format, and a fresh manifest is written.
Recovered segments can then be re-uploaded one by one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from sessionscribe.exceptions import ConversionError
from sessionscribe.io import write_document, write_text
from sessionscribe.models import (
    AudioFormat,
    ManifestParticipant,
    ManifestSegment,
    Segment,
    SessionManifest,
)
from sessionscribe.scan.audio import (
    convert_to_container,
    estimate_pcm_duration_ms,
    read_wav_duration_ms,
)
from sessionscribe.scan.scanner import (
    MANIFEST_FILENAME,
    ScanResult,
    derive_session,
    group_by_user,
    load_manifest,
    scan,
)
from sessionscribe.upload.client import RecordingUploader
from sessionscribe.utils import format_duration, sanitize_name

logger = logging.getLogger(__name__)

RECOVERY_REPORT_FILENAME = "RECOVERY_REPORT.txt"


@dataclass
class MaterializedSession:
    """A session directory brought to the converted, manifest-backed layout."""

    session_dir: Path
    manifest: SessionManifest
    manifest_path: Path
    scan: ScanResult
    converted: int = 0
    conversion_failures: list[tuple[Path, str]] = field(default_factory=list)


@dataclass
class RecoveryReport:
    session_id: str
    manifest_path: Path
    report_path: Path
    segments_found: int = 0
    converted: int = 0
    skipped: int = 0
    conversion_failures: list[tuple[Path, str]] = field(default_factory=list)
    recording_id: str | None = None
    uploaded: int = 0
    upload_failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.conversion_failures) + len(self.upload_failures)

    @property
    def success(self) -> bool:
        return self.segments_found > 0 and self.failed == 0


def _speaker_dirs(grouped: dict[str, list[Segment]]) -> dict[str, str]:
    """Directory name per speaker; unique even when display names collide."""
    dirs: dict[str, str] = {}
    used: set[str] = set()
    for speaker_id, segments in grouped.items():
        name = sanitize_name(segments[0].speaker_name)
        if name in used:
            name = f"{name}_{speaker_id}"
        used.add(name)
        dirs[speaker_id] = name
    return dirs


def _manifest_segment(
    segment: Segment,
    wav_path: Path,
    session_dir: Path,
    duration_ms: int,
) -> ManifestSegment:
    start = segment.capture_timestamp
    return ManifestSegment(
        speaker_id=segment.speaker_id,
        speaker_name=segment.speaker_name,
        segment_index=segment.segment_index,
        file_name=wav_path.name,
        file_path=wav_path.relative_to(session_dir).as_posix(),
        absolute_start_time=start,
        absolute_end_time=start + duration_ms if start is not None else None,
        duration=duration_ms,
        file_size=wav_path.stat().st_size,
    )


def materialize_session(
    session_dir: Path,
    audio_format: AudioFormat | None = None,
    speaker_names: dict[str, str] | None = None,
    recovered: bool = False,
) -> MaterializedSession:
    """Scan a session, convert raw PCM to WAV and write manifest.json.

    PCM segments land at ``{speaker}/segment_{NNN}.wav``. WAVs already
    present are kept; a WAV produced from a PCM in this run is listed once.

    Args:
        session_dir: Session directory
        audio_format: Raw PCM layout; the existing manifest's, then the
            default, when None
        speaker_names: Optional speaker_id -> display name mapping
        recovered: Mark the manifest as rebuilt after a crash

    Returns:
        MaterializedSession with the written manifest

    Raises:
        FileNotFoundError: If the session directory does not exist
    """
    previous = load_manifest(session_dir)
    fmt = audio_format or (previous.audio_format if previous else None) or AudioFormat()

    scan_result = scan(session_dir, fmt, speaker_names)
    grouped = group_by_user(scan_result.segments)
    pcm_grouped = {
        speaker_id: [s for s in segments if s.kind == "pcm"]
        for speaker_id, segments in grouped.items()
    }
    speaker_dirs = _speaker_dirs({k: v for k, v in pcm_grouped.items() if v})

    entries: dict[Path, ManifestSegment] = {}
    timed_segments: list[Segment] = []
    materialized = MaterializedSession(
        session_dir=session_dir,
        manifest=SessionManifest(session_id=session_dir.name),
        manifest_path=session_dir / MANIFEST_FILENAME,
        scan=scan_result,
    )

    for speaker_id, segments in pcm_grouped.items():
        for segment in segments:
            wav_path = session_dir / speaker_dirs[speaker_id] / f"segment_{segment.segment_index:03d}.wav"
            existed = wav_path.exists()
            try:
                convert_to_container(segment.file_path, wav_path, segment.audio_format)
            except ConversionError as e:
                materialized.conversion_failures.append((segment.file_path, str(e)))
                continue
            if not existed:
                materialized.converted += 1
            duration = estimate_pcm_duration_ms(segment.byte_size, segment.audio_format)
            entries[wav_path.resolve()] = _manifest_segment(segment, wav_path, session_dir, duration)
            timed_segments.append(segment)

    for segments in grouped.values():
        for segment in segments:
            if segment.kind != "wav" or segment.file_path.resolve() in entries:
                continue
            duration = read_wav_duration_ms(segment.file_path)
            entries[segment.file_path.resolve()] = _manifest_segment(
                segment, segment.file_path, session_dir, duration
            )
            timed_segments.append(segment)

    manifest_segments = sorted(entries.values(), key=lambda s: (s.speaker_id, s.segment_index))
    session = derive_session(session_dir.name, timed_segments)

    counts: dict[str, int] = {}
    for seg in manifest_segments:
        counts[seg.speaker_id] = counts.get(seg.speaker_id, 0) + 1

    manifest = SessionManifest(
        session_id=session_dir.name,
        session_start_time=session.start_time,
        session_end_time=session.end_time,
        timing_estimated=True,
        audio_format=fmt,
        participants=[
            ManifestParticipant(
                speaker_id=speaker_id,
                speaker_name=session.participants.get(speaker_id, speaker_id),
                segment_count=count,
            )
            for speaker_id, count in sorted(counts.items())
        ],
        segments=manifest_segments,
        recovered=recovered or bool(previous and previous.recovered),
        created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    )
    write_document(materialized.manifest_path, manifest)
    materialized.manifest = manifest

    logger.info(
        f"Materialized {session_dir.name}: {len(manifest_segments)} segments, "
        f"{materialized.converted} converted, {len(materialized.conversion_failures)} failed"
    )
    return materialized


def _iso(timestamp_ms: int | None) -> str:
    if timestamp_ms is None:
        return "unknown"
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def write_recovery_report(materialized: MaterializedSession, report: RecoveryReport) -> Path:
    """Render RECOVERY_REPORT.txt next to the manifest."""
    manifest = materialized.manifest
    duration_ms = 0
    if manifest.session_start_time is not None and manifest.session_end_time is not None:
        duration_ms = manifest.session_end_time - manifest.session_start_time

    env = Environment(
        loader=FileSystemLoader(Path(__file__).parent / "templates"),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    text = env.get_template("recovery_report.txt.j2").render(
        generated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        session_id=manifest.session_id,
        segments=manifest.segments,
        converted=materialized.converted,
        skipped=materialized.scan.skip_reasons,
        conversion_failures=materialized.conversion_failures,
        participants=manifest.participants,
        recording_id=report.recording_id,
        uploaded=report.uploaded,
        upload_failures=report.upload_failures,
        start=_iso(manifest.session_start_time),
        end=_iso(manifest.session_end_time),
        duration=format_duration(duration_ms / 1000),
        audio_format=manifest.audio_format,
    )
    write_text(report.report_path, text + "\n")
    return report.report_path


def recover_orphaned_segments(
    session_directory: Path,
    recording_id: str | None = None,
    uploader: RecordingUploader | None = None,
    audio_format: AudioFormat | None = None,
    speaker_names: dict[str, str] | None = None,
    max_retries: int = 3,
) -> RecoveryReport:
    """Rebuild a crashed session and re-upload its segments one by one.

    Uses nothing but the files on disk. Each segment is uploaded on its own;
    a failed segment is recorded and the rest continue. Without a recording
    id or uploader only the local rebuild happens.

    Args:
        session_directory: Directory the crashed capturer left behind
        recording_id: Existing recording to attach segments to
        uploader: Client used for segment uploads
        audio_format: Raw PCM layout the capturer wrote
        speaker_names: Optional speaker_id -> display name mapping
        max_retries: Attempts per segment

    Returns:
        RecoveryReport with per-segment failures aggregated
    """
    materialized = materialize_session(
        session_directory, audio_format, speaker_names, recovered=True
    )
    manifest = materialized.manifest

    report = RecoveryReport(
        session_id=manifest.session_id,
        manifest_path=materialized.manifest_path,
        report_path=session_directory / RECOVERY_REPORT_FILENAME,
        segments_found=len(manifest.segments),
        converted=materialized.converted,
        skipped=materialized.scan.skipped,
        conversion_failures=list(materialized.conversion_failures),
        recording_id=recording_id,
    )

    if recording_id and uploader is not None:
        for segment in manifest.segments:
            result = uploader.upload_segment_with_retry(
                recording_id,
                session_directory / segment.file_path,
                segment,
                max_retries=max_retries,
            )
            if result.success:
                report.uploaded += 1
                logger.info(f"Recovered {segment.file_path} into recording {recording_id}")
            else:
                report.upload_failures.append((segment.file_path, result.error or "unknown error"))
                logger.error(f"Failed to recover {segment.file_path}: {result.error}")

    write_recovery_report(materialized, report)
    logger.info(
        f"Recovery of {report.session_id}: {report.segments_found} segments, "
        f"{report.uploaded} uploaded, {report.failed} failed"
    )
    return report
