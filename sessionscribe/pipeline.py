"""
sessionscribe.pipeline - Session processing and delivery.

Ties the stages together for one session directory: materialize segments,
transcribe them with the single active engine, merge, save artifacts, and
deliver the bundle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from sessionscribe.config import SessionScribeConfig
from sessionscribe.merge.storage import save_transcript
from sessionscribe.merge.timeline import combine_speaker_transcripts, merge_transcripts
from sessionscribe.models import SessionManifest, SessionTranscript
from sessionscribe.scan.scanner import load_manifest
from sessionscribe.transcribe.base import AudioFile, TranscriptionEngine
from sessionscribe.upload.client import (
    RecordingUploader,
    UploadProgress,
    UploadResult,
    build_bundle,
    cleanup_local_files,
    estimate_upload_time,
    metadata_from_manifest,
)
from sessionscribe.upload.recovery import materialize_session
from sessionscribe.utils import format_duration, format_eta, format_size

logger = logging.getLogger(__name__)


@dataclass
class SessionResult:
    session_id: str
    transcript: SessionTranscript | None = None
    json_path: Path | None = None
    markdown_path: Path | None = None
    transcribed: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


@dataclass
class DeliveryResult:
    """Upload and cleanup outcomes, kept apart on purpose."""

    upload: UploadResult
    cleaned_up: bool | None = None


def create_uploader(config: SessionScribeConfig) -> RecordingUploader:
    return RecordingUploader(
        api_url=config.api_url,
        api_token=config.api_token,
        timeout=config.upload_timeout_seconds,
    )


def audio_files_from_manifest(session_dir: Path, manifest: SessionManifest) -> list[AudioFile]:
    """Transcription queue in speaker/index order.

    Segments with no known capture time are placed right after the previous
    segment of the same speaker.
    """
    files = []
    cursor: dict[str, int] = {}
    fallback_start = manifest.session_start_time or 0

    for seg in manifest.segments:
        start = seg.absolute_start_time
        if start is None:
            start = cursor.get(seg.speaker_id, fallback_start)
        cursor[seg.speaker_id] = start + seg.duration
        files.append(
            AudioFile(
                path=session_dir / seg.file_path,
                speaker_id=seg.speaker_id,
                speaker_name=seg.speaker_name,
                audio_start_time=start,
            )
        )
    return files


def process_session(
    session_dir: Path,
    engine: TranscriptionEngine,
    config: SessionScribeConfig,
    console=None,
) -> SessionResult:
    """Transcribe and merge one session directory.

    Args:
        session_dir: Session directory with raw or converted segments
        engine: Initialized transcription engine
        config: Resolved configuration
        console: Optional rich console for output

    Returns:
        SessionResult; per-file failures are listed, not raised

    Raises:
        NotInitializedError: If the engine was not initialized
    """
    from rich.table import Table

    materialized = materialize_session(session_dir, config.audio_format, config.speaker_names)
    manifest = materialized.manifest
    result = SessionResult(session_id=manifest.session_id)

    for path, reason in materialized.conversion_failures:
        result.failed += 1
        result.errors.append({"file": str(path), "error": reason})

    if not manifest.segments:
        logger.warning(f"No segments found in {session_dir}")
        if console:
            console.print(f"[yellow]No segments found in {session_dir}[/yellow]")
        return result

    files = audio_files_from_manifest(session_dir, manifest)
    if console:
        total_seconds = sum(seg.duration for seg in manifest.segments) / 1000
        console.print(
            f"[cyan]Transcribing {len(files)} segments ({format_duration(total_seconds)}) "
            f"with {engine.name}, estimated {engine.estimate_time(total_seconds)}...[/cyan]\n"
        )

    batch = engine.transcribe_multiple_files(files)
    result.transcribed = batch.succeeded
    result.failed += batch.failed
    for failure in batch.failures:
        result.errors.append({"file": str(failure.file), "error": str(failure.error)})

    table = Table(title=f"Transcription: {manifest.session_id}")
    table.add_column("Speaker", style="cyan")
    table.add_column("File", style="cyan")
    table.add_column("Segments", style="green")
    table.add_column("Words", style="green")
    table.add_column("Status", style="yellow")

    done = {(t.speaker_id, t.audio_file): t for t in batch.transcripts}
    failed_files = {f.file: f.error for f in batch.failures}
    for audio in files:
        transcript = done.get((audio.speaker_id, audio.path.name))
        if transcript is None:
            error = failed_files.get(audio.path, "not transcribed")
            table.add_row(
                audio.speaker_name,
                audio.path.name,
                "-",
                "-",
                f"[red]Error: {error}[/red]",
            )
        else:
            table.add_row(
                audio.speaker_name,
                audio.path.name,
                str(len(transcript.segments)),
                str(transcript.word_count),
                "[green]✓ Transcribed[/green]",
            )

    participants = {p.speaker_id: p.speaker_name for p in manifest.participants}
    ends = [s.absolute_end_time for s in manifest.segments if s.absolute_end_time is not None]
    merged = merge_transcripts(
        manifest.session_id,
        combine_speaker_transcripts(batch.transcripts),
        participants=participants,
        session_start=manifest.session_start_time,
        session_end=max(ends) if ends else None,
        timing_estimated=manifest.timing_estimated,
    )
    merged = merged.model_copy(
        update={"transcribed_at": datetime.now(timezone.utc).isoformat(timespec="seconds")}
    )

    result.json_path, result.markdown_path = save_transcript(session_dir, merged)
    result.transcript = merged

    if console:
        console.print(table)
        console.print(f"[dim]  {result.json_path}[/dim]")
        console.print(f"[dim]  {result.markdown_path}[/dim]")

    return result


def deliver_session(
    session_dir: Path,
    uploader: RecordingUploader,
    config: SessionScribeConfig,
    console=None,
) -> DeliveryResult:
    """Upload a processed session, then clean up after confirmed success.

    A cleanup failure is reported in ``cleaned_up`` and never changes the
    upload outcome.
    """
    manifest = load_manifest(session_dir)
    if manifest is None:
        manifest = materialize_session(
            session_dir, config.audio_format, config.speaker_names
        ).manifest

    bundle = build_bundle(session_dir, manifest)
    metadata = metadata_from_manifest(manifest, bundle)

    last_reported = [-1]

    def report(progress: UploadProgress) -> None:
        step = int(progress.percentage // 10)
        if console and step > last_reported[0]:
            last_reported[0] = step
            console.print(
                f"[dim]  {progress.percentage:.0f}% ({format_size(progress.uploaded_bytes)} / "
                f"{format_size(progress.total_bytes)}) {progress.current_file}[/dim]"
            )

    if console:
        console.print(
            f"[cyan]Uploading {len(bundle.files)} files ({format_size(bundle.total_size)}) "
            f"to {uploader.api_url}, estimated {format_eta(estimate_upload_time(bundle))}...[/cyan]"
        )

    upload = uploader.upload_with_retry(
        bundle, metadata, max_retries=config.upload_max_retries, on_progress=report
    )
    delivery = DeliveryResult(upload=upload)

    if upload.success and config.cleanup_after_upload:
        delivery.cleaned_up = cleanup_local_files(bundle)

    return delivery

