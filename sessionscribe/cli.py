"""
sessionscribe.cli - Typer CLI entry point.

Provides all subcommands for the sessionscribe pipeline.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sessionscribe import __version__
from sessionscribe.config import (
    CONFIG_FILENAME,
    SessionScribeConfig,
    create_default_config,
    load_config,
    write_config,
)
from sessionscribe.exceptions import ConfigError, SessionScribeError
from sessionscribe.logging import configure_logging
from sessionscribe.utils import format_duration, format_size

app = typer.Typer(
    name="sessionscribe",
    help="Recover, transcribe and deliver per-speaker session recordings.\n\n"
    "Scans segment directories left by a voice capturer, transcribes them with "
    "a cloud or local Whisper engine, merges speakers into one chronological "
    "transcript and uploads the result.",
    add_completion=False,
)
console = Console()

_state: dict[str, Path | None] = {"config_path": None}


def version_callback(value: bool) -> None:
    if value:
        console.print(f"sessionscribe {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config_path: Path | None = typer.Option(
        None, "--config", "-c", help=f"Path to {CONFIG_FILENAME}"
    ),
) -> None:
    """sessionscribe - session recording recovery and transcription."""
    configure_logging(verbose)
    _state["config_path"] = config_path


def get_config() -> SessionScribeConfig:
    try:
        return load_config(_state["config_path"])
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def require_session_dir(session_dir: Path) -> Path:
    if not session_dir.is_dir():
        console.print(f"[red]Error: Session directory not found: {session_dir}[/red]")
        raise typer.Exit(1)
    return session_dir


def print_download_progress(progress: dict) -> None:
    console.print(
        f"[dim]  Downloading model: {progress['percentage']:.0f}% "
        f"({format_size(progress['downloaded_bytes'])} / "
        f"{format_size(progress['total_bytes'])})[/dim]"
    )


@app.command("init")
def init_config(
    engine: str = typer.Option(
        "openai", "--engine", "-e", help="Transcription engine: openai, local, or gpu"
    ),
    path: Path = typer.Option(Path("."), "--path", "-d", help="Directory to write config in"),
) -> None:
    """Write a default sessionscribe.yaml."""
    config_file = path / CONFIG_FILENAME
    if config_file.exists():
        console.print(f"[red]Error: '{config_file}' already exists[/red]")
        raise typer.Exit(1)

    config = create_default_config(engine)
    try:
        SessionScribeConfig(**config)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    write_config(config, config_file)
    console.print(f"[green]✓[/green] Created {config_file} (engine: {engine})")
    if engine == "openai":
        console.print("[dim]  Set OPENAI_API_KEY or openai_api_key before transcribing[/dim]")


@app.command("scan")
def scan_session(
    session_dir: Path = typer.Argument(..., help="Session directory"),
) -> None:
    """List the segments found in a session directory."""
    from sessionscribe.scan.audio import estimate_pcm_duration_ms, read_wav_duration_ms
    from sessionscribe.scan.scanner import derive_session, group_by_user, scan

    config = get_config()
    require_session_dir(session_dir)

    result = scan(session_dir, config.audio_format, config.speaker_names)
    grouped = group_by_user(result.segments)

    table = Table(title=f"Segments: {session_dir.name}")
    table.add_column("Speaker", style="cyan")
    table.add_column("Segments", style="green")
    table.add_column("Indices")
    table.add_column("Duration", style="green")
    table.add_column("Kinds", style="yellow")

    for speaker_id, segments in grouped.items():
        duration_ms = sum(
            estimate_pcm_duration_ms(s.byte_size, s.audio_format)
            if s.kind == "pcm"
            else read_wav_duration_ms(s.file_path)
            for s in segments
        )
        table.add_row(
            f"{segments[0].speaker_name} ({speaker_id})",
            str(len(segments)),
            ", ".join(str(s.segment_index) for s in segments),
            format_duration(duration_ms / 1000),
            ", ".join(sorted({s.kind for s in segments})),
        )

    console.print(table)

    for path, reason in result.skip_reasons:
        console.print(f"[yellow]  Skipped {path.name}: {reason}[/yellow]")

    if result.is_empty:
        console.print("[yellow]No segments found[/yellow]")
        return

    session = derive_session(session_dir.name, result.segments)
    console.print(
        f"\n[green]✓[/green] {len(result.segments)} segments from "
        f"{len(grouped)} speakers, skipped {result.skipped}"
    )
    if session.start_time is not None:
        console.print(
            f"[dim]  Capture span (estimated): {format_duration(session.duration_ms / 1000)}[/dim]"
        )


@app.command("convert")
def convert_session(
    session_dir: Path = typer.Argument(..., help="Session directory"),
) -> None:
    """Wrap raw PCM segments in WAV files and write manifest.json."""
    from sessionscribe.upload.recovery import materialize_session

    config = get_config()
    require_session_dir(session_dir)

    materialized = materialize_session(session_dir, config.audio_format, config.speaker_names)

    for path, reason in materialized.conversion_failures:
        console.print(f"[red]  Failed {path.name}: {reason}[/red]")

    console.print(
        f"[green]✓[/green] Converted {materialized.converted}, "
        f"listed {len(materialized.manifest.segments)}, "
        f"skipped {materialized.scan.skipped}, "
        f"failed {len(materialized.conversion_failures)}"
    )
    console.print(f"[dim]  {materialized.manifest_path}[/dim]")

    if materialized.conversion_failures:
        raise typer.Exit(1)


@app.command("transcribe")
def transcribe_session(
    session_dir: Path = typer.Argument(..., help="Session directory"),
    engine_name: str | None = typer.Option(
        None, "--engine", "-e", help="Override engine: openai, local, or gpu"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override Whisper model size (local/gpu)"
    ),
    language: str | None = typer.Option(None, "--language", "-l", help="Language code"),
) -> None:
    """Transcribe a session and write transcript.json / transcript.md."""
    from sessionscribe.pipeline import process_session
    from sessionscribe.transcribe.factory import create_engine

    config = get_config()
    require_session_dir(session_dir)

    overrides = {}
    if engine_name:
        overrides["transcription_engine"] = engine_name
    if model:
        overrides["whisper_model_size"] = model
    if language:
        overrides["language"] = language
    if overrides:
        try:
            config = SessionScribeConfig(**{**config.model_dump(), **overrides})
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    engine = create_engine(config, on_download_progress=print_download_progress)
    try:
        engine.initialize()
    except SessionScribeError as e:
        console.print(f"[red]Error: {config.transcription_engine} engine unavailable: {e}[/red]")
        raise typer.Exit(1)

    try:
        result = process_session(session_dir, engine, config, console=console)
    finally:
        engine.release()

    for error in result.errors:
        console.print(f"[red]  {error['file']}: {error['error']}[/red]")

    console.print(
        f"\n[green]✓[/green] Transcribed {result.transcribed}, failed {result.failed}"
    )
    if result.transcript is not None:
        console.print(
            f"[dim]  {result.transcript.word_count} words, "
            f"{result.transcript.participant_count} participants[/dim]"
        )
        console.print("\nNext step: [cyan]sessionscribe upload[/cyan]")

    if result.failed > 0 or result.transcript is None:
        raise typer.Exit(1)


@app.command("merge")
def merge_session(
    session_dir: Path = typer.Argument(..., help="Session directory"),
) -> None:
    """Rebuild transcript.json / transcript.md from saved per-speaker transcripts."""
    from sessionscribe.merge.storage import load_transcript, save_transcript
    from sessionscribe.merge.timeline import merge_transcripts

    require_session_dir(session_dir)

    try:
        previous = load_transcript(session_dir)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[dim]Run 'sessionscribe transcribe' first[/dim]")
        raise typer.Exit(1)

    merged = merge_transcripts(
        previous.session_id,
        previous.user_transcripts,
        participants=previous.participants,
        session_start=previous.session_start_time,
        session_end=previous.session_end_time,
        timing_estimated=previous.timing_estimated,
    )
    merged = merged.model_copy(update={"transcribed_at": previous.transcribed_at})
    json_path, md_path = save_transcript(session_dir, merged)

    console.print(
        f"[green]✓[/green] Merged {len(merged.entries)} lines from "
        f"{merged.participant_count} participants"
    )
    console.print(f"[dim]  {json_path}[/dim]")
    console.print(f"[dim]  {md_path}[/dim]")


@app.command("upload")
def upload_session(
    session_dir: Path = typer.Argument(..., help="Session directory"),
    keep: bool = typer.Option(False, "--keep", help="Keep local files after upload"),
) -> None:
    """Upload a processed session with retry."""
    from sessionscribe.pipeline import create_uploader, deliver_session

    config = get_config()
    require_session_dir(session_dir)
    if keep:
        config = config.model_copy(update={"cleanup_after_upload": False})

    delivery = deliver_session(session_dir, create_uploader(config), config, console=console)
    upload = delivery.upload

    if not upload.success:
        kind = "retryable" if upload.retryable else "terminal"
        console.print(
            f"[red]✗ Upload failed after {upload.attempts} attempt(s) ({kind}): {upload.error}[/red]"
        )
        raise typer.Exit(1)

    if upload.duplicate:
        console.print("[yellow]Recording already uploaded (duplicate session ID)[/yellow]")
    else:
        console.print(f"[green]✓[/green] Uploaded recording {upload.recording_id}")
        if upload.view_url:
            console.print(f"[dim]  {upload.view_url}[/dim]")
        if upload.estimated_processing_time:
            console.print(f"[dim]  Processing: {upload.estimated_processing_time}[/dim]")

    if delivery.cleaned_up is False:
        console.print(f"[yellow]⚠ Could not remove local files in {session_dir}[/yellow]")
    elif delivery.cleaned_up:
        console.print("[dim]  Local files removed[/dim]")


@app.command("recover")
def recover_session(
    session_dir: Path = typer.Argument(..., help="Session directory left by a crashed capture"),
    recording_id: str | None = typer.Option(
        None, "--recording-id", "-r", help="Re-upload recovered segments into this recording"
    ),
) -> None:
    """Rebuild a crashed session from on-disk segments and optionally re-upload them."""
    from sessionscribe.pipeline import create_uploader
    from sessionscribe.upload.recovery import recover_orphaned_segments

    config = get_config()
    require_session_dir(session_dir)

    report = recover_orphaned_segments(
        session_dir,
        recording_id=recording_id,
        uploader=create_uploader(config) if recording_id else None,
        audio_format=config.audio_format,
        speaker_names=config.speaker_names,
        max_retries=config.upload_max_retries,
    )

    table = Table(title=f"Recovery: {report.session_id}")
    table.add_column("Result", style="cyan")
    table.add_column("Count", style="green")
    table.add_row("Segments found", str(report.segments_found))
    table.add_row("Converted from PCM", str(report.converted))
    table.add_row("Skipped files", str(report.skipped))
    table.add_row("Failed conversions", str(len(report.conversion_failures)))
    if recording_id:
        table.add_row("Uploaded", str(report.uploaded))
        table.add_row("Failed uploads", str(len(report.upload_failures)))
    console.print(table)

    for path, reason in report.conversion_failures:
        console.print(f"[red]  {path}: {reason}[/red]")
    for path, reason in report.upload_failures:
        console.print(f"[red]  {path}: {reason}[/red]")

    console.print(f"[dim]  {report.manifest_path}[/dim]")
    console.print(f"[dim]  {report.report_path}[/dim]")

    if report.segments_found == 0:
        console.print("[yellow]No segment files found[/yellow]")
        raise typer.Exit(1)
    if report.failed > 0:
        raise typer.Exit(1)


@app.command("models")
def list_models(
    download: str | None = typer.Option(
        None, "--download", help="Download a model size into the cache"
    ),
) -> None:
    """List Whisper models and which are cached."""
    from sessionscribe.transcribe.registry import (
        WHISPER_MODELS,
        ensure_model_downloaded,
        list_downloaded_models,
    )

    config = get_config()
    models_dir = config.whisper_models_dir

    if download:
        try:
            path = ensure_model_downloaded(
                download, models_dir, on_progress=print_download_progress
            )
        except SessionScribeError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] {download} model at {path}")
        return

    downloaded = set(list_downloaded_models(models_dir))
    table = Table(title=f"Whisper Models ({models_dir})")
    table.add_column("Size", style="cyan")
    table.add_column("File")
    table.add_column("Download", style="green")
    table.add_column("Status", style="yellow")
    for size, info in WHISPER_MODELS.items():
        status = "[green]✓ Cached[/green]" if size in downloaded else "[dim]Not downloaded[/dim]"
        if size == config.whisper_model_size:
            status += " (configured)"
        table.add_row(size, info.filename, info.file_size, status)
    console.print(table)


@app.command("engine")
def engine_status() -> None:
    """Show the configured transcription engine and whether it can run here."""
    from sessionscribe.transcribe.factory import create_engine

    config = get_config()
    engine = create_engine(config)

    table = Table(title="Transcription Engine")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in engine.info().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)

    if not engine.platform_supported:
        console.print(f"\n[yellow]⚠ {engine.unsupported_reason}[/yellow]")
        raise typer.Exit(1)
    if config.transcription_engine == "openai" and not (
        config.openai_api_key or os.environ.get("OPENAI_API_KEY")
    ):
        console.print("\n[yellow]⚠ No OpenAI API key configured[/yellow]")
        raise typer.Exit(1)
    console.print(f"\n[green]✓[/green] {engine.name} engine can run on this host")


@app.command("status")
def recording_status(
    recording_id: str = typer.Argument(..., help="Recording ID returned by upload"),
) -> None:
    """Check processing status of an uploaded recording."""
    from sessionscribe.pipeline import create_uploader

    config = get_config()
    status = create_uploader(config).check_status(recording_id)
    if status is None:
        console.print(f"[red]Error: Could not fetch status for {recording_id}[/red]")
        raise typer.Exit(1)

    console.print(f"Recording {recording_id}: [cyan]{status['status']}[/cyan]")
    transcript = status.get("transcript")
    if transcript:
        console.print(
            f"[dim]  {transcript['word_count']} words, "
            f"{transcript['confidence']:.0%} confidence[/dim]"
        )


if __name__ == "__main__":
    app()
