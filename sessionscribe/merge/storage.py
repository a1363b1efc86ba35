"""
sessionscribe.merge.storage - Transcript artifacts on disk.

Writes transcript.json and transcript.md beside a session's manifest.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sessionscribe.io import read_document, write_document, write_text
from sessionscribe.merge.timeline import render_markdown
from sessionscribe.models import SessionTranscript

logger = logging.getLogger(__name__)

TRANSCRIPT_JSON = "transcript.json"
TRANSCRIPT_MD = "transcript.md"


def save_transcript(session_dir: Path, transcript: SessionTranscript) -> tuple[Path, Path]:
    """Write the structured and Markdown transcripts atomically.

    Returns:
        (json_path, markdown_path)
    """
    json_path = session_dir / TRANSCRIPT_JSON
    md_path = session_dir / TRANSCRIPT_MD

    write_document(json_path, transcript)
    write_text(md_path, render_markdown(transcript))

    logger.info(f"Saved transcript for {transcript.session_id} to {session_dir}")
    return json_path, md_path


def load_transcript(session_dir: Path) -> SessionTranscript:
    """Read transcript.json back.

    Raises:
        FileNotFoundError: If the session has no transcript yet
    """
    path = session_dir / TRANSCRIPT_JSON
    if not path.exists():
        raise FileNotFoundError(f"No transcript found at {path}")
    return read_document(path, SessionTranscript)
