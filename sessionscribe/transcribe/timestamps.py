"""
sessionscribe.transcribe.timestamps - Timestamped text output parsing.

The whisper.cpp CLI prints segments as text lines. This recovers
(start, end, text) triples from them and drops lines that do not parse.
"""

from __future__ import annotations

import logging
import re

from sessionscribe.models import TranscriptSegment

logger = logging.getLogger(__name__)

_CLOCK = r"(?:\d+:)?\d{1,2}:\d{2}(?:[.,]\d{1,3})?"

BRACKETED_LINE = re.compile(
    rf"^\s*\[\s*(?P<start>{_CLOCK})\s*-->\s*(?P<end>{_CLOCK})\s*\]\s*(?P<text>.*)$"
)
PLAIN_LINE = re.compile(rf"^\s*(?P<start>{_CLOCK})\s+(?:-->\s+)?(?P<end>{_CLOCK})\s+(?P<text>.+)$")


def parse_clock(value: str) -> float:
    """Convert ``HH:MM:SS.mmm`` (or ``MM:SS.mmm``) to seconds."""
    seconds = 0.0
    for part in value.replace(",", ".").split(":"):
        seconds = seconds * 60 + float(part)
    return seconds


def parse_timestamped_lines(
    output: str,
    confidence: float = 0.95,
) -> list[TranscriptSegment]:
    """Extract segments from timestamped CLI output.

    Accepts ``[HH:MM:SS.mmm --> HH:MM:SS.mmm]  text`` and
    ``HH:MM:SS.mmm HH:MM:SS.mmm text``. Blank lines, log noise, lines with
    empty text and lines whose end precedes their start are skipped.
    """
    segments = []
    skipped = 0

    for line in output.splitlines():
        if not line.strip():
            continue
        match = BRACKETED_LINE.match(line) or PLAIN_LINE.match(line)
        if not match:
            skipped += 1
            continue

        text = match.group("text").strip()
        start = parse_clock(match.group("start"))
        end = parse_clock(match.group("end"))
        if not text or end < start:
            skipped += 1
            continue

        segments.append(TranscriptSegment(text=text, start=start, end=end, confidence=confidence))

    if skipped:
        logger.debug(f"Skipped {skipped} unparseable output lines")
    return segments
