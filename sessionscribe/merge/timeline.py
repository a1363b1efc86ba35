"""
sessionscribe.merge.timeline - Cross-speaker chronological merge.

Each speaker's transcript is timed relative to its own audio. Anchoring
those offsets at the speaker's ``audio_start_time`` puts every segment on one
session clock, and a stable sort on (absolute start, speaker id) makes the
merged order a pure function of the input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from sessionscribe.models import SessionTranscript, TimelineEntry, TranscriptSegment, UserTranscript
from sessionscribe.utils import count_words, format_duration, format_timestamp


def combine_speaker_transcripts(transcripts: list[UserTranscript]) -> list[UserTranscript]:
    """Fold several per-file transcripts of each speaker into one.

    Segment offsets are shifted onto the speaker's earliest
    ``audio_start_time`` so the combined transcript keeps a single anchor.
    """
    by_speaker: dict[str, list[UserTranscript]] = {}
    for transcript in transcripts:
        by_speaker.setdefault(transcript.speaker_id, []).append(transcript)

    combined = []
    for speaker_id in sorted(by_speaker):
        parts = sorted(by_speaker[speaker_id], key=lambda t: t.audio_start_time)
        anchor = parts[0].audio_start_time

        segments: list[TranscriptSegment] = []
        for part in parts:
            shift = (part.audio_start_time - anchor) / 1000
            segments.extend(
                seg.model_copy(update={"start": seg.start + shift, "end": seg.end + shift})
                for seg in part.segments
            )

        text = " ".join(p.text for p in parts if p.text)
        average = sum(s.confidence for s in segments) / len(segments) if segments else 0.0
        combined.append(
            UserTranscript(
                speaker_id=speaker_id,
                speaker_name=parts[0].speaker_name,
                audio_file=parts[0].audio_file,
                audio_start_time=anchor,
                text=text,
                segments=segments,
                duration=max(
                    ((p.audio_start_time - anchor) / 1000 + p.duration for p in parts),
                    default=0.0,
                ),
                word_count=sum(p.word_count for p in parts),
                average_confidence=round(average, 4),
            )
        )

    return combined


def build_timeline(
    user_transcripts: list[UserTranscript],
    session_start: int | None = None,
) -> list[TimelineEntry]:
    """Project every segment to absolute ms and interleave all speakers.

    Ties on start time break by speaker id; segments of one speaker that
    share a start keep their original order.
    """
    entries = []
    for transcript in user_transcripts:
        for seg in transcript.segments:
            entries.append(
                TimelineEntry(
                    speaker_id=transcript.speaker_id,
                    speaker_name=transcript.speaker_name,
                    text=seg.text,
                    absolute_start=transcript.audio_start_time + seg.start * 1000,
                    absolute_end=transcript.audio_start_time + seg.end * 1000,
                    confidence=seg.confidence,
                )
            )

    entries.sort(key=lambda e: (e.absolute_start, e.speaker_id))

    if session_start is None and entries:
        session_start = int(min(t.audio_start_time for t in user_transcripts))
    for entry in entries:
        entry.offset = entry.absolute_start - (session_start or 0)

    return entries


def format_entry_line(entry: TimelineEntry) -> str:
    return f"**{entry.speaker_name}** [{format_timestamp(entry.offset)}]: {entry.text}"


def merge_transcripts(
    session_id: str,
    user_transcripts: list[UserTranscript],
    participants: dict[str, str] | None = None,
    session_start: int | None = None,
    session_end: int | None = None,
    timing_estimated: bool = True,
) -> SessionTranscript:
    """Merge per-speaker transcripts into one session transcript.

    Args:
        session_id: Session identifier (directory name)
        user_transcripts: One transcript per speaker
        participants: Speakers to list even if they produced no segments
        session_start: Absolute ms start; earliest audio anchor when None
        session_end: Absolute ms end; latest segment end when None
        timing_estimated: Whether the bounds come from capture timestamps

    Returns:
        SessionTranscript whose ``entries`` and ``full_transcript`` come
        from the same ordered list. ``average_confidence`` is the mean of
        per-speaker averages over speakers with segments, not weighted by
        segment count.
    """
    ordered = sorted(user_transcripts, key=lambda t: t.speaker_id)

    roster = dict(participants or {})
    for transcript in ordered:
        roster.setdefault(transcript.speaker_id, transcript.speaker_name)
    roster = dict(sorted(roster.items()))

    if session_start is None and ordered:
        session_start = min(t.audio_start_time for t in ordered)

    entries = build_timeline(ordered, session_start)

    if session_end is None and entries:
        session_end = int(max(e.absolute_end for e in entries))

    duration_ms = 0
    if session_start is not None and session_end is not None:
        duration_ms = max(0, session_end - session_start)

    speaking = [t for t in ordered if t.segments]
    average = sum(t.average_confidence for t in speaking) / len(speaking) if speaking else 0.0

    return SessionTranscript(
        session_id=session_id,
        session_start_time=session_start,
        session_end_time=session_end,
        duration_ms=duration_ms,
        timing_estimated=timing_estimated,
        participants=roster,
        participant_count=len(roster),
        entries=entries,
        full_transcript="\n".join(format_entry_line(e) for e in entries),
        word_count=sum(t.word_count or count_words(t.text) for t in ordered),
        average_confidence=round(average, 4),
        user_transcripts=ordered,
    )


def _template_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(Path(__file__).parent / "templates"),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_markdown(transcript: SessionTranscript) -> str:
    """Render the human-readable transcript from ``transcript.entries``."""
    if transcript.session_start_time is not None:
        started = datetime.fromtimestamp(transcript.session_start_time / 1000, tz=timezone.utc)
        date = started.strftime("%Y-%m-%d %H:%M UTC")
    else:
        date = "Unknown"

    speaking = {e.speaker_id for e in transcript.entries}
    template = _template_env().get_template("transcript.md.j2")
    return template.render(
        session_id=transcript.session_id,
        date=date,
        duration=format_duration(transcript.duration_ms / 1000),
        word_count=transcript.word_count,
        confidence=f"{transcript.average_confidence:.0%}",
        participants=transcript.participants,
        silent={sid for sid in transcript.participants if sid not in speaking},
        timing_estimated=transcript.timing_estimated,
        lines=[format_entry_line(e) for e in transcript.entries],
    )
