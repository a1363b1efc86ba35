"""Tests for sessionscribe.merge.timeline module."""

from __future__ import annotations

from conftest import SESSION_START, SPEAKER_A, SPEAKER_B, make_transcript

from sessionscribe.merge.timeline import (
    build_timeline,
    combine_speaker_transcripts,
    format_entry_line,
    merge_transcripts,
    render_markdown,
)


def two_speakers():
    alice = make_transcript(
        SPEAKER_A,
        "Alice",
        SESSION_START,
        [(0.0, 1.0, "Hi everyone"), (4.0, 5.0, "Welcome back")],
        confidence=0.9,
    )
    bob = make_transcript(
        SPEAKER_B,
        "Bob",
        SESSION_START + 2_000,
        [(0.0, 1.0, "Hey Alice")],
        confidence=0.7,
    )
    return alice, bob


class TestBuildTimeline:
    def test_interleaves_by_absolute_start(self) -> None:
        alice, bob = two_speakers()

        entries = build_timeline([bob, alice])

        assert [e.text for e in entries] == ["Hi everyone", "Hey Alice", "Welcome back"]
        assert [e.absolute_start for e in entries] == [
            SESSION_START,
            SESSION_START + 2_000,
            SESSION_START + 4_000,
        ]

    def test_offsets_relative_to_session_start(self) -> None:
        alice, bob = two_speakers()

        entries = build_timeline([alice, bob], session_start=SESSION_START - 1_000)

        assert entries[0].offset == 1_000
        assert entries[1].offset == 3_000

    def test_ties_break_by_speaker_id(self) -> None:
        a = make_transcript(SPEAKER_A, "Alice", SESSION_START, [(1.0, 2.0, "a")])
        b = make_transcript(SPEAKER_B, "Bob", SESSION_START, [(1.0, 2.0, "b")])

        assert [e.speaker_id for e in build_timeline([b, a])] == [SPEAKER_A, SPEAKER_B]
        assert [e.speaker_id for e in build_timeline([a, b])] == [SPEAKER_A, SPEAKER_B]

    def test_same_speaker_same_start_keeps_order(self) -> None:
        a = make_transcript(SPEAKER_A, "Alice", SESSION_START, [(1.0, 1.0, "first"), (1.0, 2.0, "second")])

        assert [e.text for e in build_timeline([a])] == ["first", "second"]

    def test_empty(self) -> None:
        assert build_timeline([]) == []


class TestFormatEntryLine:
    def test_line_format(self) -> None:
        alice, _ = two_speakers()
        entry = build_timeline([alice])[1]
        assert format_entry_line(entry) == "**Alice** [00:04]: Welcome back"


class TestMergeTranscripts:
    def test_full_transcript_matches_entries(self) -> None:
        alice, bob = two_speakers()

        merged = merge_transcripts("s1", [alice, bob])

        assert merged.full_transcript.splitlines() == [
            format_entry_line(e) for e in merged.entries
        ]
        assert merged.full_transcript.splitlines()[1] == "**Bob** [00:02]: Hey Alice"

    def test_input_order_does_not_matter(self) -> None:
        alice, bob = two_speakers()

        first = merge_transcripts("s1", [alice, bob])
        second = merge_transcripts("s1", [bob, alice])

        assert first.to_json_dict() == second.to_json_dict()
        assert render_markdown(first) == render_markdown(second)

    def test_average_is_mean_of_speaker_averages(self) -> None:
        alice, bob = two_speakers()

        merged = merge_transcripts("s1", [alice, bob])

        assert merged.average_confidence == 0.8

    def test_silent_participant_listed(self) -> None:
        alice, bob = two_speakers()
        carol = make_transcript("333333333333333333", "Carol", SESSION_START, [])

        merged = merge_transcripts("s1", [alice, bob, carol])

        assert merged.participant_count == 3
        assert merged.participants["333333333333333333"] == "Carol"
        assert merged.average_confidence == 0.8
        assert "(no speech)" in render_markdown(merged)

    def test_participants_without_transcripts(self) -> None:
        alice, _ = two_speakers()

        merged = merge_transcripts("s1", [alice], participants={SPEAKER_B: "Bob"})

        assert merged.participants == {SPEAKER_A: "Alice", SPEAKER_B: "Bob"}

    def test_session_bounds(self) -> None:
        alice, bob = two_speakers()

        merged = merge_transcripts("s1", [alice, bob])

        assert merged.session_start_time == SESSION_START
        assert merged.session_end_time == SESSION_START + 5_000
        assert merged.duration_ms == 5_000
        assert merged.word_count == 6

    def test_empty_session(self) -> None:
        merged = merge_transcripts("s1", [])

        assert merged.entries == []
        assert merged.full_transcript == ""
        assert merged.average_confidence == 0.0
        assert "_No speech was transcribed._" in render_markdown(merged)


class TestCombineSpeakerTranscripts:
    def test_folds_files_onto_earliest_anchor(self) -> None:
        first = make_transcript(SPEAKER_A, "Alice", SESSION_START, [(0.0, 1.0, "one")])
        second = make_transcript(SPEAKER_A, "Alice", SESSION_START + 10_000, [(0.5, 1.0, "two")])

        combined = combine_speaker_transcripts([second, first])

        assert len(combined) == 1
        assert combined[0].audio_start_time == SESSION_START
        assert [s.start for s in combined[0].segments] == [0.0, 10.5]
        assert combined[0].text == "one two"
        assert combined[0].word_count == 2

    def test_keeps_speakers_apart(self) -> None:
        alice, bob = two_speakers()
        assert [t.speaker_id for t in combine_speaker_transcripts([bob, alice])] == [
            SPEAKER_A,
            SPEAKER_B,
        ]


class TestRenderMarkdown:
    def test_header_and_lines(self) -> None:
        alice, bob = two_speakers()

        markdown = render_markdown(merge_transcripts("session_001", [alice, bob]))

        assert markdown.startswith("# Session Transcript: session_001")
        assert "## Participants (2)" in markdown
        assert "- Alice" in markdown
        assert "**Alice** [00:00]: Hi everyone" in markdown
        assert "estimated" in markdown
