"""Tests for splitting the timeline into original and replacement pieces."""

import pytest

from conftest import clip
from dubforge.analyzers.timeline import build_pieces, natural_duration_ms
from dubforge.ffutil import QualityWarning
from dubforge.models import OriginalSpan, ReplacementSpan


def _spans(pieces):
    return [(type(p).__name__[0], p.start_ms, p.end_ms) for p in pieces]


def _assert_contiguous(pieces):
    assert pieces[0].start_ms == 0
    for prev, cur in zip(pieces, pieces[1:]):
        assert cur.start_ms == prev.end_ms
        assert cur.end_ms > cur.start_ms


class TestBuildPieces:
    def test_no_clips_keeps_whole_track(self):
        pieces = build_pieces([], 10_000)
        assert pieces == [OriginalSpan(0.0, 10_000)]

    def test_single_clip_in_middle(self):
        pieces = build_pieces([clip("a.wav", 1000, 3000)], 5000)
        assert _spans(pieces) == [("O", 0, 1000), ("R", 1000, 3000), ("O", 3000, 5000)]
        _assert_contiguous(pieces)

    def test_clip_at_zero_has_no_leading_gap(self):
        pieces = build_pieces([clip("a.wav", 0, 2000)], 5000)
        assert _spans(pieces) == [("R", 0, 2000), ("O", 2000, 5000)]

    def test_adjacent_clips_have_no_gap_between(self):
        pieces = build_pieces([clip("a.wav", 1000, 2000), clip("b.wav", 2000, 3000)], 4000)
        assert _spans(pieces) == [
            ("O", 0, 1000),
            ("R", 1000, 2000),
            ("R", 2000, 3000),
            ("O", 3000, 4000),
        ]

    def test_unsorted_input_is_ordered(self):
        b = clip("b.wav", 5000, 6000)
        a = clip("a.wav", 1000, 2000)
        pieces = build_pieces([b, a], 8000)
        replacements = [p.clip for p in pieces if isinstance(p, ReplacementSpan)]
        assert replacements == [a, b]
        _assert_contiguous(pieces)

    def test_clip_past_end_extends_timeline(self):
        pieces = build_pieces([clip("a.wav", 4000, 7000)], 5000)
        assert _spans(pieces) == [("O", 0, 4000), ("R", 4000, 7000)]
        assert natural_duration_ms(pieces) == 7000

    def test_replacement_covers_clip_slot(self):
        c = clip("a.wav", 1200, 3400, volume=0.5)
        pieces = build_pieces([c], 9000)
        rep = pieces[1]
        assert isinstance(rep, ReplacementSpan)
        assert rep.clip is c
        assert rep.duration_ms == c.slot_ms == 2200

    def test_overlap_trims_later_clip(self):
        a = clip("a.wav", 1000, 3000)
        b = clip("b.wav", 2500, 4000)
        with pytest.warns(QualityWarning, match="overlaps"):
            pieces = build_pieces([a, b], 5000)
        assert _spans(pieces) == [
            ("O", 0, 1000),
            ("R", 1000, 3000),
            ("R", 3000, 4000),
            ("O", 4000, 5000),
        ]
        _assert_contiguous(pieces)

    def test_fully_covered_clip_is_dropped(self):
        a = clip("a.wav", 1000, 5000)
        b = clip("b.wav", 2000, 3000)
        with pytest.warns(QualityWarning, match="Dropping"):
            pieces = build_pieces([a, b], 6000)
        assert [p.clip for p in pieces if isinstance(p, ReplacementSpan)] == [a]
        _assert_contiguous(pieces)

    def test_equal_starts_keep_input_order(self):
        a = clip("a.wav", 1000, 2000)
        b = clip("b.wav", 1000, 3000)
        with pytest.warns(QualityWarning):
            pieces = build_pieces([a, b], 4000)
        replacements = [p for p in pieces if isinstance(p, ReplacementSpan)]
        assert replacements[0].clip is a
        assert (replacements[1].start_ms, replacements[1].end_ms) == (2000, 3000)

    def test_single_clip_spanning_track(self):
        c = clip("a.wav", 0, 5000)
        pieces = build_pieces([c], 5000)
        assert pieces == [ReplacementSpan(c, 0, 5000)]

    def test_clips_covering_track_leave_no_empty_spans(self):
        clips = [clip("a.wav", 0, 1000), clip("b.wav", 1000, 2500), clip("c.wav", 2500, 4000)]
        pieces = build_pieces(clips, 4000)
        assert all(isinstance(p, ReplacementSpan) for p in pieces)
        assert all(p.duration_ms > 0 for p in pieces)
        assert pieces[-1].end_ms == 4000

    def test_zero_total_with_clip(self):
        pieces = build_pieces([clip("a.wav", 0, 1500)], 0)
        assert _spans(pieces) == [("R", 0, 1500)]


class TestNaturalDuration:
    def test_empty(self):
        assert natural_duration_ms([]) == 0.0

    def test_is_max_of_track_and_clips(self):
        pieces = build_pieces([clip("a.wav", 100, 900)], 10_000)
        assert natural_duration_ms(pieces) == 10_000
