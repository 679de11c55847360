"""Timeline analyzer: splits the original track into keep/replace pieces."""

import logging

from dubforge.ffutil import quality_warning
from dubforge.models import AudioClipRef, OriginalSpan, Piece, ReplacementSpan

logger = logging.getLogger(__name__)


def build_pieces(clips: list[AudioClipRef], total_ms: float) -> list[Piece]:
    """Return pieces covering the timeline from 0 to the later of ``total_ms``
    and the last clip's end, in ascending order, without gaps or overlaps.

    Clips may arrive in any order; ties keep their input order. A clip that
    starts before the previous clip has ended gets a shorter slot starting
    where the previous one ends, and a clip entirely covered by earlier clips
    is dropped.
    """
    ordered = sorted(clips, key=lambda c: c.start_time_ms)

    pieces: list[Piece] = []
    cursor = 0.0

    for clip in ordered:
        start = clip.start_time_ms
        if start < cursor:
            if clip.end_time_ms <= cursor:
                quality_warning(
                    f"Dropping clip {clip.path} ({clip.start_time_ms}-{clip.end_time_ms}ms): "
                    f"fully covered by earlier clips ending at {cursor}ms"
                )
                continue
            quality_warning(
                f"Clip {clip.path} overlaps the previous clip by {cursor - start}ms; "
                f"trimming its start to {cursor}ms"
            )
            start = cursor

        # Original audio in the gap before this clip
        if start > cursor:
            pieces.append(OriginalSpan(start_ms=cursor, end_ms=start))

        pieces.append(ReplacementSpan(clip=clip, start_ms=start, end_ms=clip.end_time_ms))
        cursor = clip.end_time_ms

    # Trailing original audio
    if cursor < total_ms:
        pieces.append(OriginalSpan(start_ms=cursor, end_ms=total_ms))

    logger.debug("Built %d pieces from %d clips over %.0fms", len(pieces), len(clips), total_ms)
    return pieces


def natural_duration_ms(pieces: list[Piece]) -> float:
    """Length of the concatenated pieces, before any target padding."""
    return pieces[-1].end_ms if pieces else 0.0
