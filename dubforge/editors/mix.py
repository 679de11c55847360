"""Splice mixer — replaces spans of the original track with dubbed clips.

The output is one concat of pieces: original audio (at ``original_volume``)
wherever no clip plays, each clip (at ``dubbed_volume * clip.volume``) over
exactly its slot, and trailing silence when the target duration is longer.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from dubforge import ffutil
from dubforge.analyzers.timeline import build_pieces, natural_duration_ms
from dubforge.filtergraph import (
    Concat,
    FilterChain,
    FilterGraph,
    Format,
    Pad,
    ResetTimestamps,
    Silence,
    Trim,
    Volume,
)
from dubforge.manifest import MixConfig
from dubforge.models import AudioClipRef, MixResult, OriginalSpan, Piece

if TYPE_CHECKING:
    from dubforge.jobs import JobHandle

logger = logging.getLogger(__name__)

OUTPUT_LABEL = "out"

# ffmpeg -c:a / -b:a / -f per MixConfig.output_format
_ENCODERS = {
    "wav": ["-c:a", "pcm_s16le", "-f", "wav"],
    "mp3": ["-c:a", "libmp3lame", "-b:a", "192k", "-f", "mp3"],
    "aac": ["-c:a", "aac", "-b:a", "192k", "-f", "ipod"],
}


class MixError(ffutil.ProcessError):
    pass


def build_mix_graph(
    pieces: list[Piece], config: MixConfig, pad_ms: float = 0.0
) -> tuple[FilterGraph, list[Path]]:
    """Build the splice graph. Input 0 is the original; clip inputs follow in order.

    Returns the graph and the clip paths to pass as inputs 1..n.
    """
    if not pieces and pad_ms <= 0:
        raise ValueError("Nothing to mix: no pieces and no padding")

    clip_paths: list[Path] = []
    graph = FilterGraph(num_inputs=1 + sum(1 for p in pieces if not isinstance(p, OriginalSpan)))
    fmt = Format(config.sample_rate, "stereo")
    labels: list[str] = []

    for i, piece in enumerate(pieces):
        label = f"p{i}"
        if isinstance(piece, OriginalSpan):
            graph.add(FilterChain(
                inputs=["0:a"],
                filters=[
                    Trim(piece.start_ms / 1000, piece.end_ms / 1000),
                    ResetTimestamps(),
                    Volume(config.original_volume),
                    # Silence stands in for any part past the end of the decoded track
                    Pad(),
                    Trim(end_s=piece.duration_ms / 1000),
                    fmt,
                ],
                outputs=[label],
            ))
        else:
            clip_paths.append(piece.clip.path)
            # Pad then trim so the clip fills its slot exactly, whatever its length.
            graph.add(FilterChain(
                inputs=[f"{len(clip_paths)}:a"],
                filters=[
                    ResetTimestamps(),
                    Volume(config.dubbed_volume * piece.clip.volume),
                    Pad(),
                    Trim(end_s=piece.duration_ms / 1000),
                    fmt,
                ],
                outputs=[label],
            ))
        labels.append(label)

    if pad_ms > 0:
        graph.add(FilterChain(
            inputs=[],
            filters=[Silence(config.sample_rate, "stereo"), Trim(end_s=pad_ms / 1000)],
            outputs=["pad"],
        ))
        labels.append("pad")

    graph.add(FilterChain(inputs=labels, filters=[Concat(len(labels))], outputs=[OUTPUT_LABEL]))
    return graph, clip_paths


def mix(
    original_audio_path: Path,
    clips: list[AudioClipRef],
    output_path: Path,
    config: MixConfig | None = None,
    on_progress: Callable[[float], None] | None = None,
    handle: "JobHandle | None" = None,
) -> MixResult:
    """Splice ``clips`` into the original track and encode to ``output_path``.

    Args:
        original_audio_path: The full-length original soundtrack.
        clips: Dubbed clips in any order.
        output_path: Destination file; its directory is created if needed.
        config: Output format, volumes and optional target duration.
        on_progress: Optional callback(percent 0-100), non-decreasing.
        handle: Optional job handle through which the mix can be cancelled.
    """
    config = config or MixConfig()
    original_audio_path = Path(original_audio_path)
    output_path = Path(output_path)

    ffutil.require_file(original_audio_path, "Original audio file")
    for clip in clips:
        ffutil.require_file(clip.path, "Clip audio file")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    total_ms = ffutil.probe_duration_ms(original_audio_path)
    pieces = build_pieces(clips, total_ms)
    natural_ms = natural_duration_ms(pieces)

    pad_ms = 0.0
    target = config.target_duration_ms
    if target is not None and target > natural_ms:
        pad_ms = target - natural_ms
        logger.info("Padding mix with %.0fms of silence to reach %.0fms", pad_ms, target)
    duration_ms = natural_ms + pad_ms

    graph, clip_paths = build_mix_graph(pieces, config, pad_ms)
    logger.info(
        "Mixing %d clips into %s (%d pieces, original volume %s, dubbed volume %s)",
        len(clips), original_audio_path, len(pieces), config.original_volume, config.dubbed_volume,
    )

    args = ["-i", str(original_audio_path)]
    for path in clip_paths:
        args += ["-i", str(path)]
    args += [
        "-filter_complex", graph.render(),
        "-map", f"[{OUTPUT_LABEL}]",
        "-ar", str(config.sample_rate),
        "-ac", "2",
        *_ENCODERS[config.output_format],
        str(output_path),
    ]

    try:
        ffutil.run_ffmpeg(
            args, expected_ms=duration_ms, on_progress=on_progress, handle=handle, label="mix"
        )
    except ffutil.ProcessError as e:
        raise MixError(f"Audio mixing failed (rc={e.returncode})", e.returncode, e.stderr) from e

    logger.info("Mix complete: %s (%.0fms)", output_path, duration_ms)
    return MixResult(output_path=output_path, duration_ms=duration_ms)


def concatenate_audio(
    audio_paths: list[Path],
    output_path: Path,
    output_format: str = "wav",
    sample_rate: int = 44100,
    handle: "JobHandle | None" = None,
) -> MixResult:
    """Join whole audio files back to back."""
    if not audio_paths:
        raise ValueError("concatenate_audio called with no files")
    if output_format not in _ENCODERS:
        raise ValueError(f"Unsupported output format {output_format!r}")
    for path in audio_paths:
        ffutil.require_file(path, "Audio file")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    graph = FilterGraph(num_inputs=len(audio_paths))
    fmt = Format(sample_rate, "stereo")
    labels = []
    for i in range(len(audio_paths)):
        graph.add(FilterChain(inputs=[f"{i}:a"], filters=[ResetTimestamps(), fmt], outputs=[f"a{i}"]))
        labels.append(f"a{i}")
    graph.add(FilterChain(inputs=labels, filters=[Concat(len(labels))], outputs=[OUTPUT_LABEL]))

    args: list[str] = []
    for path in audio_paths:
        args += ["-i", str(path)]
    args += [
        "-filter_complex", graph.render(),
        "-map", f"[{OUTPUT_LABEL}]",
        "-ar", str(sample_rate),
        "-ac", "2",
        *_ENCODERS[output_format],
        str(output_path),
    ]
    try:
        ffutil.run_ffmpeg(args, handle=handle, label="concat")
    except ffutil.ProcessError as e:
        raise MixError(f"Audio concatenation failed (rc={e.returncode})", e.returncode, e.stderr) from e

    return MixResult(output_path=output_path, duration_ms=ffutil.probe_duration_ms(output_path))
