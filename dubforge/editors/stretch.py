"""Duration matcher — time-stretches a clip to its slot without changing pitch."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from dubforge import ffutil
from dubforge.filtergraph import Tempo, render_chain
from dubforge.models import StretchResult

if TYPE_CHECKING:
    from dubforge.jobs import JobHandle

logger = logging.getLogger(__name__)

# Aim 1% short so a stretched clip never runs into the next segment.
SHORTEN_BIAS = 1.01
NOOP_TOLERANCE = 0.01
MIN_RATIO = 0.25
MAX_RATIO = 4.0


def speed_ratio_for(original_ms: float, target_ms: float) -> float:
    """Playback speed that turns ``original_ms`` into (slightly under) ``target_ms``."""
    if target_ms <= 0:
        raise ValueError(f"Target duration must be positive, got {target_ms}ms")
    return (original_ms / target_ms) * SHORTEN_BIAS


def atempo_chain(ratio: float) -> list[float]:
    """Split ``ratio`` into atempo steps that each lie within [0.5, 2.0].

    The product of the steps equals ``ratio`` up to float rounding.
    """
    if ratio <= 0:
        raise ValueError(f"Speed ratio must be positive, got {ratio}")
    steps: list[float] = []
    while ratio < Tempo.MIN or ratio > Tempo.MAX:
        if ratio < Tempo.MIN:
            steps.append(Tempo.MIN)
            ratio /= Tempo.MIN
        else:
            steps.append(Tempo.MAX)
            ratio /= Tempo.MAX
    steps.append(ratio)
    return steps


def _codec_args(output_path: Path) -> list[str]:
    suffix = output_path.suffix.lower()
    if suffix == ".wav":
        return ["-c:a", "pcm_s16le"]
    if suffix == ".mp3":
        return ["-c:a", "libmp3lame", "-b:a", "128k"]
    return []


def stretch_to_duration(
    input_path: Path,
    output_path: Path,
    target_duration_ms: float,
    handle: "JobHandle | None" = None,
) -> StretchResult:
    """Stretch or compress ``input_path`` to play in about ``target_duration_ms``.

    ``output_path`` may equal ``input_path``, in which case the file is
    replaced atomically once the stretched version is complete.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)
    if target_duration_ms <= 0:
        raise ValueError(f"Target duration must be positive, got {target_duration_ms}ms")
    ffutil.require_file(input_path, "Audio file")

    original_ms = round(ffutil.probe_duration_ms(input_path))
    ratio = speed_ratio_for(original_ms, target_duration_ms)

    if round(abs(ratio - 1.0), 6) <= NOOP_TOLERANCE:
        logger.debug("%s is already %dms (target %sms), not stretching", input_path, original_ms, target_duration_ms)
        if output_path != input_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(input_path, output_path)
        return StretchResult(
            output_path=output_path,
            original_duration_ms=original_ms,
            final_duration_ms=original_ms,
            speed_ratio=1.0,
        )

    if ratio < MIN_RATIO or ratio > MAX_RATIO:
        ffutil.quality_warning(
            f"Speed ratio {ratio:.2f} for {input_path} is extreme; clamping to "
            f"[{MIN_RATIO}, {MAX_RATIO}], audio quality may suffer"
        )
        ratio = min(MAX_RATIO, max(MIN_RATIO, ratio))

    filters = render_chain([Tempo(step) for step in atempo_chain(ratio)])
    logger.info(
        "Stretching %s: %dms -> %sms (ratio %.3f, %s)",
        input_path, original_ms, target_duration_ms, ratio, filters,
    )

    in_place = output_path.resolve() == input_path.resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if in_place:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output_path.stem}.", suffix=output_path.suffix, dir=output_path.parent
        )
        os.close(fd)
        write_path = Path(tmp_name)
    else:
        write_path = output_path

    try:
        ffutil.run_ffmpeg(
            ["-i", str(input_path), "-vn", "-af", filters, *_codec_args(output_path), str(write_path)],
            handle=handle,
            label="stretch",
        )
        final_ms = round(ffutil.probe_duration_ms(write_path))
        if in_place:
            write_path.replace(output_path)
    except BaseException:
        if in_place:
            write_path.unlink(missing_ok=True)
        raise

    return StretchResult(
        output_path=output_path,
        original_duration_ms=original_ms,
        final_duration_ms=final_ms,
        speed_ratio=ratio,
    )
