"""Orchestrator — runs the export workflow defined by an ExportManifest."""

import logging
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

from dubforge import ffutil
from dubforge.editors.mix import mix
from dubforge.editors.mux import export_video
from dubforge.editors.stretch import stretch_to_duration
from dubforge.jobs import JobHandle, JobRegistry
from dubforge.manifest import ExportManifest
from dubforge.models import AudioClipRef

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    output_path: Path
    mixed_audio_path: Path | None = None
    clips_mixed: int = 0
    clips_fitted: int = 0
    duration_final: float = 0.0
    clips: list[AudioClipRef] = field(default_factory=list)


def fit_clips(
    clips: list[AudioClipRef],
    on_progress: Callable[[float], None] | None = None,
    handle: JobHandle | None = None,
) -> list[AudioClipRef]:
    """Stretch each clip in place to its slot and return the updated refs.

    Clips that already fit are returned unchanged, so callers can tell them
    apart from stretched ones by identity.

    A clip that fails to stretch keeps its original audio; the failure is
    logged and the rest carry on. Cancellation still stops the whole run.
    """
    fitted: list[AudioClipRef] = []
    for i, clip in enumerate(clips):
        try:
            result = stretch_to_duration(clip.path, clip.path, clip.slot_ms, handle=handle)
            if result.speed_ratio == 1.0:
                logger.debug("%s already fits its %.0fms slot", clip.path, clip.slot_ms)
                fitted.append(clip)
            else:
                fitted.append(replace(clip, duration_ms=float(result.final_duration_ms)))
                logger.info(
                    "Fitted %s: %dms -> %dms (slot %.0fms, ratio %.3f)",
                    clip.path, result.original_duration_ms, result.final_duration_ms,
                    clip.slot_ms, result.speed_ratio,
                )
        except ffutil.CancelledError:
            raise
        except (ffutil.ProcessError, ffutil.ProbeTimeoutError, ffutil.NotFoundError) as e:
            logger.error("Could not stretch %s, keeping its original timing: %s", clip.path, e)
            fitted.append(clip)
        if on_progress:
            on_progress((i + 1) / len(clips) * 100.0)
    return fitted


def process(
    manifest: ExportManifest,
    on_progress: Callable[[str, float], None] | None = None,
    registry: JobRegistry | None = None,
    job_id: str | None = None,
    handle: JobHandle | None = None,
) -> EngineResult:
    """Execute the export workflow.

    Args:
        manifest: Validated export manifest.
        on_progress: Optional callback(stage_name, percent_complete).
        registry: Optional job registry; the run is cancellable through it
            under ``job_id`` while it lasts.
        job_id: Id to register under; generated when omitted.
        handle: Optional handle created ahead of the run, so a cancel that
            arrives before it starts still stops it.
    """

    def _progress(stage: str, percent: float) -> None:
        if on_progress:
            on_progress(stage, percent)

    def _sub_progress(stage: str, base: float, span: float):
        """Return a callback that maps a step's [0,100] to [base, base+span]."""
        def cb(percent: float) -> None:
            _progress(stage, base + percent / 100.0 * span)
        return cb

    ffutil.check_ffmpeg()

    if registry is not None:
        tracked = registry.track(job_id or uuid.uuid4().hex[:12], handle)
    else:
        tracked = nullcontext(handle)

    with tracked as handle:
        if handle is not None:
            handle.raise_if_cancelled()
        return _run(manifest, _progress, _sub_progress, handle)


def _run(manifest: ExportManifest, progress, sub_progress, handle: JobHandle | None) -> EngineResult:
    video_mode = manifest.mode == "video"
    work_dir = manifest.output.parent / f".{manifest.output.stem}_work"

    progress("Loading project data", 0.0)
    if not manifest.clips:
        raise ValueError("No clips to mix; generate dubbed audio first")

    video_ms = None
    if video_mode:
        ffutil.require_file(manifest.video, "Video file")
        info = ffutil.probe(manifest.video, timeout=ffutil.PROBE_TIMEOUT_S)
        video_ms = info.duration * 1000.0
        logger.info(
            "Video %s: %.1fs, audio %s %dHz", manifest.video, info.duration,
            info.codec_audio, info.audio_sample_rate,
        )

    # --- Original audio ---
    original_audio = manifest.original_audio
    if original_audio is None:
        progress("Extracting original audio", 2.0)
        original_audio = ffutil.extract_audio(
            manifest.video, work_dir / "original_audio.wav", handle=handle
        )

    # --- Duration matching ---
    clips = manifest.clips
    clips_fitted = 0
    if manifest.fit_clips:
        progress("Fitting clips to their slots", 5.0)
        clips = fit_clips(clips, sub_progress("Fitting clips to their slots", 5.0, 5.0), handle)
        clips_fitted = sum(
            1 for before, after in zip(manifest.clips, clips) if after is not before
        )

    # --- Mix ---
    mix_config = manifest.mix
    if video_mode:
        mixed_path = work_dir / "mixed_audio.wav"
        mix_config = replace(mix_config, output_format="wav")
        if mix_config.target_duration_ms is None:
            # Keep the dub track as long as the picture
            mix_config.target_duration_ms = video_ms
        mix_span = 40.0
    else:
        mixed_path = manifest.output
        mix_span = 70.0

    progress("Mixing audio tracks", 10.0)
    mix_result = mix(
        original_audio,
        clips,
        mixed_path,
        mix_config,
        on_progress=sub_progress("Mixing audio tracks", 10.0, mix_span),
        handle=handle,
    )

    # --- Mux ---
    if video_mode:
        progress("Encoding video", 50.0)
        export_video(
            manifest.video,
            mixed_path,
            manifest.output,
            manifest.video_export,
            on_progress=sub_progress("Encoding video", 50.0, 50.0),
            handle=handle,
        )

    progress("Verifying result", 95.0)
    duration_final = ffutil.probe_duration_ms(manifest.output)

    progress("Export complete", 100.0)
    return EngineResult(
        output_path=manifest.output,
        mixed_audio_path=mix_result.output_path if video_mode else None,
        clips_mixed=len(clips),
        clips_fitted=clips_fitted,
        duration_final=duration_final,
        clips=clips,
    )
