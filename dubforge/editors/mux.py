"""Mux editor — puts the mixed dub track back into the source video."""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from dubforge import ffutil
from dubforge.manifest import VideoExportConfig
from dubforge.models import ExportResult

if TYPE_CHECKING:
    from dubforge.jobs import JobHandle

logger = logging.getLogger(__name__)


def build_mux_args(
    video_path: Path, audio_path: Path, output_path: Path, options: VideoExportConfig
) -> list[str]:
    args = [
        "-i", str(video_path),
        "-i", str(audio_path),
        "-map", "0:v",
        "-map", "1:a",
    ]
    if options.keep_original_audio:
        args += ["-map", "0:a"]

    if options.video_codec == "copy":
        args += ["-c:v", "copy"]
    else:
        args += ["-c:v", options.video_codec]
        if options.video_codec in ("libx264", "libx265"):
            args += ["-preset", options.preset, "-crf", str(options.crf)]
        if options.resolution:
            args += ["-s", options.resolution]

    if options.audio_codec == "copy":
        args += ["-c:a", "copy"]
    else:
        codec = "libmp3lame" if options.audio_codec == "mp3" else options.audio_codec
        args += ["-c:a", codec, "-b:a", options.audio_bitrate]

    args += ["-f", "matroska" if options.container == "mkv" else options.container]
    if options.container == "mp4":
        args += ["-movflags", "+faststart"]
    args.append(str(output_path))
    return args


def export_video(
    video_path: Path,
    audio_path: Path,
    output_path: Path,
    options: VideoExportConfig | None = None,
    on_progress: Callable[[float], None] | None = None,
    handle: "JobHandle | None" = None,
) -> ExportResult:
    """Replace the audio of ``video_path`` with ``audio_path``."""
    options = options or VideoExportConfig()
    ffutil.require_file(video_path, "Video file")
    ffutil.require_file(audio_path, "Audio file")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    duration_ms = ffutil.probe_duration_ms(video_path)
    ffutil.run_ffmpeg(
        build_mux_args(video_path, audio_path, output_path, options),
        expected_ms=duration_ms,
        on_progress=on_progress,
        handle=handle,
        label="export video",
    )
    logger.info("Exported %s", output_path)
    return ExportResult(
        output_path=output_path,
        duration_ms=duration_ms,
        file_size=output_path.stat().st_size,
    )
