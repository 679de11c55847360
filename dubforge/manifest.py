"""JSON manifest schema — the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from dubforge.models import AudioClipRef

OUTPUT_FORMATS = ("wav", "mp3", "aac")
VIDEO_CODECS = ("copy", "libx264", "libx265", "vp9")
AUDIO_CODECS = ("aac", "mp3", "opus", "copy")
CONTAINERS = ("mp4", "mkv", "webm", "mov")


@dataclass
class MixConfig:
    """How the dubbed clips and the original track are spliced together."""

    output_format: str = "wav"
    sample_rate: int = 44100
    original_volume: float = 0.3
    dubbed_volume: float = 1.0
    target_duration_ms: float | None = None

    def __post_init__(self) -> None:
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
                f"got {self.output_format!r}"
            )
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.original_volume < 0 or self.dubbed_volume < 0:
            raise ValueError("Volumes must not be negative")
        if self.target_duration_ms is not None and self.target_duration_ms < 0:
            raise ValueError(f"target_duration_ms must not be negative, got {self.target_duration_ms}")


@dataclass
class VideoExportConfig:
    """Encoding options used when muxing the mixed track back into the video."""

    video_codec: str = "copy"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    preset: str = "medium"
    crf: int = 23
    container: str = "mp4"
    resolution: str | None = None
    keep_original_audio: bool = False

    def __post_init__(self) -> None:
        if self.video_codec not in VIDEO_CODECS:
            raise ValueError(f"Unsupported video_codec {self.video_codec!r}")
        if self.audio_codec not in AUDIO_CODECS:
            raise ValueError(f"Unsupported audio_codec {self.audio_codec!r}")
        if self.container not in CONTAINERS:
            raise ValueError(f"Unsupported container {self.container!r}")
        if not 0 <= self.crf <= 51:
            raise ValueError(f"crf must be within 0-51, got {self.crf}")


@dataclass
class ExportManifest:
    """Top-level export manifest."""

    output: Path
    original_audio: Path | None = None
    video: Path | None = None
    clips: list[AudioClipRef] = field(default_factory=list)
    version: str = "1"
    mix: MixConfig = field(default_factory=MixConfig)
    video_export: VideoExportConfig = field(default_factory=VideoExportConfig)
    fit_clips: bool = False

    @property
    def mode(self) -> str:
        """"video" when there is a video to mux into, otherwise "audio"."""
        return "video" if self.video is not None else "audio"


def clip_from_dict(data: dict, base_dir: Path | None = None) -> AudioClipRef:
    if "path" not in data or "start_time_ms" not in data or "end_time_ms" not in data:
        raise ValueError("Each clip must contain 'path', 'start_time_ms' and 'end_time_ms'")
    return AudioClipRef(
        path=_resolve(data["path"], base_dir),
        start_time_ms=float(data["start_time_ms"]),
        end_time_ms=float(data["end_time_ms"]),
        duration_ms=float(data["duration_ms"]) if data.get("duration_ms") is not None else None,
        volume=float(data.get("volume", 1.0)),
    )


def manifest_from_dict(data: dict, base_dir: Path | None = None) -> ExportManifest:
    """Validate a decoded manifest. Relative paths resolve against ``base_dir``."""
    if not data.get("output") or not (data.get("original_audio") or data.get("video")):
        raise ValueError("Manifest must contain 'output' and 'original_audio' or 'video'")
    for key in ("mix", "video_export"):
        if key in data and not isinstance(data[key], dict):
            raise ValueError(f"Manifest '{key}' must be an object")

    mix = MixConfig(**data["mix"]) if "mix" in data else MixConfig()
    video_export = (
        VideoExportConfig(**data["video_export"]) if "video_export" in data else VideoExportConfig()
    )

    return ExportManifest(
        version=data.get("version", "1"),
        output=_resolve(data["output"], base_dir),
        original_audio=_resolve(data["original_audio"], base_dir) if data.get("original_audio") else None,
        video=_resolve(data["video"], base_dir) if data.get("video") else None,
        clips=[clip_from_dict(c, base_dir) for c in data.get("clips", [])],
        mix=mix,
        video_export=video_export,
        fit_clips=bool(data.get("fit_clips", False)),
    )


def load_manifest(path: str | Path) -> ExportManifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())
    return manifest_from_dict(data, base_dir=path.parent)


def _resolve(value: str | Path, base_dir: Path | None) -> Path:
    p = Path(value)
    if base_dir is not None and not p.is_absolute():
        return base_dir / p
    return p
