"""Shared data types used across DubForge."""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class AudioClipRef:
    """A dubbed clip anchored to an absolute timeline position (milliseconds)."""

    path: Path
    start_time_ms: float
    end_time_ms: float
    duration_ms: float | None = None
    volume: float = 1.0

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if self.end_time_ms <= self.start_time_ms:
            raise ValueError(
                f"Clip {self.path} ends at {self.end_time_ms}ms, "
                f"not after its start at {self.start_time_ms}ms"
            )
        if self.volume < 0:
            raise ValueError(f"Clip {self.path} has negative volume {self.volume}")

    @property
    def slot_ms(self) -> float:
        return self.end_time_ms - self.start_time_ms


@dataclass
class OriginalSpan:
    """Keep the original audio over [start_ms, end_ms)."""

    start_ms: float
    end_ms: float

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms


@dataclass
class ReplacementSpan:
    """Play ``clip`` over [start_ms, end_ms), normally the clip's own slot."""

    clip: AudioClipRef
    start_ms: float
    end_ms: float

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms


Piece = OriginalSpan | ReplacementSpan


@dataclass
class StretchResult:
    output_path: Path
    original_duration_ms: int
    final_duration_ms: int
    speed_ratio: float


@dataclass
class MixResult:
    output_path: Path
    duration_ms: float


@dataclass
class ExportResult:
    output_path: Path
    duration_ms: float
    file_size: int


@dataclass(frozen=True)
class WaveformData:
    """Normalized peaks for display, one per 1/samples_per_second of audio."""

    peaks: tuple[float, ...]
    samples_per_second: int
    duration_ms: float

    def to_dict(self) -> dict:
        return {
            "peaks": list(self.peaks),
            "samplesPerSecond": self.samples_per_second,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WaveformData":
        return cls(
            peaks=tuple(float(p) for p in data["peaks"]),
            samples_per_second=int(data["samplesPerSecond"]),
            duration_ms=float(data["durationMs"]),
        )


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    audio_sample_rate: int
    audio_channels: int
    codec_audio: str
    codec_video: str | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
