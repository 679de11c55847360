"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import os
import re
import shlex
import shutil
import signal
import subprocess
import warnings
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from dubforge.models import ProbeResult

if TYPE_CHECKING:
    from dubforge.jobs import JobHandle

logger = logging.getLogger(__name__)

# Resolved once at import; check_ffmpeg() validates them at startup.
FFMPEG = os.environ.get("DUBFORGE_FFMPEG", "ffmpeg")
FFPROBE = os.environ.get("DUBFORGE_FFPROBE", "ffprobe")

PROBE_TIMEOUT_S = 10.0

_SIGKILL = getattr(signal, "SIGKILL", None)

# Keys ffmpeg writes for every -progress block; anything else on stderr is diagnostics.
_PROGRESS_KEYS = {
    "frame", "fps", "bitrate", "total_size", "out_time_us", "out_time_ms",
    "out_time", "dup_frames", "drop_frames", "speed", "progress",
}
_PROGRESS_LINE_RE = re.compile(r"^(\w+)=(.*)$")


class DubForgeError(Exception):
    """Base class for errors raised by DubForge."""


class FFmpegNotFoundError(DubForgeError, RuntimeError):
    pass


class NotFoundError(DubForgeError, FileNotFoundError):
    """Raised when an input file is missing; the message names the path."""

    def __init__(self, path: Path | str, what: str = "File"):
        self.path = Path(path)
        super().__init__(f"{what} not found: {path}")


class ProcessError(DubForgeError, RuntimeError):
    """Raised when ffmpeg/ffprobe exits non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class ProbeTimeoutError(DubForgeError, TimeoutError):
    pass


class CancelledError(DubForgeError):
    """Raised when a job's subprocess was terminated by an explicit cancel."""


class NoAudioStreamError(DubForgeError, ValueError):
    """Raised when the input file has no audio stream."""
    pass


class QualityWarning(UserWarning):
    """Non-fatal: the result will be produced but may sound degraded."""


def quality_warning(message: str) -> None:
    logger.warning(message)
    warnings.warn(message, QualityWarning, stacklevel=3)


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe cannot be found."""
    for cmd in (FFMPEG, FFPROBE):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def require_file(path: Path | str, what: str = "File") -> Path:
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(path, what)
    return path


def probe(input_path: Path, timeout: float | None = None) -> ProbeResult:
    """Extract media metadata via ffprobe."""
    cmd = [
        FFPROBE,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ProbeTimeoutError(f"ffprobe timed out after {timeout}s on {input_path}") from e
    if result.returncode != 0:
        raise ProcessError(
            f"ffprobe failed on {input_path}", result.returncode, result.stderr or ""
        )
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if audio_stream is None:
        raise NoAudioStreamError(f"No audio stream found in {input_path}")

    probe_result = ProbeResult(
        duration=float(data["format"].get("duration", 0.0)),
        audio_sample_rate=int(audio_stream.get("sample_rate", 0)),
        audio_channels=int(audio_stream.get("channels", 0)),
        codec_audio=audio_stream.get("codec_name", "unknown"),
    )
    if video_stream is not None:
        probe_result.codec_video = video_stream.get("codec_name", "unknown")
        probe_result.width = int(video_stream.get("width", 0))
        probe_result.height = int(video_stream.get("height", 0))
        probe_result.fps = parse_frame_rate(video_stream.get("r_frame_rate"))
    return probe_result


def parse_frame_rate(rate: str | None) -> float:
    """Parse "30000/1001" style rates; 0.0 when missing or malformed."""
    if not rate:
        return 0.0
    num, _, den = rate.partition("/")
    try:
        if den:
            return int(num) / int(den) if int(den) > 0 else 0.0
        return float(num)
    except ValueError:
        return 0.0


def probe_duration_ms(
    input_path: Path,
    timeout: float = PROBE_TIMEOUT_S,
    fallback_on_timeout: bool = False,
) -> float:
    """Return the container duration in milliseconds.

    With ``fallback_on_timeout`` a slow probe degrades to 0.0 instead of
    raising ProbeTimeoutError. Only use it where a zero duration is harmless.
    """
    cmd = [
        FFPROBE,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "csv=p=0",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        if fallback_on_timeout:
            logger.warning("ffprobe timed out on %s, using a duration of 0", input_path)
            return 0.0
        raise ProbeTimeoutError(f"ffprobe timed out after {timeout}s on {input_path}") from e

    if result.returncode != 0:
        raise ProcessError(
            f"ffprobe failed on {input_path}", result.returncode, (result.stderr or "").strip()
        )
    try:
        return float(result.stdout.strip()) * 1000.0
    except ValueError as e:
        raise ProcessError(
            f"Could not parse duration of {input_path} from {result.stdout.strip()!r}"
        ) from e


def parse_timemark(timemark: str) -> float:
    """Convert an ffmpeg "HH:MM:SS.xx" timemark to milliseconds (0.0 if malformed)."""
    parts = timemark.strip().split(":")
    if len(parts) != 3:
        return 0.0
    try:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    except ValueError:
        return 0.0
    return (hours * 3600 + minutes * 60 + seconds) * 1000.0


def parse_progress_line(line: str) -> int | None:
    """Return the output position in microseconds for an ffmpeg -progress line.

    ``out_time_ms`` is a historical misnomer: ffmpeg reports it in
    microseconds, like ``out_time_us``.
    """
    match = _PROGRESS_LINE_RE.match(line.strip())
    if match is None:
        return None
    key, value = match.groups()
    if key in ("out_time_us", "out_time_ms"):
        try:
            return max(int(value), 0)
        except ValueError:
            return None
    if key == "out_time":
        if value.startswith("-"):
            return 0
        ms = parse_timemark(value)
        return int(ms * 1000) if ":" in value else None
    return None


def _is_progress_line(line: str) -> bool:
    match = _PROGRESS_LINE_RE.match(line)
    return match is not None and (
        match.group(1) in _PROGRESS_KEYS or match.group(1).startswith("stream_")
    )


def run_ffmpeg(
    args: list[str],
    expected_ms: float | None = None,
    on_progress: Callable[[float], None] | None = None,
    handle: "JobHandle | None" = None,
    label: str = "ffmpeg",
) -> None:
    """Run ffmpeg with ``args`` and report progress as a 0-100 percentage.

    Progress is derived from ffmpeg's own ``-progress`` stream relative to
    ``expected_ms`` and never decreases within a call. Raises CancelledError
    if the process was killed through ``handle``, ProcessError on any other
    failure.
    """
    cmd = [FFMPEG, "-y", "-hide_banner", "-nostats", "-v", "error", "-progress", "pipe:2", *args]
    if handle is not None:
        handle.raise_if_cancelled()
    logger.debug("%s: %s", label, shlex.join(cmd))

    with subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    ) as proc:
        if handle is not None:
            handle.attach(proc)

        tail: deque[str] = deque(maxlen=40)
        last_percent = 0.0
        returncode = None
        try:
            for raw in proc.stderr:
                line = raw.strip()
                if not line:
                    continue
                out_us = parse_progress_line(line)
                if out_us is not None:
                    if on_progress and expected_ms:
                        percent = min(100.0, out_us / 1000.0 / expected_ms * 100.0)
                        if percent > last_percent:
                            last_percent = percent
                            on_progress(percent)
                elif not _is_progress_line(line):
                    tail.append(line)
            returncode = proc.wait()
        finally:
            if handle is not None:
                handle.detach(proc)
            if returncode is None:
                # Never leave ffmpeg writing the output behind a failed reader
                logger.warning("%s: stopping ffmpeg (pid %s) after an error", label, proc.pid)
                proc.kill()
                proc.wait()

    cancelled = handle is not None and handle.cancelled
    if cancelled or (_SIGKILL is not None and returncode == -_SIGKILL):
        raise CancelledError(f"{label} cancelled")
    if returncode != 0:
        raise ProcessError(f"{label} failed (rc={returncode})", returncode, "\n".join(tail))
    logger.debug("%s finished", label)


def decode_pcm(input_path: Path, sample_rate: int) -> bytes:
    """Decode the first audio stream to mono signed 16-bit little-endian PCM.

    A failing decode that still produced bytes is returned as-is (partial
    audio is better than none for display purposes).
    """
    cmd = [
        FFMPEG,
        "-v", "error",
        "-i", str(input_path),
        "-vn",
        "-ac", "1",
        "-ar", str(sample_rate),
        "-f", "s16le",
        "-acodec", "pcm_s16le",
        "pipe:1",
    ]
    result = subprocess.run(cmd, capture_output=True)
    stderr = (result.stderr or b"").decode(errors="replace").strip()

    if result.returncode != 0:
        if not result.stdout:
            raise ProcessError(
                f"ffmpeg decode failed on {input_path} (rc={result.returncode})",
                result.returncode,
                stderr,
            )
        logger.warning(
            "ffmpeg decode of %s exited with %d, using %d bytes of partial output",
            input_path, result.returncode, len(result.stdout),
        )
    return result.stdout


def extract_audio(
    input_path: Path,
    output_path: Path,
    sample_rate: int = 44100,
    channels: int = 2,
    handle: "JobHandle | None" = None,
) -> Path:
    """Extract the audio track of a video as 16-bit PCM WAV."""
    require_file(input_path, "Video file")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    run_ffmpeg(
        [
            "-i", str(input_path),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", str(sample_rate),
            "-ac", str(channels),
            str(output_path),
        ],
        handle=handle,
        label="extract audio",
    )
    return output_path
