"""Waveform analyzer — peak amplitudes for display, with a per-project JSON cache."""

import json
import logging
import math
from pathlib import Path

import numpy as np

from dubforge import ffutil
from dubforge.models import WaveformData

logger = logging.getLogger(__name__)

# Decoding at a low fixed rate bounds the work regardless of the source rate.
DECODE_RATE = 8000
INT16_MAX = 32767

CACHE_FILENAME = "waveform.json"
# Bump when the peak computation changes so stale caches are re-extracted.
CACHE_VERSION = 1


def compute_peaks(pcm: bytes, window: int) -> list[float]:
    """Max absolute sample per ``window`` samples of s16le PCM, scaled to [0, 1].

    The last window may be shorter; a trailing odd byte is ignored.
    """
    if window < 1:
        raise ValueError(f"Window must hold at least one sample, got {window}")
    usable = len(pcm) - len(pcm) % 2
    samples = np.frombuffer(pcm[:usable], dtype="<i2")
    if samples.size == 0:
        return []

    num_peaks = math.ceil(samples.size / window)
    padded = np.zeros(num_peaks * window, dtype=np.int32)
    # int32 so abs(-32768) does not overflow
    padded[: samples.size] = np.abs(samples.astype(np.int32))
    peaks = padded.reshape(num_peaks, window).max(axis=1) / INT16_MAX
    return np.minimum(peaks, 1.0).tolist()


def extract_waveform(media_path: Path, samples_per_second: int = 100) -> WaveformData:
    """Decode ``media_path`` and return ``samples_per_second`` peaks per second of audio."""
    if not 0 < samples_per_second <= DECODE_RATE:
        raise ValueError(
            f"samples_per_second must be within 1-{DECODE_RATE}, got {samples_per_second}"
        )
    media_path = Path(media_path)
    ffutil.require_file(media_path, "Media file")

    duration_ms = ffutil.probe_duration_ms(media_path, fallback_on_timeout=True)
    pcm = ffutil.decode_pcm(media_path, DECODE_RATE)
    window = DECODE_RATE // samples_per_second
    peaks = compute_peaks(pcm, window)

    logger.debug(
        "Extracted %d peaks from %s (%d bytes of PCM, window %d)",
        len(peaks), media_path, len(pcm), window,
    )
    return WaveformData(
        peaks=tuple(peaks),
        samples_per_second=samples_per_second,
        duration_ms=duration_ms,
    )


def save_waveform_cache(directory: Path, data: WaveformData) -> Path:
    """Write ``data`` to ``directory``/waveform.json, creating the directory."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    cache_path = directory / CACHE_FILENAME
    payload = data.to_dict()
    payload["version"] = CACHE_VERSION
    cache_path.write_text(json.dumps(payload))
    return cache_path


def load_waveform_cache(directory: Path) -> WaveformData | None:
    """Read a cached waveform, or None when it is missing, unreadable or stale."""
    cache_path = Path(directory) / CACHE_FILENAME
    try:
        payload = json.loads(cache_path.read_text())
        # Caches written before versioning carry no version field.
        if payload.get("version", 1) != CACHE_VERSION:
            logger.info("Ignoring waveform cache %s with version %s", cache_path, payload.get("version"))
            return None
        return WaveformData.from_dict(payload)
    except (OSError, ValueError, TypeError, KeyError, AttributeError):
        return None


def get_waveform(
    media_path: Path,
    cache_dir: Path,
    samples_per_second: int = 100,
    refresh: bool = False,
) -> WaveformData:
    """Return the cached waveform for ``cache_dir``, extracting it on a miss."""
    if not refresh:
        cached = load_waveform_cache(cache_dir)
        if cached is not None and cached.samples_per_second == samples_per_second:
            return cached
    data = extract_waveform(media_path, samples_per_second)
    save_waveform_cache(cache_dir, data)
    return data
