"""Shared test fixtures."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dubforge.models import AudioClipRef

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def audio_files(tmp_path: Path):
    """Create placeholder files so existence checks pass; ffmpeg is always mocked."""

    def make(*names: str) -> list[Path]:
        paths = []
        for name in names:
            p = tmp_path / name
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(b"RIFF")
            paths.append(p)
        return paths

    return make


def clip(path, start: float, end: float, volume: float = 1.0) -> AudioClipRef:
    return AudioClipRef(path=Path(path), start_time_ms=start, end_time_ms=end, volume=volume)


def fake_popen(stderr_lines, returncode: int = 0) -> MagicMock:
    """A stand-in for subprocess.Popen whose stderr yields ``stderr_lines``."""
    proc = MagicMock()
    proc.stderr = iter(stderr_lines)
    proc.wait.return_value = returncode
    proc.poll.return_value = None
    proc.pid = 4242
    proc.__enter__.return_value = proc
    proc.__exit__.return_value = False
    return proc
