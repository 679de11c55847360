#!/usr/bin/env python3
"""Generate a synthetic dubbing project for DubForge pipeline testing.

Produces, in the output directory:
  original.wav   ~12-second "soundtrack": 220 Hz bed with louder 440 Hz "speech"
                 at 1-4s and 6-9s
  clip_01.wav    880 Hz tone, 2.5s (to be stretched into the 1-4s slot)
  clip_02.wav    660 Hz tone, 3.6s (to be compressed into the 6-9s slot)
  manifest.json  export manifest wiring the three together
"""

import json
import subprocess
import sys
from pathlib import Path


def _render(filter_complex: str, output: Path) -> None:
    cmd = [
        "ffmpeg", "-y",
        "-filter_complex", filter_complex,
        "-map", "[aout]",
        "-ar", "44100",
        "-c:a", "pcm_s16le",
        str(output),
    ]
    subprocess.run(cmd, check=True, capture_output=True)


def generate_test_project(out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)

    _render(
        "sine=f=220:d=12,volume=0.2[bed];"
        "sine=f=440:d=3,adelay=1000|1000[s0];"
        "sine=f=440:d=3,adelay=6000|6000[s1];"
        "[bed][s0][s1]amix=inputs=3:duration=first:normalize=0[aout]",
        out_dir / "original.wav",
    )
    _render("sine=f=880:d=2.5[aout]", out_dir / "clip_01.wav")
    _render("sine=f=660:d=3.6[aout]", out_dir / "clip_02.wav")

    manifest = {
        "version": "1",
        "original_audio": "original.wav",
        "output": "dubbed.wav",
        "clips": [
            {"path": "clip_01.wav", "start_time_ms": 1000, "end_time_ms": 4000},
            {"path": "clip_02.wav", "start_time_ms": 6000, "end_time_ms": 9000, "volume": 0.8},
        ],
        "mix": {"output_format": "wav", "original_volume": 0.3, "target_duration_ms": 13000},
        "fit_clips": True,
    }
    manifest_path = out_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2))
    print(f"Generated: {out_dir}")
    return manifest_path


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/synthetic")
    generate_test_project(out)
