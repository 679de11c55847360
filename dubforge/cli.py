"""Thin CLI entry point — builds a manifest or request and calls the core."""

import argparse
import logging
import sys
from pathlib import Path

from dubforge import ffutil
from dubforge.manifest import OUTPUT_FORMATS, ExportManifest, MixConfig, load_manifest
from dubforge.models import AudioClipRef


def parse_clip(spec: str) -> AudioClipRef:
    """Parse PATH:START_MS:END_MS[:VOLUME] (the path itself may contain colons)."""
    for fields in (3, 2):
        parts = spec.rsplit(":", fields)
        if len(parts) != fields + 1:
            continue
        try:
            numbers = [float(p) for p in parts[1:]]
        except ValueError:
            continue
        volume = numbers[2] if fields == 3 else 1.0
        try:
            return AudioClipRef(Path(parts[0]), numbers[0], numbers[1], volume=volume)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from e
    raise argparse.ArgumentTypeError(f"Expected PATH:START_MS:END_MS[:VOLUME], got {spec!r}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="dubforge",
        description="DubForge — splice dubbed speech into an original soundtrack.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log ffmpeg commands and details")
    sub = parser.add_subparsers(dest="command")

    mx = sub.add_parser("mix", help="Mix dubbed clips into the original audio")
    mx.add_argument("original", nargs="?", type=Path, help="Original audio track")
    mx.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    mx.add_argument("--output", "-o", type=Path, help="Output file path")
    mx.add_argument("--clip", "-c", action="append", type=parse_clip, default=[],
                    metavar="PATH:START_MS:END_MS[:VOLUME]", help="Dubbed clip (repeatable)")
    mx.add_argument("--format", choices=OUTPUT_FORMATS, default="wav", help="Output format")
    mx.add_argument("--sample-rate", type=int, default=44100, help="Output sample rate")
    mx.add_argument("--original-volume", type=float, default=0.3, help="Volume of the original audio")
    mx.add_argument("--dubbed-volume", type=float, default=1.0, help="Volume of the dubbed clips")
    mx.add_argument("--target-ms", type=float, help="Pad with silence up to this duration")
    mx.add_argument("--fit", action="store_true", help="Stretch each clip to its slot first")

    st = sub.add_parser("stretch", help="Time-stretch a clip to a target duration")
    st.add_argument("input", type=Path, help="Input audio file")
    st.add_argument("--target-ms", type=float, required=True, help="Target duration in milliseconds")
    st.add_argument("--output", "-o", type=Path, help="Output path (default: replace input)")

    wf = sub.add_parser("waveform", help="Extract waveform peaks")
    wf.add_argument("media", type=Path, help="Audio or video file")
    wf.add_argument("--samples-per-second", type=int, default=100, help="Peaks per second")
    wf.add_argument("--cache-dir", type=Path, help="Read/write waveform.json in this directory")
    wf.add_argument("--refresh", action="store_true", help="Ignore an existing cache")

    cc = sub.add_parser("concat", help="Join audio files back to back")
    cc.add_argument("inputs", nargs="+", type=Path, help="Audio files in playback order")
    cc.add_argument("--output", "-o", type=Path, required=True, help="Output file path")
    cc.add_argument("--format", choices=OUTPUT_FORMATS, default="wav", help="Output format")
    cc.add_argument("--sample-rate", type=int, default=44100, help="Output sample rate")

    serve = sub.add_parser("serve", help="Launch the export job API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        ffutil.check_ffmpeg()
        if args.command == "serve":
            from dubforge.web import create_app
            app = create_app()
            print(f"DubForge API: http://{args.host}:{args.port}")
            app.run(host=args.host, port=args.port, debug=False, threaded=True)
        elif args.command == "mix":
            _mix(args, mx)
        elif args.command == "stretch":
            _stretch(args)
        elif args.command == "waveform":
            _waveform(args)
        elif args.command == "concat":
            _concat(args)
    except (ffutil.DubForgeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _mix(args: argparse.Namespace, mx: argparse.ArgumentParser) -> None:
    from dubforge.engine import process

    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.original:
        output = args.output or args.original.with_name(
            f"{args.original.stem}_dubbed.{'m4a' if args.format == 'aac' else args.format}"
        )
        m = ExportManifest(
            output=output,
            original_audio=args.original,
            clips=args.clip,
            mix=MixConfig(
                output_format=args.format,
                sample_rate=args.sample_rate,
                original_volume=args.original_volume,
                dubbed_volume=args.dubbed_volume,
                target_duration_ms=args.target_ms,
            ),
            fit_clips=args.fit,
        )
    else:
        mx.error("provide either an ORIGINAL argument or --manifest.")

    def on_progress(stage: str, percent: float) -> None:
        print(f"  [{percent:5.1f}%] {stage}")

    result = process(m, on_progress=on_progress)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Duration: {result.duration_final / 1000:.2f}s, {result.clips_mixed} clips")
    if result.clips_fitted:
        print(f"  Clips fitted to their slots: {result.clips_fitted}")


def _stretch(args: argparse.Namespace) -> None:
    from dubforge.editors.stretch import stretch_to_duration

    result = stretch_to_duration(args.input, args.output or args.input, args.target_ms)
    print(f"Output: {result.output_path}")
    print(
        f"  {result.original_duration_ms}ms -> {result.final_duration_ms}ms "
        f"(target {args.target_ms:.0f}ms, ratio {result.speed_ratio:.3f})"
    )


def _waveform(args: argparse.Namespace) -> None:
    from dubforge.analyzers.waveform import extract_waveform, get_waveform

    if args.cache_dir:
        data = get_waveform(args.media, args.cache_dir, args.samples_per_second, refresh=args.refresh)
    else:
        data = extract_waveform(args.media, args.samples_per_second)
    peak = max(data.peaks, default=0.0)
    print(f"{len(data.peaks)} peaks over {data.duration_ms / 1000:.2f}s (max {peak:.3f})")
    if args.cache_dir:
        print(f"  Cache: {args.cache_dir / 'waveform.json'}")


def _concat(args: argparse.Namespace) -> None:
    from dubforge.editors.mix import concatenate_audio

    result = concatenate_audio(args.inputs, args.output, args.format, args.sample_rate)
    print(f"Output: {result.output_path}")
    print(f"  Duration: {result.duration_ms / 1000:.2f}s, {len(args.inputs)} files")
