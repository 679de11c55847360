"""Tests for muxing the dub track into the video (ffmpeg is mocked)."""

from pathlib import Path
from unittest.mock import patch

import pytest

from dubforge.editors.mux import build_mux_args, export_video
from dubforge.ffutil import NotFoundError
from dubforge.manifest import VideoExportConfig

VIDEO = Path("in.mp4")
AUDIO = Path("dub.wav")
OUT = Path("out.mp4")


class TestBuildMuxArgs:
    def test_defaults_copy_video(self):
        args = build_mux_args(VIDEO, AUDIO, OUT, VideoExportConfig())
        assert args[:8] == ["-i", "in.mp4", "-i", "dub.wav", "-map", "0:v", "-map", "1:a"]
        assert args[args.index("-c:v") + 1] == "copy"
        assert args[args.index("-c:a") + 1] == "aac"
        assert args[args.index("-b:a") + 1] == "192k"
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert "-crf" not in args
        assert args[-1] == "out.mp4"

    def test_keep_original_audio(self):
        args = build_mux_args(VIDEO, AUDIO, OUT, VideoExportConfig(keep_original_audio=True))
        maps = [args[i + 1] for i, a in enumerate(args) if a == "-map"]
        assert maps == ["0:v", "1:a", "0:a"]

    def test_reencode(self):
        opts = VideoExportConfig(video_codec="libx264", preset="fast", crf=20, resolution="1280x720")
        args = build_mux_args(VIDEO, AUDIO, OUT, opts)
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-preset") + 1] == "fast"
        assert args[args.index("-crf") + 1] == "20"
        assert args[args.index("-s") + 1] == "1280x720"

    def test_mkv_mp3(self):
        opts = VideoExportConfig(audio_codec="mp3", container="mkv")
        args = build_mux_args(VIDEO, AUDIO, Path("out.mkv"), opts)
        assert args[args.index("-c:a") + 1] == "libmp3lame"
        assert args[args.index("-f") + 1] == "matroska"
        assert "-movflags" not in args

    def test_audio_copy(self):
        args = build_mux_args(VIDEO, AUDIO, OUT, VideoExportConfig(audio_codec="copy"))
        assert args[args.index("-c:a") + 1] == "copy"
        assert "-b:a" not in args


class TestExportVideo:
    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", return_value=12_000.0)
    def test_export(self, mock_probe, mock_run, audio_files, tmp_path):
        video, audio = audio_files("in.mp4", "dub.wav")
        out = tmp_path / "final" / "out.mp4"
        mock_run.side_effect = lambda args, **kw: Path(args[-1]).write_bytes(b"x" * 64)

        result = export_video(video, audio, out)

        assert result.output_path == out
        assert result.duration_ms == 12_000.0
        assert result.file_size == 64
        assert mock_run.call_args[1]["expected_ms"] == 12_000.0

    @patch("dubforge.ffutil.run_ffmpeg")
    def test_missing_audio(self, mock_run, audio_files, tmp_path):
        (video,) = audio_files("in.mp4")
        with pytest.raises(NotFoundError, match="dub.wav"):
            export_video(video, tmp_path / "dub.wav", tmp_path / "out.mp4")
        mock_run.assert_not_called()
