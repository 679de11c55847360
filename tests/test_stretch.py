"""Tests for the duration matcher (ffmpeg is mocked)."""

import math
from unittest.mock import patch

import pytest

from dubforge.editors.stretch import atempo_chain, speed_ratio_for, stretch_to_duration
from dubforge.ffutil import NotFoundError, ProcessError, QualityWarning


class TestAtempoChain:
    def test_within_range_is_single_step(self):
        assert atempo_chain(0.505) == [0.505]
        assert atempo_chain(1.5) == [1.5]

    def test_slow_down_past_half(self):
        steps = atempo_chain(0.202)
        assert steps[:2] == [0.5, 0.5]
        assert steps[2] == pytest.approx(0.808)

    def test_speed_up_past_double(self):
        steps = atempo_chain(5.0)
        assert steps == [2.0, 2.0, pytest.approx(1.25)]

    @pytest.mark.parametrize("ratio", [0.25, 0.3, 0.5, 1.0, 2.0, 3.7, 4.0])
    def test_steps_in_range_and_product_matches(self, ratio):
        steps = atempo_chain(ratio)
        assert all(0.5 <= s <= 2.0 for s in steps)
        assert math.prod(steps) == pytest.approx(ratio)

    def test_non_positive(self):
        with pytest.raises(ValueError):
            atempo_chain(0)


class TestSpeedRatio:
    def test_biased_short(self):
        assert speed_ratio_for(3000, 2500) == pytest.approx(1.212)

    def test_bad_target(self):
        with pytest.raises(ValueError):
            speed_ratio_for(3000, 0)


class TestStretchToDuration:
    def test_bad_target_checked_first(self, tmp_path):
        with pytest.raises(ValueError, match="must be positive"):
            stretch_to_duration(tmp_path / "missing.wav", tmp_path / "o.wav", 0)

    def test_missing_input(self, tmp_path):
        with pytest.raises(NotFoundError, match="missing.wav"):
            stretch_to_duration(tmp_path / "missing.wav", tmp_path / "o.wav", 1000)

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", side_effect=[3000.0, 2480.0])
    def test_compresses_to_target(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")
        out = tmp_path / "fitted" / "clip.wav"

        result = stretch_to_duration(src, out, 2500)

        args = mock_run.call_args[0][0]
        assert args[args.index("-af") + 1] == "atempo=1.212000"
        assert args[args.index("-c:a") + 1] == "pcm_s16le"
        assert args[-1] == str(out)
        assert result.original_duration_ms == 3000
        assert result.final_duration_ms == 2480
        assert result.speed_ratio == pytest.approx(1.212)
        assert result.output_path == out

    @pytest.mark.parametrize(
        "original, target, expected",
        [
            (1500.0, 5000, "atempo=0.500000,atempo=0.606000"),
            (2000.0, 4000, "atempo=0.505000"),
        ],
    )
    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms")
    def test_slowdown_chains(self, mock_probe, mock_run, original, target, expected, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")
        mock_probe.side_effect = [original, float(target)]

        stretch_to_duration(src, tmp_path / "out.wav", target)

        args = mock_run.call_args[0][0]
        assert args[args.index("-af") + 1] == expected

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", return_value=2000.0)
    def test_equal_duration_is_noop(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")
        out = tmp_path / "copy.wav"

        result = stretch_to_duration(src, out, 2000)

        mock_run.assert_not_called()
        assert result.speed_ratio == 1.0
        assert result.final_duration_ms == 2000
        assert out.read_bytes() == src.read_bytes()

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", return_value=2000.0)
    def test_noop_in_place_leaves_file(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")
        result = stretch_to_duration(src, src, 2000)
        mock_run.assert_not_called()
        assert result.output_path == src
        assert src.read_bytes() == b"RIFF"

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", side_effect=[1000.0, 1990.0])
    def test_in_place_replaces_atomically(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")

        def fake_ffmpeg(args, **kwargs):
            assert args[-1] != str(src)
            with open(args[-1], "wb") as f:
                f.write(b"STRETCHED")

        mock_run.side_effect = fake_ffmpeg

        result = stretch_to_duration(src, src, 2000)

        assert src.read_bytes() == b"STRETCHED"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["clip.wav"]
        assert result.final_duration_ms == 1990

    @patch("dubforge.ffutil.run_ffmpeg", side_effect=ProcessError("stretch failed (rc=1)", 1, "boom"))
    @patch("dubforge.ffutil.probe_duration_ms", return_value=1000.0)
    def test_in_place_failure_keeps_original(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")

        with pytest.raises(ProcessError, match="boom"):
            stretch_to_duration(src, src, 2000)

        assert src.read_bytes() == b"RIFF"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["clip.wav"]

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", side_effect=[10_000.0, 2500.0])
    def test_extreme_ratio_clamped_with_warning(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.mp3")

        with pytest.warns(QualityWarning, match="extreme"):
            result = stretch_to_duration(src, tmp_path / "out.mp3", 1000)

        args = mock_run.call_args[0][0]
        assert args[args.index("-af") + 1] == "atempo=2.000000,atempo=2.000000"
        assert args[args.index("-c:a") + 1] == "libmp3lame"
        assert result.speed_ratio == 4.0

    @patch("dubforge.ffutil.run_ffmpeg")
    @patch("dubforge.ffutil.probe_duration_ms", side_effect=[500.0, 1980.0])
    def test_extreme_slowdown_clamped(self, mock_probe, mock_run, audio_files, tmp_path):
        (src,) = audio_files("clip.wav")

        with pytest.warns(QualityWarning):
            result = stretch_to_duration(src, tmp_path / "out.wav", 4000)

        args = mock_run.call_args[0][0]
        assert args[args.index("-af") + 1] == "atempo=0.500000,atempo=0.500000"
        assert result.speed_ratio == 0.25
