"""
Tests for region geometry and the FFmpeg-backed frame source.
"""

import json
import subprocess

import pytest
from pipeline.errors import CaptureFailure, SourceUnavailable
from pipeline.frame_source import FfmpegFrameSource, PixelRect, Region


class TestRegion:

    def test_valid_region(self):
        region = Region(10, 75, 80, 18)
        assert region.width == 80

    @pytest.mark.parametrize("values", [
        (-1, 75, 80, 18),
        (10, 75, 80, 101),
        (10, 75, 4, 18),
        (10, 75, 80, 4.9),
        (30, 75, 80, 18),
        (10, 90, 80, 18),
    ])
    def test_invalid_region(self, values):
        with pytest.raises(ValueError):
            Region(*values)

    def test_minimum_size_allowed(self):
        assert Region(95, 95, 5, 5).height == 5

    def test_parse(self):
        assert Region.parse("5, 80, 90, 15") == Region(5, 80, 90, 15)

    @pytest.mark.parametrize("text", ["5,80,90", "a,b,c,d", ""])
    def test_parse_invalid(self, text):
        with pytest.raises(ValueError):
            Region.parse(text)


class TestPixelConversion:

    def test_full_hd(self):
        assert Region(10, 75, 80, 18).to_pixels(1920, 1080) == PixelRect(192, 810, 1536, 194)

    def test_full_frame(self):
        assert Region(0, 0, 100, 100).to_pixels(640, 360) == PixelRect(0, 0, 640, 360)

    def test_tiny_frame_keeps_one_pixel(self):
        rect = Region(95, 95, 5, 5).to_pixels(10, 10)
        assert rect.width >= 1 and rect.height >= 1
        assert rect.x + rect.width <= 10
        assert rect.y + rect.height <= 10

    def test_ffmpeg_crop(self):
        assert PixelRect(192, 810, 1536, 194).as_ffmpeg_crop() == "crop=1536:194:192:810"


class FakeFfmpeg:
    """Stands in for subprocess.run and records every command."""

    def __init__(self, probe=None, capture=b"\xff\xd8jpeg", capture_code=0, capture_error=None):
        self.probe = probe or {
            "streams": [{"width": 1280, "height": 720}],
            "format": {"duration": "42.5"},
        }
        self.capture = capture
        self.capture_code = capture_code
        self.capture_error = capture_error
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if cmd[:2] == ["ffmpeg", "-version"]:
            return subprocess.CompletedProcess(cmd, 0, stdout="ffmpeg version 6.1", stderr="")
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(self.probe), stderr="")
        if self.capture_error:
            raise self.capture_error
        return subprocess.CompletedProcess(
            cmd, self.capture_code, stdout=self.capture, stderr=b"decode error"
        )


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "movie.mp4"
    path.write_bytes(b"\x00")
    return path


@pytest.fixture
def ffmpeg(monkeypatch):
    fake = FakeFfmpeg()
    monkeypatch.setattr("pipeline.frame_source.subprocess.run", fake)
    return fake


class TestOpen:

    def test_probe(self, video, ffmpeg):
        source = FfmpegFrameSource(video)
        assert (source.width, source.height, source.duration) == (1280, 720, 42.5)
        assert source.is_open
        assert source.position == 0.0

    def test_missing_file(self, tmp_path, ffmpeg):
        with pytest.raises(SourceUnavailable):
            FfmpegFrameSource(tmp_path / "nope.mp4")

    def test_ffmpeg_not_installed(self, video, monkeypatch):
        def missing(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr("pipeline.frame_source.subprocess.run", missing)
        with pytest.raises(SourceUnavailable, match="FFmpeg not found"):
            FfmpegFrameSource(video)

    def test_no_video_stream(self, video, ffmpeg):
        ffmpeg.probe = {"streams": [], "format": {"duration": "3.0"}}
        with pytest.raises(SourceUnavailable):
            FfmpegFrameSource(video)

    def test_context_manager_closes(self, video, ffmpeg):
        with FfmpegFrameSource(video) as source:
            assert source.is_open
        assert not source.is_open


class TestCapture:

    def test_seek_then_capture(self, video, ffmpeg):
        source = FfmpegFrameSource(video, jpeg_quality=5)
        assert source.seek_to(12.5) is True
        image = source.capture_region(PixelRect(128, 540, 1024, 130))

        assert image == b"\xff\xd8jpeg"
        cmd = ffmpeg.commands[-1]
        assert cmd[cmd.index("-ss") + 1] == "12.500"
        assert cmd[cmd.index("-vf") + 1] == "crop=1024:130:128:540"
        assert cmd[cmd.index("-q:v") + 1] == "5"
        assert source.position == 12.5

    def test_capture_requires_seek(self, video, ffmpeg):
        source = FfmpegFrameSource(video)
        with pytest.raises(CaptureFailure):
            source.capture_region(PixelRect(0, 0, 10, 10))

    def test_seek_confirmation_consumed(self, video, ffmpeg):
        source = FfmpegFrameSource(video)
        source.seek_to(1.0)
        source.capture_region(PixelRect(0, 0, 10, 10))
        with pytest.raises(CaptureFailure):
            source.capture_region(PixelRect(0, 0, 10, 10))

    @pytest.mark.parametrize("timestamp", [-0.5, 50.0])
    def test_seek_out_of_range(self, video, ffmpeg, timestamp):
        source = FfmpegFrameSource(video)
        with pytest.raises(CaptureFailure) as exc_info:
            source.seek_to(timestamp)
        assert exc_info.value.timestamp == timestamp

    def test_capture_timeout(self, video, ffmpeg):
        ffmpeg.capture_error = subprocess.TimeoutExpired(["ffmpeg"], 15.0)
        source = FfmpegFrameSource(video)
        source.seek_to(3.0)
        with pytest.raises(CaptureFailure, match="timed out"):
            source.capture_region(PixelRect(0, 0, 10, 10))

    def test_capture_decode_error(self, video, ffmpeg):
        ffmpeg.capture_code = 1
        source = FfmpegFrameSource(video)
        source.seek_to(3.0)
        with pytest.raises(CaptureFailure, match="decode error"):
            source.capture_region(PixelRect(0, 0, 10, 10))

    def test_empty_output(self, video, ffmpeg):
        ffmpeg.capture = b""
        source = FfmpegFrameSource(video)
        source.seek_to(3.0)
        with pytest.raises(CaptureFailure):
            source.capture_region(PixelRect(0, 0, 10, 10))

    def test_closed_source(self, video, ffmpeg):
        source = FfmpegFrameSource(video)
        source.close()
        with pytest.raises(SourceUnavailable):
            source.seek_to(1.0)
