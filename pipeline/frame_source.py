"""
Frame Source — Seek-then-capture access to still frames of a video.

The pipeline only talks to the FrameSource interface; FfmpegFrameSource
is the concrete implementation, shelling out to ffmpeg/ffprobe for each
captured region.
"""

import json
import math
import subprocess
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .errors import CaptureFailure, SourceUnavailable

logger = logging.getLogger(__name__)

MIN_REGION_SIZE = 5.0


@dataclass(frozen=True)
class PixelRect:
    """A crop rectangle in native frame pixels."""
    x: int
    y: int
    width: int
    height: int

    def as_ffmpeg_crop(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


@dataclass(frozen=True)
class Region:
    """
    Screen area to sample, as percentages (0-100) of the frame dimensions.

    Raises:
        ValueError: If the rectangle leaves the frame or is smaller than
            MIN_REGION_SIZE percent in either dimension.
    """
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"Region {name}={value} outside [0, 100]")
        if self.width < MIN_REGION_SIZE or self.height < MIN_REGION_SIZE:
            raise ValueError(
                f"Region {self.width}x{self.height} is smaller than "
                f"the {MIN_REGION_SIZE:g}% minimum"
            )
        if self.x + self.width > 100.0 or self.y + self.height > 100.0:
            raise ValueError(f"Region {self} extends past the frame edge")

    @classmethod
    def parse(cls, text: str) -> "Region":
        """Build a region from an 'x,y,width,height' string."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected 'x,y,width,height', got '{text}'")
        return cls(*(float(p) for p in parts))

    def to_pixels(self, frame_width: int, frame_height: int) -> PixelRect:
        """
        Scale the region against native frame dimensions.

        Origin and size are floored and the result is clamped to the
        frame, with every side at least one pixel.
        """
        x = min(int(math.floor(self.x / 100.0 * frame_width)), frame_width - 1)
        y = min(int(math.floor(self.y / 100.0 * frame_height)), frame_height - 1)
        w = int(math.floor(self.width / 100.0 * frame_width))
        h = int(math.floor(self.height / 100.0 * frame_height))
        w = max(1, min(w, frame_width - x))
        h = max(1, min(h, frame_height - y))
        return PixelRect(x, y, w, h)


class FrameSource(ABC):
    """
    Capability consumed by the frame sampler.

    Callers must seek_to() a timestamp and only then capture_region();
    each capture consumes the seek confirmation.
    """

    width: int = 0
    height: int = 0
    duration: float = 0.0

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the source can still serve frames."""

    @property
    @abstractmethod
    def position(self) -> float:
        """Current seek position in seconds."""

    @abstractmethod
    def seek_to(self, timestamp: float) -> bool:
        """Position the source at ``timestamp``. Returns True once positioned."""

    @abstractmethod
    def capture_region(self, rect: PixelRect) -> bytes:
        """Return the encoded image of ``rect`` at the confirmed position."""

    def close(self):
        """Release the underlying resource."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FfmpegFrameSource(FrameSource):
    """Frame source backed by the ffmpeg and ffprobe executables."""

    def __init__(
        self,
        video_path: Path,
        seek_timeout: float = 15.0,
        jpeg_quality: int = 3,
    ):
        """
        Args:
            video_path: Input video file.
            seek_timeout: Seconds to wait for a single frame capture.
            jpeg_quality: ffmpeg -q:v value (2 = best, 31 = worst).

        Raises:
            SourceUnavailable: If the file or the ffmpeg tools are missing,
                or the file has no decodable video stream.
        """
        self.video_path = Path(video_path)
        self.seek_timeout = seek_timeout
        self.jpeg_quality = jpeg_quality

        if not self.video_path.exists():
            raise SourceUnavailable(f"Video file not found: {self.video_path}")

        self._verify_ffmpeg()
        self.width, self.height, self.duration = self._probe()
        self._position = 0.0
        self._confirmed: Optional[float] = None
        self._open = True

        logger.info(
            f"Opened {self.video_path.name}: {self.width}x{self.height}, "
            f"{self.duration:.2f}s"
        )

    @staticmethod
    def _verify_ffmpeg():
        """Check that ffmpeg is available on the system PATH."""
        try:
            result = subprocess.run(
                ["ffmpeg", "-version"],
                capture_output=True, text=True, timeout=10
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise SourceUnavailable(
                "FFmpeg not found. Please install FFmpeg and add it to PATH.\n"
                "Download: https://ffmpeg.org/download.html"
            ) from e
        if result.returncode != 0:
            raise SourceUnavailable("FFmpeg returned non-zero exit code")
        logger.debug(f"FFmpeg found: {result.stdout.splitlines()[0] if result.stdout else '?'}")

    def _probe(self) -> Tuple[int, int, float]:
        """Read width, height and duration of the first video stream."""
        cmd = [
            "ffprobe",
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:format=duration",
            "-of", "json",
            str(self.video_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise SourceUnavailable(f"ffprobe failed on {self.video_path}: {e}") from e

        if result.returncode != 0:
            raise SourceUnavailable(f"ffprobe failed: {result.stderr.strip()}")

        try:
            info = json.loads(result.stdout)
            stream = info["streams"][0]
            width, height = int(stream["width"]), int(stream["height"])
            duration = float(info["format"]["duration"])
        except (ValueError, KeyError, IndexError) as e:
            raise SourceUnavailable(
                f"No video stream found in {self.video_path}"
            ) from e

        return width, height, duration

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def position(self) -> float:
        return self._position

    def seek_to(self, timestamp: float) -> bool:
        if not self._open:
            raise SourceUnavailable("Frame source is closed")
        if timestamp < 0 or timestamp > self.duration + 1e-6:
            raise CaptureFailure(
                f"Timestamp {timestamp:.3f}s outside video (0-{self.duration:.3f}s)",
                timestamp=timestamp
            )
        self._position = timestamp
        self._confirmed = timestamp
        return True

    def capture_region(self, rect: PixelRect) -> bytes:
        if not self._open:
            raise SourceUnavailable("Frame source is closed")
        if self._confirmed is None:
            raise CaptureFailure("Capture requested before a confirmed seek")

        timestamp, self._confirmed = self._confirmed, None

        # -ss before -i: fast input seek, frame-accurate in ffmpeg >= 2.1
        cmd = [
            "ffmpeg",
            "-ss", f"{timestamp:.3f}",
            "-i", str(self.video_path),
            "-frames:v", "1",
            "-vf", rect.as_ffmpeg_crop(),
            "-q:v", str(self.jpeg_quality),
            "-f", "image2pipe",
            "-vcodec", "mjpeg",
            "-loglevel", "error",
            "pipe:1"
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.seek_timeout)
        except subprocess.TimeoutExpired as e:
            raise CaptureFailure(
                f"Frame capture at {timestamp:.3f}s timed out after {self.seek_timeout}s",
                timestamp=timestamp
            ) from e

        if result.returncode != 0 or not result.stdout:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise CaptureFailure(
                f"FFmpeg capture at {timestamp:.3f}s failed: {stderr or 'no output'}",
                timestamp=timestamp
            )

        return result.stdout

    def close(self):
        if self._open:
            self._open = False
            logger.debug(f"Closed frame source: {self.video_path.name}")
