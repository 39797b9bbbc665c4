"""
Frame Sampler — Walks a time window at a fixed step and captures the
subtitle region of each sampled frame.

A frame that fails to render is replaced by a blank sentinel so a single
bad timestamp never aborts sampling.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import CaptureFailure, PipelineCancelled, SourceUnavailable
from .frame_source import FrameSource, PixelRect, Region
from .state import ProgressCallback

logger = logging.getLogger(__name__)

# Absorbs float error so that e.g. (5.0 - 0.0) / 0.1 still yields 51 steps
_STEP_EPSILON = 1e-9


@dataclass(frozen=True)
class TimeWindow:
    """Closed interval [start, end] of the video to sample, in seconds."""
    start: float
    end: float

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"Window start {self.start} must be >= 0")
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    @property
    def duration(self) -> float:
        return self.end - self.start

    def check_within(self, video_duration: float):
        """Raise ValueError if the window ends past the video."""
        if self.end > video_duration + 1e-6:
            raise ValueError(
                f"Window end {self.end:.2f}s exceeds video duration "
                f"{video_duration:.2f}s"
            )


@dataclass
class SampledFrame:
    """An encoded still of the region at one timestamp."""
    image: bytes
    timestamp: float

    @property
    def is_blank(self) -> bool:
        """True for the sentinel produced by a failed capture."""
        return not self.image

    def __repr__(self):
        return f"SampledFrame({self.timestamp:.2f}s, {len(self.image)} bytes)"


def frame_timestamps(window: TimeWindow, step: float) -> List[float]:
    """
    Timestamps start, start+step, ... up to and including window.end.

    Each value is computed from its index rather than by accumulation,
    so long windows do not drift.
    """
    if step <= 0:
        raise ValueError(f"Sampling step must be positive, got {step}")

    count = int(math.floor(window.duration / step + _STEP_EPSILON)) + 1
    return [
        min(round(window.start + i * step, 6), window.end)
        for i in range(count)
    ]


class FrameSampler:
    """
    Captures one region image per sampling step.

    Progress is reported inside ``progress_band`` (percent of the whole run).
    """

    def __init__(self, step: float = 0.5, progress_band: Tuple[int, int] = (0, 25)):
        self.step = step
        self.progress_band = progress_band

    def sample(
        self,
        source: FrameSource,
        window: TimeWindow,
        region: Region,
        step: Optional[float] = None,
        progress_cb: ProgressCallback = None,
        cancel_event=None,
    ) -> List[SampledFrame]:
        """
        Sample ``window`` of ``source`` at ``step`` seconds.

        Args:
            source: An open frame source, exclusively owned for the call.
            window: Time interval to sample, inclusive of both ends.
            region: Subtitle area as frame percentages.
            step: Seconds between samples (defaults to the sampler's step).
            progress_cb: Optional callback for progress updates.
            cancel_event: Optional threading.Event checked between frames.

        Returns:
            Frames in strictly increasing timestamp order.

        Raises:
            SourceUnavailable: If there is no open source.
            PipelineCancelled: If ``cancel_event`` is set mid-way.
        """
        if source is None or not source.is_open:
            raise SourceUnavailable("No active frame source to sample from")

        step = step or self.step
        rect = region.to_pixels(source.width, source.height)
        timestamps = frame_timestamps(window, step)
        total = len(timestamps)
        low, high = self.progress_band

        logger.info(
            f"Sampling {total} frames over {window.start:.2f}-{window.end:.2f}s "
            f"(step {step}s, crop {rect.width}x{rect.height}+{rect.x}+{rect.y})"
        )

        frames: List[SampledFrame] = []
        misses = 0

        for i, timestamp in enumerate(timestamps):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(
                    f"Cancelled after {i}/{total} frames"
                )

            image = self._capture(source, timestamp, rect)
            if not image:
                misses += 1
            frames.append(SampledFrame(image=image, timestamp=timestamp))

            done = (i + 1) / total
            if progress_cb:
                progress_cb(
                    f"Extracting frames ({round(done * 100)}%)...",
                    low + int((high - low) * done)
                )

        if misses:
            logger.warning(f"{misses}/{total} frames could not be captured")

        logger.info(f"Sampled {total - misses} frames")
        return frames

    @staticmethod
    def _capture(source: FrameSource, timestamp: float, rect: PixelRect) -> bytes:
        """Seek then capture; a failed frame yields the blank sentinel."""
        try:
            source.seek_to(timestamp)
            return source.capture_region(rect)
        except (CaptureFailure, SourceUnavailable) as e:
            logger.warning(f"Frame at {timestamp:.2f}s skipped: {e}")
            return b""
