"""
Shared fakes for the pipeline tests.
"""

import pytest

from pipeline.errors import CaptureFailure, RecognitionFailure
from pipeline.frame_source import FrameSource
from pipeline.recognizer import RecognitionService, SubtitleCandidate


class FakeFrameSource(FrameSource):
    """In-memory frame source; records every seek and capture."""

    def __init__(self, width=1920, height=1080, duration=10.0, fail_at=(), position=0.0):
        self.width = width
        self.height = height
        self.duration = duration
        self.fail_at = set(fail_at)
        self.seeks = []
        self.captures = []
        self._position = position
        self._confirmed = None
        self._open = True

    @property
    def is_open(self):
        return self._open

    @property
    def position(self):
        return self._position

    def seek_to(self, timestamp):
        self.seeks.append(timestamp)
        self._position = timestamp
        self._confirmed = timestamp
        return True

    def capture_region(self, rect):
        if self._confirmed is None:
            raise CaptureFailure("capture before seek")
        timestamp, self._confirmed = self._confirmed, None
        self.captures.append((timestamp, rect))
        if timestamp in self.fail_at:
            raise CaptureFailure(f"render failed at {timestamp}", timestamp=timestamp)
        return f"jpeg@{timestamp:.2f}".encode()

    def close(self):
        self._open = False


class FakeRecognizer(RecognitionService):
    """
    Returns candidates from a script keyed by batch index.

    ``script`` maps batch index -> list of (text, start, end) tuples, or an
    exception instance to raise for that batch.
    """

    def __init__(self, script=None):
        self.script = script or {}
        self.calls = []

    def recognize(self, batch, language):
        index = len(self.calls)
        self.calls.append(([f.timestamp for f in batch], language))
        outcome = self.script.get(index, [])
        if isinstance(outcome, Exception):
            raise outcome
        return [SubtitleCandidate(text, start, end) for text, start, end in outcome]


@pytest.fixture
def source():
    return FakeFrameSource()


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def failing_recognizer():
    return FakeRecognizer({
        0: [("Hello", 0.0, 1.0)],
        1: RecognitionFailure("service unavailable"),
    })


@pytest.fixture
def make_source():
    """Factory for frame sources with custom geometry or failing timestamps."""
    return FakeFrameSource


@pytest.fixture
def make_recognizer():
    """Factory for recognizers driven by a per-batch script."""
    return FakeRecognizer
