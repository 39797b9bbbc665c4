"""
Pipeline Errors — Failure taxonomy for hard-subtitle extraction.

All errors derive from RuntimeError so a single handler at the CLI level
can report any pipeline failure.
"""


class HardsubError(RuntimeError):
    """Base class for every error raised by the extraction pipeline."""


class ConfigurationError(HardsubError):
    """Missing or invalid configuration (e.g. no recognition API key)."""


class SourceUnavailable(HardsubError):
    """No usable frame source: missing video, missing ffmpeg, closed source."""


class CaptureFailure(HardsubError):
    """A single frame could not be seeked to or rendered."""

    def __init__(self, message: str, timestamp: float = None):
        super().__init__(message)
        self.timestamp = timestamp


class RecognitionFailure(HardsubError):
    """The recognition service errored or returned a non-conforming payload."""

    def __init__(self, message: str, batch_index: int = None):
        super().__init__(message)
        self.batch_index = batch_index


class PipelineCancelled(HardsubError):
    """The run was cancelled between sampling steps or batches."""


class PipelineBusy(HardsubError):
    """A second run was started while another one is still active."""
