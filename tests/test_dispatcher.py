"""
Tests for the Batch Dispatcher module.
"""

import time
import threading

import pytest
from pipeline.dispatcher import BatchDispatcher, partition
from pipeline.errors import PipelineCancelled, RecognitionFailure
from pipeline.recognizer import RecognitionService, SubtitleCandidate
from pipeline.sampler import SampledFrame


def make_frames(count, step=0.5):
    return [SampledFrame(image=b"img", timestamp=i * step) for i in range(count)]


class SlowFirstRecognizer(RecognitionService):
    """Earlier batches finish later, so completion order is reversed."""

    def __init__(self, batch_span, total):
        self.batch_span = batch_span
        self.total = total

    def recognize(self, batch, language):
        index = int(round(batch[0].timestamp / self.batch_span))
        time.sleep(0.02 * (self.total - index))
        return [SubtitleCandidate(f"batch {index}", batch[0].timestamp, batch[-1].timestamp)]


class TestPartition:

    def test_twenty_three_frames(self):
        batches = partition(make_frames(23), 10)
        assert [len(b) for b in batches] == [10, 10, 3]

    def test_order_preserved(self):
        frames = make_frames(23)
        batches = partition(frames, 10)
        assert [f for b in batches for f in b] == frames

    def test_exact_multiple(self):
        assert [len(b) for b in partition(make_frames(20), 10)] == [10, 10]

    def test_empty(self):
        assert partition([], 10) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            partition(make_frames(3), 0)


class TestSequentialDispatch:

    def test_batches_submitted_in_order(self, recognizer):
        BatchDispatcher(recognizer, batch_size=10).dispatch(make_frames(23), "English")
        sizes = [len(stamps) for stamps, _ in recognizer.calls]
        assert sizes == [10, 10, 3]
        firsts = [stamps[0] for stamps, _ in recognizer.calls]
        assert firsts == [0.0, 5.0, 10.0]

    def test_language_forwarded(self, recognizer):
        BatchDispatcher(recognizer).dispatch(make_frames(3), "Korean")
        assert recognizer.calls[0][1] == "Korean"

    def test_batch_size_override(self, recognizer):
        BatchDispatcher(recognizer, batch_size=10).dispatch(make_frames(6), "English", batch_size=4)
        assert [len(s) for s, _ in recognizer.calls] == [4, 2]

    def test_candidates_accumulated_without_dedup(self, make_recognizer):
        service = make_recognizer({
            0: [("Hi", 4.0, 4.5)],
            1: [("Hi", 5.0, 5.5), ("Bye", 6.0, 7.0)],
        })
        candidates = BatchDispatcher(service, batch_size=10).dispatch(make_frames(20), "English")
        assert [c.text for c in candidates] == ["Hi", "Hi", "Bye"]

    def test_no_frames(self, recognizer):
        assert BatchDispatcher(recognizer).dispatch([], "English") == []
        assert recognizer.calls == []


class TestFailure:
    """Any failed batch aborts the whole dispatch."""

    def test_failure_aborts(self, failing_recognizer):
        dispatcher = BatchDispatcher(failing_recognizer, batch_size=10)
        with pytest.raises(RecognitionFailure) as exc_info:
            dispatcher.dispatch(make_frames(30), "English")
        assert exc_info.value.batch_index == 1
        # Third batch never submitted
        assert len(failing_recognizer.calls) == 2

    def test_unexpected_error_wrapped(self, make_recognizer):
        service = make_recognizer({0: KeyError("text")})
        with pytest.raises(RecognitionFailure) as exc_info:
            BatchDispatcher(service).dispatch(make_frames(5), "English")
        assert exc_info.value.batch_index == 0
        assert isinstance(exc_info.value.__cause__, KeyError)


class TestProgress:

    def test_progress_band(self, recognizer):
        updates = []
        BatchDispatcher(recognizer, batch_size=10).dispatch(
            make_frames(23), "English",
            progress_cb=lambda msg, pct: updates.append((msg, pct))
        )
        assert updates == [
            ("Decoding segment 1/3...", 51),
            ("Decoding segment 2/3...", 73),
            ("Decoding segment 3/3...", 95),
        ]


class TestConcurrentDispatch:

    def test_accumulation_follows_batch_order(self):
        service = SlowFirstRecognizer(batch_span=1.0, total=4)
        dispatcher = BatchDispatcher(service, batch_size=2, max_concurrent=4)
        candidates = dispatcher.dispatch(make_frames(8), "English")
        assert [c.text for c in candidates] == ["batch 0", "batch 1", "batch 2", "batch 3"]

    def test_progress_monotonic(self):
        service = SlowFirstRecognizer(batch_span=1.0, total=4)
        updates = []
        BatchDispatcher(service, batch_size=2, max_concurrent=2).dispatch(
            make_frames(8), "English",
            progress_cb=lambda msg, pct: updates.append(pct)
        )
        assert updates == sorted(updates)
        assert updates[-1] == 95

    def test_failure_aborts(self, make_recognizer):
        service = make_recognizer({i: RecognitionFailure("bad payload") for i in range(3)})
        dispatcher = BatchDispatcher(service, batch_size=2, max_concurrent=3)
        with pytest.raises(RecognitionFailure):
            dispatcher.dispatch(make_frames(6), "English")


class TestCancellation:

    def test_cancel_between_batches(self, recognizer):
        cancel = threading.Event()
        with pytest.raises(PipelineCancelled):
            BatchDispatcher(recognizer, batch_size=10).dispatch(
                make_frames(30), "English",
                progress_cb=lambda msg, pct: cancel.set(),
                cancel_event=cancel
            )
        assert len(recognizer.calls) == 1

    def test_cancel_concurrent(self):
        service = SlowFirstRecognizer(batch_span=1.0, total=4)
        cancel = threading.Event()
        with pytest.raises(PipelineCancelled):
            BatchDispatcher(service, batch_size=2, max_concurrent=2).dispatch(
                make_frames(8), "English",
                progress_cb=lambda msg, pct: cancel.set(),
                cancel_event=cancel
            )
