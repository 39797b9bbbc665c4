"""
Batch Dispatcher — Sends sampled frames to the recognition service in
fixed-size batches and accumulates every candidate.

Batches are submitted in frame order. Candidates are accumulated in batch
order whatever the completion order, and no deduplication happens here:
duplicates often straddle batch boundaries and are resolved by the
reconciler on the full set.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence, Tuple

from .errors import PipelineCancelled, RecognitionFailure
from .recognizer import RecognitionService, SubtitleCandidate
from .sampler import SampledFrame
from .state import ProgressCallback

logger = logging.getLogger(__name__)


def partition(frames: Sequence[SampledFrame], batch_size: int) -> List[List[SampledFrame]]:
    """Split frames into contiguous groups of batch_size; the last may be shorter."""
    if batch_size < 1:
        raise ValueError(f"Batch size must be >= 1, got {batch_size}")
    return [list(frames[i:i + batch_size]) for i in range(0, len(frames), batch_size)]


class BatchDispatcher:
    """
    Drives the recognition service over all batches of a run.

    With max_concurrent=1 batches run strictly one at a time. Higher values
    allow that many requests in flight; any failure still aborts the whole
    dispatch, since a missing batch would be indistinguishable from a
    stretch without dialogue.
    """

    def __init__(
        self,
        service: RecognitionService,
        batch_size: int = 10,
        max_concurrent: int = 1,
        progress_band: Tuple[int, int] = (30, 95),
    ):
        self.service = service
        self.batch_size = batch_size
        self.max_concurrent = max(1, max_concurrent)
        self.progress_band = progress_band

    def dispatch(
        self,
        frames: Sequence[SampledFrame],
        language: str,
        batch_size: Optional[int] = None,
        progress_cb: ProgressCallback = None,
        cancel_event=None,
    ) -> List[SubtitleCandidate]:
        """
        Recognize all frames batch by batch.

        Args:
            frames: Sampled frames in timestamp order.
            language: Target language passed to the service.
            batch_size: Frames per batch (defaults to the dispatcher's).
            progress_cb: Optional callback for progress updates.
            cancel_event: Optional threading.Event checked between batches.

        Returns:
            Every candidate from every batch, in batch order.

        Raises:
            RecognitionFailure: If any batch fails; no partial result.
            PipelineCancelled: If ``cancel_event`` is set mid-way.
        """
        batches = partition(frames, batch_size or self.batch_size)
        total = len(batches)
        if not batches:
            logger.warning("No frames to recognize.")
            return []

        logger.info(
            f"Dispatching {len(frames)} frames in {total} batches "
            f"(concurrency {self.max_concurrent})"
        )

        if self.max_concurrent == 1 or total == 1:
            results = self._run_sequential(batches, language, progress_cb, cancel_event)
        else:
            results = self._run_concurrent(batches, language, progress_cb, cancel_event)

        candidates = [c for batch_result in results for c in batch_result]
        logger.info(f"Recognition returned {len(candidates)} candidates from {total} batches")
        return candidates

    def _run_sequential(self, batches, language, progress_cb, cancel_event):
        results = []
        total = len(batches)

        for index, batch in enumerate(batches):
            self._check_cancel(cancel_event, index, total)
            results.append(self._recognize(index, batch, language))
            self._report(progress_cb, index + 1, total)

        return results

    def _run_concurrent(self, batches, language, progress_cb, cancel_event):
        results: List[Optional[List[SubtitleCandidate]]] = [None] * len(batches)
        total = len(batches)
        completed = 0

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="recognize"
        ) as executor:
            futures = {
                executor.submit(self._recognize, index, batch, language): index
                for index, batch in enumerate(batches)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    completed += 1
                    self._report(progress_cb, completed, total)
                    if completed < total:
                        self._check_cancel(cancel_event, completed, total)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        return results

    def _recognize(self, index: int, batch: List[SampledFrame], language: str) -> List[SubtitleCandidate]:
        try:
            return self.service.recognize(batch, language)
        except RecognitionFailure as e:
            e.batch_index = index
            logger.error(f"Batch {index + 1} failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Batch {index + 1} failed unexpectedly: {e}", exc_info=True)
            raise RecognitionFailure(
                f"Batch {index + 1} failed: {e}", batch_index=index
            ) from e

    @staticmethod
    def _check_cancel(cancel_event, done: int, total: int):
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(f"Cancelled after {done}/{total} batches")

    def _report(self, progress_cb: ProgressCallback, done: int, total: int):
        if progress_cb:
            low, high = self.progress_band
            progress_cb(
                f"Decoding segment {done}/{total}...",
                low + int((high - low) * done / total)
            )
