"""
Pipeline Orchestrator — Coordinates one hard-subtitle extraction run.

Stages:
  1. Sampling     (frame source → sampled region images)     0-25%
  2. Recognizing  (batches → recognition service)            30-95%
  3. Reconciling  (candidates → deduplicated timeline)       95%
  4. Done                                                    100%

Any error that would leave the candidate set incomplete fails the whole
run; no partial subtitle list is returned.
"""

import time
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .dispatcher import BatchDispatcher
from .errors import PipelineBusy, PipelineCancelled, SourceUnavailable, CaptureFailure
from .frame_source import FfmpegFrameSource, FrameSource, Region
from .recognizer import GeminiRecognizer, RecognitionService
from .reconciler import SubtitleEntry, TimelineReconciler
from .sampler import FrameSampler, TimeWindow
from .srt_writer import SRTWriter, get_writer
from .state import PipelineStage, PipelineState, ProcessStateTracker, ProgressCallback

logger = logging.getLogger(__name__)


class SubtitlePipeline:
    """
    Main pipeline orchestrator for hard-subtitle extraction.

    Usage:
        config = load_config()
        pipeline = SubtitlePipeline(config)
        pipeline.process("video.mp4", "video.srt")
    """

    def __init__(self, config, recognizer: Optional[RecognitionService] = None):
        self.config = config
        self.sampler = FrameSampler(step=config.sampling.step)
        self.reconciler = TimelineReconciler(config.merge)
        self.tracker = ProcessStateTracker()

        # Built on first run so a missing API key fails the run, not the constructor
        self._recognizer = recognizer
        self._run_lock = threading.Lock()

    @property
    def state(self) -> PipelineState:
        return self.tracker.state

    @property
    def is_running(self) -> bool:
        return self.tracker.is_active

    @property
    def recognizer(self) -> RecognitionService:
        if self._recognizer is None:
            self._recognizer = GeminiRecognizer.from_config(self.config.recognition)
        return self._recognizer

    def run(
        self,
        frame_source: FrameSource,
        region: Region,
        window: TimeWindow,
        language: Optional[str] = None,
        sampling_step: Optional[float] = None,
        batch_size: Optional[int] = None,
        progress_cb: ProgressCallback = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SubtitleEntry]:
        """
        Extract the subtitle timeline of ``window`` within ``region``.

        Args:
            frame_source: Open frame source; owned by the run while sampling
                and returned to its previous position afterwards.
            region: Subtitle area as frame percentages.
            window: Time interval to sample.
            language: Target language (default from config).
            sampling_step: Seconds between frames (default from config).
            batch_size: Frames per recognition request (default from config).
            progress_cb: Optional callback for progress updates.
            cancel_event: Optional threading.Event to cancel the run.

        Returns:
            Reconciled entries sorted by start time.

        Raises:
            PipelineBusy: If another run is active on this pipeline.
            HardsubError: On configuration, source, recognition failure or
                cancellation; the tracker is left Failed or Cancelled.
        """
        if not self._run_lock.acquire(blocking=False):
            raise PipelineBusy("A run is already active on this pipeline")
        try:
            self.tracker.reset()
            return self._run(
                frame_source, region, window,
                language or self.config.recognition.language,
                sampling_step or self.config.sampling.step,
                batch_size or self.config.recognition.batch_size,
                progress_cb, cancel_event,
            )
        finally:
            self._run_lock.release()

    def _run(self, frame_source, region, window, language, step, batch_size,
             progress_cb, cancel_event) -> List[SubtitleEntry]:
        start_time = time.monotonic()

        def report(msg: str, pct: int):
            self._report(progress_cb, msg, pct)

        logger.info(f"{'='*60}")
        logger.info(f"Hard Subtitle Extractor")
        logger.info(f"Window:   {window.start:.2f}s - {window.end:.2f}s (step {step}s)")
        logger.info(f"Region:   x={region.x} y={region.y} w={region.width} h={region.height}")
        logger.info(f"Language: {language}")
        logger.info(f"Batches:  {batch_size} frames, "
                    f"concurrency {self.config.recognition.max_concurrent_batches}")
        logger.info(f"{'='*60}")

        try:
            if frame_source is None or not frame_source.is_open:
                raise SourceUnavailable("No active frame source")
            window.check_within(frame_source.duration)
            recognizer = self.recognizer

            # ── Stage 1: Sampling ──
            self._enter(PipelineStage.SAMPLING, "Initializing frame scan...", 0, progress_cb)
            previous_position = frame_source.position
            try:
                frames = self.sampler.sample(
                    frame_source, window, region, step,
                    progress_cb=report, cancel_event=cancel_event
                )
            finally:
                self._restore_position(frame_source, previous_position)

            # ── Stage 2: Recognition ──
            self._enter(PipelineStage.RECOGNIZING, "Mapping dialogue...", 30, progress_cb)
            dispatcher = BatchDispatcher(
                recognizer,
                batch_size=batch_size,
                max_concurrent=self.config.recognition.max_concurrent_batches,
            )
            candidates = dispatcher.dispatch(
                frames, language, progress_cb=report, cancel_event=cancel_event
            )

            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled("Cancelled before reconciliation")

            # ── Stage 3: Reconciliation ──
            self._enter(PipelineStage.RECONCILING, "Reconciling timeline...", 95, progress_cb)
            entries = self.reconciler.reconcile(candidates)

        except PipelineCancelled as e:
            logger.warning(f"Run cancelled: {e}")
            self._finish(self.tracker.cancel, progress_cb)
            raise
        except Exception as e:
            logger.error(f"Run failed: {e}")
            self._finish(lambda: self.tracker.fail(str(e)), progress_cb)
            raise

        self._finish(self.tracker.complete, progress_cb)

        elapsed = time.monotonic() - start_time
        logger.info(f"{'='*60}")
        logger.info(f"Pipeline complete in {elapsed:.1f}s")
        logger.info(f"  Frames:     {len(frames)}")
        logger.info(f"  Candidates: {len(candidates)}")
        logger.info(f"  Subtitles:  {len(entries)} entries")
        logger.info(f"{'='*60}")

        return entries

    def process(
        self,
        video_path: Path,
        output_path: Path,
        region: Optional[Region] = None,
        window: Optional[TimeWindow] = None,
        language: Optional[str] = None,
        progress_cb: ProgressCallback = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SubtitleEntry]:
        """
        Run the pipeline on a video file and write the configured output.

        Args:
            video_path: Path to the input video file.
            output_path: Path for the subtitle file.
            region: Subtitle area (default from config).
            window: Time interval (default: the whole video).
            language: Target language (default from config).
            progress_cb: Optional callback for progress updates.
            cancel_event: Optional threading.Event to cancel the run.

        Returns:
            List of generated SubtitleEntry objects.
        """
        video_path = Path(video_path)
        output_path = Path(output_path)
        writer = get_writer(self.config.output.format)
        region = region or Region(**asdict(self.config.region))

        try:
            source = FfmpegFrameSource(
                video_path,
                seek_timeout=self.config.sampling.seek_timeout,
                jpeg_quality=self.config.sampling.jpeg_quality,
            )
        except SourceUnavailable as e:
            # A run already in progress keeps its own state
            if self._run_lock.acquire(blocking=False):
                try:
                    self.tracker.reset()
                    self._finish(lambda: self.tracker.fail(str(e)), progress_cb)
                finally:
                    self._run_lock.release()
            raise

        with source:
            window = window or TimeWindow(0.0, source.duration)
            entries = self.run(
                source, region, window, language,
                progress_cb=progress_cb, cancel_event=cancel_event
            )

        writer.write(entries, output_path)

        preview = SRTWriter().write_preview(entries, max_entries=5)
        if preview:
            logger.info(f"Preview:\n{preview}")

        return entries

    # ── Utilities ──

    @staticmethod
    def _restore_position(source: FrameSource, position: float):
        """Hand the source back at the position it had before sampling."""
        if not source.is_open:
            return
        try:
            source.seek_to(position)
        except (CaptureFailure, SourceUnavailable) as e:
            logger.warning(f"Could not restore source position {position:.2f}s: {e}")

    def _enter(self, stage: PipelineStage, msg: str, pct: int, cb: ProgressCallback):
        self.tracker.transition(stage, status=msg, progress=pct)
        logger.info(f"[{pct:3d}%] {msg}")
        if cb:
            cb(msg, pct)

    def _finish(self, transition, cb: ProgressCallback):
        transition()
        state = self.tracker.state
        logger.info(f"[{state.progress:3d}%] {state.status}")
        if cb:
            cb(state.status, state.progress)

    def _report(self, cb: ProgressCallback, msg: str, pct: int):
        """Report progress to logger, state tracker and optional callback."""
        self.tracker.report(msg, pct)
        logger.info(f"[{pct:3d}%] {msg}")
        if cb:
            cb(msg, pct)
