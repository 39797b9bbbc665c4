"""
Timeline Reconciler — Merges per-batch subtitle candidates into one
ordered, deduplicated subtitle timeline.

Single pass over the candidates sorted by start time:
  1. Candidates whose trimmed text is empty are dropped
  2. A candidate repeating the previous entry's text (case- and
     whitespace-insensitive) within `tolerance` seconds of its end
     extends that entry
  3. Anything else starts a new entry

Only consecutive repeats coalesce; the same line shown again later in
the video stays a separate entry.
"""

import uuid
import logging
from dataclasses import dataclass
from typing import Iterable, List

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.3


def new_entry_id() -> str:
    return f"sub-{uuid.uuid4().hex[:12]}"


def normalize_text(text: str) -> str:
    """Comparison key for duplicate detection."""
    return text.strip().lower()


@dataclass
class SubtitleEntry:
    """A single reconciled subtitle."""
    id: str
    start_sec: float
    end_sec: float
    text: str

    def __repr__(self):
        return (f"Sub[{self.id}]({self.start_sec:.2f}–{self.end_sec:.2f}s, "
                f"'{self.text[:50]}')")


class TimelineReconciler:
    """
    Coalesces adjacent duplicate detections.

    Accepts SubtitleCandidate or SubtitleEntry objects (anything with
    text/start_sec/end_sec); entries keep their id, so reconciling an
    already reconciled list returns an equal list.
    """

    def __init__(self, config=None):
        self.tolerance = getattr(config, "tolerance", DEFAULT_TOLERANCE)

    def reconcile(self, candidates: Iterable) -> List[SubtitleEntry]:
        """
        Build the final timeline. Does not modify its input.

        Args:
            candidates: Detections in accumulation order.

        Returns:
            Entries sorted ascending by start time.
        """
        # sorted() is stable: equal start times keep accumulation order
        ordered = sorted(candidates, key=lambda c: c.start_sec)
        entries: List[SubtitleEntry] = []
        dropped = merged = 0

        for candidate in ordered:
            text = candidate.text.strip()
            if not text:
                dropped += 1
                continue

            if entries:
                last = entries[-1]
                if (normalize_text(last.text) == text.lower() and
                        candidate.start_sec <= last.end_sec + self.tolerance):
                    last.end_sec = max(last.end_sec, candidate.end_sec)
                    merged += 1
                    continue

            entries.append(SubtitleEntry(
                id=getattr(candidate, "id", None) or new_entry_id(),
                start_sec=candidate.start_sec,
                end_sec=candidate.end_sec,
                text=text,
            ))

        logger.info(
            f"Reconciled {len(ordered)} candidates → {len(entries)} subtitles "
            f"({merged} merged, {dropped} empty dropped)"
        )
        return entries


def reconcile(candidates: Iterable, tolerance: float = DEFAULT_TOLERANCE) -> List[SubtitleEntry]:
    """Functional shortcut for TimelineReconciler(...).reconcile()."""
    reconciler = TimelineReconciler()
    reconciler.tolerance = tolerance
    return reconciler.reconcile(candidates)
