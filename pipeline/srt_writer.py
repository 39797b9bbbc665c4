"""
Subtitle Writers — SRT and plain-text export of the reconciled timeline.

Both writers render to a string (format) and to a UTF-8 file (write).
"""

import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class SRTWriter:
    """
    Writes subtitle entries to a standard SRT (SubRip) file.

    SRT format:
        1
        00:00:01,500 --> 00:00:03,250
        Hello

        2
        00:00:04,000 --> 00:00:06,000
        How are you?
    """

    extension = ".srt"

    def format(self, entries: List) -> str:
        """Render entries (sorted by time) as SRT text."""
        blocks = []
        for i, entry in enumerate(entries):
            # Index by position, ids are not sequential
            blocks.append(
                f"{i + 1}\n"
                f"{self._format_timestamp(entry.start_sec)} --> "
                f"{self._format_timestamp(entry.end_sec)}\n"
                f"{entry.text}\n\n"
            )
        return "".join(blocks)

    def write(self, entries: List, output_path: Path):
        """
        Write subtitle entries to an SRT file.

        Args:
            entries: List of SubtitleEntry objects (sorted by time).
            output_path: Path for the output .srt file.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.format(entries), encoding="utf-8")

        logger.info(
            f"SRT written: {len(entries)} subtitles → {output_path}"
        )

    @staticmethod
    def _format_timestamp(seconds: float) -> str:
        """
        Convert seconds to SRT timestamp format: HH:MM:SS,mmm

        Args:
            seconds: Time in seconds (e.g., 125.340)

        Returns:
            Formatted timestamp string (e.g., "00:02:05,340")
        """
        if seconds < 0:
            seconds = 0.0

        # Round on the total so 1.9996 carries into the seconds field
        total_ms = int(round(seconds * 1000))
        hours, rest = divmod(total_ms, 3_600_000)
        minutes, rest = divmod(rest, 60_000)
        secs, millis = divmod(rest, 1000)

        return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"

    def write_preview(self, entries: List, max_entries: int = 10) -> str:
        """
        Generate a text preview of the subtitle entries.

        Args:
            entries: List of SubtitleEntry objects.
            max_entries: Maximum entries to include in preview.

        Returns:
            Formatted string preview.
        """
        lines = []
        shown = min(len(entries), max_entries)

        for entry in entries[:shown]:
            ts_start = self._format_timestamp(entry.start_sec)
            ts_end = self._format_timestamp(entry.end_sec)
            text_preview = entry.text.replace("\n", " / ")[:80]
            if len(entry.text) > 80:
                text_preview += "..."
            lines.append(f"  [{ts_start} → {ts_end}] {text_preview}")

        if len(entries) > shown:
            lines.append(f"  ... and {len(entries) - shown} more entries")

        return "\n".join(lines)


class TextWriter:
    """One line per entry: ``[start - end] text`` with two-decimal seconds."""

    extension = ".txt"

    def format(self, entries: List) -> str:
        return "\n".join(
            f"[{entry.start_sec:.2f} - {entry.end_sec:.2f}] {entry.text}"
            for entry in entries
        )

    def write(self, entries: List, output_path: Path):
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.format(entries), encoding="utf-8")
        logger.info(f"Text written: {len(entries)} subtitles → {output_path}")


WRITERS = {
    "srt": SRTWriter,
    "txt": TextWriter,
}


def get_writer(fmt: str):
    """Writer instance for an output format name ('srt' or 'txt')."""
    try:
        return WRITERS[fmt.lower()]()
    except KeyError:
        raise ValueError(
            f"Unsupported output format '{fmt}' (choose from {', '.join(WRITERS)})"
        ) from None
