"""
Hard Subtitle Extractor — CLI Entry Point

Usage:
    python main.py video.mp4
    python main.py video.mp4 -o subtitles.srt
    python main.py video.mp4 --region 10,75,80,18 --start 60 --end 120
    python main.py video.mp4 --language Japanese --format txt
"""

import sys
import signal
import argparse
import logging
import threading
from pathlib import Path

from config import load_config
from pipeline.errors import ConfigurationError, PipelineCancelled
from pipeline.frame_source import FfmpegFrameSource, Region
from pipeline.orchestrator import SubtitlePipeline
from pipeline.recognizer import SUPPORTED_LANGUAGES
from pipeline.sampler import TimeWindow


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True
    )

    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
          Hard Subtitle Extractor

  Frame Sampling  +  Vision Recognition
  Burned-in captions → SRT / text timeline
==========================================================
"""
    print(banner)


def print_progress(message: str, percent: int):
    """Console progress callback with progress bar."""
    bar_width = 30
    filled = int(bar_width * percent / 100)
    bar = "#" * filled + "-" * (bar_width - filled)
    print(f"\r  [{bar}] {percent:3d}%  {message:<50}", end="", flush=True)
    if percent >= 100:
        print()  # Newline at completion


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Hard Subtitle Extractor — Recover burned-in subtitles from a "
                    "video region as an SRT or plain-text timeline.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  python main.py movie.mp4                          # Whole video, default region
  python main.py movie.mp4 -o my_subs.srt           # Custom output path
  python main.py movie.mp4 --region 5,80,90,15      # x,y,width,height in percent
  python main.py movie.mp4 --start 30 --end 90      # Only part of the video
  python main.py movie.mp4 --step 0.25              # Finer sampling
  python main.py movie.mp4 --language Korean        # Language priority
  python main.py movie.mp4 --format txt             # Plain-text timeline

Languages: {', '.join(SUPPORTED_LANGUAGES)}
The recognition API key is read from GEMINI_API_KEY (or a .env file).
        """
    )

    parser.add_argument(
        "video",
        type=Path,
        help="Path to the input video file (.mp4, .mkv, .avi, .webm, etc.)"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output file path (default: video name with .srt / .txt extension)"
    )
    parser.add_argument(
        "-r", "--region",
        type=Region.parse,
        default=None,
        help="Subtitle area as x,y,width,height percentages (default: from config.yaml)"
    )
    parser.add_argument(
        "--start",
        type=float,
        default=0.0,
        help="Start of the time window in seconds (default: 0)"
    )
    parser.add_argument(
        "--end",
        type=float,
        default=None,
        help="End of the time window in seconds (default: end of video)"
    )
    parser.add_argument(
        "-l", "--language",
        default=None,
        help="Subtitle language priority (default: from config.yaml, usually 'English')"
    )
    parser.add_argument(
        "--step",
        type=float,
        default=None,
        help="Seconds between sampled frames (default: 0.5)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Frames per recognition request (default: 10)"
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Recognition requests in flight at once (default: 1, sequential)"
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Max gap in seconds for identical lines to merge (default: 0.3)"
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Recognition model name (default: from config.yaml)"
    )
    parser.add_argument(
        "-f", "--format",
        default=None,
        choices=["srt", "txt"],
        help="Output format (default: srt)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except the progress bar"
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # ── Validate input ──
    if not args.video.exists():
        print(f"Error: Video file not found: {args.video}")
        sys.exit(1)

    # ── Load config ──
    config = load_config(args.config)

    # Apply CLI overrides
    config.update_from_args(args)

    # ── Determine output path ──
    output_path = args.output or args.video.with_suffix(f".{config.output.format}")

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Input:    {args.video}")
        print(f"  Output:   {output_path}")
        print(f"  Model:    {config.recognition.model}")
        print(f"  Language: {config.recognition.language}")
        print(f"  Sampling: every {config.sampling.step}s, "
              f"{config.recognition.batch_size} frames per batch")
        print()

    # Ctrl+C stops the run between frames/batches instead of mid-request
    cancel_event = threading.Event()
    previous_handler = signal.signal(
        signal.SIGINT, lambda signum, frame: cancel_event.set()
    )

    try:
        window = None
        if args.end is not None or args.start:
            window = _build_window(args)

        pipeline = SubtitlePipeline(config)
        progress_fn = print_progress if not args.quiet else None
        entries = pipeline.process(
            args.video, output_path,
            region=args.region,
            window=window,
            progress_cb=progress_fn,
            cancel_event=cancel_event,
        )

        if not args.quiet:
            print(f"\n  [OK] Subtitles saved to: {output_path}")
            print(f"  [INFO] Total entries: {len(entries)}")

    except PipelineCancelled:
        print("\n\n  [WARN] Processing cancelled by user.")
        sys.exit(130)
    except KeyboardInterrupt:
        print("\n\n  [WARN] Processing interrupted by user.")
        sys.exit(130)
    except ConfigurationError as e:
        print(f"\n  [ERROR] Configuration error: {e}")
        sys.exit(1)
    except (FileNotFoundError, ValueError) as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(1)
    except RuntimeError as e:
        print(f"\n  [ERROR] Runtime error: {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def _build_window(args) -> TimeWindow:
    """Window from --start/--end; an open end is resolved by probing the video."""
    end = args.end
    if end is None:
        with FfmpegFrameSource(args.video) as source:
            end = source.duration
    return TimeWindow(args.start, end)


if __name__ == "__main__":
    main()
