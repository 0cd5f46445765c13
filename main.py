"""
Timewarp - CLI Entry Point

Usage:
    python main.py talk.mp4
    python main.py talk.mp4 -o talk_fast.mp4
    python main.py talk.mp4 --silent-speed 6 --loud-speed 1.1
    python main.py talk.mp4 --threshold 0.35 --keep-temp
"""

import sys
import argparse
import logging
from pathlib import Path

from config import load_config
from timewarp.errors import TimewarpError
from timewarp.orchestrator import WarpPipeline


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
        handlers=handlers
    )

    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("torch").setLevel(logging.WARNING)
    logging.getLogger("onnxruntime").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
                       Timewarp

  Fast-forward the silence, keep the speech
  Powered by Silero VAD, Rubberband & FFmpeg
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
        print()


def default_output_path(video: Path, suffix: str = "_warped") -> Path:
    return video.with_name(f"{video.stem}{suffix}{video.suffix}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Timewarp - speed up the silent parts of a video while "
                    "keeping speech close to real time.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py talk.mp4                       # Basic usage
  python main.py talk.mp4 -o fast.mp4           # Custom output path
  python main.py talk.mp4 --silent-speed 8      # Skip through pauses faster
  python main.py talk.mp4 --threshold 0.3       # Treat more audio as speech
"""
    )

    parser.add_argument(
        "video",
        type=Path,
        help="Path to the input video file"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output video path (default: <name>_warped.<ext> next to the input)"
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Speech probability threshold (default: from config.yaml, usually 0.5)"
    )
    parser.add_argument(
        "--loud-speed",
        type=float,
        default=None,
        help="Playback speed for speech (default: 1.2)"
    )
    parser.add_argument(
        "--silent-speed",
        type=float,
        default=None,
        help="Playback speed for non-speech (default: 4.0)"
    )
    parser.add_argument(
        "--model",
        type=Path,
        default=None,
        help="Path to a silero_vad.onnx model (default: download once)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "--keep-temp",
        action="store_true",
        help="Keep the temporary directory with timemaps and intermediate audio"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except warnings and errors"
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # ── Validate input ──
    if not args.video.exists():
        print(f"Error: Video file not found: {args.video}")
        sys.exit(1)

    # ── Load config ──
    config = load_config(args.config)
    config.update_from_args(args)

    output_path = args.output or default_output_path(args.video, config.output.suffix)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Input:    {args.video}")
        print(f"  Output:   {output_path}")
        print(f"  Speech:   {config.speed.loud_speed}x")
        print(f"  Silence:  {config.speed.silent_speed}x")
        print(f"  Threshold: {config.speed.threshold}")
        print()

    # ── Run pipeline ──
    try:
        pipeline = WarpPipeline(config)
        progress_fn = print_progress if not args.quiet else None
        result = pipeline.process(args.video, output_path, progress_cb=progress_fn)

        if not args.quiet:
            print(f"\n  [OK] Warped video saved to: {result.output_path}")
            print(f"  [INFO] {result.input_duration:.1f}s -> {result.output_duration:.1f}s "
                  f"({result.speedup:.2f}x faster)")

    except KeyboardInterrupt:
        print("\n\n  [WARN] Processing interrupted by user.")
        sys.exit(130)
    except FileNotFoundError as e:
        print(f"\n  [ERROR] File error: {e}")
        sys.exit(1)
    except TimewarpError as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(1)
    except OSError as e:
        print(f"\n  [ERROR] I/O error: {e}")
        sys.exit(1)
    except RuntimeError as e:
        print(f"\n  [ERROR] Runtime error: {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
