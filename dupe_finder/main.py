import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import config
from .config import ScanSettings
from .core import DupeFinderApp
from .exceptions import ConfigurationError, DupeFinderError, StoreError
from .reporting import ReportGenerator

def setup_logging(verbose: int, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, a file."""
    if verbose >= 2:
        log_level = logging.DEBUG
    elif verbose == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(threadName)s: %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("pymediainfo").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Find duplicate and near-duplicate files by content")

    p.add_argument("-p", "--path", type=Path, default=None, help="Directory to scan (omit to only report on the existing database)")
    p.add_argument("-t", "--threads", type=int, default=config.DEFAULT_THREADS, help="Number of hashing threads (1 = sequential)")
    p.add_argument("--commit-batchsize", type=int, default=config.DEFAULT_COMMIT_BATCHSIZE, help="Fingerprints per database commit")
    p.add_argument("--videohash", action="store_true", help="Compute perceptual fingerprints for video files")
    p.add_argument("-r", "--reset-database", action="store_true", help="Discard all stored fingerprints before scanning")
    p.add_argument("-c", "--clean-unfound", action="store_true", help="Remove database entries for files no longer on disk")
    p.add_argument("--near", action="store_true", help="Also report near-duplicate videos")
    p.add_argument("--sample-interval", type=float, default=config.SAMPLE_INTERVAL, help="Seconds between sampled video frames")
    p.add_argument("--max-sample-frames", type=int, default=config.MAX_SAMPLE_FRAMES, help="Frames sampled per video at most (the interval widens past this)")
    p.add_argument("--threshold", type=float, default=config.SIMILARITY_THRESHOLD, help="Near-duplicate distance threshold (0-1)")
    p.add_argument("--db", type=Path, default=Path(config.DEFAULT_DB_NAME), help="SQLite database path")
    p.add_argument("--csv", type=Path, default=None, help="Also write duplicate groups to this CSV file")
    p.add_argument("--log-file", type=Path, default=None, help="Write the log to this file as well")
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug")

    return p.parse_args(argv)

def settings_from_args(args) -> ScanSettings:
    return ScanSettings(
        path=args.path,
        threads=args.threads,
        commit_batchsize=args.commit_batchsize,
        videohash=args.videohash,
        reset_database=args.reset_database,
        clean_unfound=args.clean_unfound,
        sample_interval=args.sample_interval,
        max_sample_frames=args.max_sample_frames,
        similarity_threshold=args.threshold,
        db_path=args.db,
    )

def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)
    logging.debug(f"cmd args: {args}")

    try:
        settings = settings_from_args(args).validate()
    except ConfigurationError as e:
        logging.error(f"Invalid configuration: {e}")
        return 2

    try:
        with DupeFinderApp.from_settings(settings, progress=sys.stderr.isatty()) as app:
            if settings.path is not None:
                summary = app.scan(settings)
                print(f"Scan summary: {summary}", file=sys.stderr)

            groups = app.list_duplicate_groups(near_duplicates=args.near)
            reporter = ReportGenerator(groups)
            reporter.print_console()
            if args.csv:
                reporter.write_csv(args.csv)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1
    except StoreError:
        logging.exception("Fingerprint database failure, stopping.")
        return 1
    except DupeFinderError:
        logging.exception("Fatal error.")
        return 1

    logging.debug("exiting")
    return 0

if __name__ == "__main__":
    sys.exit(main())
