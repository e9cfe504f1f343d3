import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import config
from .core import DeduplicationEngine
from .exceptions import CorruptIndexError, InvalidRootError, LockError
from .reporting import ReportGenerator

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_INDEX_NOT_SAVED = 3


def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and optionally to a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Hardlink Deduplicator: replace identical files in a tree with hardlinks to one copy"
    )

    p.add_argument("root", type=Path, help="Directory tree to deduplicate")

    p.add_argument("--dry-run", action="store_true", help="Report what would be linked without modifying disk")
    p.add_argument("--workers", type=int, default=config.DEFAULT_MAX_WORKERS,
                   help=f"Parallel workers for hashing and linking (default: {config.DEFAULT_MAX_WORKERS})")
    p.add_argument("--strict-index", action="store_true",
                   help="Abort on a corrupt index instead of rebuilding it")
    p.add_argument("--verify", action="store_true",
                   help="Byte-compare every duplicate with its canonical file before linking")
    p.add_argument("--report-csv", type=Path, default=None, help="Write a CSV of link actions and failures")
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    p.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = p.parse_args(argv)
    if args.workers < 1:
        p.error("--workers must be at least 1")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    root = args.root.expanduser()
    logging.info("=== Hardlink Deduplicator Started ===")
    logging.info(f"Root: {root}")

    engine = DeduplicationEngine(root)
    try:
        report = engine.run(
            dry_run=args.dry_run,
            max_workers=args.workers,
            strict_index=args.strict_index,
            verify_content=args.verify,
            show_progress=not args.no_progress,
        )
    except (InvalidRootError, LockError) as e:
        logging.error(str(e))
        return EXIT_SETUP_ERROR
    except CorruptIndexError as e:
        logging.error(f"Corrupt index: {e}. Remove {config.INDEX_FILE_NAME} or run without --strict-index.")
        return EXIT_SETUP_ERROR
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return EXIT_SETUP_ERROR
    except Exception:
        logging.exception("Fatal error during deduplication.")
        return EXIT_SETUP_ERROR

    reporter = ReportGenerator(report)
    reporter.log_summary()
    if args.report_csv:
        try:
            reporter.write_csv(args.report_csv)
        except OSError as e:
            logging.error(f"Failed to write report {args.report_csv}: {e}")

    if report.index_saved is False:
        return EXIT_INDEX_NOT_SAVED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
