"""CLI entry point for the crawl indexer."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .config import IndexerConfig, set_config
from .errors import ResourceError, TraversalError
from .models import RunReport
from .supervisor import RunSupervisor


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crawlindex",
        description="Extract text from every file under a directory and index it in Solr",
    )
    parser.add_argument("root", help="Base directory to index")
    parser.add_argument("--solr-url", help="Solr base URL (default: http://localhost:8983/solr)")
    parser.add_argument(
        "--collection", dest="collections", action="append",
        help="Destination collection (repeatable, default: filesystem)",
    )
    parser.add_argument("--workers", type=int, help="Parallel extraction workers")
    parser.add_argument("--batch-size", type=int, help="Max documents per batch")
    parser.add_argument("--batch-wait", type=float, help="Max seconds a batch waits before flushing")
    parser.add_argument("--skip-dir", dest="skip_dirs", action="append",
                        help="Directory name to prune (repeatable, replaces the defaults)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def config_from_args(args: argparse.Namespace) -> IndexerConfig:
    """Environment first, then command-line overrides."""
    config = IndexerConfig.from_env()
    config.root = Path(args.root)
    if args.solr_url:
        config.solr_url = args.solr_url
    if args.collections:
        config.collections = args.collections
    if args.workers is not None:
        config.extractor_concurrency = args.workers
    if args.batch_size is not None:
        config.batch_max_docs = args.batch_size
    if args.batch_wait is not None:
        config.batch_max_wait_seconds = args.batch_wait
    if args.skip_dirs:
        config.skip_dirs = set(args.skip_dirs)
    config.__post_init__()
    return config


def print_report(report: RunReport) -> None:
    print(f"\n{report}")
    for line in report.failure_lines():
        print(f"  {line}")


async def _run(supervisor: RunSupervisor) -> RunReport:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers
            pass
    return await supervisor.run()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))
    set_config(config)

    supervisor = RunSupervisor(config)
    try:
        report = asyncio.run(_run(supervisor))
    except TraversalError as e:
        logger.error(f"Base directory {args.root} cannot be indexed: {e.reason}")
        return EXIT_FATAL
    except ResourceError as e:
        logger.error(str(e))
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("\nStopped.")
        return EXIT_CANCELLED

    print_report(report)
    return EXIT_CANCELLED if report.cancelled else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
