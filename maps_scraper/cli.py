"""
Command Line Interface

Usage:
    python -m maps_scraper --query "Irrigation Equipment" --countries IT,ES,MK
    python -m maps_scraper --query "Irrigation Equipment" --countries MK --include-cities --parallel 3
    python -m maps_scraper --query "Irrigation Equipment" --countries IT --localize --export json,csv,xlsx

Every option can also come from the environment or a .env file; see
maps_scraper.config.ENV_VARS. Ctrl+C stops scheduling, saves progress and
exports, then exits; a second Ctrl+C returns 130 without waiting for running
tasks or writing the final exports.
"""

import argparse
import logging
import signal
import sys
from typing import Dict, List, Optional

from .config import SUPPORTED_EXPORT_FORMATS, ScraperConfig, load_config, split_list
from .exceptions import ConfigurationError, DirectoryError
from .extraction.categories import CategoryFilter
from .extraction.fetcher import NominatimBusinessFetcher
from .geo.directory import CountryStateCityDirectory
from .geo.locale import GoogleQueryTranslator
from .log import setup_logging
from .orchestration.orchestrator import Orchestrator
from .orchestration.scheduler import CancellationToken

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="maps-scraper",
        description="Resumable business scraper over country / state / city",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  maps-scraper --query "Irrigation Equipment" --countries IT,ES,MK
  maps-scraper --query "Irrigation Equipment" --countries MK --include-cities --parallel 3
  maps-scraper --query "Irrigation Equipment" --countries IT --localize --export json,csv,xlsx
        """
    )

    parser.add_argument("--query", help="Search query (env: QUERY)")
    parser.add_argument("--countries", help="Comma-separated country codes, e.g. US,CA (env: COUNTRIES)")
    parser.add_argument("--include-cities", action="store_true", default=None,
                        help="Scrape every city instead of whole states (env: INCLUDE_CITIES)")
    parser.add_argument("--localize", action="store_true", default=None,
                        help="Translate the query to each country's language (env: LOCALIZE)")
    parser.add_argument("-p", "--parallel", type=int,
                        help="Parallel tasks per country (default: 1, env: PARALLEL)")
    parser.add_argument("--min-delay", type=int, dest="min_delay_ms",
                        help="Minimum pause between tasks in ms (default: 10, env: MIN_DELAY)")
    parser.add_argument("--max-delay", type=int, dest="max_delay_ms",
                        help="Maximum pause between tasks in ms (default: 100, env: MAX_DELAY)")
    parser.add_argument("--retry", type=int, dest="retry_count",
                        help="Retries per failed task (default: 0, env: RETRY_COUNT)")
    parser.add_argument("--retry-delay", type=float,
                        help="Base retry backoff in seconds (default: 1.0, env: RETRY_DELAY)")
    parser.add_argument("--export",
                        help=f"Export formats: {','.join(SUPPORTED_EXPORT_FORMATS)} (default: json, env: EXPORT_FORMATS)")
    parser.add_argument("-o", "--output-dir",
                        help="Output directory (default: output, env: OUTPUT_DIR)")
    parser.add_argument("--allowed-categories", dest="allowed_categories_file",
                        help="Category allow-list file (default: allowed_categories.txt)")
    parser.add_argument("--shuffle", action="store_true", default=None,
                        help="Randomize state and city order (env: SHUFFLE)")
    parser.add_argument("--log-level", help="Logging level (default: INFO, env: LOG_LEVEL)")
    parser.add_argument("--no-color", action="store_true", help="Disable colored log output")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict:
    """CLI values keyed by ScraperConfig field; unset options stay None."""
    return {
        "query": args.query,
        "countries": split_list(args.countries, upper=True) if args.countries is not None else None,
        "include_cities": args.include_cities,
        "localize": args.localize,
        "parallel": args.parallel,
        "min_delay_ms": args.min_delay_ms,
        "max_delay_ms": args.max_delay_ms,
        "retry_count": args.retry_count,
        "retry_delay": args.retry_delay,
        "export_formats": split_list(args.export, lower=True) if args.export is not None else None,
        "output_dir": args.output_dir,
        "allowed_categories_file": args.allowed_categories_file,
        "shuffle": args.shuffle,
        "log_level": args.log_level,
    }


def build_orchestrator(config: ScraperConfig, cancel_token: CancellationToken) -> Orchestrator:
    """Wire the default HTTP collaborators."""
    return Orchestrator(
        config=config,
        directory=CountryStateCityDirectory(api_key=config.csc_api_key),
        fetcher=NominatimBusinessFetcher(),
        translator=GoogleQueryTranslator() if config.localize else None,
        category_filter=CategoryFilter.load(config.allowed_categories_file),
        cancel_token=cancel_token,
    )


def install_interrupt_handlers(cancel_token: CancellationToken) -> Dict[int, object]:
    """First SIGINT/SIGTERM cancels gracefully, a second one raises KeyboardInterrupt."""

    def handler(signum, frame):
        if cancel_token.cancelled:
            raise KeyboardInterrupt
        logger.warning("Graceful shutdown initiated; waiting for running tasks to finish...")
        cancel_token.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    return previous


def restore_handlers(previous: Dict[int, object]):
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def log_config(config: ScraperConfig):
    logger.info("Maps scraper starting...")
    logger.info("Query: %r", config.query)
    logger.info("Countries: %s", ", ".join(config.countries))
    logger.info("Parallel tasks: %d", config.parallel)
    logger.info("Include cities: %s", config.include_cities)
    logger.info("Localization: %s", config.localize)
    logger.info("Retries: %d", config.retry_count)
    logger.info("Export formats: %s", ", ".join(config.export_formats))


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    use_color = False if args.no_color else None

    try:
        config = load_config(overrides_from_args(args))
    except ConfigurationError as e:
        setup_logging("INFO", use_color=use_color)
        logger.error("Configuration error: %s", e)
        return 1

    setup_logging(config.log_level, use_color=use_color)
    log_config(config)

    cancel_token = CancellationToken()
    orchestrator = build_orchestrator(config, cancel_token)

    previous = install_interrupt_handlers(cancel_token)
    try:
        orchestrator.run()
    except DirectoryError as e:
        logger.error("Cannot list countries: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted again, exiting without waiting for running tasks")
        return 130
    finally:
        restore_handlers(previous)

    if cancel_token.cancelled:
        logger.info("Progress saved. Exiting...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
