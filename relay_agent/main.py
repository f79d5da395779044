import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .core.exceptions import JobListError, LedgerIOFailure, RelayError
from .dependencies import (
    get_event_bus,
    get_fetcher,
    get_orchestrator,
    get_progress_log,
    get_relay_uploader,
    get_settings,
)
from .logging_config import setup_logging
from .services.job_list import load_job_list
from .utils.progress_utils import format_duration

EXIT_OK = 0
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay-agent",
        description="Download every job in a static list and relay it to S3, resumably.",
    )
    parser.add_argument("--jobs-file", help="JSON array of job descriptors")
    parser.add_argument("--workers", type=int, help="Number of parallel worker slots")
    parser.add_argument(
        "--verify-bucket",
        action="store_true",
        help="Check S3 bucket access before starting",
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.jobs_file:
        settings.jobs_file = args.jobs_file
    if args.workers:
        settings.max_workers = args.workers

    setup_logging(settings)
    logging.info("🚀 Starting parallel relay processing...")

    progress_log = get_progress_log()

    try:
        jobs = await load_job_list(settings.jobs_file)
    except JobListError as e:
        logging.critical(f"Cannot load job list: {e}")
        await progress_log.write(f"💥 Fatal error: {e}")
        return EXIT_FATAL

    await progress_log.subscribe(get_event_bus())

    if args.verify_bucket:
        try:
            await get_relay_uploader().verify_bucket()
            logging.info(f"S3 bucket {settings.s3_bucket_name} is reachable")
        except RelayError as e:
            logging.critical(f"S3 bucket check failed: {e}")
            await progress_log.write(f"💥 Fatal error: {e}")
            return EXIT_FATAL

    orchestrator = get_orchestrator(jobs)

    loop = asyncio.get_running_loop()
    installed: List[signal.Signals] = []

    def on_signal(sig: signal.Signals) -> None:
        # First signal drains, second aborts in-flight jobs, later ones get the default action
        if not orchestrator.shutdown_requested:
            logging.warning(f"Received {sig.name} - finishing in-flight jobs, send again to abort them")
            orchestrator.request_shutdown()
            return
        logging.warning(f"Received {sig.name} again - cancelling in-flight jobs")
        orchestrator.abort_in_flight()
        for handled in installed:
            loop.remove_signal_handler(handled)
        installed.clear()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logging.debug(f"Signal handler for {sig.name} not supported on this platform")

    try:
        summary = await orchestrator.run()
    except LedgerIOFailure as e:
        logging.critical(f"Progress ledger initialization failed: {e}")
        await progress_log.write(f"💥 Fatal error: {e}")
        return EXIT_FATAL
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await get_fetcher().close()

    logging.info(
        f"[bold]Run finished[/] - processed {summary.processed_count}/{summary.total_jobs}, "
        f"failed {summary.failed_count}, remaining {summary.remaining}, "
        f"time {format_duration(summary.elapsed_seconds)}"
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
