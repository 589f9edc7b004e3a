#!/usr/bin/env python3
"""Drive an import job in the foreground through the HTTP API.

Usage: run_foreground_import.py JOB_ID [--base-url URL] [--resume]
"""

import argparse
import logging

from power_importer.core.config import get_settings
from power_importer.core.errors import ImporterError
from power_importer.core.logging import configure_logging
from power_importer.services.api_client import ImporterClient
from power_importer.services.drivers import ForegroundDriver

logger = logging.getLogger("run_foreground_import")


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("job_id", type=int)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--chunk-size", type=int, default=settings.chunk_size)
    parser.add_argument("--delay-ms", type=int, default=settings.process_delay_ms)
    parser.add_argument("--max-retries", type=int, default=settings.max_retries)
    parser.add_argument(
        "--resume", action="store_true", help="Continue a paused job instead of starting"
    )
    parser.add_argument(
        "--validate", action="store_true", help="Validate a pending job before starting"
    )
    args = parser.parse_args()

    configure_logging(settings.log_level)

    with ImporterClient(args.base_url) as client:
        try:
            if args.validate:
                client.validate(args.job_id)
            if args.resume:
                client.resume(args.job_id)
            else:
                client.start(args.job_id)
        except ImporterError as e:
            logger.error(f"Could not start job {args.job_id}: {e.message}")
            return 1

        driver = ForegroundDriver(
            client,
            chunk_size=args.chunk_size,
            delay_seconds=args.delay_ms / 1000,
            max_retries=args.max_retries,
            backoff_base_seconds=settings.retry_backoff_seconds,
            on_chunk=lambda report: logger.info(
                f"{report.total_processed}/{report.total_rows} rows "
                f"({len(report.errors)} errors in chunk)"
            ),
        )
        outcome = driver.run(args.job_id)

    logger.info(
        f"Job {args.job_id} finished with status '{outcome.status}' after "
        f"{outcome.chunks} chunks: {outcome.total_processed}/{outcome.total_rows} rows, "
        f"{len(outcome.errors)} row errors"
    )
    return 0 if outcome.status == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
