#!/usr/bin/env python3
"""
Start a Celery worker for one pipeline queue.

The variant worker sizes itself from the host (CPU count, memory, ceiling);
the cleanup worker always runs one job at a time so deletes stay under the
object store's rate limits.

Usage:
  python scripts/run_worker.py --queue variants
  python scripts/run_worker.py --queue cleanup --beat
  python scripts/run_worker.py --queue variants --concurrency 2 --loglevel DEBUG
"""

import argparse

from eventmedia.core.logging import setup_logging
from eventmedia.jobs.models import JobType
from eventmedia.worker.celery_app import celery_app, queue_name
from eventmedia.worker.concurrency import worker_concurrency

QUEUE_CHOICES = {
    "variants": JobType.VARIANT,
    "cleanup": JobType.CLEANUP,
}


def build_argv(queue: str, concurrency: int, loglevel: str, beat: bool) -> list:
    argv = [
        "worker",
        "-Q",
        queue_name(QUEUE_CHOICES[queue]),
        "-c",
        str(concurrency),
        "-n",
        f"{queue}@%h",
        "--loglevel",
        loglevel,
    ]
    if beat:
        argv.append("-B")
    return argv


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an event media pipeline worker")
    parser.add_argument("--queue", choices=sorted(QUEUE_CHOICES), required=True)
    parser.add_argument("--concurrency", type=int, default=None, help="Override computed concurrency")
    parser.add_argument("--loglevel", default="INFO")
    parser.add_argument("--beat", action="store_true", help="Also run the periodic job-retention purge")
    args = parser.parse_args()

    setup_logging(level=args.loglevel)
    concurrency = args.concurrency or worker_concurrency(QUEUE_CHOICES[args.queue])
    print(f"Starting {args.queue} worker with concurrency {concurrency}")

    celery_app.worker_main(build_argv(args.queue, concurrency, args.loglevel, args.beat))


if __name__ == "__main__":
    main()
