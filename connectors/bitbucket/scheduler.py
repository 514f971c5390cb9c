"""APScheduler-based interval scheduling for full syncs."""

from __future__ import annotations

import logging
import signal
import threading

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from connectors.bitbucket.config import ConnectorConfig
from connectors.bitbucket.errors import CancelledError

logger = logging.getLogger("bitbucket.scheduler")

BACKOFF_BASE_SECONDS = 30


def run_sync(config: ConnectorConfig, cancel_event: threading.Event) -> None:
    """Run one full sync with retry logic."""
    from connectors.bitbucket.cli import run_full_sync

    max_retries = config.scheduler.max_retries
    for attempt in range(max_retries + 1):
        try:
            run_full_sync(config, config.output_path, cancel_event)
            return
        except CancelledError:
            logger.info("Sync cancelled")
            return
        except Exception as exc:
            if attempt < max_retries:
                delay = BACKOFF_BASE_SECONDS * (2 ** attempt)
                logger.warning(
                    "Sync failed (attempt %d/%d), retrying in %ds: %s",
                    attempt + 1, max_retries, delay, exc,
                )
                if cancel_event.wait(delay):
                    return
            else:
                logger.error("Sync failed after %d retries: %s", max_retries, exc)
                raise


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def build_scheduler(config: ConnectorConfig, cancel_event: threading.Event) -> BlockingScheduler:
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler
    scheduler.add_job(
        run_sync,
        "interval",
        minutes=sched.sync_interval_min,
        args=[config, cancel_event],
        id="bitbucket_sync",
        max_instances=1,
        misfire_grace_time=sched.misfire_grace_time,
    )
    return scheduler


def start_scheduler(config: ConnectorConfig) -> None:
    """Start the blocking scheduler; SIGINT/SIGTERM cancel the running sync and stop it."""
    cancel_event = threading.Event()
    scheduler = build_scheduler(config, cancel_event)

    def _shutdown(signum, _frame) -> None:
        logger.info("Received signal %d, shutting down", signum)
        cancel_event.set()
        scheduler.shutdown(wait=False)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("Starting scheduler with jobs: %s", [j.id for j in scheduler.get_jobs()])
    scheduler.start()
