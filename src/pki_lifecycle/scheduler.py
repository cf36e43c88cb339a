"""
CRL refresh on a cron schedule for the configured intermediate CA.

APScheduler 3 BlockingScheduler with a CronTrigger built from the five
cron fields. Each run goes through a LoggingExecutionContext. A backend
without CRLs answers CRL_UNAVAILABLE, which is a warning here, not a
failed run. SIGINT and SIGTERM stop the loop.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import ErrorCode, LoggingExecutionContext
from railway.result import Failure, Result, Success

from pki_lifecycle.domain.models import CRLSnapshot

log = structlog.get_logger()

JOB_ID = "crl_refresh"


def run_crl_refresh(job_fn: Callable[[], Result[CRLSnapshot]], ctx: LoggingExecutionContext) -> None:
    """Execute one refresh within the logging context and log the outcome."""
    match ctx.execute(job_fn):
        case Success(crl):
            log.info("scheduler.job_completed", path=crl.path, entries=len(crl.entries))
        case Failure(err) if err.code is ErrorCode.CRL_UNAVAILABLE:
            log.warning("scheduler.crl_unavailable", path=err.subject, reason=err.message)
        case Failure(err):
            log.error("scheduler.job_failed", failure=str(err))


def create_scheduler(
    job_fn: Callable[[], Result[CRLSnapshot]],
    cron: str = "0 */6 * * *",
    run_on_startup: bool = False,
) -> BlockingScheduler:
    """
    Build (but do not start) the refresh scheduler.

    `job_fn` regenerates one CRL and returns the snapshot; with
    `run_on_startup` it also runs once before this returns.
    """
    scheduler = BlockingScheduler()
    ctx = LoggingExecutionContext(operation="CrlRefresh")

    def _job() -> None:
        run_crl_refresh(job_fn, ctx)

    minute, hour, dom, month, dow = cron.split()
    scheduler.add_job(
        _job,
        trigger=CronTrigger(
            minute=minute,
            hour=hour,
            day=dom,
            month=month,
            day_of_week=dow,
        ),
        id=JOB_ID,
        name="Intermediate CA CRL refresh",
        replace_existing=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run", job=JOB_ID)
        _job()

    return scheduler


def register_shutdown_signals(scheduler: BlockingScheduler) -> None:
    """Stop `scheduler` and exit on SIGINT or SIGTERM."""

    def _shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("scheduler.shutdown_requested", signal=sig_name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
