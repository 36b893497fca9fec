"""APScheduler-based interval verification of the deployer identity."""

from __future__ import annotations

import logging

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.cup_init.config import CupConfig
from scripts.cup_init.db import Database
from scripts.cup_init.engine import ReconciliationEngine
from scripts.cup_init.models import Mode
from scripts.cup_init.policy import Drift, Verdict

logger = logging.getLogger("cup_init.scheduler")


def verify_job(engine: ReconciliationEngine, auto_converge: bool) -> Verdict:
    """Verify once; converge when drift is found and auto_converge is set."""
    verdict = engine.run(Mode.VERIFY)
    if isinstance(verdict, Drift) and auto_converge:
        logger.warning("Drift detected (%s), converging", verdict.reason)
        verdict = engine.run(Mode.CONVERGE)
    return verdict


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def start_scheduler(config: CupConfig, db: Database) -> None:
    """Start the blocking scheduler with a single verify job.

    max_instances=1 keeps runs from overlapping; the pipeline assumes it
    is the only writer of the identity and the profile table.
    """
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler
    engine = ReconciliationEngine(config, db)

    scheduler.add_job(
        verify_job,
        "interval",
        minutes=sched.verify_interval_min,
        args=[engine, sched.auto_converge],
        id="verify_deployer_identity",
        max_instances=1,
        misfire_grace_time=sched.misfire_grace_time,
    )

    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    scheduler.start()
