from __future__ import annotations

import datetime as dt

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from portfolio_import.core.config import settings
from portfolio_import.core.logging import logger
from portfolio_import.crud.imports import utcnow
from portfolio_import.db.models.import_job import ImportJob, JobStatus, ProgressStep


def _stale(cutoff: dt.datetime):
    return or_(
        ImportJob.heartbeat_at < cutoff,
        and_(ImportJob.heartbeat_at.is_(None), ImportJob.start_time < cutoff),
    )


def fail_stuck_jobs(db: Session, stuck_after_minutes: int | None = None, now: dt.datetime | None = None) -> list[int]:
    """Force-fail jobs left in ``processing`` without a heartbeat. Returns their ids."""
    minutes = stuck_after_minutes or settings.IMPORT_STUCK_AFTER_MINUTES
    now = now or utcnow()
    cutoff = now - dt.timedelta(minutes=minutes)

    candidates = [
        job_id
        for (job_id,) in db.query(ImportJob.id).filter(
            ImportJob.status == JobStatus.processing.value, _stale(cutoff)
        )
    ]

    failed = []
    for job_id in candidates:
        # re-check staleness in the update itself; the worker may have just written a heartbeat
        n = (
            db.query(ImportJob)
            .filter(ImportJob.id == job_id, ImportJob.status == JobStatus.processing.value, _stale(cutoff))
            .update(
                {
                    "status": JobStatus.failed.value,
                    "end_time": now,
                    "progress_percentage": 100,
                    "progress_step": ProgressStep.failed.value,
                    "progress_message": f"No progress for {minutes} minutes",
                    "can_rollback": False,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if n == 1:
            failed.append(job_id)
            logger.warning("import_job_stuck_failed", import_job_id=job_id, minutes=minutes)
    return failed
