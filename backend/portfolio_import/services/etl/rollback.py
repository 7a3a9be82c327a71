from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_import.core.logging import logger
from portfolio_import.crud.imports import get_import_job, utcnow
from portfolio_import.db.models.cash_operation import CashOperation
from portfolio_import.db.models.import_job import ImportJob, JobStatus
from portfolio_import.db.models.pending_order import PendingOrder
from portfolio_import.db.models.position import Position
from portfolio_import.services.etl.errors import InvalidStateError, PartialRollbackError, PersistenceError

# deleted in this order, one commit each
ROLLBACK_TARGETS = (
    ("positions", Position),
    ("cash_operations", CashOperation),
    ("pending_orders", PendingOrder),
)


def ensure_rollback_allowed(job: ImportJob) -> None:
    if job.status != JobStatus.completed.value:
        raise InvalidStateError(f"Only completed imports can be rolled back (status: {job.status})")
    if job.is_rolled_back:
        raise InvalidStateError("Import has already been rolled back")
    if not job.can_rollback:
        raise InvalidStateError("Import cannot be rolled back")


def rollback_import(db: Session, job_id: int, user_id: int, reason: str | None = None) -> dict[str, int]:
    """Delete every record produced by a completed import.

    Returns the number of deleted records per kind. The job status is left
    as ``completed``; only the rollback flags change. When some kinds fail
    to delete, PartialRollbackError names them and the job stays eligible
    for another attempt.
    """
    job = get_import_job(db, job_id, user_id)
    if job is None:
        raise LookupError(f"Import job {job_id} not found")
    ensure_rollback_allowed(job)

    log = logger.bind(import_job_id=job_id, user_id=user_id)
    counts: dict[str, int] = {}
    failed: list[str] = []
    for label, model in ROLLBACK_TARGETS:
        try:
            n = (
                db.query(model)
                .filter(model.import_batch_id == job_id, model.user_id == user_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            failed.append(label)
            log.error("import_rollback_kind_failed", kind=label, error=str(e))
        else:
            counts[label] = n

    if failed:
        if not counts:
            raise PersistenceError("Rollback failed for every record kind")
        raise PartialRollbackError(deleted=list(counts), failed=failed)

    n = (
        db.query(ImportJob)
        .filter(
            ImportJob.id == job_id,
            ImportJob.status == JobStatus.completed.value,
            ImportJob.is_rolled_back.is_(False),
        )
        .update(
            {
                "is_rolled_back": True,
                "can_rollback": False,
                "rollback_time": utcnow(),
                "rollback_reason": (reason or "")[:200] or None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if n != 1:
        raise InvalidStateError("Import has already been rolled back")

    log.info("import_rolled_back", reason=reason, **counts)
    return counts
