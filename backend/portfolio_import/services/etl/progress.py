from __future__ import annotations

from dataclasses import dataclass, asdict

from sqlalchemy.orm import Session

from portfolio_import.core.config import settings
from portfolio_import.crud.imports import transition_status, utcnow
from portfolio_import.db.models.import_job import ImportJob, JobStatus, ProgressStep
from portfolio_import.services.etl.aliases import RecordKind

# percentage sub-range per pipeline phase
PHASE_RANGES: dict[ProgressStep, tuple[int, int]] = {
    ProgressStep.parsing: (0, 25),
    ProgressStep.validating: (25, 50),
    ProgressStep.importing: (50, 95),
    ProgressStep.completed: (95, 100),
}

_KIND_COUNTER = {
    RecordKind.position: "positions_count",
    RecordKind.cash_operation: "cash_operations_count",
    RecordKind.pending_order: "pending_orders_count",
}


@dataclass
class ImportCounters:
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    error_rows: int = 0
    skipped_rows: int = 0
    duplicate_rows: int = 0
    positions_count: int = 0
    cash_operations_count: int = 0
    pending_orders_count: int = 0

    def record_saved(self, kind: RecordKind) -> None:
        self.processed_rows += 1
        self.successful_rows += 1
        setattr(self, _KIND_COUNTER[kind], getattr(self, _KIND_COUNTER[kind]) + 1)

    def row_skipped(self, duplicate: bool = False) -> None:
        self.processed_rows += 1
        self.skipped_rows += 1
        if duplicate:
            self.duplicate_rows += 1

    @property
    def records_total(self) -> int:
        return self.positions_count + self.cash_operations_count + self.pending_orders_count

    def as_columns(self) -> dict:
        values = asdict(self)
        values["records_total"] = self.records_total
        return values


class ProgressReporter:
    """Persists percentage/step/message and counters of one running job.

    Row-level calls to :meth:`advance` are throttled to one write every
    ``batch_size`` rows. The stored percentage never goes down and stays
    below 100 until :meth:`complete` or :meth:`fail`.
    """

    def __init__(self, db: Session, job_id: int, batch_size: int | None = None):
        self.db = db
        self.job_id = job_id
        self.batch_size = max(1, batch_size or settings.IMPORT_PROGRESS_BATCH)
        self.counters = ImportCounters()
        self.step = ProgressStep.parsing
        self.percentage = 0
        self.message: str | None = None
        self._unflushed = 0

    def _bump(self, pct: int) -> None:
        self.percentage = max(self.percentage, min(pct, 99))

    def phase(self, step: ProgressStep, message: str | None = None) -> None:
        self.step = step
        self.message = message
        self._bump(PHASE_RANGES[step][0])
        self.flush()

    def advance(self, done: int, total: int, message: str | None = None) -> None:
        lo, hi = PHASE_RANGES[self.step]
        frac = min(done / total, 1.0) if total else 1.0
        self._bump(lo + int((hi - lo) * frac))
        if message is not None:
            self.message = message
        self._unflushed += 1
        if self._unflushed >= self.batch_size:
            self.flush()

    def _progress_values(self) -> dict:
        values = self.counters.as_columns()
        values.update(
            progress_percentage=self.percentage,
            progress_step=self.step.value,
            progress_message=(self.message or "")[:200] or None,
            heartbeat_at=utcnow(),
        )
        return values

    def flush(self) -> None:
        # terminal progress written by complete/fail (or the watchdog) is never overwritten
        (
            self.db.query(ImportJob)
            .filter(
                ImportJob.id == self.job_id,
                ImportJob.status.in_((JobStatus.processing.value, JobStatus.cancelled.value)),
            )
            .update(self._progress_values(), synchronize_session=False)
        )
        self.db.commit()
        self._unflushed = 0

    def current_status(self) -> str | None:
        return self.db.query(ImportJob.status).filter(ImportJob.id == self.job_id).scalar()

    def is_cancelled(self) -> bool:
        return self.current_status() == JobStatus.cancelled.value

    def complete(self, message: str, **extra) -> bool:
        self.step = ProgressStep.completed
        self.percentage = 100
        self.message = message
        values = self._progress_values()
        values.update(extra)
        values["end_time"] = values["heartbeat_at"]
        return transition_status(
            self.db, self.job_id, (JobStatus.processing.value,), JobStatus.completed.value, **values
        )

    def fail(self, message: str) -> bool:
        self.step = ProgressStep.failed
        self.percentage = 100
        self.message = message
        values = self._progress_values()
        values.update(end_time=values["heartbeat_at"], can_rollback=False)
        return transition_status(
            self.db,
            self.job_id,
            (JobStatus.pending.value, JobStatus.processing.value),
            JobStatus.failed.value,
            **values,
        )
