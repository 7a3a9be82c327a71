from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from portfolio_import.core.logging import logger
from portfolio_import.db.models.import_error import ImportError
from portfolio_import.db.models.import_job import ImportJob
from portfolio_import.services.etl.errors import PersistenceError, RowValidationError
from portfolio_import.services.etl.progress import ImportCounters


class ErrorCollector:
    """Append-only error list of one job.

    Each error counts the row as processed and failed, inserts the
    ``import_error`` row and stores the job counters in the same commit.
    Warnings are listed with the errors but leave the counters alone: the
    row they belong to is still imported.
    """

    def __init__(self, db: Session, job_id: int, counters: ImportCounters):
        self.db = db
        self.job_id = job_id
        self.counters = counters
        self.count = 0

    def _entry(self, sheet, sheet_index, row_num, message, field, column, value, severity) -> ImportError:
        return ImportError(
            import_job_id=self.job_id,
            sheet=sheet[:128] if sheet else None,
            sheet_index=sheet_index,
            row_num=row_num,
            column=column[:128] if column else None,
            field=field,
            value=None if value is None else str(value),
            message=message[:500],
            severity=severity,
        )

    def add(
        self,
        sheet: str | None,
        row_num: int,
        message: str,
        field: str | None = None,
        column: str | None = None,
        value: Any = None,
        severity: str = "error",
        sheet_index: int = 0,
    ) -> None:
        self.counters.processed_rows += 1
        self.counters.error_rows += 1
        self.db.add(self._entry(sheet, sheet_index, row_num, message, field, column, value, severity))
        (
            self.db.query(ImportJob)
            .filter(ImportJob.id == self.job_id)
            .update(self.counters.as_columns(), synchronize_session=False)
        )
        self.db.commit()
        self.count += 1
        logger.info(
            "import_row_failed",
            import_job_id=self.job_id,
            sheet=sheet,
            row=row_num,
            field=field,
            error=message,
        )

    def add_exception(
        self,
        sheet: str | None,
        row_num: int,
        exc: RowValidationError | PersistenceError,
        sheet_index: int = 0,
    ) -> None:
        self.add(
            sheet,
            row_num,
            exc.message,
            field=exc.field,
            column=getattr(exc, "column", None),
            value=exc.value,
            sheet_index=sheet_index,
        )

    def warn(self, sheet: str | None, row_num: int, exc: RowValidationError, sheet_index: int = 0) -> None:
        self.db.add(self._entry(
            sheet, sheet_index, row_num, exc.message, exc.field, exc.column, exc.value, "warning",
        ))
        self.db.commit()
        logger.info("import_row_warning", import_job_id=self.job_id, sheet=sheet, row=row_num, field=exc.field)
