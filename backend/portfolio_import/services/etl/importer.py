from __future__ import annotations

import time
from dataclasses import dataclass, field

from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from portfolio_import.core.config import settings
from portfolio_import.core.logging import logger
from portfolio_import.db.models.import_job import ImportJob, JobStatus, ProgressStep
from portfolio_import.services.etl.aliases import RECORD_KINDS, RecordKind
from portfolio_import.services.etl.classifier import classify_row, classify_sheet
from portfolio_import.services.etl.collector import ErrorCollector
from portfolio_import.services.etl.errors import FileFormatError, PersistenceError, RowValidationError
from portfolio_import.services.etl.progress import ProgressReporter
from portfolio_import.services.etl.reader import RawRow, RawSheet, read_workbook
from portfolio_import.services.etl.transform import (
    Candidate,
    ColumnMap,
    TransformContext,
    resolve_columns,
    transform_row,
)
from portfolio_import.services.etl.writer import RecordIdGenerator, write_record


# -----------------------------
# Sheet planning
# -----------------------------
@dataclass
class SheetPlan:
    name: str
    kind: RecordKind
    rows: list[RawRow]
    index: int = 0  # position in the workbook
    header: RawRow | None = None
    columns: dict[RecordKind, ColumnMap] = field(default_factory=dict)

    def row_kind(self, row: RawRow) -> RecordKind:
        if self.kind is not RecordKind.mixed:
            return self.kind
        return classify_row({kind: cm.present(row) for kind, cm in self.columns.items()})


def plan_sheets(sheets: list[RawSheet], import_type: str | None, has_headers: bool) -> list[SheetPlan]:
    """Classify every sheet and resolve its header once."""
    plans = []
    for index, sheet in enumerate(sheets):
        header = sheet.rows[0] if has_headers and sheet.rows else None
        rows = sheet.rows[1:] if has_headers else list(sheet.rows)
        kind = classify_sheet(sheet.name, header, import_type)

        if kind is RecordKind.mixed:
            columns = {k: resolve_columns(k, header) for k in RECORD_KINDS}
        elif kind in RECORD_KINDS:
            columns = {kind: resolve_columns(kind, header)}
        else:
            columns = {}

        logger.info(
            "import_sheet_classified",
            sheet=sheet.name,
            kind=kind.value,
            rows=len(rows),
            fields={k.value: sorted(cm.fields) for k, cm in columns.items()},
        )
        plans.append(SheetPlan(name=sheet.name, kind=kind, rows=rows, index=index, header=header, columns=columns))
    return plans


def preview_workbook(
    path: str,
    mime_type: str,
    source_name: str | None,
    import_type: str | None,
    has_headers: bool,
    max_rows: int = 5,
) -> list[dict]:
    """Headers, the first ``max_rows`` rows and the detected kind of every sheet."""
    out = []
    for plan in plan_sheets(read_workbook(path, mime_type, source_name), import_type, has_headers):
        sample = plan.rows[:max_rows]
        if plan.header is not None:
            headers = [c.display() for c in plan.header.cells]
        else:
            width = max((len(r.cells) for r in sample), default=0)
            headers = [get_column_letter(i + 1) for i in range(width)]
        out.append({
            "name": plan.name,
            "detected_type": plan.kind.value,
            "headers": headers,
            "rows": [[c.display() for c in r.cells] for r in sample],
            "total_rows": len(plan.rows),
            "columns": {
                kind.value: {name: cm.column(name) for name in cm.fields}
                for kind, cm in plan.columns.items()
            },
        })
    return out


# -----------------------------
# Pipeline
# -----------------------------
class ImportPipeline:
    """One run of the import for a job that is already in ``processing``.

    Reads the whole file, validates every row into in-memory candidates, then
    stores them one commit per row. Bad rows are recorded by the error
    collector and never stop the run. Every ``IMPORT_YIELD_EVERY`` rows the
    loop flushes progress, checks for cancellation and yields.
    """

    def __init__(self, db: Session, job: ImportJob, ids: RecordIdGenerator | None = None):
        self.db = db
        self.ids = ids
        # plain copies: per-row rollbacks expire the ORM instance
        self.job_id = job.id
        self.user_id = job.user_id
        self.file_path = job.file_path
        self.mime_type = job.mime_type
        self.original_name = job.original_name
        self.import_type = job.import_type
        self.has_headers = job.has_headers
        self.allow_duplicates = job.allow_duplicates
        self.ctx = TransformContext(
            date_format=job.date_format,
            decimal_separator=job.decimal_separator,
            thousands_separator=job.thousands_separator,
        )

        self.reporter = ProgressReporter(db, self.job_id)
        self.counters = self.reporter.counters
        self.collector = ErrorCollector(db, self.job_id, self.counters)
        self.yield_every = max(1, settings.IMPORT_YIELD_EVERY)
        self.log = logger.bind(import_job_id=self.job_id)

    def _checkpoint(self, n: int) -> bool:
        """True when the job was cancelled and the loop must stop."""
        if n % self.yield_every:
            return False
        self.reporter.flush()
        if self.reporter.is_cancelled():
            return True
        time.sleep(settings.IMPORT_YIELD_SECONDS)
        return False

    def _cancelled(self) -> str:
        self.reporter.flush()
        self.log.info("import_cancelled", **self.counters.as_columns())
        return JobStatus.cancelled.value

    def read(self) -> list[SheetPlan]:
        self.reporter.phase(ProgressStep.parsing, "Reading file")
        sheets = read_workbook(self.file_path, self.mime_type, self.original_name)
        plans = plan_sheets(sheets, self.import_type, self.has_headers)
        self.counters.total_rows = sum(len(p.rows) for p in plans)
        return plans

    def validate(self, plans: list[SheetPlan]) -> list[Candidate] | None:
        """Transform every row. Returns None when cancelled."""
        total = self.counters.total_rows
        self.reporter.phase(ProgressStep.validating, f"Validating {total} rows")
        candidates: list[Candidate] = []
        seen: set[tuple] = set()
        done = 0
        for plan in plans:
            for row in plan.rows:
                done += 1
                if self._checkpoint(done):
                    return None
                self._validate_row(plan, row, candidates, seen)
                self.reporter.advance(done, total)
        return candidates

    def _validate_row(self, plan: SheetPlan, row: RawRow, candidates: list[Candidate], seen: set[tuple]) -> None:
        kind = plan.row_kind(row)
        if kind not in plan.columns:
            self.counters.row_skipped()
            return
        try:
            candidate = transform_row(kind, plan.name, row, plan.columns[kind], self.ctx, plan.index)
        except RowValidationError as e:
            self.collector.add_exception(plan.name, row.row_num, e, plan.index)
            return
        if not self.allow_duplicates:
            key = candidate.dedup_key()
            if key in seen:
                self.counters.row_skipped(duplicate=True)
                return
            seen.add(key)
        candidates.append(candidate)
        for warning in candidate.warnings:
            self.collector.warn(plan.name, row.row_num, warning, plan.index)

    def store(self, candidates: list[Candidate]) -> bool:
        """Persist candidates. Returns False when cancelled."""
        total = len(candidates)
        self.reporter.phase(ProgressStep.importing, f"Importing {total} records")
        for i, candidate in enumerate(candidates, start=1):
            if self._checkpoint(i):
                return False
            try:
                write_record(self.db, candidate, self.user_id, self.job_id, self.ids)
            except PersistenceError as e:
                self.collector.add_exception(candidate.sheet, candidate.row_num, e, candidate.sheet_index)
            else:
                self.counters.record_saved(candidate.kind)
            self.reporter.advance(i, total)
        return True

    def finalize(self, started: float) -> bool:
        """Set the terminal ``completed`` state. False when the job left ``processing`` meanwhile."""
        c = self.counters
        elapsed_ms = (time.monotonic() - started) * 1000
        message = f"Imported {c.successful_rows} of {c.total_rows} rows"
        if c.error_rows:
            message += f", {c.error_rows} with errors"
        if c.skipped_rows:
            message += f", {c.skipped_rows} skipped"
        return self.reporter.complete(
            message,
            avg_ms_per_row=round(elapsed_ms / c.processed_rows, 3) if c.processed_rows else None,
            can_rollback=c.records_total > 0,
        )

    def run(self) -> str:
        started = time.monotonic()
        self.log.info("import_start", file=self.original_name, import_type=self.import_type)

        try:
            plans = self.read()
        except FileFormatError as e:
            self.log.warning("import_file_unreadable", error=str(e))
            self.reporter.fail(str(e))
            return JobStatus.failed.value

        candidates = self.validate(plans)
        if candidates is None:
            return self._cancelled()
        if not self.store(candidates):
            return self._cancelled()

        if not self.finalize(started):
            status = self.reporter.current_status()
            if status == JobStatus.cancelled.value:
                return self._cancelled()
            self.log.warning("import_finalize_skipped", status=status)
            return status or JobStatus.failed.value

        self.log.info("import_finished", status=JobStatus.completed.value, **self.counters.as_columns())
        return JobStatus.completed.value


def run_import(db: Session, job: ImportJob, ids: RecordIdGenerator | None = None) -> str:
    """Run the pipeline for a claimed job and return its final status."""
    return ImportPipeline(db, job, ids).run()
