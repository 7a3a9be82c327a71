import datetime as dt
from pydantic import BaseModel, ConfigDict, Field

class ProgressOut(BaseModel):
    percentage: int
    current_step: str
    message: str | None = None

class ProcessingOut(BaseModel):
    total_rows: int
    processed_rows: int
    successful_rows: int
    error_rows: int
    skipped_rows: int
    duplicate_rows: int
    avg_ms_per_row: float | None = None

class RecordsCountOut(BaseModel):
    positions: int
    cash_operations: int
    pending_orders: int
    total: int

class RollbackStateOut(BaseModel):
    can_rollback: bool
    is_rolled_back: bool
    rollback_time: dt.datetime | None = None
    reason: str | None = None

class ImportJobOut(BaseModel):
    id: int
    user_id: int
    file_name: str
    original_name: str
    file_size: int
    mime_type: str
    import_type: str
    has_headers: bool
    date_format: str
    allow_duplicates: bool
    decimal_separator: str
    thousands_separator: str
    status: str
    progress: ProgressOut
    processing: ProcessingOut
    records_count: RecordsCountOut
    rollback: RollbackStateOut
    created_at: dt.datetime | None = None
    start_time: dt.datetime | None = None
    end_time: dt.datetime | None = None

    @classmethod
    def from_job(cls, job) -> "ImportJobOut":
        return cls(
            id=job.id,
            user_id=job.user_id,
            file_name=job.file_name,
            original_name=job.original_name,
            file_size=job.file_size or 0,
            mime_type=job.mime_type,
            import_type=job.import_type,
            has_headers=job.has_headers,
            date_format=job.date_format,
            allow_duplicates=job.allow_duplicates,
            decimal_separator=job.decimal_separator,
            thousands_separator=job.thousands_separator,
            status=job.status,
            progress=ProgressOut(
                percentage=job.progress_percentage or 0,
                current_step=job.progress_step,
                message=job.progress_message,
            ),
            processing=ProcessingOut(
                total_rows=job.total_rows or 0,
                processed_rows=job.processed_rows or 0,
                successful_rows=job.successful_rows or 0,
                error_rows=job.error_rows or 0,
                skipped_rows=job.skipped_rows or 0,
                duplicate_rows=job.duplicate_rows or 0,
                avg_ms_per_row=job.avg_ms_per_row,
            ),
            records_count=RecordsCountOut(
                positions=job.positions_count or 0,
                cash_operations=job.cash_operations_count or 0,
                pending_orders=job.pending_orders_count or 0,
                total=job.records_total or 0,
            ),
            rollback=RollbackStateOut(
                can_rollback=job.can_rollback,
                is_rolled_back=job.is_rolled_back,
                rollback_time=job.rollback_time,
                reason=job.rollback_reason,
            ),
            created_at=job.created_at,
            start_time=job.start_time,
            end_time=job.end_time,
        )

class ImportJobPage(BaseModel):
    items: list[ImportJobOut]
    total: int
    limit: int
    offset: int

class ImportErrorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sheet: str | None
    sheet_index: int
    row_num: int
    column: str | None
    field: str | None
    value: str | None
    message: str
    severity: str

class RollbackIn(BaseModel):
    reason: str | None = Field(default=None, max_length=200)

class RollbackOut(BaseModel):
    import_job_id: int
    deleted: dict[str, int]
    total: int

class SheetPreviewOut(BaseModel):
    name: str
    detected_type: str
    headers: list[str | None]
    rows: list[list[str | None]]
    total_rows: int
    # record kind -> field -> column label
    columns: dict[str, dict[str, str | None]]

class PreviewOut(BaseModel):
    import_job_id: int
    sheets: list[SheetPreviewOut]

class TypeStatsOut(BaseModel):
    import_type: str
    count: int
    total_records: int
    avg_success_rate: float | None = None
    total_file_size: int

class StatusStatsOut(BaseModel):
    status: str
    total_imports: int
    total_records: int
    types: list[TypeStatsOut]

class ImportStatisticsOut(BaseModel):
    period_days: int
    since: dt.datetime
    statuses: list[StatusStatsOut]
