import datetime as dt
from enum import Enum
from sqlalchemy import String, DateTime, Integer, Boolean, Float, BigInteger, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from portfolio_import.db.base import Base
from portfolio_import.db.models._mixins import TimestampMixin


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class ProgressStep(str, Enum):
    uploading = "uploading"
    parsing = "parsing"
    validating = "validating"
    importing = "importing"
    completed = "completed"
    failed = "failed"


class ImportType(str, Enum):
    positions = "positions"
    cash_operations = "cash_operations"
    orders = "orders"
    mixed = "mixed"


TERMINAL_STATUSES = (JobStatus.completed.value, JobStatus.failed.value, JobStatus.cancelled.value)
CANCELLABLE_STATUSES = (JobStatus.pending.value, JobStatus.processing.value)


class ImportJob(Base, TimestampMixin):
    __tablename__ = "import_job"
    __table_args__ = (Index("ix_import_job_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)

    # source file
    file_name: Mapped[str] = mapped_column(String(255))
    original_name: Mapped[str] = mapped_column(String(255))
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    mime_type: Mapped[str] = mapped_column(String(128))
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # configuration
    import_type: Mapped[str] = mapped_column(String(32), default=ImportType.mixed.value)
    has_headers: Mapped[bool] = mapped_column(Boolean, default=True)
    date_format: Mapped[str] = mapped_column(String(16), default="auto")
    decimal_separator: Mapped[str] = mapped_column(String(8), default="auto")
    thousands_separator: Mapped[str] = mapped_column(String(8), default="auto")
    allow_duplicates: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(32), default=JobStatus.pending.value, index=True)

    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)
    progress_step: Mapped[str] = mapped_column(String(32), default=ProgressStep.uploading.value)
    progress_message: Mapped[str | None] = mapped_column(String(200), nullable=True)

    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, default=0)
    successful_rows: Mapped[int] = mapped_column(Integer, default=0)
    error_rows: Mapped[int] = mapped_column(Integer, default=0)
    skipped_rows: Mapped[int] = mapped_column(Integer, default=0)
    duplicate_rows: Mapped[int] = mapped_column(Integer, default=0)

    positions_count: Mapped[int] = mapped_column(Integer, default=0)
    cash_operations_count: Mapped[int] = mapped_column(Integer, default=0)
    pending_orders_count: Mapped[int] = mapped_column(Integer, default=0)
    records_total: Mapped[int] = mapped_column(Integer, default=0)

    can_rollback: Mapped[bool] = mapped_column(Boolean, default=True)
    is_rolled_back: Mapped[bool] = mapped_column(Boolean, default=False)
    rollback_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rollback_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    start_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    heartbeat_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    avg_ms_per_row: Mapped[float | None] = mapped_column(Float, nullable=True)

    errors = relationship(
        "ImportError",
        back_populates="import_job",
        cascade="all, delete-orphan",
        order_by="ImportError.id",
    )
