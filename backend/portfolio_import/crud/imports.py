import datetime as dt
from pathlib import Path
from sqlalchemy import Float, case, cast, func
from sqlalchemy.orm import Session
from portfolio_import.core.logging import logger
from portfolio_import.db.models.import_job import (
    ImportJob,
    ImportType,
    JobStatus,
    ProgressStep,
    CANCELLABLE_STATUSES,
)
from portfolio_import.db.models.import_error import ImportError
from portfolio_import.services.etl.cells import DATE_FORMATS, DECIMAL_SEPARATORS, THOUSANDS_SEPARATORS
from portfolio_import.services.etl.errors import FileFormatError, InvalidStateError
from portfolio_import.services.etl.reader import SUPPORTED_MIME_TYPES

def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)

def create_import_job(
    db: Session,
    user_id: int,
    file_name: str,
    original_name: str,
    file_size: int,
    mime_type: str,
    file_path: str,
    import_type: str = ImportType.mixed.value,
    has_headers: bool = True,
    date_format: str = "auto",
    allow_duplicates: bool = False,
    decimal_separator: str = "auto",
    thousands_separator: str = "auto",
) -> ImportJob:
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise FileFormatError(f"Unsupported file type: {mime_type}")
    if import_type not in ImportType.__members__:
        raise ValueError(f"Unknown import type: {import_type}")
    if date_format not in DATE_FORMATS:
        raise ValueError(f"Unknown date format: {date_format}")
    if decimal_separator not in DECIMAL_SEPARATORS:
        raise ValueError(f"Unknown decimal separator: {decimal_separator}")
    if thousands_separator not in THOUSANDS_SEPARATORS:
        raise ValueError(f"Unknown thousands separator: {thousands_separator}")
    if decimal_separator != "auto" and decimal_separator == thousands_separator:
        raise ValueError("Decimal and thousands separators must differ")

    job = ImportJob(
        user_id=user_id,
        file_name=file_name,
        original_name=original_name,
        file_size=file_size,
        mime_type=mime_type,
        file_path=file_path,
        import_type=import_type,
        has_headers=has_headers,
        date_format=date_format,
        allow_duplicates=allow_duplicates,
        decimal_separator=decimal_separator,
        thousands_separator=thousands_separator,
        status=JobStatus.pending.value,
        progress_percentage=0,
        progress_step=ProgressStep.uploading.value,
        progress_message="Waiting for worker",
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("import_job_created", import_job_id=job.id, user_id=user_id, file=original_name, import_type=import_type)
    return job

def get_import_job(db: Session, job_id: int, user_id: int | None = None) -> ImportJob | None:
    # conditional updates bypass the identity map; always reload
    q = db.query(ImportJob).populate_existing().filter(ImportJob.id == job_id)
    if user_id is not None:
        q = q.filter(ImportJob.user_id == user_id)
    return q.one_or_none()

def list_import_jobs(
    db: Session,
    user_id: int,
    status: str | None = None,
    import_type: str | None = None,
    date_from: dt.datetime | None = None,
    date_to: dt.datetime | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ImportJob], int]:
    q = db.query(ImportJob).filter(ImportJob.user_id == user_id)
    if status:
        q = q.filter(ImportJob.status == status)
    if import_type:
        q = q.filter(ImportJob.import_type == import_type)
    if date_from is not None:
        q = q.filter(ImportJob.created_at >= date_from)
    if date_to is not None:
        q = q.filter(ImportJob.created_at <= date_to)
    total = q.count()
    items = q.order_by(ImportJob.id.desc()).offset(offset).limit(limit).all()
    return items, total

def list_import_errors(db: Session, job_id: int) -> list[ImportError]:
    return (
        db.query(ImportError)
        .filter(ImportError.import_job_id == job_id)
        .order_by(ImportError.sheet_index, ImportError.row_num, ImportError.id)
        .all()
    )

def import_statistics(db: Session, user_id: int, period_days: int = 30, now: dt.datetime | None = None) -> dict:
    """Per-status totals of the user's imports created in the last ``period_days`` days, split by import type."""
    since = (now or utcnow()) - dt.timedelta(days=period_days)
    success_rate = case(
        (ImportJob.total_rows > 0, ImportJob.successful_rows * 100.0 / ImportJob.total_rows),
        else_=None,
    )
    rows = (
        db.query(
            ImportJob.status,
            ImportJob.import_type,
            func.count(ImportJob.id),
            func.coalesce(func.sum(ImportJob.records_total), 0),
            cast(func.avg(success_rate), Float),
            func.coalesce(func.sum(ImportJob.file_size), 0),
        )
        .filter(ImportJob.user_id == user_id, ImportJob.created_at >= since)
        .group_by(ImportJob.status, ImportJob.import_type)
        .order_by(ImportJob.status, ImportJob.import_type)
        .all()
    )

    statuses: dict[str, dict] = {}
    for status, import_type, count, records, rate, size in rows:
        group = statuses.setdefault(status, {"status": status, "total_imports": 0, "total_records": 0, "types": []})
        group["types"].append({
            "import_type": import_type,
            "count": count,
            "total_records": int(records),
            "avg_success_rate": None if rate is None else round(float(rate), 2),
            "total_file_size": int(size),
        })
        group["total_imports"] += count
        group["total_records"] += int(records)
    return {"period_days": period_days, "since": since, "statuses": list(statuses.values())}

def transition_status(db: Session, job_id: int, from_statuses, to_status: str, **values) -> bool:
    """Conditional status change. Returns False when the job was not in one of ``from_statuses``."""
    values["status"] = to_status
    n = (
        db.query(ImportJob)
        .filter(ImportJob.id == job_id, ImportJob.status.in_(tuple(from_statuses)))
        .update(values, synchronize_session=False)
    )
    db.commit()
    return n == 1

def claim_import_job(db: Session, job_id: int) -> bool:
    now = utcnow()
    return transition_status(
        db,
        job_id,
        (JobStatus.pending.value,),
        JobStatus.processing.value,
        start_time=now,
        heartbeat_at=now,
        progress_step=ProgressStep.parsing.value,
        progress_message="Reading file",
    )

def set_import_failed(db: Session, job_id: int, message: str) -> bool:
    now = utcnow()
    return transition_status(
        db,
        job_id,
        CANCELLABLE_STATUSES,
        JobStatus.failed.value,
        end_time=now,
        heartbeat_at=now,
        progress_percentage=100,
        progress_step=ProgressStep.failed.value,
        progress_message=(message or "Import failed")[:200],
        can_rollback=False,
    )

def cancel_import_job(db: Session, job_id: int, user_id: int) -> ImportJob:
    job = get_import_job(db, job_id, user_id)
    if job is None:
        raise LookupError(f"Import job {job_id} not found")
    if job.status not in CANCELLABLE_STATUSES:
        raise InvalidStateError(f"Cannot cancel import in status {job.status}")
    ok = transition_status(
        db,
        job_id,
        CANCELLABLE_STATUSES,
        JobStatus.cancelled.value,
        end_time=utcnow(),
        progress_message="Cancelled by user",
    )
    if not ok:
        # the worker finished or failed it in between
        raise InvalidStateError("Import is no longer running")
    logger.info("import_job_cancelled", import_job_id=job_id, user_id=user_id)
    return get_import_job(db, job_id, user_id)

def delete_import_job(db: Session, job: ImportJob) -> None:
    """Remove the job, its error list and the stored file. Imported records stay."""
    if job.status in CANCELLABLE_STATUSES:
        raise InvalidStateError("Import is running; cannot delete")
    file_path = job.file_path
    db.query(ImportError).filter(ImportError.import_job_id == job.id).delete(synchronize_session=False)
    db.query(ImportJob).filter(ImportJob.id == job.id).delete(synchronize_session=False)
    db.commit()

    if file_path:
        p = Path(file_path)
        if p.exists():
            p.unlink()
    logger.info("import_job_deleted", import_job_id=job.id)
