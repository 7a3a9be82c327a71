from fastapi import APIRouter, Depends, UploadFile, File, Form, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from pathlib import Path
import datetime as dt

from portfolio_import.core.deps import get_db, get_current_user_id
from portfolio_import.core.logging import logger
from portfolio_import.db.models.import_job import ImportType
from portfolio_import.schemas.imports import (
    ImportJobOut,
    ImportJobPage,
    ImportErrorOut,
    ImportStatisticsOut,
    PreviewOut,
    RollbackIn,
    RollbackOut,
)
from portfolio_import.services.files import ensure_dirs, save_upload, upload_path, UploadTooLargeError
from portfolio_import.services.etl.errors import FileFormatError, InvalidStateError, PartialRollbackError, PersistenceError
from portfolio_import.services.etl.importer import preview_workbook
from portfolio_import.services.etl.reader import MIME_CSV, MIME_TEXT, SUPPORTED_MIME_TYPES
from portfolio_import.services.etl.rollback import rollback_import
from portfolio_import.crud.imports import (
    create_import_job,
    get_import_job,
    list_import_jobs,
    list_import_errors,
    import_statistics,
    cancel_import_job,
    delete_import_job,
)
from portfolio_import.worker.tasks import run_import_task

router = APIRouter()

TEMPLATES = {
    "positions": (
        "symbol,type,volume,open price,open time,commission,taxes,currency,comment\n"
        "AAPL,BUY,100,150.00,2025-01-01,5.00,0.00,USD,Sample position\n"
    ),
    "cash-operations": (
        "type,amount,currency,comment,time\n"
        "deposit,1000.00,USD,Initial deposit,2025-01-01\n"
    ),
    "pending-orders": (
        "symbol,side,volume,price,order type,expiry time\n"
        "TSLA,BUY,50,200.00,LIMIT,2025-12-31\n"
    ),
}

# browsers send csv uploads with assorted mime types
_EXTENSION_MIME = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
}


def _get_job_or_404(db: Session, import_job_id: int, user_id: int):
    job = get_import_job(db, import_job_id, user_id)
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return job


def _declared_mime(file: UploadFile) -> str:
    mime = (file.content_type or "").split(";")[0].strip().lower()
    ext = Path(file.filename or "").suffix.lower()
    if mime == MIME_TEXT:
        # plain text is only taken for a .csv file name
        if ext == ".csv":
            return MIME_CSV
        raise HTTPException(status_code=400, detail="Only .xlsx, .xls and .csv files are supported")
    if mime in SUPPORTED_MIME_TYPES:
        return mime
    if ext in _EXTENSION_MIME:
        return _EXTENSION_MIME[ext]
    raise HTTPException(status_code=400, detail="Only .xlsx, .xls and .csv files are supported")


@router.post("/upload", response_model=ImportJobOut, status_code=status.HTTP_202_ACCEPTED)
def upload_file(
    file: UploadFile = File(...),
    import_type: ImportType = Form(ImportType.mixed),
    has_headers: bool = Form(True),
    date_format: str = Form("auto"),
    allow_duplicates: bool = Form(False),
    decimal_separator: str = Form("auto"),
    thousands_separator: str = Form("auto"),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File name is required")
    mime_type = _declared_mime(file)

    ensure_dirs()
    dest = upload_path(user_id, file.filename)
    try:
        size = save_upload(file, dest)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))

    try:
        job = create_import_job(
            db,
            user_id=user_id,
            file_name=dest.name,
            original_name=Path(file.filename).name,
            file_size=size,
            mime_type=mime_type,
            file_path=str(dest),
            import_type=import_type.value,
            has_headers=has_headers,
            date_format=date_format,
            allow_duplicates=allow_duplicates,
            decimal_separator=decimal_separator,
            thousands_separator=thousands_separator,
        )
    except (FileFormatError, ValueError) as e:
        dest.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail=str(e))

    run_import_task.delay(job.id)
    logger.info("import_job_queued", import_job_id=job.id, user_id=user_id)
    return ImportJobOut.from_job(job)


@router.get("", response_model=ImportJobPage)
def get_import_history(
    status_filter: str | None = Query(default=None, alias="status"),
    import_type: str | None = Query(default=None),
    date_from: dt.datetime | None = Query(default=None),
    date_to: dt.datetime | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    items, total = list_import_jobs(
        db,
        user_id,
        status=status_filter,
        import_type=import_type,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return ImportJobPage(
        items=[ImportJobOut.from_job(j) for j in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/template")
def get_template(
    type: str = Query(default="positions"),
    _user_id: int = Depends(get_current_user_id),
):
    if type not in TEMPLATES:
        raise HTTPException(status_code=400, detail=f"Unknown template type: {type}")
    return Response(
        content=TEMPLATES[type],
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{type}_template.csv"'},
    )


@router.get("/statistics", response_model=ImportStatisticsOut)
def get_statistics(
    period: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return import_statistics(db, user_id, period_days=period)


@router.get("/{import_job_id}", response_model=ImportJobOut)
def get_import_status(
    import_job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return ImportJobOut.from_job(_get_job_or_404(db, import_job_id, user_id))


@router.get("/{import_job_id}/errors", response_model=list[ImportErrorOut])
def get_errors(
    import_job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    _get_job_or_404(db, import_job_id, user_id)
    return [ImportErrorOut.model_validate(e) for e in list_import_errors(db, import_job_id)]


@router.get("/{import_job_id}/preview", response_model=PreviewOut)
def get_preview(
    import_job_id: int,
    max_rows: int = Query(default=5, ge=1, le=50),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    job = _get_job_or_404(db, import_job_id, user_id)
    try:
        sheets = preview_workbook(
            job.file_path,
            job.mime_type,
            job.original_name,
            job.import_type,
            job.has_headers,
            max_rows=max_rows,
        )
    except FileFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PreviewOut(import_job_id=import_job_id, sheets=sheets)


@router.post("/{import_job_id}/cancel", response_model=ImportJobOut)
def cancel_import(
    import_job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    _get_job_or_404(db, import_job_id, user_id)
    try:
        job = cancel_import_job(db, import_job_id, user_id)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ImportJobOut.from_job(job)


@router.post("/{import_job_id}/rollback", response_model=RollbackOut)
def rollback(
    import_job_id: int,
    payload: RollbackIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    _get_job_or_404(db, import_job_id, user_id)
    try:
        deleted = rollback_import(db, import_job_id, user_id, payload.reason)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PartialRollbackError as e:
        raise HTTPException(
            status_code=500,
            detail={"message": str(e), "deleted": e.deleted, "failed": e.failed},
        )
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return RollbackOut(import_job_id=import_job_id, deleted=deleted, total=sum(deleted.values()))


@router.delete("/{import_job_id}")
def delete_import(
    import_job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    job = _get_job_or_404(db, import_job_id, user_id)
    try:
        delete_import_job(db, job)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "ok"}
