from sqlalchemy.orm import Session

from portfolio_import.worker.celery_app import celery_app
from portfolio_import.core.logging import logger
from portfolio_import.db.session import SessionLocal
from portfolio_import.crud.imports import claim_import_job, get_import_job, set_import_failed
from portfolio_import.services.etl.errors import UnhandledPipelineError
from portfolio_import.services.etl.importer import run_import
from portfolio_import.services.etl.watchdog import fail_stuck_jobs


@celery_app.task(name="imports.run_import", bind=True)
def run_import_task(self, import_job_id: int):
    db: Session = SessionLocal()
    try:
        job = get_import_job(db, import_job_id)
        if not job:
            logger.error("import_job_missing", import_job_id=import_job_id)
            return None

        # only one worker may move the job out of pending
        if not claim_import_job(db, import_job_id):
            logger.warning("import_job_not_claimed", import_job_id=import_job_id, status=job.status)
            return job.status

        job = get_import_job(db, import_job_id)
        return run_import(db, job)

    except Exception as e:
        logger.exception("import_failed", import_job_id=import_job_id, error=str(e))
        message = f"Unexpected error: {e.__class__.__name__}: {e}"

        # the transaction may be in an aborted state -> rollback first
        try:
            db.rollback()
            set_import_failed(db, import_job_id, message)
        except Exception as e2:
            logger.exception(
                "import_failed_status_update_failed",
                import_job_id=import_job_id,
                error=str(e2),
            )
            # fallback: another session, in case this one is completely broken
            try:
                db2: Session = SessionLocal()
                try:
                    set_import_failed(db2, import_job_id, message)
                finally:
                    db2.close()
            except Exception as e3:
                logger.exception(
                    "import_failed_status_update_failed_second_attempt",
                    import_job_id=import_job_id,
                    error=str(e3),
                )

        raise UnhandledPipelineError(message) from e

    finally:
        db.close()


@celery_app.task(name="imports.fail_stuck_jobs")
def fail_stuck_jobs_task():
    db: Session = SessionLocal()
    try:
        failed = fail_stuck_jobs(db)
        if failed:
            logger.info("import_watchdog_run", failed=failed)
        return failed
    finally:
        db.close()
