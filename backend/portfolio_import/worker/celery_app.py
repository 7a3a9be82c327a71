from celery import Celery
from portfolio_import.core.config import settings
from portfolio_import.core.logging import configure_logging

configure_logging(settings.ENV)

celery_app = Celery(
    "portfolio_import",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["portfolio_import.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    result_expires=3600,
    broker_connection_retry_on_startup=True,
    task_default_queue="imports",
    task_routes={
        "imports.run_import": {"queue": "imports"},
        "imports.fail_stuck_jobs": {"queue": "imports"},
    },
    beat_schedule={
        "fail-stuck-imports": {
            "task": "imports.fail_stuck_jobs",
            "schedule": float(settings.WATCHDOG_INTERVAL_SECONDS),
        },
    },
)
