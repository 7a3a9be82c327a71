from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from portfolio_import.core.config import settings
from portfolio_import.core.logging import configure_logging, logger
from portfolio_import.api.router import api_router
from portfolio_import.db.session import engine
from portfolio_import.db.base import Base
from portfolio_import.db import models  # noqa: F401

def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    app = FastAPI(title="Portfolio Import", version="0.1.0")

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure tables exist for dev-only convenience; in prod rely on alembic
        if settings.ENV == "dev":
            Base.metadata.create_all(bind=engine)

    app.include_router(api_router)
    logger.info("app_started", env=settings.ENV)
    return app

app = create_app()
