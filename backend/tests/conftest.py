import os
from pathlib import Path

# must be set before portfolio_import.db.session creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "test")

import openpyxl
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_import.core.config import settings
from portfolio_import.db.base import Base
from portfolio_import.db import models  # noqa: F401
from portfolio_import.crud.imports import claim_import_job, create_import_job, get_import_job
from portfolio_import.services.etl.importer import run_import
from portfolio_import.services.etl.reader import MIME_XLSX


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture(autouse=True)
def _upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))


def write_xlsx(path: Path, sheets: dict) -> Path:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(list(row))
    wb.save(path)
    return path


@pytest.fixture()
def make_job(db, tmp_path):
    """Create a claimed (processing) job for a workbook built from ``sheets``."""
    counter = {"n": 0}

    def _make(sheets: dict, user_id: int = 1, claim: bool = True, **config):
        counter["n"] += 1
        path = write_xlsx(tmp_path / f"upload_{counter['n']}.xlsx", sheets)
        job = create_import_job(
            db,
            user_id=user_id,
            file_name=path.name,
            original_name=path.name,
            file_size=path.stat().st_size,
            mime_type=MIME_XLSX,
            file_path=str(path),
            **config,
        )
        if claim:
            assert claim_import_job(db, job.id)
        return get_import_job(db, job.id)

    return _make


@pytest.fixture()
def run_job(db, make_job):
    """Build a workbook, run the whole pipeline and return the reloaded job."""

    def _run(sheets: dict, user_id: int = 1, ids=None, **config):
        job = make_job(sheets, user_id=user_id, **config)
        run_import(db, job, ids)
        return get_import_job(db, job.id)

    return _run
