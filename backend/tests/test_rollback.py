import pytest
from sqlalchemy.exc import OperationalError

from portfolio_import.crud.imports import get_import_job
from portfolio_import.db.models.cash_operation import CashOperation
from portfolio_import.db.models.import_job import JobStatus
from portfolio_import.db.models.pending_order import PendingOrder
from portfolio_import.db.models.position import Position
from portfolio_import.services.etl.errors import InvalidStateError, PartialRollbackError, PersistenceError
from portfolio_import.services.etl.rollback import rollback_import

WORKBOOK = {
    "Positions": [
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", 1, 100, "2024-01-01"],
        ["MSFT", 2, 200, "2024-01-02"],
    ],
    "Cash": [
        ["Type", "Amount", "Comment", "Time"],
        ["deposit", 1000, "funding", "2024-01-01"],
        ["fee", -5, "monthly fee", "2024-01-31"],
    ],
    "Orders": [
        ["Symbol", "Side", "Order type", "Volume", "Price"],
        ["TSLA", "buy", "limit", 1, 180],
    ],
}


def _batch_count(db, job_id):
    return sum(
        db.query(model).filter(model.import_batch_id == job_id).count()
        for model in (Position, CashOperation, PendingOrder)
    )


@pytest.fixture()
def completed_job(run_job):
    job = run_job(WORKBOOK)
    assert job.status == JobStatus.completed.value
    assert job.records_total == 5
    return job


def test_rollback_removes_every_record_of_the_batch(db, run_job, completed_job):
    other = run_job(WORKBOOK)

    deleted = rollback_import(db, completed_job.id, completed_job.user_id, "wrong file")

    assert deleted == {"positions": 2, "cash_operations": 2, "pending_orders": 1}
    assert _batch_count(db, completed_job.id) == 0
    # another import's records are untouched
    assert _batch_count(db, other.id) == 5

    job = get_import_job(db, completed_job.id)
    assert job.is_rolled_back is True
    assert job.can_rollback is False
    assert job.rollback_time is not None
    assert job.rollback_reason == "wrong file"
    # rollback does not change the status
    assert job.status == JobStatus.completed.value


def test_second_rollback_is_rejected(db, completed_job):
    rollback_import(db, completed_job.id, completed_job.user_id)
    with pytest.raises(InvalidStateError):
        rollback_import(db, completed_job.id, completed_job.user_id)


def test_rollback_requires_completed_status(db, make_job):
    job = make_job(WORKBOOK)  # claimed, still processing
    with pytest.raises(InvalidStateError):
        rollback_import(db, job.id, job.user_id)
    assert get_import_job(db, job.id).is_rolled_back is False


def test_rollback_is_scoped_to_owner(db, completed_job):
    with pytest.raises(LookupError):
        rollback_import(db, completed_job.id, completed_job.user_id + 1)
    assert _batch_count(db, completed_job.id) == 5


def _failing_query(db, monkeypatch, *failing_models):
    original = db.query

    def query(entity, *args, **kwargs):
        if entity in failing_models:
            raise OperationalError("DELETE", {}, Exception("database is locked"))
        return original(entity, *args, **kwargs)

    monkeypatch.setattr(db, "query", query)


def test_partial_rollback_reports_kinds(db, completed_job, monkeypatch):
    _failing_query(db, monkeypatch, CashOperation)

    with pytest.raises(PartialRollbackError) as exc:
        rollback_import(db, completed_job.id, completed_job.user_id)

    assert exc.value.deleted == ["positions", "pending_orders"]
    assert exc.value.failed == ["cash_operations"]
    monkeypatch.undo()

    job = get_import_job(db, completed_job.id)
    assert job.is_rolled_back is False
    assert db.query(CashOperation).filter(CashOperation.import_batch_id == job.id).count() == 2

    # the retry finishes the job
    deleted = rollback_import(db, job.id, job.user_id)
    assert deleted["cash_operations"] == 2
    assert _batch_count(db, job.id) == 0
    assert get_import_job(db, job.id).is_rolled_back is True


def test_rollback_failing_for_every_kind(db, completed_job, monkeypatch):
    _failing_query(db, monkeypatch, Position, CashOperation, PendingOrder)
    with pytest.raises(PersistenceError):
        rollback_import(db, completed_job.id, completed_job.user_id)
    monkeypatch.undo()
    assert get_import_job(db, completed_job.id).is_rolled_back is False
