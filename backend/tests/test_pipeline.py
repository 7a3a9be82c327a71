import datetime as dt
from itertools import chain

from portfolio_import.core.config import settings
from portfolio_import.crud.imports import get_import_job, list_import_errors, transition_status
from portfolio_import.db.models.cash_operation import CashOperation
from portfolio_import.db.models.import_job import JobStatus
from portfolio_import.db.models.pending_order import PendingOrder
from portfolio_import.db.models.position import Position
from portfolio_import.services.etl import progress as progress_mod
from portfolio_import.services.etl.importer import run_import
from portfolio_import.services.etl.reader import MIME_XLSX


def _assert_counters(job):
    assert job.successful_rows + job.error_rows + job.skipped_rows <= job.processed_rows <= job.total_rows
    assert job.records_total == job.positions_count + job.cash_operations_count + job.pending_orders_count


class FixedIds:
    def __init__(self, *ids):
        self._ids = chain(ids)

    def next_id(self):
        return next(self._ids)


def test_open_positions_without_header(db, run_job):
    job = run_job(
        {"OPEN POSITIONS": [
            ["AAPL", 100, "BUY", 150.0, "2024-01-01"],
            ["", 0, "BUY", 0, ""],
        ]},
        has_headers=False,
    )

    assert job.status == JobStatus.completed.value
    assert (job.successful_rows, job.error_rows, job.processed_rows) == (1, 1, 2)
    assert job.positions_count == 1
    assert job.records_total == 1
    assert job.progress_percentage == 100
    assert job.progress_step == "completed"
    assert job.end_time is not None
    _assert_counters(job)

    positions = db.query(Position).filter(Position.import_batch_id == job.id).all()
    assert len(positions) == 1
    p = positions[0]
    assert (p.symbol, p.volume, p.open_price, p.side) == ("AAPL", 100, 150.0, "BUY")
    assert p.user_id == job.user_id

    errors = list_import_errors(db, job.id)
    assert len(errors) == 1
    assert errors[0].row_num == 2
    assert errors[0].field == "symbol"
    assert errors[0].sheet == "OPEN POSITIONS"


def test_multi_sheet_workbook_with_headers(db, run_job):
    job = run_job({
        "Open Positions": [
            ["Symbol", "Type", "Volume", "Open price", "Open time"],
            ["AAPL.US", "BUY", 10, 150, "2024-01-02"],
            ["MSFT.US", "SELL", 5, 300, "2024-01-03"],
        ],
        "Cash Operations": [
            ["Type", "Amount", "Currency", "Comment", "Time"],
            ["Wpłata", 1000, "PLN", "Deposit", "2024-01-01"],
            ["withdrawal", -200, "PLN", "", "2024-01-05"],
        ],
        "Pending Orders": [
            ["Symbol", "Type", "Volume", "Price"],
            ["TSLA.US", "BUY LIMIT", 1, 180],
        ],
        "Notes": [
            ["Note"],
            ["remember to check dividends"],
            ["and taxes"],
        ],
    })

    assert job.status == JobStatus.completed.value
    assert job.total_rows == 7
    assert job.processed_rows == 7
    assert (job.positions_count, job.cash_operations_count, job.pending_orders_count) == (2, 1, 1)
    assert job.records_total == 4
    assert job.error_rows == 1
    # the unknown "Notes" sheet is skipped, not an error
    assert job.skipped_rows == 2
    _assert_counters(job)

    assert db.query(CashOperation).filter(CashOperation.import_batch_id == job.id).one().type == "deposit"
    order = db.query(PendingOrder).filter(PendingOrder.import_batch_id == job.id).one()
    assert (order.side, order.order_type) == ("buy", "limit")


def test_mixed_sheet_classifies_each_row(db, run_job):
    job = run_job({
        "Sheet1": [
            ["Symbol", "Open price", "Volume", "Open time", "Amount", "Type", "Comment", "Time", "Order type", "Price"],
            ["AAPL", 150, 1, "2024-01-02", None, None, None, None, None, None],
            [None, None, None, None, 500, "deposit", "Top up", "2024-01-03", None, None],
            ["TSLA", None, 2, None, None, None, None, None, "buy limit", 180],
            ["??", None, None, None, None, None, "nothing here", None, None, None],
        ],
    })

    assert (job.positions_count, job.cash_operations_count, job.pending_orders_count) == (1, 1, 1)
    assert job.skipped_rows == 1
    assert job.error_rows == 0


def test_duplicates_are_skipped_unless_allowed(db, run_job):
    rows = [
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", 1, 100, "2024-01-01"],
        ["AAPL", 1, 100, "2024-01-01"],
    ]
    job = run_job({"Positions": rows})
    assert (job.successful_rows, job.duplicate_rows, job.skipped_rows) == (1, 1, 1)
    _assert_counters(job)

    job = run_job({"Positions": rows}, allow_duplicates=True)
    assert (job.successful_rows, job.duplicate_rows) == (2, 0)


def test_import_type_override(db, run_job):
    job = run_job(
        {"Sheet1": [["Type", "Amount", "Currency", "Comment", "Time"], ["deposit", 10, "USD", "x", "2024-01-01"]]},
        import_type="cash_operations",
    )
    assert job.cash_operations_count == 1


def test_zero_successful_rows_still_completes(db, run_job):
    job = run_job({"Positions": [["Symbol", "Volume"], ["", 1], ["AAPL", 0]]})

    assert job.status == JobStatus.completed.value
    assert job.successful_rows == 0
    assert job.error_rows == 2
    assert job.can_rollback is False
    assert job.progress_percentage == 100


def test_corrupt_file_fails_job(db, make_job, tmp_path):
    job = make_job({"Positions": [["Symbol"], ["AAPL"]]})
    with open(job.file_path, "wb") as f:
        f.write(b"garbage")

    assert run_import(db, job) == JobStatus.failed.value

    job = get_import_job(db, job.id)
    assert job.status == JobStatus.failed.value
    assert job.progress_percentage == 100
    assert job.progress_step == "failed"
    assert job.progress_message
    assert job.end_time is not None
    assert db.query(Position).count() == 0


def test_storage_failure_on_one_row_does_not_stop_the_next(db, make_job):
    job = make_job({"Positions": [
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", 1, 100, "2024-01-01"],
        ["MSFT", 1, 200, "2024-01-01"],
        ["NVDA", 1, 300, "2024-01-01"],
    ]})

    run_import(db, job, ids=FixedIds(1, 1, 2))

    job = get_import_job(db, job.id)
    assert job.status == JobStatus.completed.value
    assert (job.successful_rows, job.error_rows) == (2, 1)
    assert sorted(p.symbol for p in db.query(Position).all()) == ["AAPL", "NVDA"]
    errors = list_import_errors(db, job.id)
    assert errors[0].row_num == 3
    assert errors[0].field == "position_id"
    _assert_counters(job)


def test_cancelled_job_stops_processing(db, make_job, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_YIELD_EVERY", 1)
    job = make_job({"Positions": [
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", 1, 100, "2024-01-01"],
        ["MSFT", 1, 200, "2024-01-01"],
    ]})
    assert transition_status(db, job.id, ("processing",), JobStatus.cancelled.value)

    assert run_import(db, job) == JobStatus.cancelled.value

    job = get_import_job(db, job.id)
    assert job.status == JobStatus.cancelled.value
    assert job.progress_percentage < 100
    assert db.query(Position).count() == 0


def test_cancel_during_import_phase_keeps_partial_results(db, make_job, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_YIELD_EVERY", 2)
    job = make_job({"Positions": [
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", 1, 100, "2024-01-01"],
        ["MSFT", 1, 200, "2024-01-01"],
        ["NVDA", 1, 300, "2024-01-01"],
    ]})

    from portfolio_import.services.etl import importer

    original = importer.write_record

    def write_then_cancel(db_, candidate, user_id, batch_id, ids=None):
        record = original(db_, candidate, user_id, batch_id, ids)
        transition_status(db_, batch_id, ("processing",), JobStatus.cancelled.value)
        return record

    monkeypatch.setattr(importer, "write_record", write_then_cancel)

    assert run_import(db, job) == JobStatus.cancelled.value
    job = get_import_job(db, job.id)
    assert job.status == JobStatus.cancelled.value
    # first record stored before the checkpoint noticed the cancel
    assert job.successful_rows == 1
    assert db.query(Position).count() == 1
    _assert_counters(job)


def test_progress_is_monotonic(db, make_job, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_PROGRESS_BATCH", 1)
    seen = []
    original_flush = progress_mod.ProgressReporter.flush

    def spy(self):
        seen.append(self.percentage)
        return original_flush(self)

    monkeypatch.setattr(progress_mod.ProgressReporter, "flush", spy)

    rows = [["Symbol", "Volume", "Open price", "Open time"]]
    rows += [[f"S{i}", 1, 10 + i, "2024-01-01"] for i in range(10)]
    job = make_job({"Positions": rows})
    run_import(db, job)

    assert seen == sorted(seen)
    assert max(seen) < 100
    assert get_import_job(db, job.id).progress_percentage == 100


def test_record_times_are_stored(db, run_job):
    job = run_job({"Cash": [["Type", "Amount", "Comment", "Time"], ["deposit", 10, "x", "15.03.2024 08:00"]]})
    op = db.query(CashOperation).filter(CashOperation.import_batch_id == job.id).one()
    assert op.time.replace(tzinfo=None) == dt.datetime(2024, 3, 15, 8, 0)
    assert op.currency == settings.DEFAULT_CURRENCY
    assert job.mime_type == MIME_XLSX


def test_grouped_amount_and_unparsable_optional_symbol(db, run_job):
    job = run_job({"Cash": [
        ["Type", "Amount", "Comment", "Time", "Symbol"],
        ["deposit", "1,000", "wire", "2024-01-01", "Apple Inc"],
    ]})

    assert (job.successful_rows, job.error_rows) == (1, 0)
    op = db.query(CashOperation).filter(CashOperation.import_batch_id == job.id).one()
    assert op.amount == 1000.0
    assert op.symbol is None

    errors = list_import_errors(db, job.id)
    assert [(e.field, e.severity) for e in errors] == [("symbol", "warning")]
    _assert_counters(job)


def test_errors_are_listed_in_workbook_order(db, run_job):
    job = run_job({
        "Positions": [
            ["Symbol", "Volume", "Open price", "Open time"],
            ["AAPL", 1, 100, "2024-01-01"],
            ["AAPL", 2, 100, "2024-01-01"],
            ["", 1, 100, "2024-01-01"],
        ],
        "Cash": [
            ["Type", "Amount", "Comment", "Time"],
            ["lottery", 10, "x", "2024-01-01"],
        ],
    })

    errors = list_import_errors(db, job.id)
    assert [(e.sheet, e.row_num) for e in errors] == [("Positions", 4), ("Cash", 2)]
    assert [e.sheet_index for e in errors] == [0, 1]


def test_decimal_comma_job_option(db, run_job):
    job = run_job(
        {"Cash": [["Type", "Amount", "Comment", "Time"], ["deposit", "1.250,5", "x", "2024-01-01"]]},
        decimal_separator=",",
        thousands_separator=".",
    )
    assert job.decimal_separator == ","
    op = db.query(CashOperation).filter(CashOperation.import_batch_id == job.id).one()
    assert op.amount == 1250.5
