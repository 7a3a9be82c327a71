import datetime as dt

import pytest

from portfolio_import.services.etl.aliases import RecordKind
from portfolio_import.services.etl.cells import Cell
from portfolio_import.services.etl.errors import RowValidationError
from portfolio_import.services.etl.reader import RawRow
from portfolio_import.services.etl.transform import TransformContext, resolve_columns, transform_row

NOW = dt.datetime(2025, 6, 1, 12, 0)


def _row(*values, row_num=2):
    return RawRow(row_num=row_num, cells=tuple(Cell.of(v) for v in values))


def _ctx(**kw):
    kw.setdefault("now", NOW)
    kw.setdefault("default_currency", "PLN")
    kw.setdefault("allowed_currencies", {"PLN", "USD", "EUR"})
    return TransformContext(**kw)


def _transform(kind, header, row, **ctx):
    columns = resolve_columns(kind, _row(*header, row_num=1) if header is not None else None)
    return transform_row(kind, "Sheet", _row(*row), columns, _ctx(**ctx))


def test_resolve_columns_polish_aliases():
    header = _row("Instrument", "Kierunek", "Ilość", "Cena otwarcia", "Data otwarcia", row_num=1)
    columns = resolve_columns(RecordKind.position, header)
    assert columns.fields == {"symbol": 0, "side": 1, "volume": 2, "open_price": 3, "open_time": 4}
    assert columns.column("volume") == "Ilość"


def test_resolve_columns_without_header_uses_default_order():
    columns = resolve_columns(RecordKind.position, None)
    assert columns.fields["symbol"] == 0
    assert columns.fields["open_time"] == 4
    assert columns.column("open_price") == "D"


def test_cash_type_alias_wplata_is_deposit():
    c = _transform(
        RecordKind.cash_operation,
        ["Type", "Amount", "Currency", "Comment", "Time"],
        ["WPŁATA", "1 000,50", "pln", "Initial funding", "2024-01-15"],
    )
    assert c.values["type"] == "deposit"
    assert c.values["amount"] == 1000.5
    assert c.values["currency"] == "PLN"
    assert c.values["time"] == dt.datetime(2024, 1, 15)


def test_position_defaults_and_status():
    c = _transform(
        RecordKind.position,
        ["Symbol", "Type", "Volume", "Open price", "Open time", "Close price", "Commission"],
        ["aapl.us", "sell", 2, "150,5", "02.01.2024 10:00", 160, "n/a"],
    )
    v = c.values
    assert v["symbol"] == "AAPL.US"
    assert v["side"] == "SELL"
    assert v["open_time"] == dt.datetime(2024, 1, 2, 10, 0)
    assert v["purchase_value"] == 301.0
    assert v["commission"] == 0.0
    assert v["status"] == "closed"
    assert v["currency"] == "PLN"


@pytest.mark.parametrize(
    "row, field, message",
    [
        (["", 1, "BUY", 10, "2024-01-01"], "symbol", "Symbol is required"),
        (["BAD SYMBOL!", 1, "BUY", 10, "2024-01-01"], "symbol", "Invalid symbol"),
        (["AAPL", 0, "BUY", 10, "2024-01-01"], "volume", "Volume must be greater than 0"),
        (["AAPL", 1, "HOLD", 10, "2024-01-01"], "side", "Invalid side, expected BUY or SELL"),
        (["AAPL", 1, "BUY", -3, "2024-01-01"], "open_price", "Open price must be greater than 0"),
        (["AAPL", 1, "BUY", 10, ""], "open_time", "Open time is required"),
        (["AAPL", 1, "BUY", 10, "someday"], "open_time", "Invalid open time"),
    ],
)
def test_position_validation_errors(row, field, message):
    with pytest.raises(RowValidationError) as exc:
        _transform(RecordKind.position, None, row)
    assert exc.value.field == field
    assert exc.value.message == message


def test_position_error_carries_column_and_value():
    with pytest.raises(RowValidationError) as exc:
        _transform(RecordKind.position, ["Symbol", "Volume"], ["AAPL", "-5"])
    assert exc.value.column == "Volume"
    assert exc.value.value == "-5"


@pytest.mark.parametrize(
    "row, field",
    [
        (["", 100, "PLN", "x", "2024-01-01"], "type"),
        (["lottery", 100, "PLN", "x", "2024-01-01"], "type"),
        (["deposit", 0, "PLN", "x", "2024-01-01"], "amount"),
        (["deposit", "abc", "PLN", "x", "2024-01-01"], "amount"),
        (["deposit", 100, "PLN", "", "2024-01-01"], "comment"),
        (["deposit", 100, "XYZ", "x", "2024-01-01"], "currency"),
        (["deposit", 100, "PLN", "x", ""], "time"),
        (["dividend", 12, "USD", "AAPL dividend", "2024-01-01"], "symbol"),
    ],
)
def test_cash_validation_errors(row, field):
    with pytest.raises(RowValidationError) as exc:
        _transform(RecordKind.cash_operation, None, row)
    assert exc.value.field == field


def test_dividend_with_symbol():
    c = _transform(
        RecordKind.cash_operation,
        None,
        ["Dywidenda", 12, "USD", "AAPL dividend", "2024-01-01", "aapl"],
    )
    assert c.values["type"] == "dividend"
    assert c.values["symbol"] == "AAPL"


def test_order_combined_type_column():
    c = _transform(
        RecordKind.pending_order,
        ["Symbol", "Type", "Volume", "Price", "Expiry"],
        ["TSLA", "BUY LIMIT", 5, 200, "not a date"],
    )
    v = c.values
    assert (v["side"], v["order_type"]) == ("buy", "limit")
    assert v["price"] == 200
    assert v["purchase_value"] == 1000
    # empty open time falls back to import time, bad optional expiry is dropped
    assert v["open_time"] == NOW
    assert v["expiry_time"] is None


def test_market_order_needs_no_price():
    c = _transform(
        RecordKind.pending_order,
        ["Symbol", "Side", "Order type", "Volume"],
        ["EURUSD", "sell", "market", 1],
    )
    assert c.values["order_type"] == "market"
    assert c.values["price"] is None


@pytest.mark.parametrize(
    "row, field",
    [
        (["TSLA", "", "limit", 5, 200, None], "side"),
        (["TSLA", "buy", "iceberg", 5, 200, None], "order_type"),
        (["TSLA", "buy", "limit", 5, None, None], "price"),
        (["TSLA", "buy", "stop limit", 5, 200, None], "stop_price"),
        (["TSLA", "buy", "limit", 0, 200, None], "volume"),
    ],
)
def test_order_validation_errors(row, field):
    with pytest.raises(RowValidationError) as exc:
        _transform(
            RecordKind.pending_order,
            ["Symbol", "Side", "Order type", "Volume", "Price", "Stop price"],
            row,
        )
    assert exc.value.field == field


def test_stop_order_uses_price_as_trigger():
    c = _transform(
        RecordKind.pending_order,
        ["Symbol", "Side", "Order type", "Volume", "Price"],
        ["TSLA", "sell", "stop", 5, 180],
    )
    assert c.values["stop_price"] == 180


def test_dedup_key_equal_for_equal_rows():
    a = _transform(RecordKind.position, None, ["AAPL", 1, "BUY", 10, "2024-01-01"])
    b = _transform(RecordKind.position, None, ["AAPL", 1, "BUY", 10, "2024-01-01"])
    c = _transform(RecordKind.position, None, ["AAPL", 2, "BUY", 10, "2024-01-01"])
    assert a.dedup_key() == b.dedup_key()
    assert a.dedup_key() != c.dedup_key()


def test_cash_optional_symbol_that_does_not_parse_is_dropped():
    c = _transform(
        RecordKind.cash_operation,
        ["Type", "Amount", "Comment", "Time", "Symbol"],
        ["deposit", 100, "top up", "2024-01-01", "Apple Inc"],
    )
    assert c.values["symbol"] is None
    assert len(c.warnings) == 1
    assert c.warnings[0].field == "symbol"
    assert c.warnings[0].value == "Apple Inc"


def test_dividend_symbol_that_does_not_parse_fails_row():
    with pytest.raises(RowValidationError) as exc:
        _transform(
            RecordKind.cash_operation,
            ["Type", "Amount", "Comment", "Time", "Symbol"],
            ["dividend", 12, "AAPL dividend", "2024-01-01", "Apple Inc"],
        )
    assert exc.value.message == "Invalid symbol"


def test_us_grouped_amount():
    c = _transform(
        RecordKind.cash_operation,
        ["Type", "Amount", "Comment", "Time"],
        ["deposit", "1,000", "top up", "2024-01-01"],
    )
    assert c.values["amount"] == 1000.0


def test_decimal_comma_configured():
    c = _transform(
        RecordKind.position,
        ["Symbol", "Volume", "Open price", "Open time"],
        ["AAPL", "1.500", "1,000", "2024-01-01"],
        decimal_separator=",",
    )
    assert c.values["volume"] == 1500.0
    assert c.values["open_price"] == 1.0


def test_default_order_open_time_is_aware_utc():
    columns = resolve_columns(RecordKind.pending_order, None)
    ctx = TransformContext(default_currency="PLN", allowed_currencies={"PLN"})
    c = transform_row(RecordKind.pending_order, "Orders", _row("TSLA", "buy", 1, 180), columns, ctx)
    assert c.values["open_time"].tzinfo is not None
    assert c.values["open_time"].utcoffset() == dt.timedelta(0)
