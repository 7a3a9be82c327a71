from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from openpyxl.utils import get_column_letter

from portfolio_import.core.config import settings
from portfolio_import.crud.imports import utcnow
from portfolio_import.services.etl.aliases import (
    DEFAULT_COLUMNS,
    HEADER_ALIASES,
    CASH_TYPE_ALIASES,
    POSITION_SIDE_ALIASES,
    RecordKind,
    resolve_value,
    split_order_kind,
)
from portfolio_import.services.etl.cells import EMPTY, Cell, normalize_token, to_date, to_number, to_text
from portfolio_import.services.etl.errors import RowValidationError
from portfolio_import.services.etl.reader import RawRow

SYMBOL_RE = re.compile(r"^[A-Z0-9._\-]{1,16}$")

# order types that need a limit price / a trigger price
_PRICED_ORDER_TYPES = ("limit", "stop_limit", "trailing_stop")
_STOP_ORDER_TYPES = ("stop", "stop_limit")


# -----------------------------
# Header resolution
# -----------------------------
@dataclass(frozen=True)
class ColumnMap:
    """Canonical field -> column index for one sheet and one record kind."""

    kind: RecordKind
    fields: dict[str, int]
    labels: dict[int, str] = field(default_factory=dict)

    def cell(self, row: RawRow, name: str) -> Cell:
        idx = self.fields.get(name)
        if idx is None:
            return EMPTY
        return row.get(idx)

    def column(self, name: str) -> str | None:
        idx = self.fields.get(name)
        if idx is None:
            return None
        return self.labels.get(idx) or get_column_letter(idx + 1)

    def present(self, row: RawRow) -> dict[str, Cell]:
        out = {}
        for name, idx in self.fields.items():
            c = row.get(idx)
            if not c.is_empty:
                out[name] = c
        return out


def resolve_columns(kind: RecordKind, header: RawRow | None) -> ColumnMap:
    """Build the field map once per sheet.

    Without a header row the positional default order for the kind is used.
    """
    if header is None:
        return ColumnMap(kind=kind, fields={name: i for i, name in enumerate(DEFAULT_COLUMNS[kind])})

    positions: dict[str, int] = {}
    labels: dict[int, str] = {}
    for i, c in enumerate(header.cells):
        if c.is_empty:
            continue
        label = to_text(c)
        labels[i] = label
        positions.setdefault(normalize_token(label), i)

    fields: dict[str, int] = {}
    for name, aliases in HEADER_ALIASES[kind].items():
        for alias in (name,) + aliases:
            idx = positions.get(normalize_token(alias))
            if idx is not None:
                fields[name] = idx
                break
    return ColumnMap(kind=kind, fields=fields, labels=labels)


# -----------------------------
# Row access + coercion
# -----------------------------
@dataclass
class TransformContext:
    date_format: str = "auto"
    decimal_separator: str = "auto"
    thousands_separator: str = "auto"
    default_currency: str = field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    allowed_currencies: set[str] = field(default_factory=lambda: settings.allowed_currencies)
    now: dt.datetime = field(default_factory=utcnow)


class _RowReader:
    def __init__(self, row: RawRow, columns: ColumnMap, ctx: TransformContext):
        self.row = row
        self.columns = columns
        self.ctx = ctx
        self.warnings: list[RowValidationError] = []

    def cell(self, name: str) -> Cell:
        return self.columns.cell(self.row, name)

    def fail(self, name: str, message: str) -> RowValidationError:
        return RowValidationError(
            message,
            field=name,
            column=self.columns.column(name),
            value=self.cell(name).display(),
        )

    def text(self, name: str, max_len: int | None = None) -> str | None:
        s = to_text(self.cell(name))
        if s is None:
            return None
        s = s.strip()
        if not s:
            return None
        return s[:max_len] if max_len else s

    def _to_number(self, name: str) -> float | None:
        return to_number(self.cell(name), self.ctx.decimal_separator, self.ctx.thousands_separator)

    def number(self, name: str, default: float = 0.0) -> float:
        v = self._to_number(name)
        return default if v is None else v

    def optional_number(self, name: str) -> float | None:
        return self._to_number(name)

    def date(self, name: str) -> dt.datetime | None:
        return to_date(self.cell(name), self.ctx.date_format)

    def required_date(self, name: str, label: str) -> dt.datetime:
        c = self.cell(name)
        if c.is_empty:
            raise self.fail(name, f"{label} is required")
        d = to_date(c, self.ctx.date_format)
        if d is None:
            raise self.fail(name, f"Invalid {label.lower()}")
        return d

    def symbol(self, required: bool = True) -> str | None:
        s = self.text("symbol")
        if s is None:
            if required:
                raise self.fail("symbol", "Symbol is required")
            return None
        s = s.upper()
        if not SYMBOL_RE.match(s):
            if required:
                raise self.fail("symbol", "Invalid symbol")
            # an optional symbol that does not parse is dropped, the row is kept
            self.warnings.append(self.fail("symbol", "Invalid symbol, ignored"))
            return None
        return s

    def currency(self) -> str:
        s = self.text("currency")
        if s is None:
            return self.ctx.default_currency
        s = s.upper()
        if s not in self.ctx.allowed_currencies:
            raise self.fail("currency", f"Unsupported currency: {s}")
        return s

    def positive(self, name: str, label: str) -> float:
        v = self.number(name)
        if v <= 0:
            raise self.fail(name, f"{label} must be greater than 0")
        return v


# -----------------------------
# Per-kind transforms
# -----------------------------
def transform_position(r: _RowReader) -> dict[str, Any]:
    symbol = r.symbol()

    raw_side = r.text("side")
    side = "BUY" if raw_side is None else resolve_value(POSITION_SIDE_ALIASES, raw_side)
    if side is None:
        raise r.fail("side", "Invalid side, expected BUY or SELL")

    volume = r.positive("volume", "Volume")
    open_price = r.positive("open_price", "Open price")
    open_time = r.required_date("open_time", "Open time")

    close_price = r.optional_number("close_price")
    if close_price is not None and close_price <= 0:
        raise r.fail("close_price", "Close price must be greater than 0")
    close_time = r.date("close_time")
    market_price = r.optional_number("market_price")

    return {
        "symbol": symbol,
        "side": side,
        "volume": volume,
        "open_time": open_time,
        "open_price": open_price,
        "close_time": close_time,
        "close_price": close_price,
        "market_price": market_price,
        "purchase_value": round(open_price * volume, 6),
        "commission": r.number("commission"),
        "swap": r.number("swap"),
        "taxes": r.number("taxes"),
        "profit": r.number("profit"),
        "status": "closed" if close_time is not None or close_price is not None else "open",
        "currency": r.currency(),
        "comment": r.text("comment", 500),
    }


def transform_cash_operation(r: _RowReader) -> dict[str, Any]:
    raw_type = r.text("type")
    if raw_type is None:
        raise r.fail("type", "Operation type is required")
    op_type = resolve_value(CASH_TYPE_ALIASES, raw_type)
    if op_type is None:
        raise r.fail("type", f"Unknown operation type: {raw_type}")

    amount = r.number("amount")
    if amount == 0:
        raise r.fail("amount", "Amount cannot be zero")

    time = r.required_date("time", "Time")

    comment = r.text("comment", 200)
    if comment is None:
        raise r.fail("comment", "Comment is required")

    currency = r.currency()
    symbol = r.symbol(required=op_type == "dividend")

    return {
        "type": op_type,
        "time": time,
        "amount": amount,
        "currency": currency,
        "comment": comment,
        "symbol": symbol,
    }


def transform_pending_order(r: _RowReader) -> dict[str, Any]:
    symbol = r.symbol()

    side, order_type, unrecognized = split_order_kind(r.text("order_type"), r.text("side"))
    if side is None:
        raise r.fail("side", "Order side is required (buy or sell)")
    if order_type is None:
        if unrecognized:
            raise r.fail("order_type", f"Unknown order type: {unrecognized}")
        order_type = "limit"

    volume = r.positive("volume", "Volume")

    price = r.optional_number("price")
    if price is not None and price <= 0:
        raise r.fail("price", "Price must be greater than 0")
    stop_price = r.optional_number("stop_price")
    if stop_price is not None and stop_price <= 0:
        raise r.fail("stop_price", "Stop price must be greater than 0")

    if order_type == "stop" and stop_price is None:
        # plain stop orders often carry the trigger in the price column
        stop_price = price
    if order_type in _STOP_ORDER_TYPES and stop_price is None:
        raise r.fail("stop_price", f"Stop price is required for {order_type} orders")
    if order_type in _PRICED_ORDER_TYPES and price is None:
        raise r.fail("price", f"Price is required for {order_type} orders")

    open_time = r.ctx.now
    if not r.cell("open_time").is_empty:
        open_time = r.date("open_time")
        if open_time is None:
            raise r.fail("open_time", "Invalid open time")

    return {
        "symbol": symbol,
        "order_type": order_type,
        "side": side,
        "volume": volume,
        "price": price,
        "stop_price": stop_price,
        "purchase_value": round((price or stop_price or 0.0) * volume, 6),
        "open_time": open_time,
        "expiry_time": r.date("expiry_time"),
        "comment": r.text("comment", 500),
    }


TRANSFORMERS: dict[RecordKind, Callable[[_RowReader], dict[str, Any]]] = {
    RecordKind.position: transform_position,
    RecordKind.cash_operation: transform_cash_operation,
    RecordKind.pending_order: transform_pending_order,
}


@dataclass
class Candidate:
    kind: RecordKind
    sheet: str
    row_num: int
    values: dict[str, Any]
    sheet_index: int = 0
    warnings: list[RowValidationError] = field(default_factory=list)

    def dedup_key(self) -> tuple:
        return (self.kind.value, tuple(sorted(self.values.items())))


def transform_row(
    kind: RecordKind,
    sheet: str,
    row: RawRow,
    columns: ColumnMap,
    ctx: TransformContext,
    sheet_index: int = 0,
) -> Candidate:
    """Typed candidate for one row. Raises RowValidationError on the first bad field.

    Problems with optional fields do not fail the row; they are returned in
    ``Candidate.warnings``.
    """
    reader = _RowReader(row, columns, ctx)
    values = TRANSFORMERS[kind](reader)
    return Candidate(
        kind=kind,
        sheet=sheet,
        row_num=row.row_num,
        values=values,
        sheet_index=sheet_index,
        warnings=reader.warnings,
    )
