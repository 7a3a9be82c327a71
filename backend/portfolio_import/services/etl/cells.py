"""Loosely-typed spreadsheet cells and the coercions applied to them.

A cell read from a workbook or CSV is wrapped into a :class:`Cell` tagged with
one of four kinds (number, text, date, empty). Target fields never inspect raw
Python types; they call one of the ``to_*`` coercions, which return the typed
value or ``None`` when the cell cannot be coerced. The caller decides what a
failed coercion means (default value or row error).
"""
from __future__ import annotations

import datetime as dt
import math
import numbers
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from openpyxl.utils.datetime import from_excel


class CellKind(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    DATE = "date"
    EMPTY = "empty"


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: Any = None

    @classmethod
    def of(cls, raw: Any) -> "Cell":
        if raw is None:
            return EMPTY
        if isinstance(raw, bool):
            return cls(CellKind.NUMBER, float(raw))
        if isinstance(raw, dt.datetime):
            # pandas NaT is a datetime subclass that compares unequal to itself
            if raw != raw:
                return EMPTY
            return cls(CellKind.DATE, raw.replace(tzinfo=None) if raw.tzinfo else raw)
        if isinstance(raw, dt.date):
            return cls(CellKind.DATE, dt.datetime(raw.year, raw.month, raw.day))
        if isinstance(raw, numbers.Number):
            v = float(raw)
            if math.isnan(v) or math.isinf(v):
                return EMPTY
            return cls(CellKind.NUMBER, v)
        s = str(raw).strip()
        if not s:
            return EMPTY
        return cls(CellKind.TEXT, s)

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    def display(self) -> str | None:
        """Human-readable raw value for error reports."""
        if self.kind is CellKind.EMPTY:
            return None
        if self.kind is CellKind.DATE:
            return self.value.isoformat()
        return to_text(self)


EMPTY = Cell(CellKind.EMPTY)


_NUMBER_JUNK_RE = re.compile(r"[^0-9,.\-+()]")
_NULL_TOKENS = {"-", "—", "nan", "none", "null", "n/a"}
# "1,000" and "12,345,678": a comma every three digits is grouping, not a decimal
_COMMA_GROUPED_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+$")

DECIMAL_SEPARATORS = ("auto", ".", ",")
# spaces and apostrophes are always dropped; "none" forbids grouping
THOUSANDS_SEPARATORS = ("auto", "none", ",", ".", " ", "'")


def _guess_separators(s: str, grouped: bool) -> str:
    if "," in s and "." in s:
        # the right-most separator is the decimal one
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if "," in s:
        if grouped and _COMMA_GROUPED_RE.match(s):
            return s.replace(",", "")
        return s.replace(",", ".")
    return s


def to_number(cell: Cell, decimal_separator: str = "auto", thousands_separator: str = "auto") -> float | None:
    if cell.kind is CellKind.NUMBER:
        return cell.value
    if cell.kind is not CellKind.TEXT:
        return None

    s = cell.value.replace("\u00a0", "").replace(" ", "")
    if s.lower() in _NULL_TOKENS:
        return None
    negative = s.startswith("(") and s.endswith(")")
    # strip currency codes/symbols, percent signs and apostrophe grouping
    s = _NUMBER_JUNK_RE.sub("", s).strip("()")
    if not s:
        return None

    if thousands_separator in (",", "."):
        s = s.replace(thousands_separator, "")
    if decimal_separator == "auto":
        s = _guess_separators(s, grouped=thousands_separator != "none")
    else:
        if thousands_separator == "auto":
            s = s.replace("," if decimal_separator == "." else ".", "")
        s = s.replace(decimal_separator, ".")

    try:
        v = float(s)
    except ValueError:
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return -abs(v) if negative else v


def to_text(cell: Cell) -> str | None:
    if cell.kind is CellKind.TEXT:
        return cell.value
    if cell.kind is CellKind.NUMBER:
        v = cell.value
        return str(int(v)) if v.is_integer() else str(v)
    if cell.kind is CellKind.DATE:
        return cell.value.isoformat()
    return None


_TIME_SUFFIXES = (" %H:%M:%S", " %H:%M", "")

DATE_FORMATS: dict[str, tuple[str, ...]] = {
    "YYYY-MM-DD": ("%Y-%m-%d",),
    "DD/MM/YYYY": ("%d/%m/%Y",),
    "MM/DD/YYYY": ("%m/%d/%Y",),
    "DD-MM-YYYY": ("%d-%m-%Y",),
    # day-first European before US month-first
    "auto": ("%d.%m.%Y", "%d/%m/%Y", "%d-%m-%Y", "%m/%d/%Y", "%Y/%m/%d", "%Y.%m.%d"),
}

# Excel serials between 1982-02-18 and 9999-12-31
_EXCEL_SERIAL_MIN = 30000
_EXCEL_SERIAL_MAX = 2958465


def to_date(cell: Cell, date_format: str = "auto") -> dt.datetime | None:
    if cell.kind is CellKind.DATE:
        return cell.value
    if cell.kind is CellKind.NUMBER:
        if _EXCEL_SERIAL_MIN < cell.value < _EXCEL_SERIAL_MAX:
            d = from_excel(cell.value)
            if isinstance(d, dt.datetime):
                return d
            if isinstance(d, dt.date):
                return dt.datetime(d.year, d.month, d.day)
        return None
    if cell.kind is not CellKind.TEXT:
        return None

    s = cell.value.strip()
    if len(s) >= 10 and s[:4].isdigit() and s[4] == "-":
        try:
            d = dt.datetime.fromisoformat(s.replace("Z", "+00:00"))
            return d.replace(tzinfo=None) if d.tzinfo else d
        except ValueError:
            pass

    for base in DATE_FORMATS.get(date_format, DATE_FORMATS["auto"]):
        for suffix in _TIME_SUFFIXES:
            try:
                return dt.datetime.strptime(s, base + suffix)
            except ValueError:
                continue
    return None


def normalize_token(v: Any) -> str:
    """Casefold and collapse whitespace/underscores, used for header and enum matching."""
    s = str(v or "").casefold()
    s = s.replace("_", " ").replace("-", " ").replace("\n", " ")
    return " ".join(s.split())
