from __future__ import annotations

import csv
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import openpyxl
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from portfolio_import.core.logging import logger
from portfolio_import.services.etl.cells import Cell
from portfolio_import.services.etl.errors import FileFormatError

MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MIME_XLS = "application/vnd.ms-excel"
MIME_CSV = "text/csv"
MIME_TEXT = "text/plain"

SUPPORTED_MIME_TYPES = {
    MIME_XLSX: "xlsx",
    MIME_XLS: "xls",
    MIME_CSV: "csv",
    MIME_TEXT: "csv",
}

_CSV_ENCODINGS = ("utf-8-sig", "cp1250")


@dataclass(frozen=True)
class RawRow:
    row_num: int  # 1-based, as shown by the spreadsheet application
    cells: tuple[Cell, ...]

    def get(self, idx: int) -> Cell:
        if 0 <= idx < len(self.cells):
            return self.cells[idx]
        return Cell.of(None)


@dataclass
class RawSheet:
    name: str
    rows: list[RawRow] = field(default_factory=list)


def _to_row(row_num: int, values: Iterable[Any]) -> RawRow | None:
    cells = [Cell.of(v) for v in values]
    while cells and cells[-1].is_empty:
        cells.pop()
    if not cells:
        return None
    return RawRow(row_num=row_num, cells=tuple(cells))


def _sheet_from_matrix(name: str, matrix: Iterable[Iterable[Any]]) -> RawSheet:
    sheet = RawSheet(name=str(name))
    for i, values in enumerate(matrix, start=1):
        row = _to_row(i, values)
        if row is not None:
            sheet.rows.append(row)
    return sheet


def _read_xlsx(path: Path) -> list[RawSheet]:
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise FileFormatError(f"Cannot open workbook: {e}") from e
    try:
        return [_sheet_from_matrix(ws.title, ws.iter_rows(values_only=True)) for ws in wb.worksheets]
    except (zipfile.BadZipFile, KeyError, ValueError, TypeError) as e:
        raise FileFormatError(f"Cannot parse workbook: {e}") from e
    finally:
        wb.close()


def _read_xls(path: Path) -> list[RawSheet]:
    try:
        frames = pd.read_excel(path, sheet_name=None, header=None, dtype=object)
    except Exception as e:
        raise FileFormatError(f"Cannot open workbook: {e}") from e
    return [_sheet_from_matrix(name, df.itertuples(index=False, name=None)) for name, df in frames.items()]


def _read_csv(path: Path, sheet_name: str) -> list[RawSheet]:
    last_error: Exception | None = None
    for encoding in _CSV_ENCODINGS:
        # sep=None sniffs the delimiter; single-column files cannot be sniffed
        for sep in (None, ","):
            try:
                df = pd.read_csv(
                    path,
                    header=None,
                    dtype=object,
                    sep=sep,
                    engine="python",
                    encoding=encoding,
                    keep_default_na=False,
                    skip_blank_lines=True,
                )
            except pd.errors.EmptyDataError:
                return [RawSheet(name=sheet_name)]
            except UnicodeDecodeError as e:
                last_error = e
                break
            except (pd.errors.ParserError, csv.Error, ValueError) as e:
                last_error = e
                continue
            except OSError as e:
                raise FileFormatError(f"Cannot open file: {e}") from e
            return [_sheet_from_matrix(sheet_name, df.itertuples(index=False, name=None))]
    raise FileFormatError(f"Cannot parse CSV: {last_error}")


def read_workbook(path: str | Path, mime_type: str, source_name: str | None = None) -> list[RawSheet]:
    """Open the stored upload and return its sheets as matrices of cells.

    CSV files yield a single sheet named after the original file so that the
    classifier can still use the name (``cash_operations.csv``).
    """
    fmt = SUPPORTED_MIME_TYPES.get((mime_type or "").split(";")[0].strip().lower())
    if fmt is None:
        raise FileFormatError(f"Unsupported file type: {mime_type}")

    p = Path(path)
    if not p.is_file():
        raise FileFormatError(f"File not found: {p.name}")

    if fmt == "xlsx":
        sheets = _read_xlsx(p)
    elif fmt == "xls":
        sheets = _read_xls(p)
    else:
        sheets = _read_csv(p, Path(source_name or p.name).stem)

    logger.info(
        "workbook_read",
        file=p.name,
        format=fmt,
        sheets=[s.name for s in sheets],
        rows=sum(len(s.rows) for s in sheets),
    )
    return sheets
