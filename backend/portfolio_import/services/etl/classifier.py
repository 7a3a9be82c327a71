from __future__ import annotations

from portfolio_import.db.models.import_job import ImportType
from portfolio_import.services.etl.aliases import RecordKind, CASH_TYPE_ALIASES, split_order_kind
from portfolio_import.services.etl.cells import Cell, normalize_token, to_text
from portfolio_import.services.etl.reader import RawRow

IMPORT_TYPE_KIND = {
    ImportType.positions.value: RecordKind.position,
    ImportType.cash_operations.value: RecordKind.cash_operation,
    ImportType.orders.value: RecordKind.pending_order,
}

# sheet-name vocabularies, matched as case-insensitive substrings
SHEET_NAME_VOCABULARY: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.position: ("position", "pozycj", "trade", "transakcj"),
    RecordKind.cash_operation: ("cash", "gotówk", "gotowk", "operac", "deposit", "wpłat", "wplat", "balance"),
    RecordKind.pending_order: ("order", "zlece"),
}

HEADER_INDICATORS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.position: ("open price", "openprice", "close price", "closeprice", "position id", "positionid", "position"),
    RecordKind.cash_operation: ("amount", "operation id", "operationid", "kwota", "deposit", "withdrawal", "transaction type"),
    RecordKind.pending_order: ("order id", "orderid", "order type", "ordertype", "order", "limit", "stop price", "expiry", "valid until"),
}


def classify_sheet_name(name: str) -> RecordKind:
    n = (name or "").casefold()
    for kind, words in SHEET_NAME_VOCABULARY.items():
        if any(w in n for w in words):
            return kind
    return RecordKind.unknown


def score_header(header: RawRow | None) -> dict[RecordKind, int]:
    scores = {kind: 0 for kind in HEADER_INDICATORS}
    if header is None:
        return scores
    tokens = [normalize_token(to_text(c)) for c in header.cells if not c.is_empty]
    for kind, indicators in HEADER_INDICATORS.items():
        for token in tokens:
            if token in indicators:
                scores[kind] += 1
    return scores


def classify_header(header: RawRow | None) -> RecordKind:
    scores = score_header(header)
    hits = [kind for kind, score in scores.items() if score > 0]
    if not hits:
        return RecordKind.unknown
    if len(hits) == 1:
        return hits[0]
    return RecordKind.mixed


def classify_sheet(name: str, header: RawRow | None, import_type: str | None = None) -> RecordKind:
    """Record kind of a whole sheet: override, then sheet name, then header tokens."""
    override = IMPORT_TYPE_KIND.get(import_type or "")
    if override is not None:
        return override
    by_name = classify_sheet_name(name)
    if by_name is not RecordKind.unknown:
        return by_name
    return classify_header(header)


def classify_row(values: dict[RecordKind, dict[str, Cell]]) -> RecordKind:
    """Record kind of one row of a mixed sheet.

    ``values`` holds, per kind, the row's non-empty cells keyed by canonical
    field as resolved for that kind.
    """
    order = values.get(RecordKind.pending_order, {})
    if "stop_price" in order or "expiry_time" in order:
        return RecordKind.pending_order
    if "order_type" in order or "side" in order:
        _, order_type, _ = split_order_kind(
            to_text(order["order_type"]) if "order_type" in order else None,
            to_text(order["side"]) if "side" in order else None,
        )
        if order_type is not None:
            return RecordKind.pending_order

    if "open_price" in values.get(RecordKind.position, {}):
        return RecordKind.position

    cash = values.get(RecordKind.cash_operation, {})
    if "amount" in cash and "type" in cash:
        if normalize_token(to_text(cash["type"])) in CASH_TYPE_ALIASES:
            return RecordKind.cash_operation
    return RecordKind.unknown
