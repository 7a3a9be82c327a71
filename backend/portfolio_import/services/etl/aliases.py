"""Header and value vocabularies for broker exports.

Header aliases are listed in priority order per canonical field. They are
compared after :func:`normalize_token`, so ``Open_Price``, ``open price`` and
``OPEN-PRICE`` are the same key. Several fields may resolve to the same
column (an XTB ``Type`` column such as ``BUY LIMIT`` feeds both side and
order type).
"""
from __future__ import annotations

from enum import Enum

from portfolio_import.services.etl.cells import normalize_token


class RecordKind(str, Enum):
    position = "position"
    cash_operation = "cash_operation"
    pending_order = "pending_order"
    mixed = "mixed"
    unknown = "unknown"


RECORD_KINDS = (RecordKind.position, RecordKind.cash_operation, RecordKind.pending_order)


HEADER_ALIASES: dict[RecordKind, dict[str, tuple[str, ...]]] = {
    RecordKind.position: {
        "position_id": ("position id", "positionid", "position", "pozycja", "id"),
        "symbol": ("symbol", "instrument", "ticker", "walor"),
        "side": ("type", "side", "cmd", "command", "direction", "typ", "kierunek"),
        "volume": ("volume", "size", "quantity", "qty", "wolumen", "ilość", "ilosc"),
        "open_time": ("open time", "opentime", "open date", "timestamp", "czas otwarcia", "data otwarcia"),
        "open_price": ("open price", "openprice", "price", "cena otwarcia", "kurs otwarcia"),
        "close_time": ("close time", "closetime", "close timestamp", "czas zamknięcia", "czas zamkniecia"),
        "close_price": ("close price", "closeprice", "exit price", "cena zamknięcia", "cena zamkniecia"),
        "market_price": ("market price", "marketprice", "current price", "cena rynkowa"),
        "commission": ("commission", "fee", "prowizja"),
        "swap": ("swap", "overnight", "rollover"),
        "taxes": ("taxes", "tax", "podatek"),
        "profit": ("profit", "gross p/l", "p&l", "pnl", "pl", "zysk"),
        "currency": ("currency", "ccy", "waluta"),
        "comment": ("comment", "notes", "description", "komentarz"),
    },
    RecordKind.cash_operation: {
        "operation_id": ("operation id", "operationid", "id"),
        "type": ("type", "operation", "operation type", "transaction type", "typ", "rodzaj"),
        "time": ("time", "date", "timestamp", "czas", "data"),
        "amount": ("amount", "value", "sum", "kwota", "wartość", "wartosc"),
        "currency": ("currency", "ccy", "waluta"),
        "comment": ("comment", "description", "notes", "komentarz", "opis"),
        "symbol": ("symbol", "instrument", "ticker"),
    },
    RecordKind.pending_order: {
        "order_id": ("order id", "orderid", "order", "zlecenie", "id"),
        "symbol": ("symbol", "instrument", "ticker"),
        "order_type": ("order type", "ordertype", "type", "typ zlecenia", "typ"),
        "side": ("side", "cmd", "command", "direction", "type", "kierunek"),
        "volume": ("volume", "size", "quantity", "qty", "wolumen"),
        "price": ("price", "limit price", "target price", "targetprice", "open price", "cena"),
        "stop_price": ("stop price", "stopprice", "stop"),
        "open_time": ("open time", "opentime", "created", "created at", "czas otwarcia"),
        "expiry_time": ("expiry", "expiry time", "expiration", "valid until", "validuntil", "ważne do", "wazne do"),
        "comment": ("comment", "notes", "komentarz"),
    },
}

# Column order assumed when a sheet has no header row.
DEFAULT_COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.position: (
        "symbol", "volume", "side", "open_price", "open_time",
        "close_time", "close_price", "commission", "swap", "taxes", "profit", "comment",
    ),
    RecordKind.cash_operation: ("type", "amount", "currency", "comment", "time", "symbol"),
    RecordKind.pending_order: (
        "symbol", "side", "volume", "price", "order_type", "expiry_time", "open_time", "stop_price", "comment",
    ),
}


def _index(table: dict[str, tuple[str, ...]]) -> dict[str, str]:
    out: dict[str, str] = {}
    for canonical, aliases in table.items():
        for alias in (canonical,) + aliases:
            out.setdefault(normalize_token(alias), canonical)
    return out


CASH_TYPE_ALIASES: dict[str, str] = _index({
    "deposit": ("wpłata", "wplata", "in", "deposit", "przelew przychodzący", "incoming transfer"),
    "withdrawal": ("withdraw", "wypłata", "wyplata", "out", "przelew wychodzący", "outgoing transfer"),
    "dividend": ("dividend", "dividends", "divident", "dywidenda"),
    "interest": ("interest", "odsetki", "free funds interest", "free-funds interest"),
    "fee": ("fee", "commission", "prowizja", "opłata", "oplata", "swap"),
    "bonus": ("bonus", "premia"),
    "transfer": ("transfer", "przelew"),
    "adjustment": ("adjustment", "adjust"),
    "tax": ("tax", "podatek", "sec fee"),
    "withholding_tax": ("withholding tax", "wht", "podatek u źródła", "podatek u zrodla"),
    "stock_purchase": ("stock purchase", "stocks/etf purchase", "zakup akcji", "kupno akcji"),
    "stock_sale": ("stock sale", "stocks/etf sale", "sprzedaż akcji", "sprzedaz akcji"),
    "close_trade": ("close trade", "zamknięcie pozycji", "zamkniecie pozycji"),
    "fractional_shares": ("fractional shares", "akcje ułamkowe", "akcje ulamkowe"),
    "correction": ("correction", "korekta"),
    "subaccount_transfer": ("subaccount transfer", "transfer między subkontami", "transfer miedzy subkontami"),
})

POSITION_SIDE_ALIASES: dict[str, str] = _index({
    "BUY": ("buy", "long", "0", "b", "kupno"),
    "SELL": ("sell", "short", "1", "s", "sprzedaż", "sprzedaz"),
})

ORDER_SIDE_ALIASES: dict[str, str] = _index({
    "buy": ("buy", "long", "b", "kupno"),
    "sell": ("sell", "short", "s", "sprzedaż", "sprzedaz"),
})

ORDER_TYPE_ALIASES: dict[str, str] = _index({
    "market": ("market", "mkt", "rynkowe", "pkc"),
    "limit": ("limit", "lmt", "limitowane"),
    "stop": ("stop", "stp"),
    "stop_limit": ("stop limit", "stoplimit"),
    "trailing_stop": ("trailing stop", "trailing"),
})


def resolve_value(aliases: dict[str, str], raw: str | None) -> str | None:
    if raw is None:
        return None
    return aliases.get(normalize_token(raw))


def split_order_kind(raw_type: str | None, raw_side: str | None) -> tuple[str | None, str | None, str | None]:
    """Extract (side, order_type, unrecognized) from one or two free-text cells.

    Accepts the separate-column layout (``side=BUY``, ``type=LIMIT``) as well
    as combined XTB values like ``BUY LIMIT`` or ``Sell Stop Limit``. The third
    element carries leftover text that matched no order type.
    """
    side = None
    order_type = None
    unrecognized = None
    for raw in (raw_side, raw_type):
        if raw is None:
            continue
        tokens = normalize_token(raw).split()
        remaining = []
        for tok in tokens:
            if side is None and tok in ORDER_SIDE_ALIASES:
                side = ORDER_SIDE_ALIASES[tok]
            else:
                remaining.append(tok)
        if order_type is None and remaining:
            rest = " ".join(remaining)
            order_type = ORDER_TYPE_ALIASES.get(rest)
            if order_type is None:
                unrecognized = rest
            else:
                unrecognized = None
    return side, order_type, unrecognized
