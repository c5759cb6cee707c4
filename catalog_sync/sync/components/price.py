# catalog_sync/sync/components/price.py
from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def to_minor_units(value: Any) -> int | None:
    """
    "199.00" / 199 / 199.0 → 19900. None / "" / garbage → None.
    Decimal keeps "19.99" from turning into 1998.
    """
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip().replace(",", "") if not isinstance(value, (int, float)) else value
    if raw == "":
        return None
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_stock(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None
