"""Display formatting for invoice amounts and dates.

Both helpers are total: any input yields a string, nothing raises. Stored
invoices carry dates in several shapes (BSON timestamps, datetimes, ISO
strings, epoch numbers, exported {"seconds": ...} maps) so format_date
accepts all of them.
"""
import logging
import math
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from bson.timestamp import Timestamp

logger = logging.getLogger(__name__)

CURRENCY_SYMBOL = "₹"
ZERO_AMOUNT = f"{CURRENCY_SYMBOL}0.00"
INVALID_DATE = "Invalid Date"
MISSING_DATE = "N/A"

_CENTS = Decimal("0.01")
# Epoch values above this are milliseconds (year 5138 in seconds)
_EPOCH_MS_THRESHOLD = 1e11


def _to_decimal(amount: Any) -> Optional[Decimal]:
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, float):
        if math.isnan(amount) or math.isinf(amount):
            return None
        return Decimal(repr(amount))
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not value.is_finite():
        return None
    return value


def _group_indian(digits: str) -> str:
    """12345678 -> 1,23,45,678 (last three, then pairs)."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Any) -> str:
    """Format an amount as INR in en-IN style: ₹1,23,456.50.

    None, NaN, infinities and non-numeric input yield ₹0.00.
    """
    value = _to_decimal(amount)
    if value is None:
        return ZERO_AMOUNT
    value = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    integer, _, fraction = f"{abs(value):.2f}".partition(".")
    return f"{sign}{CURRENCY_SYMBOL}{_group_indian(integer)}.{fraction}"


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _from_epoch(number: float) -> datetime:
    if math.isnan(number) or math.isinf(number):
        raise ValueError("non-finite epoch")
    seconds = number / 1000 if abs(number) >= _EPOCH_MS_THRESHOLD else number
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored date representation to a datetime; None if impossible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, dict):
        # Exported timestamp maps and Mongo extended JSON
        if "$date" in value:
            return to_datetime(value["$date"])
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is not None:
            nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
            return _from_epoch(float(seconds) + float(nanos) / 1e9)
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return _from_epoch(float(text))
    for attr in ("as_datetime", "ToDatetime", "to_datetime"):
        converter = getattr(value, attr, None)
        if callable(converter):
            return converter()
    return None


def format_date(value: Any, with_time: bool = False) -> str:
    """Format a date like 'October 19th, 2026' (or '... 3:04 PM' with_time).

    Missing values give 'N/A'; anything unparsable gives 'Invalid Date'.
    """
    if value is None or value == "":
        return MISSING_DATE
    try:
        dt = to_datetime(value)
    except (ValueError, TypeError, OverflowError, OSError) as e:
        logger.debug(f"Date formatting error: {e} input={value!r}")
        return INVALID_DATE
    if dt is None:
        return INVALID_DATE
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    text = f"{dt.strftime('%B')} {_ordinal(dt.day)}, {dt.year}"
    if with_time:
        hour = dt.hour % 12 or 12
        text += f" {hour}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"
    return text
