from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

PERIOD_DAYS = 30
CENT = Decimal("0.01")


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def clamp_day(year: int, month: int, anchor_day: int) -> date:
    """Build a date in the given month, pulling the day back to the month's last day."""
    return date(year, month, min(anchor_day, days_in_month(year, month)))


def add_months(start_date: date, months: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    return clamp_day(year, month, start_date.day)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def installment_amount(total_amount: float, total_installments: int) -> float:
    return total_amount / total_installments


def elapsed_periods(start_date: date, as_of: date) -> int:
    # Fixed 30-day buckets, not calendar months.
    return (as_of - start_date) // timedelta(days=PERIOD_DAYS)


def round_currency(value: float) -> float:
    return float(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def parse_iso_date(value: object) -> date | None:
    """Coerce a stored date value to ``date``.

    Columns come back as ``date`` objects while the structured installments
    payload carries ISO strings, sometimes with a time component. Anything
    that cannot be read returns ``None`` so callers can skip the row.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
