"""Calendar arithmetic for fiscal years, reporting periods and history windows."""

import calendar
from datetime import date


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def add_years(day: date, years: int) -> date:
    """Shift by whole years; Feb 29 maps to Feb 28 in non-leap years."""
    return add_months(day, years * 12)


def reporting_period(day: date) -> str:
    """Calendar quarter label, e.g. ``2025-Q3``."""
    quarter = (day.month - 1) // 3 + 1
    return f"{day.year}-Q{quarter}"


def fiscal_year_bounds(fiscal_year: int) -> tuple[date, date]:
    """
    Budget period for a fiscal year: Oct 1 of ``fiscal_year`` through
    Sep 30 of ``fiscal_year + 1``.
    """
    return date(fiscal_year, 10, 1), date(fiscal_year + 1, 9, 30)
