"""Deterministic human-readable target identifiers.

``AF-Q2-2025`` reads "Alfie Ferris, second quarter of 2025". Names are
re-derivable from stored fields, so the same function serves creation and
the rename backfill.
"""
from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal

MONTH_CODES = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")


def as_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def user_initials(user) -> str:
    first = (getattr(user, "first_name", "") or "").strip()
    last = (getattr(user, "last_name", "") or "").strip()
    return f"{first[:1]}{last[:1]}".upper()


def period_code(period_type: str, period_start, period_end=None) -> str | None:
    start = as_date(period_start)
    if not period_type or start is None:
        return None
    year = start.year
    kind = period_type.lower()

    if kind in ("annual", "yearly"):
        return f"ANNUAL-{year}"
    if kind == "quarterly":
        return f"Q{(start.month - 1) // 3 + 1}-{year}"
    if kind == "monthly":
        return f"{MONTH_CODES[start.month - 1]}-{year}"
    if kind == "weekly":
        return f"W{start.isocalendar()[1]}-{year}"

    end = as_date(period_end) or start
    return f"{start.month}/{start.day}-{end.month}/{end.day}/{year}"


def target_name(user, period_type: str, period_start, period_end=None) -> str | None:
    """``INITIALS-PERIODCODE`` or ``None`` when the inputs are incomplete."""
    if user is None:
        return None
    code = period_code(period_type, period_start, period_end)
    if code is None:
        return None
    return f"{user_initials(user)}-{code}"


def target_label(user, period_type, period_start, period_end=None, quota=None, rate=None, currency="") -> str | None:
    """Display label, e.g. ``AF-Q2-2025 (GBP 50,000) @ 7.5%``."""
    name = target_name(user, period_type, period_start, period_end)
    if name is None:
        return None
    label = name
    if quota:
        prefix = f"{currency} " if currency else ""
        label += f" ({prefix}{Decimal(str(quota)):,.0f})"
    if rate:
        pct = (Decimal(str(rate)) * 100).quantize(Decimal("0.1"))
        label += f" @ {pct}%"
    return label


def parse_target_name(name: str) -> dict | None:
    if not name:
        return None
    parts = name.split("-")
    if len(parts) < 3:
        return None
    return {
        "initials": parts[0],
        "period": "-".join(parts[1:]),
        "year": parts[-1].split("/")[-1],
    }


def infer_period_type(period_start, period_end) -> str:
    """Classify an exact calendar range; anything irregular is ``custom``."""
    start, end = as_date(period_start), as_date(period_end)
    if start is None or end is None:
        return "custom"
    if start.isoweekday() == 1 and end - start == timedelta(days=6):
        return "weekly"
    if start.day != 1:
        return "custom"
    last_day = calendar.monthrange(end.year, end.month)[1]
    if end.day != last_day:
        return "custom"
    months = (end.year - start.year) * 12 + end.month - start.month + 1
    if months == 1:
        return "monthly"
    if months == 3 and (start.month - 1) % 3 == 0:
        return "quarterly"
    if months == 12 and start.month == 1:
        return "annual"
    return "custom"
