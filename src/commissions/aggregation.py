"""Reconcile commission records stored at mixed granularities.

A user can hold an annual target, its monthly children and a concurrent
quarterly target at the same time, so commissions end up grouped under
periods of different lengths. Reporting slices every record into calendar
months, keeps exactly one record per user and month, and rolls the winners
up into the requested view.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from core.money import ZERO, percentage, quantize_money, to_decimal
from targets.distribution import month_ranges
from targets.naming import as_date
from targets.resolver import target_precedence_key

MONTHLY = "monthly"
QUARTERLY = "quarterly"
YEARLY = "yearly"
GRANULARITIES = (MONTHLY, QUARTERLY, YEARLY)

AVERAGE_MONTH_DAYS = 365.25 / 12


@dataclass
class PeriodRecord:
    """Totals a user earned under one stored period."""

    user_id: str
    period_start: date
    period_end: date
    quota: Decimal = ZERO
    actual: Decimal = ZERO
    commission: Decimal = ZERO
    allocations: list[dict] | None = None
    target: object = None
    commission_ids: list[str] = field(default_factory=list)

    @property
    def days(self) -> int:
        return (self.period_end - self.period_start).days + 1

    @property
    def months(self) -> float:
        return self.days / AVERAGE_MONTH_DAYS

    @property
    def key(self) -> tuple:
        return (self.user_id, self.period_start, self.period_end, str(getattr(self.target, "pk", "")))


@dataclass
class MonthSlice:
    record: PeriodRecord
    year: int
    month: int
    quota: Decimal
    actual: Decimal
    commission: Decimal


@dataclass
class AggregatedRow:
    user_id: str
    label: str
    period_start: date
    period_end: date
    quota: Decimal = ZERO
    actual: Decimal = ZERO
    commission: Decimal = ZERO
    months: list[str] = field(default_factory=list)

    @property
    def attainment_pct(self) -> Decimal:
        return quantize_money(percentage(self.actual, self.quota))

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "period": self.label,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "quota": str(quantize_money(self.quota)),
            "actual": str(quantize_money(self.actual)),
            "commission": str(quantize_money(self.commission)),
            "attainment_pct": str(self.attainment_pct),
            "months": self.months,
        }


def _overlap_days(start_a: date, end_a: date, start_b: date, end_b: date) -> int:
    start, end = max(start_a, start_b), min(end_a, end_b)
    return (end - start).days + 1 if end >= start else 0


def _month_weights(record: PeriodRecord) -> list[tuple[date, date, Decimal]]:
    """Share of the record falling into each calendar month it touches.

    Seasonal shares weight each bucket; inside a bucket (and without shares)
    the split follows day overlap.
    """
    months = month_ranges(record.period_start, record.period_end)
    if record.allocations:
        buckets = []
        for entry in record.allocations:
            bucket_start, bucket_end = as_date(entry["period_start"]), as_date(entry["period_end"])
            covered = _overlap_days(bucket_start, bucket_end, record.period_start, record.period_end)
            if covered:
                buckets.append((bucket_start, bucket_end, to_decimal(entry.get("share_pct"))))
        raw = [
            sum(
                (
                    share * _overlap_days(month_start, month_end, b_start, b_end) / ((b_end - b_start).days + 1)
                    for b_start, b_end, share in buckets
                ),
                ZERO,
            )
            for month_start, month_end in months
        ]
        total = sum(raw, ZERO)
        if total > ZERO:
            return [(s, e, weight / total) for (s, e), weight in zip(months, raw)]

    days = Decimal(record.days)
    return [(s, e, Decimal((e - s).days + 1) / days) for s, e in months]


def slice_by_month(record: PeriodRecord) -> list[MonthSlice]:
    return [
        MonthSlice(
            record=record,
            year=month_start.year,
            month=month_start.month,
            quota=record.quota * weight,
            actual=record.actual * weight,
            commission=record.commission * weight,
        )
        for month_start, _, weight in _month_weights(record)
    ]


def _record_precedence(record: PeriodRecord) -> tuple:
    if record.target is not None:
        return target_precedence_key(record.target)
    return (2, 0.0, "|".join(record.commission_ids))


def winner_key(record: PeriodRecord, schedule_months: int) -> tuple:
    """Lower wins: closest to the payment schedule, newest start, resolver order."""
    return (
        abs(record.months - schedule_months),
        -record.period_start.toordinal(),
        _record_precedence(record),
    )


def dedupe_months(records, schedule_months: int) -> dict:
    """``{(user_id, year, month): MonthSlice}`` with one winning record per month."""
    winners: dict = {}
    for record in records:
        for month_slice in slice_by_month(record):
            slot = (record.user_id, month_slice.year, month_slice.month)
            current = winners.get(slot)
            if current is None or winner_key(record, schedule_months) < winner_key(current.record, schedule_months):
                winners[slot] = month_slice
    return winners


def bucket_for(year: int, month: int, granularity: str) -> tuple[str, date, date]:
    if granularity == MONTHLY:
        start = date(year, month, 1)
        return f"{year}-{month:02d}", start, date(year, month, _last_day(year, month))
    if granularity == QUARTERLY:
        quarter = (month - 1) // 3 + 1
        first_month = 3 * (quarter - 1) + 1
        last_month = first_month + 2
        return f"{year}-Q{quarter}", date(year, first_month, 1), date(year, last_month, _last_day(year, last_month))
    if granularity == YEARLY:
        return str(year), date(year, 1, 1), date(year, 12, 31)
    raise ValueError(f"Unknown granularity: {granularity}")


def _last_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def aggregate(records, granularity: str = MONTHLY, *, schedule_months: int = 1,
              period_start: date | None = None, period_end: date | None = None) -> list[AggregatedRow]:
    """Sum the winning month slices of ``records`` into ``granularity`` buckets.

    Months outside ``[period_start, period_end]`` are dropped when bounds
    are given.
    """
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity}")
    rows: dict = {}
    for (user_id, year, month), month_slice in sorted(dedupe_months(records, schedule_months).items()):
        month_start = date(year, month, 1)
        month_end = date(year, month, _last_day(year, month))
        if period_start is not None and month_end < period_start:
            continue
        if period_end is not None and month_start > period_end:
            continue
        label, bucket_start, bucket_end = bucket_for(year, month, granularity)
        row = rows.get((user_id, label))
        if row is None:
            row = rows[(user_id, label)] = AggregatedRow(
                user_id=user_id, label=label, period_start=bucket_start, period_end=bucket_end
            )
        row.quota += month_slice.quota
        row.actual += month_slice.actual
        row.commission += month_slice.commission
        row.months.append(f"{year}-{month:02d}")
    return sorted(rows.values(), key=lambda r: (r.user_id, r.period_start))


def records_from_commissions(commissions) -> list[PeriodRecord]:
    """Group commissions by user and stored period into :class:`PeriodRecord` rows.

    Voided commissions are ignored. Seasonal shares come from the target or,
    for children, from the parent.
    """
    from commissions.models import CommissionStatus

    grouped: dict = {}
    for commission in commissions:
        if commission.status == CommissionStatus.VOIDED:
            continue
        target = commission.target
        record = PeriodRecord(
            user_id=str(commission.user_id),
            period_start=commission.period_start,
            period_end=commission.period_end,
            target=target,
        )
        record = grouped.setdefault(record.key, record)
        if not record.commission_ids:
            record.quota = to_decimal(commission.quota_amount)
            if target is not None:
                record.allocations = target.seasonal_allocations()
                if record.allocations is None and target.parent_target_id:
                    record.allocations = target.parent_target.seasonal_allocations()
        record.actual += to_decimal(commission.actual_amount)
        record.commission += to_decimal(commission.commission_amount)
        record.commission_ids.append(str(commission.pk))
    return list(grouped.values())
