"""Quota distribution planning.

Functions here are pure: they turn a total quota and a period into an
ordered list of :class:`Allocation` rows. Persisting the parent/child
hierarchy is the job of :mod:`targets.services`.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from core.exceptions import DomainValidationError
from core.money import HUNDRED, ZERO, quantize_money, to_decimal
from targets.naming import as_date, infer_period_type

EVEN = "even"
SEASONAL = "seasonal"
CUSTOM = "custom"
ONE_TIME = "one-time"
METHODS = (EVEN, SEASONAL, CUSTOM, ONE_TIME)

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
PERCENT_TOLERANCE = Decimal("0.01")
DEFAULT_SUM_TOLERANCE = Decimal("1")


@dataclass(frozen=True)
class Allocation:
    period_type: str
    period_start: date
    period_end: date
    quota_amount: Decimal
    label: str = ""
    share_pct: Decimal | None = None

    @property
    def days(self) -> int:
        return (self.period_end - self.period_start).days + 1

    def as_config(self) -> dict:
        config = {"label": self.label}
        if self.share_pct is not None:
            config["share_pct"] = str(self.share_pct)
        return config


def validate_period(period_start, period_end) -> tuple[date, date]:
    try:
        start = as_date(period_start)
    except ValueError:
        raise DomainValidationError("period_start", "Format de date invalide. Utilisez YYYY-MM-DD.")
    try:
        end = as_date(period_end)
    except ValueError:
        raise DomainValidationError("period_end", "Format de date invalide. Utilisez YYYY-MM-DD.")
    if start is None:
        raise DomainValidationError("period_start", "La date de debut est obligatoire.")
    if end is None:
        raise DomainValidationError("period_end", "La date de fin est obligatoire.")
    if end < start:
        raise DomainValidationError(
            "period_end", "La date de fin doit etre posterieure ou egale a la date de debut."
        )
    return start, end


def month_ranges(start: date, end: date) -> list[tuple[date, date]]:
    """Calendar months touched by ``[start, end]``, clipped to the range."""
    ranges = []
    cursor = start
    while cursor <= end:
        last_day = date(cursor.year, cursor.month, calendar.monthrange(cursor.year, cursor.month)[1])
        ranges.append((cursor, min(last_day, end)))
        if cursor.month == 12:
            cursor = date(cursor.year + 1, 1, 1)
        else:
            cursor = date(cursor.year, cursor.month + 1, 1)
    return ranges


def quarter_ranges(start: date, end: date) -> list[tuple[date, date]]:
    ranges = []
    for month_start, month_end in month_ranges(start, end):
        if ranges and (month_start.month - 1) // 3 == (ranges[-1][0].month - 1) // 3 \
                and month_start.year == ranges[-1][0].year:
            ranges[-1] = (ranges[-1][0], month_end)
        else:
            ranges.append((month_start, month_end))
    return ranges


def _spread_evenly(total: Decimal, count: int) -> list[Decimal]:
    """Equal rounded shares; the last one absorbs the rounding remainder."""
    share = quantize_money(total / count)
    shares = [share] * (count - 1)
    shares.append(total - share * (count - 1))
    return shares


def plan_even(total, period_start, period_end) -> list[Allocation]:
    total = to_decimal(total)
    start, end = validate_period(period_start, period_end)
    months = month_ranges(start, end)
    return [
        Allocation(
            period_type=infer_period_type(month_start, month_end),
            period_start=month_start,
            period_end=month_end,
            quota_amount=amount,
            label=MONTH_LABELS[month_start.month - 1],
        )
        for (month_start, month_end), amount in zip(months, _spread_evenly(total, len(months)))
    ]


def _calendar_span(granularity: str, day: date) -> tuple[date, date]:
    """Full calendar month or quarter containing ``day``."""
    first_month = day.month if granularity == "monthly" else (day.month - 1) // 3 * 3 + 1
    last_month = day.month if granularity == "monthly" else first_month + 2
    return (
        date(day.year, first_month, 1),
        date(day.year, last_month, calendar.monthrange(day.year, last_month)[1]),
    )


def _fold_wrapped_stub(granularity: str, buckets: list[tuple[str, date, date]]) -> list[tuple[str, date, date]]:
    """Merge a partial edge bucket into its neighbour when the range ends on
    the label it started with (e.g. a 6 April to 5 April fiscal year).

    The shorter partial stub is folded; full buckets are never merged.
    """
    if len(buckets) < 3 or buckets[0][0] != buckets[-1][0]:
        return buckets
    first_label, first_start, first_end = buckets[0]
    last_label, last_start, last_end = buckets[-1]
    first_partial = first_start != _calendar_span(granularity, first_start)[0]
    last_partial = last_end != _calendar_span(granularity, last_end)[1]
    if not (first_partial or last_partial):
        return buckets
    first_days = (first_end - first_start).days
    last_days = (last_end - last_start).days
    if last_partial and (not first_partial or last_days <= first_days):
        label, start, _ = buckets[-2]
        return buckets[:-2] + [(label, start, last_end)]
    label, _, end = buckets[1]
    return [(label, first_start, end)] + buckets[2:]


def _seasonal_buckets(granularity: str, start: date, end: date) -> list[tuple[str, date, date]]:
    if granularity == "quarterly":
        buckets = [(f"Q{(s.month - 1) // 3 + 1}", s, e) for s, e in quarter_ranges(start, end)]
    elif granularity == "monthly":
        buckets = [(MONTH_LABELS[s.month - 1], s, e) for s, e in month_ranges(start, end)]
    else:
        raise DomainValidationError(
            "distribution_config.granularity", "Granularite attendue: 'quarterly' ou 'monthly'."
        )
    buckets = _fold_wrapped_stub(granularity, buckets)
    labels = [label for label, _, _ in buckets]
    if len(labels) != len(set(labels)):
        raise DomainValidationError(
            "period_end", "Une repartition saisonniere ne peut pas couvrir plus de 12 mois."
        )
    return buckets


def _normalized_allocations(raw) -> dict[str, Decimal]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DomainValidationError("distribution_config.allocations", "Un objet {periode: valeur} est attendu.")
    allocations = {}
    for key, value in raw.items():
        try:
            amount = to_decimal(value)
        except ValueError:
            raise DomainValidationError("distribution_config.allocations", f"Valeur invalide pour {key}.")
        if amount <= ZERO:
            raise DomainValidationError(
                "distribution_config.allocations", "Toutes les allocations doivent etre superieures a 0."
            )
        allocations[str(key).strip().lower()] = amount
    return allocations


def plan_seasonal(total, period_start, period_end, config: dict | None) -> list[Allocation]:
    """Split by named quarter / month buckets, as percentages or amounts.

    ``config`` keys: ``granularity`` (quarterly | monthly),
    ``allocation_method`` (percentage | revenue) and ``allocations``
    mapping ``Q1``/``Jan``-style labels to values. Missing buckets get the
    equal share of the buckets present in the range.
    """
    config = config or {}
    total = to_decimal(total)
    start, end = validate_period(period_start, period_end)
    buckets = _seasonal_buckets(config.get("granularity", "quarterly"), start, end)
    method = config.get("allocation_method", "percentage")
    given = _normalized_allocations(config.get("allocations"))
    known = {label.lower() for label, _, _ in buckets}
    unknown = sorted(set(given) - known)
    if unknown:
        raise DomainValidationError(
            "distribution_config.allocations", f"Periodes inconnues pour cette plage: {', '.join(unknown)}."
        )
    count = len(buckets)

    if method == "percentage":
        default_pct = HUNDRED / count
        pcts = [given.get(label.lower(), default_pct) for label, _, _ in buckets]
        if abs(sum(pcts) - HUNDRED) > PERCENT_TOLERANCE:
            raise DomainValidationError(
                "distribution_config.allocations",
                f"Les pourcentages doivent totaliser 100 (actuellement {sum(pcts):.2f}).",
            )
        amounts = [quantize_money(total * pct / HUNDRED) for pct in pcts[:-1]]
        amounts.append(total - sum(amounts, ZERO))
    elif method == "revenue":
        default_amount = quantize_money(total / count)
        amounts = [given.get(label.lower(), default_amount) for label, _, _ in buckets]
        if abs(sum(amounts) - total) > DEFAULT_SUM_TOLERANCE:
            raise DomainValidationError(
                "distribution_config.allocations",
                f"Les montants doivent totaliser le quota annuel ({sum(amounts)} vs {total}).",
            )
        pcts = [amount / total * HUNDRED if total else ZERO for amount in amounts]
    else:
        raise DomainValidationError(
            "distribution_config.allocation_method", "Methode attendue: 'percentage' ou 'revenue'."
        )

    return [
        Allocation(
            period_type=infer_period_type(bucket_start, bucket_end),
            period_start=bucket_start,
            period_end=bucket_end,
            quota_amount=amount,
            label=label,
            share_pct=pct,
        )
        for (label, bucket_start, bucket_end), amount, pct in zip(buckets, amounts, pcts)
    ]


def plan_custom(total, period_start, period_end, breakdown, tolerance=DEFAULT_SUM_TOLERANCE) -> list[Allocation]:
    total = to_decimal(total)
    start, end = validate_period(period_start, period_end)
    if not breakdown:
        raise DomainValidationError("custom_breakdown", "Au moins une periode est requise.")

    allocations = []
    for index, entry in enumerate(breakdown):
        field = f"custom_breakdown[{index}]"
        try:
            entry_start, entry_end = validate_period(entry.get("period_start"), entry.get("period_end"))
            amount = to_decimal(entry.get("quota_amount"))
        except (DomainValidationError, ValueError, AttributeError) as exc:
            raise DomainValidationError(field, f"Entree invalide ({exc}).")
        if amount < ZERO:
            raise DomainValidationError(field, "Le quota ne peut pas etre negatif.")
        if entry_start < start or entry_end > end:
            raise DomainValidationError(field, "La periode doit etre incluse dans la periode de l'objectif.")
        allocations.append(
            Allocation(
                period_type=infer_period_type(entry_start, entry_end),
                period_start=entry_start,
                period_end=entry_end,
                quota_amount=amount,
                label=entry.get("label") or f"{entry_start.isoformat()}/{entry_end.isoformat()}",
                share_pct=amount / total * HUNDRED if total else None,
            )
        )

    allocations.sort(key=lambda a: a.period_start)
    for previous, current in zip(allocations, allocations[1:]):
        if current.period_start <= previous.period_end:
            raise DomainValidationError("custom_breakdown", "Les periodes personnalisees se chevauchent.")

    breakdown_total = sum((a.quota_amount for a in allocations), ZERO)
    if abs(breakdown_total - total) > tolerance:
        raise DomainValidationError(
            "custom_breakdown",
            f"La somme des periodes ({breakdown_total}) doit egaler le quota total ({total}) a {tolerance} pres.",
        )
    return allocations


def plan_pattern(total, period_start, period_end, shares) -> list[Allocation]:
    """Split along the dated periods of an allocation pattern.

    ``shares`` are ``{label, period_start, period_end, share_pct}`` rows;
    each must sit inside the target period and the percentages must total
    100. The last period absorbs the rounding remainder.
    """
    field = "distribution_config.allocation_pattern_id"
    total = to_decimal(total)
    start, end = validate_period(period_start, period_end)
    if not shares:
        raise DomainValidationError(field, "Le modele de repartition ne contient aucune periode.")
    rows = []
    for share in shares:
        share_start, share_end = validate_period(share["period_start"], share["period_end"])
        if share_start < start or share_end > end:
            raise DomainValidationError(
                field, f"La periode {share['label']} depasse la periode de l'objectif."
            )
        rows.append((share["label"], share_start, share_end, to_decimal(share["share_pct"])))
    rows.sort(key=lambda row: row[1])
    pcts = [row[3] for row in rows]
    if abs(sum(pcts) - HUNDRED) > PERCENT_TOLERANCE:
        raise DomainValidationError(field, f"Les pourcentages doivent totaliser 100 (actuellement {sum(pcts):.2f}).")
    amounts = [quantize_money(total * pct / HUNDRED) for pct in pcts[:-1]]
    amounts.append(total - sum(amounts, ZERO))
    return [
        Allocation(
            period_type=infer_period_type(row_start, row_end),
            period_start=row_start,
            period_end=row_end,
            quota_amount=amount,
            label=label,
            share_pct=pct,
        )
        for (label, row_start, row_end, pct), amount in zip(rows, amounts)
    ]


def plan_one_time(total, period_start, period_end, period_type: str = "custom") -> list[Allocation]:
    start, end = validate_period(period_start, period_end)
    return [
        Allocation(
            period_type=period_type,
            period_start=start,
            period_end=end,
            quota_amount=to_decimal(total),
            label="one-time",
        )
    ]


def plan_distribution(method, total, period_start, period_end, config=None, period_type="custom", tolerance=None):
    config = config or {}
    if method == EVEN:
        return plan_even(total, period_start, period_end)
    if method == SEASONAL:
        if config.get("pattern_periods"):
            return plan_pattern(total, period_start, period_end, config["pattern_periods"])
        return plan_seasonal(total, period_start, period_end, config)
    if method == CUSTOM:
        return plan_custom(
            total,
            period_start,
            period_end,
            config.get("custom_breakdown"),
            tolerance=DEFAULT_SUM_TOLERANCE if tolerance is None else tolerance,
        )
    if method == ONE_TIME:
        return plan_one_time(total, period_start, period_end, period_type)
    raise DomainValidationError("distribution_method", f"Methode attendue parmi: {', '.join(METHODS)}.")


def prorate_for_hire(allocation: Allocation, hire_date) -> Allocation:
    """Scale a sub-period quota for someone hired during (or after) it."""
    hire = as_date(hire_date)
    if hire is None or hire <= allocation.period_start:
        return allocation
    if hire > allocation.period_end:
        return replace(allocation, quota_amount=ZERO)
    remaining = (allocation.period_end - hire).days + 1
    scaled = quantize_money(allocation.quota_amount * remaining / allocation.days)
    return replace(allocation, quota_amount=scaled)
