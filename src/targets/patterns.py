"""Allocation pattern maintenance.

A pattern is a company-wide list of dated periods whose percentages total
100. Seasonal targets can be planned from one; once a target uses it, its
elapsed periods are frozen.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from core.exceptions import ConflictError, DomainValidationError
from core.money import HUNDRED, ZERO, to_decimal
from targets.distribution import PERCENT_TOLERANCE, validate_period
from targets.models import AllocationPattern, AllocationPeriod, Target

logger = logging.getLogger("quotaflow")


@dataclass(frozen=True)
class PeriodSpec:
    name: str
    period_start: date
    period_end: date
    allocation_pct: Decimal
    notes: str = ""
    sort_order: int = 0

    def same_slice(self, period: AllocationPeriod) -> bool:
        return (
            self.period_start == period.period_start
            and self.period_end == period.period_end
            and abs(self.allocation_pct - period.allocation_pct) <= PERCENT_TOLERANCE
        )


def validate_periods(raw_periods) -> list[PeriodSpec]:
    """Normalize period rows; percentages must total 100 and dates must not overlap."""
    if not raw_periods:
        raise DomainValidationError("periods", "Au moins une periode est requise.")
    periods = []
    for index, entry in enumerate(raw_periods):
        field = f"periods[{index}]"
        name = str(entry.get("name") or "").strip()
        if not name:
            raise DomainValidationError(field, "Le nom de la periode est obligatoire.")
        try:
            start, end = validate_period(entry.get("period_start"), entry.get("period_end"))
            pct = to_decimal(entry.get("allocation_pct"))
            sort_order = int(entry.get("sort_order", index))
        except (DomainValidationError, ValueError, TypeError) as exc:
            raise DomainValidationError(field, f"Entree invalide ({exc}).")
        if pct <= ZERO or pct > HUNDRED:
            raise DomainValidationError(field, "Le pourcentage doit etre compris entre 0 (exclu) et 100.")
        periods.append(
            PeriodSpec(
                name=name,
                period_start=start,
                period_end=end,
                allocation_pct=pct,
                notes=entry.get("notes") or "",
                sort_order=sort_order,
            )
        )

    total = sum((p.allocation_pct for p in periods), ZERO)
    if abs(total - HUNDRED) > PERCENT_TOLERANCE:
        raise DomainValidationError("periods", f"Les pourcentages doivent totaliser 100 (actuellement {total:.2f}).")

    ordered = sorted(periods, key=lambda p: p.period_start)
    for previous, current in zip(ordered, ordered[1:]):
        if current.period_start <= previous.period_end:
            raise DomainValidationError(
                "periods", f"La periode {current.name} chevauche la periode {previous.name}."
            )
    return periods


def _check_unique_name(company_id, name: str, exclude_pk=None) -> None:
    qs = AllocationPattern.objects.filter(company_id=company_id, is_active=True, name__iexact=name)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise ConflictError(f"Un modele actif nomme '{name}' existe deja.")


def _write_periods(pattern: AllocationPattern, periods: list[PeriodSpec]) -> None:
    AllocationPeriod.objects.bulk_create(
        AllocationPeriod(
            pattern=pattern,
            name=p.name,
            period_start=p.period_start,
            period_end=p.period_end,
            allocation_pct=p.allocation_pct,
            notes=p.notes,
            sort_order=p.sort_order,
        )
        for p in periods
    )


def is_in_use(pattern: AllocationPattern) -> bool:
    return Target.objects.filter(allocation_pattern=pattern, is_active=True).exists()


def _elapsed_periods(pattern: AllocationPattern, today: date) -> list[AllocationPeriod]:
    return list(pattern.periods.filter(period_end__lt=today))


@transaction.atomic
def create_pattern(company, *, name: str, periods, description: str = "",
                   base_period_type: str = Target.PeriodType.ANNUAL, created_by=None) -> AllocationPattern:
    name = (name or "").strip()
    if not name:
        raise DomainValidationError("name", "Le nom du modele est obligatoire.")
    specs = validate_periods(periods)
    _check_unique_name(company.pk, name)
    pattern = AllocationPattern.objects.create(
        company=company,
        name=name,
        description=description or "",
        base_period_type=base_period_type,
        created_by=created_by,
    )
    _write_periods(pattern, specs)
    logger.info("Allocation pattern created: %s (%d period(s))", pattern.pk, len(specs))
    return pattern


@transaction.atomic
def update_pattern(pattern: AllocationPattern, *, name=None, description=None, base_period_type=None,
                   periods=None, today: date | None = None) -> AllocationPattern:
    """Edit a pattern; ``periods`` replaces the whole list.

    Periods already over stay untouched while an active target uses the pattern.
    """
    pattern = AllocationPattern.objects.select_for_update().get(pk=pattern.pk)
    if name is not None:
        name = name.strip()
        if not name:
            raise DomainValidationError("name", "Le nom du modele est obligatoire.")
        if pattern.is_active:
            _check_unique_name(pattern.company_id, name, exclude_pk=pattern.pk)
        pattern.name = name
    if description is not None:
        pattern.description = description
    if base_period_type is not None:
        pattern.base_period_type = base_period_type

    if periods is not None:
        specs = validate_periods(periods)
        if is_in_use(pattern):
            today = today or timezone.localdate()
            changed = [
                elapsed.name
                for elapsed in _elapsed_periods(pattern, today)
                if not any(spec.same_slice(elapsed) for spec in specs)
            ]
            if changed:
                raise DomainValidationError(
                    "periods",
                    f"Modele utilise par des objectifs: les periodes echues ne peuvent pas etre "
                    f"modifiees ou supprimees ({', '.join(changed)}).",
                )
        pattern.periods.all().delete()
        _write_periods(pattern, specs)

    pattern.save()
    logger.info("Allocation pattern updated: %s", pattern.pk)
    return pattern


@transaction.atomic
def deactivate_pattern(pattern: AllocationPattern, today: date | None = None) -> AllocationPattern:
    """Soft delete, refused while active targets rely on its elapsed periods."""
    today = today or timezone.localdate()
    if is_in_use(pattern) and _elapsed_periods(pattern, today):
        raise ConflictError("Modele utilise par des objectifs avec des periodes echues: desactivation impossible.")
    AllocationPattern.objects.filter(pk=pattern.pk).update(is_active=False, updated_at=timezone.now())
    pattern.is_active = False
    logger.info("Allocation pattern deactivated: %s", pattern.pk)
    return pattern


def pattern_periods(pattern: AllocationPattern, year: int | None = None):
    """Periods ordered by ``sort_order``; ``year`` keeps those inside that calendar year."""
    qs = pattern.periods.order_by("sort_order", "period_start")
    if year is not None:
        qs = qs.filter(period_start__gte=date(year, 1, 1), period_end__lte=date(year, 12, 31))
    return qs


def pattern_shares(pattern_id, company_id=None) -> list[dict]:
    """Share rows of an active pattern, as fed to seasonal planning."""
    field = "distribution_config.allocation_pattern_id"
    try:
        pattern_uuid = uuid.UUID(str(pattern_id))
    except ValueError:
        raise DomainValidationError(field, "Identifiant de modele invalide.")
    qs = AllocationPattern.objects.filter(pk=pattern_uuid, is_active=True)
    if company_id is not None:
        qs = qs.filter(company_id=company_id)
    pattern = qs.first()
    if pattern is None:
        raise DomainValidationError(field, "Modele de repartition introuvable ou inactif.")
    return [period.as_share() for period in pattern_periods(pattern)]
