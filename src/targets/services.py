"""Business services for target creation, conflicts and deactivation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import DomainError, DomainValidationError
from core.money import ZERO, to_decimal
from targets import distribution
from targets.models import MAX_QUOTA, AllocationPattern, Target
from targets.naming import infer_period_type, target_name
from targets.patterns import pattern_shares
from targets.resolver import overlapping_active_targets

logger = logging.getLogger("quotaflow")


class ConflictPolicy:
    SKIP = "skip"
    REPLACE = "replace"
    CONCURRENT = "concurrent"
    CHOICES = (SKIP, REPLACE, CONCURRENT)


class ConflictDecision:
    REPLACE = "replace"
    KEEP = "keep"
    CONCURRENT = "concurrent"
    CHOICES = (REPLACE, KEEP, CONCURRENT)


@dataclass(frozen=True)
class TargetSpec:
    """What to create, independent of who it is created for."""

    quota_amount: Decimal
    commission_rate: Decimal
    period_start: date
    period_end: date
    period_type: str = ""
    distribution_method: str = distribution.ONE_TIME
    distribution_config: dict = field(default_factory=dict)
    role: str = ""
    team_id: str | None = None

    def validated(self) -> "TargetSpec":
        try:
            quota = to_decimal(self.quota_amount)
        except ValueError:
            raise DomainValidationError("quota_amount", "Montant invalide.")
        if quota <= ZERO or quota > MAX_QUOTA:
            raise DomainValidationError("quota_amount", f"Le quota doit etre compris entre 0 (exclu) et {MAX_QUOTA}.")
        try:
            rate = to_decimal(self.commission_rate)
        except ValueError:
            raise DomainValidationError("commission_rate", "Taux invalide.")
        if rate < ZERO or rate > Decimal("1"):
            raise DomainValidationError("commission_rate", "Le taux doit etre compris entre 0 et 1 (ex: 0.075).")
        start, end = distribution.validate_period(self.period_start, self.period_end)
        if self.distribution_method not in distribution.METHODS:
            raise DomainValidationError(
                "distribution_method", f"Methode attendue parmi: {', '.join(distribution.METHODS)}."
            )
        period_type = self.period_type or infer_period_type(start, end)
        if period_type not in Target.PeriodType.values:
            raise DomainValidationError("period_type", f"Type attendu parmi: {', '.join(Target.PeriodType.values)}.")
        config = dict(self.distribution_config or {})
        config.pop("pattern_periods", None)
        if config.get("allocation_pattern_id"):
            if self.distribution_method != distribution.SEASONAL:
                raise DomainValidationError(
                    "distribution_config.allocation_pattern_id",
                    "Un modele de repartition ne s'applique qu'a la methode saisonniere.",
                )
            config["pattern_periods"] = pattern_shares(config["allocation_pattern_id"])
        return replace(
            self,
            quota_amount=quota,
            commission_rate=rate,
            period_start=start,
            period_end=end,
            period_type=period_type,
            distribution_config=config,
        )

    def plan(self) -> list[distribution.Allocation]:
        return distribution.plan_distribution(
            self.distribution_method,
            self.quota_amount,
            self.period_start,
            self.period_end,
            self.distribution_config,
            period_type=self.period_type,
            tolerance=to_decimal(getattr(settings, "TARGET_CUSTOM_SUM_TOLERANCE", "1")),
        )


@dataclass
class TargetBatchSummary:
    """Per-user outcome counts for a batch creation."""

    created: int = 0
    skipped: int = 0
    errored: int = 0
    target_ids: list[str] = field(default_factory=list)
    conflicts: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "errored": self.errored,
            "target_ids": self.target_ids,
            "conflicts": self.conflicts,
            "errors": self.errors,
        }


def users_in_scope(company, *, user_ids=None, role=None, team=None):
    """Active users of ``company`` selected by ids, role or team."""
    from accounts.models import User

    qs = User.objects.filter(company=company, is_active=True)
    if user_ids:
        qs = qs.filter(pk__in=list(user_ids))
    if role:
        qs = qs.filter(role=role)
    if team is not None:
        qs = qs.filter(team=team)
    return qs.order_by("last_name", "first_name")


def _new_target(user, spec: TargetSpec, *, period_type, period_start, period_end, quota,
                method, config, parent=None, created_by=None, allocation_pattern_id=None) -> Target:
    return Target.objects.create(
        company_id=user.company_id,
        user=user,
        name=target_name(user, period_type, period_start, period_end) or "",
        period_type=period_type,
        period_start=period_start,
        period_end=period_end,
        quota_amount=quota,
        commission_rate=spec.commission_rate,
        parent_target=parent,
        distribution_method=method,
        distribution_config=config,
        role=spec.role,
        team_id=spec.team_id,
        allocation_pattern_id=allocation_pattern_id,
        created_by=created_by,
    )


@transaction.atomic
def create_target_hierarchy(user, spec: TargetSpec, *, created_by=None) -> Target:
    """Create a parent and its children (or one standalone target), all or nothing.

    Returns the top-level target.
    """
    if not user.company_id:
        raise DomainValidationError("user", "L'utilisateur n'est rattache a aucune entreprise.")
    allocations = spec.plan()

    if spec.distribution_method == distribution.ONE_TIME:
        return _new_target(
            user,
            spec,
            period_type=spec.period_type,
            period_start=spec.period_start,
            period_end=spec.period_end,
            quota=spec.quota_amount,
            method=Target.DistributionMethod.ONE_TIME,
            config=spec.distribution_config,
            created_by=created_by,
        )

    prorated = [distribution.prorate_for_hire(allocation, user.hire_date) for allocation in allocations]
    parent_quota = spec.quota_amount
    parent_config = dict(spec.distribution_config)
    if prorated != allocations:
        parent_quota = sum((a.quota_amount for a in prorated), ZERO)
        parent_config["prorated_from"] = str(spec.quota_amount)
        parent_config["hire_date"] = user.hire_date.isoformat()
    pattern_id = parent_config.pop("allocation_pattern_id", None)
    parent_config.pop("pattern_periods", None)
    if pattern_id and not AllocationPattern.objects.filter(pk=pattern_id, company_id=user.company_id).exists():
        raise DomainValidationError(
            "distribution_config.allocation_pattern_id", "Modele de repartition introuvable ou inactif."
        )
    if spec.distribution_method == distribution.SEASONAL:
        parent_config["shares"] = [
            {
                "label": a.label,
                "period_start": a.period_start.isoformat(),
                "period_end": a.period_end.isoformat(),
                "share_pct": str(a.share_pct),
            }
            for a in allocations
        ]

    parent = _new_target(
        user,
        spec,
        period_type=spec.period_type,
        period_start=spec.period_start,
        period_end=spec.period_end,
        quota=parent_quota,
        method=spec.distribution_method,
        config=parent_config,
        created_by=created_by,
        allocation_pattern_id=pattern_id,
    )
    for allocation in prorated:
        _new_target(
            user,
            spec,
            period_type=allocation.period_type,
            period_start=allocation.period_start,
            period_end=allocation.period_end,
            quota=allocation.quota_amount,
            method=Target.DistributionMethod.CHILD,
            config=allocation.as_config(),
            parent=parent,
            created_by=created_by,
        )
    logger.info(
        "Target hierarchy created: %s user=%s quota=%s children=%d",
        parent.name,
        user.pk,
        parent.quota_amount,
        len(prorated),
    )
    return parent


def _deactivate(target: Target, now) -> int:
    count = 0
    for child in target.children.filter(is_active=True):
        count += _deactivate(child, now)
    updated = Target.objects.filter(pk=target.pk, is_active=True).update(
        is_active=False, deactivated_at=now, updated_at=now
    )
    return count + updated


@transaction.atomic
def deactivate_target(target: Target) -> int:
    """Soft-deactivate a target and its active descendants."""
    count = _deactivate(target, timezone.now())
    logger.info("Target deactivated: %s (%d row(s))", target.pk, count)
    return count


@transaction.atomic
def update_target(target: Target, *, quota_amount=None, commission_rate=None, name=None) -> Target:
    """Edit an active target in place.

    A rate change on a parent is copied to its active children. The quota
    of a split target is owned by its distribution, so only standalone
    targets accept a new quota. Existing commissions keep their figures
    until they are recalculated.
    """
    target = Target.objects.select_for_update().get(pk=target.pk)
    if not target.is_active:
        raise DomainValidationError("is_active", "Un objectif desactive ne peut pas etre modifie.")
    changed = []

    if quota_amount is not None:
        try:
            quota = to_decimal(quota_amount)
        except ValueError:
            raise DomainValidationError("quota_amount", "Montant invalide.")
        if quota <= ZERO or quota > MAX_QUOTA:
            raise DomainValidationError("quota_amount", f"Le quota doit etre compris entre 0 (exclu) et {MAX_QUOTA}.")
        if quota != target.quota_amount:
            if target.parent_target_id or target.children.exists():
                raise DomainValidationError(
                    "quota_amount", "Le quota d'un objectif reparti se modifie en recreant sa repartition."
                )
            target.quota_amount = quota
            changed.append("quota_amount")

    if commission_rate is not None:
        try:
            rate = to_decimal(commission_rate)
        except ValueError:
            raise DomainValidationError("commission_rate", "Taux invalide.")
        if rate < ZERO or rate > Decimal("1"):
            raise DomainValidationError("commission_rate", "Le taux doit etre compris entre 0 et 1 (ex: 0.075).")
        if rate != target.commission_rate:
            target.commission_rate = rate
            changed.append("commission_rate")
            target.children.filter(is_active=True).update(commission_rate=rate, updated_at=timezone.now())

    if name is not None and name != target.name:
        target.name = name
        changed.append("name")

    if changed:
        target.save(update_fields=[*changed, "updated_at"])
        logger.info("Target updated: %s fields=%s", target.pk, ",".join(changed))
    return target


@transaction.atomic
def deactivate_user_targets(user) -> int:
    now = timezone.now()
    return Target.objects.filter(user=user, is_active=True).update(
        is_active=False, deactivated_at=now, updated_at=now
    )


def _conflict_entry(user, overlaps) -> dict:
    return {
        "user_id": str(user.pk),
        "user_name": user.get_full_name(),
        "existing_targets": [
            {
                "id": str(t.pk),
                "name": t.name,
                "period_start": t.period_start.isoformat(),
                "period_end": t.period_end.isoformat(),
                "quota_amount": str(t.quota_amount),
            }
            for t in overlaps
        ],
    }


def create_targets_for_user(user, spec: TargetSpec, *, conflict_policy: str, created_by=None):
    """Apply the conflict policy for one user. Returns ``(target | None, conflict | None)``."""
    if conflict_policy not in ConflictPolicy.CHOICES:
        raise DomainValidationError("conflict_policy", f"Politique attendue parmi: {', '.join(ConflictPolicy.CHOICES)}.")
    with transaction.atomic():
        overlaps = list(
            overlapping_active_targets(user.pk, spec.period_start, spec.period_end).select_for_update()
        )
        if overlaps and conflict_policy == ConflictPolicy.SKIP:
            return None, _conflict_entry(user, overlaps)
        if overlaps and conflict_policy == ConflictPolicy.REPLACE:
            now = timezone.now()
            replaced = sum(_deactivate(t, now) for t in overlaps)
            logger.info("Replacing %d overlapping target(s) for user=%s", replaced, user.pk)
        target = create_target_hierarchy(user, spec, created_by=created_by)
    return target, None


def create_targets(users, spec: TargetSpec, *, conflict_policy: str = ConflictPolicy.SKIP, created_by=None) -> TargetBatchSummary:
    """Create targets for many users; one user's failure never rolls back another's.

    Spec-level validation errors (bad quota, inverted period, custom
    breakdown not summing to the total) are raised before anyone is touched.
    """
    spec = spec.validated()
    spec.plan()
    if conflict_policy not in ConflictPolicy.CHOICES:
        raise DomainValidationError("conflict_policy", f"Politique attendue parmi: {', '.join(ConflictPolicy.CHOICES)}.")

    summary = TargetBatchSummary()
    for user in users:
        try:
            target, conflict = create_targets_for_user(
                user, spec, conflict_policy=conflict_policy, created_by=created_by
            )
        except DomainError as exc:
            summary.errored += 1
            summary.errors.append({"user_id": str(user.pk), "error": str(exc)})
            continue
        except Exception as exc:
            logger.exception("Target creation failed for user=%s", user.pk)
            summary.errored += 1
            summary.errors.append({"user_id": str(user.pk), "error": str(exc)})
            continue
        if conflict is not None:
            summary.skipped += 1
            summary.conflicts.append(conflict)
        else:
            summary.created += 1
            summary.target_ids.append(str(target.pk))

    logger.info(
        "Target batch: created=%d skipped=%d errored=%d policy=%s",
        summary.created,
        summary.skipped,
        summary.errored,
        conflict_policy,
    )
    return summary


def resolve_conflicts(company, decisions, spec: TargetSpec, *, created_by=None) -> TargetBatchSummary:
    """Apply an explicit decision per previously flagged user.

    ``decisions`` is an iterable of ``{"user_id": ..., "action": replace|keep|concurrent}``.
    """
    from accounts.models import User

    spec = spec.validated()
    spec.plan()
    summary = TargetBatchSummary()
    for decision in decisions:
        user_id = decision.get("user_id")
        action = decision.get("action")
        if action not in ConflictDecision.CHOICES:
            summary.errored += 1
            summary.errors.append({"user_id": str(user_id), "error": f"Decision inconnue: {action}"})
            continue
        if action == ConflictDecision.KEEP:
            summary.skipped += 1
            continue
        user = User.objects.filter(pk=user_id, company=company, is_active=True).first()
        if user is None:
            summary.errored += 1
            summary.errors.append({"user_id": str(user_id), "error": "Utilisateur introuvable."})
            continue
        policy = ConflictPolicy.REPLACE if action == ConflictDecision.REPLACE else ConflictPolicy.CONCURRENT
        try:
            target, _conflict = create_targets_for_user(user, spec, conflict_policy=policy, created_by=created_by)
        except DomainError as exc:
            summary.errored += 1
            summary.errors.append({"user_id": str(user.pk), "error": str(exc)})
            continue
        except Exception as exc:
            logger.exception("Conflict resolution failed for user=%s", user.pk)
            summary.errored += 1
            summary.errors.append({"user_id": str(user.pk), "error": str(exc)})
            continue
        summary.created += 1
        summary.target_ids.append(str(target.pk))
    logger.info(
        "Target conflicts resolved: created=%d skipped=%d errored=%d",
        summary.created,
        summary.skipped,
        summary.errored,
    )
    return summary


def backfill_target_names(company=None) -> int:
    """Rename targets whose stored name differs from the derived one."""
    qs = Target.objects.select_related("user")
    if company is not None:
        qs = qs.filter(company=company)
    renamed = 0
    for target in qs.iterator():
        expected = target.derived_name()
        if expected and target.name != expected:
            Target.objects.filter(pk=target.pk).update(name=expected)
            renamed += 1
    if renamed:
        logger.info("Target names backfilled: %d", renamed)
    return renamed
