"""Commission calculation for closed deals and the deal lifecycle hook."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q, Sum
from django.utils import timezone

from core.exceptions import NoActiveTargetError
from core.money import ZERO, percentage, quantize_money, quantize_rate, to_decimal
from commissions.models import Commission, CommissionApproval, CommissionRule, CommissionStatus
from commissions.rules import DealContext, RuleSpec, evaluate_rules
from commissions.state_machine import CommissionAction, system_transition
from deals.models import CLOSED_WON_STAGES, Deal, is_closed_won
from targets.resolver import resolve_active_target

logger = logging.getLogger("quotaflow")

RECALCULABLE_STATUSES = frozenset({CommissionStatus.CALCULATED, CommissionStatus.PENDING_REVIEW})


def closed_won_q(prefix: str = "") -> Q:
    query = Q()
    for stage in sorted(CLOSED_WON_STAGES):
        query |= Q(**{f"{prefix}stage__iexact": stage})
    return query


@dataclass
class CommissionComputation:
    """Outcome of the money maths for one deal, before anything is stored."""

    target: object
    commission_amount: Decimal
    commission_rate: Decimal
    base_commission: Decimal
    quota_amount: Decimal
    prior_sales: Decimal
    attainment_pct: Decimal
    details: dict = field(default_factory=dict)


def user_sales_total(user_id, period_start: date, period_end: date, *, exclude_deal_id=None) -> Decimal:
    """Closed-won sales of ``user_id`` with a close date inside the period."""
    qs = Deal.objects.filter(closed_won_q(), user_id=user_id, close_date__range=(period_start, period_end))
    if exclude_deal_id is not None:
        qs = qs.exclude(pk=exclude_deal_id)
    return qs.aggregate(total=Sum("amount"))["total"] or ZERO


def load_active_rules(company_id, on_date: date) -> list[RuleSpec]:
    rules = (
        CommissionRule.objects.filter(company_id=company_id, is_active=True, effective_from__lte=on_date)
        .filter(Q(effective_to__isnull=True) | Q(effective_to__gte=on_date))
        .prefetch_related("tiers")
    )
    return [RuleSpec.from_model(rule) for rule in rules]


def _reference_date(deal) -> date:
    return deal.close_date or timezone.localdate()


def resolve_target_for_deal(deal):
    on = _reference_date(deal)
    target = resolve_active_target(deal.user_id, on, on, company_id=deal.company_id)
    if target is None:
        raise NoActiveTargetError(deal.user_id, on)
    return target


def compute_commission(deal, target, *, use_advanced_rules: bool = False) -> CommissionComputation:
    amount = to_decimal(deal.amount)
    prior = user_sales_total(deal.user_id, target.period_start, target.period_end, exclude_deal_id=deal.pk)
    quota = to_decimal(target.quota_amount)
    flat = amount * target.commission_rate
    total = flat
    rate = target.commission_rate
    details = {"engine": "flat", "target_id": str(target.pk), "applied_rules": []}

    if use_advanced_rules:
        rules = load_active_rules(deal.company_id, _reference_date(deal))
        evaluation = evaluate_rules(
            rules,
            DealContext(
                amount=amount,
                stage=deal.stage,
                product_type=deal.product_type,
                product_category=deal.product_category,
                prior_sales=prior,
                quota=quota,
            ),
        )
        if evaluation.matched:
            total = evaluation.total
            rate = quantize_rate(total / amount) if amount else ZERO
            details.update(engine="rules", applied_rules=[a.as_dict() for a in evaluation.applied])
        else:
            details["rules_fallback"] = True

    return CommissionComputation(
        target=target,
        commission_amount=quantize_money(total),
        commission_rate=rate,
        base_commission=quantize_money(flat),
        quota_amount=quota,
        prior_sales=prior,
        attainment_pct=quantize_money(percentage(prior + amount, quota)),
        details=details,
    )


def _write_deal_cache(deal, computation: CommissionComputation, now) -> None:
    Deal.objects.filter(pk=deal.pk).update(
        commission_rate=computation.commission_rate,
        commission_amount=computation.commission_amount,
        commission_calculated_at=now,
    )
    deal.commission_rate = computation.commission_rate
    deal.commission_amount = computation.commission_amount
    deal.commission_calculated_at = now


def _commission_values(deal, computation: CommissionComputation, now, actor_label: str) -> dict:
    target = computation.target
    return {
        "user_id": deal.user_id,
        "company_id": deal.company_id,
        "target": target,
        "target_name": target.name or target.derived_name(),
        "period_start": target.period_start,
        "period_end": target.period_end,
        "quota_amount": computation.quota_amount,
        "actual_amount": to_decimal(deal.amount),
        "attainment_pct": computation.attainment_pct,
        "commission_rate": computation.commission_rate,
        "commission_amount": computation.commission_amount,
        "base_commission": computation.base_commission,
        "calculation_details": computation.details,
        "calculated_at": now,
        "calculated_by": actor_label,
    }


def _should_auto_approve(commission: Commission) -> bool:
    ceiling = to_decimal(getattr(settings, "COMMISSION_AUTO_APPROVE_CEILING", "1000"))
    return commission.commission_amount <= ceiling and not commission.company.is_trial


def _after_calculation(commission: Commission) -> Commission:
    """Auto-approve small commissions, otherwise tell managers."""
    from commissions import notifications

    if commission.status != CommissionStatus.CALCULATED:
        return commission
    if _should_auto_approve(commission):
        return system_transition(
            commission,
            CommissionAction.APPROVE,
            notes="Approbation automatique",
            metadata={"auto_approved": True, "ceiling": str(getattr(settings, "COMMISSION_AUTO_APPROVE_CEILING", "1000"))},
            changes={"approved_at": timezone.now()},
        )
    notifications.notify_pending_approval(commission)
    return commission


def calculate_deal_commission(deal, *, recalculate: bool = False, use_advanced_rules: bool | None = None,
                              create_audit_record: bool = True, actor=None):
    """Compute (and by default persist) the commission of a closed-won deal.

    Returns ``None`` for deals that are not closed won, the existing row
    when one exists and ``recalculate`` is false, and otherwise the created
    or updated :class:`Commission` (or the bare computation when
    ``create_audit_record`` is false). Raises :class:`NoActiveTargetError`
    when no target governs the deal; nothing is written in that case.
    """
    if not is_closed_won(deal.stage):
        return None
    if use_advanced_rules is None:
        use_advanced_rules = getattr(settings, "COMMISSION_USE_ADVANCED_RULES", False)

    existing = Commission.objects.filter(deal_id=deal.pk).first()
    if existing is not None and not recalculate:
        return existing
    if existing is not None and existing.status not in RECALCULABLE_STATUSES:
        logger.info("Commission %s left untouched (status=%s)", existing.pk, existing.status)
        return existing

    target = resolve_target_for_deal(deal)
    computation = compute_commission(deal, target, use_advanced_rules=use_advanced_rules)
    now = timezone.now()
    actor_label = getattr(actor, "label", None) or getattr(actor, "email", None) or "system"

    with transaction.atomic():
        _write_deal_cache(deal, computation, now)
        if not create_audit_record:
            return computation
        values = _commission_values(deal, computation, now, actor_label)
        if existing is None:
            try:
                with transaction.atomic():
                    commission = Commission.objects.create(deal=deal, status=CommissionStatus.CALCULATED, **values)
            except IntegrityError:
                # Another worker created it first.
                return Commission.objects.get(deal_id=deal.pk)
            audit_action = CommissionAction.CALCULATE
            previous_status = ""
        else:
            updated = Commission.objects.filter(pk=existing.pk, status__in=RECALCULABLE_STATUSES).update(
                updated_at=now, **values
            )
            if not updated:
                return Commission.objects.get(pk=existing.pk)
            commission = Commission.objects.get(pk=existing.pk)
            audit_action = CommissionAction.RECALCULATE
            previous_status = commission.status

        CommissionApproval.objects.create(
            commission=commission,
            action=audit_action,
            performed_by_id=getattr(actor, "id", None),
            actor_label=actor_label,
            previous_status=previous_status,
            new_status=commission.status,
            metadata={
                "engine": computation.details["engine"],
                "commission_amount": str(computation.commission_amount),
                "commission_rate": str(computation.commission_rate),
                "applied_rules": computation.details["applied_rules"],
            },
        )

    logger.info(
        "Commission %s for deal %s: %s @ %s (%s)",
        audit_action,
        deal.pk,
        commission.commission_amount,
        commission.commission_rate,
        computation.details["engine"],
    )
    if audit_action == CommissionAction.CALCULATE:
        commission = _after_calculation(commission)
    return commission


@dataclass
class DealUpdateOutcome:
    action: str
    commission_id: str | None = None
    detail: str = ""


def reinstate_deal_commission(deal, commission, *, notes: str = "", metadata=None):
    """Bring a voided commission back for a deal that is closed won again.

    The governing target is resolved first; without one the commission
    stays voided and :class:`NoActiveTargetError` propagates. The reinstate
    and the recalculation commit together.
    """
    resolve_target_for_deal(deal)
    with transaction.atomic():
        system_transition(commission, CommissionAction.REINSTATE, notes=notes, metadata=metadata)
        commission = calculate_deal_commission(deal, recalculate=True)
    return _after_calculation(commission)


def handle_deal_update(deal_id, old_stage, new_stage) -> DealUpdateOutcome:
    """React to a deal stage change coming from the CRM side."""
    was_won, is_won = is_closed_won(old_stage), is_closed_won(new_stage)
    if was_won == is_won:
        return DealUpdateOutcome(action="noop")

    deal = Deal.objects.select_related("company").get(pk=deal_id)

    if is_won:
        commission = Commission.objects.filter(deal_id=deal.pk).first()
        if commission is not None and commission.status == CommissionStatus.VOIDED:
            try:
                commission = reinstate_deal_commission(
                    deal,
                    commission,
                    notes="Affaire de nouveau gagnee",
                    metadata={"old_stage": old_stage, "new_stage": new_stage},
                )
            except NoActiveTargetError as exc:
                logger.warning("Deal %s won again without active target, commission stays voided: %s", deal.pk, exc)
                return DealUpdateOutcome(action="skipped", commission_id=str(commission.pk), detail=str(exc))
            return DealUpdateOutcome(action="reinstated", commission_id=str(commission.pk))
        try:
            commission = calculate_deal_commission(deal)
        except NoActiveTargetError as exc:
            logger.warning("Deal %s closed won without active target: %s", deal.pk, exc)
            return DealUpdateOutcome(action="skipped", detail=str(exc))
        return DealUpdateOutcome(action="calculated", commission_id=str(commission.pk) if commission else None)

    deal.clear_commission_cache()
    commission = Commission.objects.filter(deal_id=deal.pk).first()
    if commission is None:
        return DealUpdateOutcome(action="cleared")
    if commission.status in (CommissionStatus.PAID, CommissionStatus.VOIDED):
        return DealUpdateOutcome(action="unchanged", commission_id=str(commission.pk), detail=commission.status)
    system_transition(
        commission,
        CommissionAction.VOID,
        notes="Affaire sortie de l'etape gagnee",
        metadata={"old_stage": old_stage, "new_stage": new_stage},
    )
    return DealUpdateOutcome(action="voided", commission_id=str(commission.pk))


@dataclass
class RecalculationSummary:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    errored: int = 0
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "errored": self.errored,
            "errors": self.errors,
        }


def recalculate_deals(deals, *, recalculate: bool = True, use_advanced_rules: bool | None = None) -> RecalculationSummary:
    """Run the calculator over many deals, each in its own transaction."""
    summary = RecalculationSummary()
    for deal in deals:
        summary.processed += 1
        try:
            with transaction.atomic():
                locked = Deal.objects.select_for_update().get(pk=deal.pk)
                calculate_deal_commission(locked, recalculate=recalculate, use_advanced_rules=use_advanced_rules)
        except NoActiveTargetError:
            summary.skipped += 1
        except Exception as exc:
            logger.exception("Commission recalculation failed for deal=%s", deal.pk)
            summary.errored += 1
            summary.errors.append({"deal_id": str(deal.pk), "error": str(exc)})
        else:
            summary.succeeded += 1
    return summary


def deals_missing_commission(company=None):
    qs = Deal.objects.filter(closed_won_q(), commission__isnull=True).select_related("company")
    if company is not None:
        qs = qs.filter(company=company)
    return qs.order_by("close_date")


def deals_with_voided_commission(company=None):
    """Closed-won deals whose commission is still voided, waiting for a target."""
    qs = Deal.objects.filter(closed_won_q(), commission__status=CommissionStatus.VOIDED).select_related("company")
    if company is not None:
        qs = qs.filter(company=company)
    return qs.order_by("close_date")


def reinstate_voided_commissions(deals) -> RecalculationSummary:
    summary = RecalculationSummary()
    for deal in deals:
        summary.processed += 1
        try:
            with transaction.atomic():
                locked = Deal.objects.select_for_update().select_related("company").get(pk=deal.pk)
                commission = Commission.objects.get(deal_id=locked.pk)
                if commission.status != CommissionStatus.VOIDED or not is_closed_won(locked.stage):
                    summary.skipped += 1
                    continue
                reinstate_deal_commission(locked, commission, notes="Objectif disponible, commission retablie")
        except NoActiveTargetError:
            summary.skipped += 1
        except Exception as exc:
            logger.exception("Commission reinstatement failed for deal=%s", deal.pk)
            summary.errored += 1
            summary.errors.append({"deal_id": str(deal.pk), "error": str(exc)})
        else:
            summary.succeeded += 1
    return summary


def recalculate_commissions(company, *, user_ids=None, period_start=None, period_end=None,
                            use_advanced_rules: bool | None = None) -> RecalculationSummary:
    """Recalculate every closed-won deal of ``company`` matching the filters.

    Approved, paid and voided commissions are counted as succeeded but left
    as they are by the calculator.
    """
    deals = Deal.objects.filter(closed_won_q(), company=company).select_related("company")
    if user_ids:
        deals = deals.filter(user_id__in=user_ids)
    if period_start is not None:
        deals = deals.filter(close_date__gte=period_start)
    if period_end is not None:
        deals = deals.filter(close_date__lte=period_end)
    summary = recalculate_deals(deals.order_by("close_date"), use_advanced_rules=use_advanced_rules)
    logger.info(
        "Recalculated commissions for company=%s processed=%d errored=%d",
        company.pk,
        summary.processed,
        summary.errored,
    )
    return summary
