"""Commission approval workflow.

Every status change goes through :func:`transition` (human actors) or
:func:`system_transition` (calculator, auto-approval, deal reversal). Both
apply the change with a conditional ``UPDATE ... WHERE status = <expected>``
and append exactly one :class:`CommissionApproval` row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import (
    ActionNotPermittedError,
    DomainError,
    DomainValidationError,
    InvalidTransitionError,
)
from core.money import ZERO, quantize_money, to_decimal
from commissions.models import Commission, CommissionApproval, CommissionStatus

logger = logging.getLogger("quotaflow")

SYSTEM_ACTOR = "system"


class CommissionAction:
    CALCULATE = "calculate"
    RECALCULATE = "recalculate"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGE = "request_change"
    ADJUST_AND_APPROVE = "adjust_and_approve"
    PAY = "pay"
    VOID = "void"
    REINSTATE = "reinstate"

    USER_ACTIONS = (REVIEW, APPROVE, REJECT, REQUEST_CHANGE, ADJUST_AND_APPROVE, PAY)
    BULK_ACTIONS = (APPROVE, REJECT)


S = CommissionStatus
A = CommissionAction

TRANSITIONS = {
    (S.CALCULATED, A.REVIEW): S.PENDING_REVIEW,
    (S.CALCULATED, A.APPROVE): S.APPROVED,
    (S.CALCULATED, A.ADJUST_AND_APPROVE): S.APPROVED,
    (S.CALCULATED, A.REJECT): S.REJECTED,
    (S.PENDING_REVIEW, A.APPROVE): S.APPROVED,
    (S.PENDING_REVIEW, A.ADJUST_AND_APPROVE): S.APPROVED,
    (S.PENDING_REVIEW, A.REJECT): S.REJECTED,
    (S.PENDING_REVIEW, A.REQUEST_CHANGE): S.PENDING_REVIEW,
    (S.APPROVED, A.PAY): S.PAID,
    (S.APPROVED, A.REJECT): S.REJECTED,
    (S.REJECTED, A.REVIEW): S.PENDING_REVIEW,
}

# Reachable only from the calculator / deal lifecycle hook.
SYSTEM_TRANSITIONS = {
    (S.CALCULATED, A.VOID): S.VOIDED,
    (S.PENDING_REVIEW, A.VOID): S.VOIDED,
    (S.APPROVED, A.VOID): S.VOIDED,
    (S.REJECTED, A.VOID): S.VOIDED,
    (S.VOIDED, A.REINSTATE): S.CALCULATED,
}

ADMIN_ACTIONS = frozenset({A.PAY})
MANAGER_ACTIONS = frozenset({A.REVIEW, A.APPROVE, A.REJECT, A.REQUEST_CHANGE, A.ADJUST_AND_APPROVE})
BULK_SOURCE_STATUSES = frozenset({S.CALCULATED, S.PENDING_REVIEW})


def next_status(status: str, action: str, *, system: bool = False) -> str:
    """Target status for ``action`` from ``status`` or :class:`InvalidTransitionError`."""
    new_status = TRANSITIONS.get((status, action))
    if new_status is None and system:
        new_status = SYSTEM_TRANSITIONS.get((status, action))
    if new_status is None:
        raise InvalidTransitionError(status, action)
    return new_status


def allowed_actions(status: str) -> list[str]:
    return [action for (source, action) in TRANSITIONS if source == status]


def _check_permission(principal, commission: Commission, action: str) -> None:
    if not principal.same_company(commission.company_id):
        raise ActionNotPermittedError("Cette commission n'appartient pas a votre entreprise.")
    if action in ADMIN_ACTIONS and not principal.is_admin:
        raise ActionNotPermittedError("Seul un administrateur peut marquer une commission comme payee.")
    if action in MANAGER_ACTIONS and not principal.is_manager:
        raise ActionNotPermittedError("Action reservee aux managers et administrateurs.")


def _apply(commission: Commission, *, action: str, audit_action: str, new_status: str,
           performed_by_id, actor_label: str, notes: str = "", metadata=None, changes=None) -> Commission:
    now = timezone.now()
    expected = commission.status
    with transaction.atomic():
        updated = Commission.objects.filter(pk=commission.pk, status=expected).update(
            status=new_status, updated_at=now, **(changes or {})
        )
        if not updated:
            current = Commission.objects.filter(pk=commission.pk).values_list("status", flat=True).first()
            raise InvalidTransitionError(
                current or expected,
                action,
                message=f"Statut modifie entre-temps ('{expected}' attendu, '{current}' trouve).",
            )
        CommissionApproval.objects.create(
            commission_id=commission.pk,
            action=audit_action,
            performed_by_id=performed_by_id,
            actor_label=actor_label,
            previous_status=expected,
            new_status=new_status,
            notes=notes or "",
            metadata=metadata or {},
        )
    commission.refresh_from_db()
    logger.info(
        "Commission %s: %s %s -> %s by %s",
        commission.pk,
        audit_action,
        expected,
        new_status,
        actor_label,
    )
    return commission


def _as_datetime(value):
    if value is None:
        return timezone.now()
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value)
    if isinstance(value, date):
        return timezone.make_aware(datetime.combine(value, time(12, 0)))
    raise DomainValidationError("payment_date", "Date de paiement invalide.")


def _adjustment_changes(commission: Commission, amount, reason: str) -> tuple[dict, dict]:
    min_length = getattr(settings, "COMMISSION_ADJUSTMENT_REASON_MIN_LENGTH", 10)
    max_length = getattr(settings, "COMMISSION_ADJUSTMENT_REASON_MAX_LENGTH", 500)
    reason = (reason or "").strip()
    if not min_length <= len(reason) <= max_length:
        raise DomainValidationError(
            "adjustment_reason", f"Le motif doit contenir entre {min_length} et {max_length} caracteres."
        )
    if amount is None or amount == "":
        raise DomainValidationError("adjustment_amount", "Le montant ajuste est obligatoire.")
    try:
        new_amount = to_decimal(amount)
    except ValueError:
        raise DomainValidationError("adjustment_amount", "Montant invalide.")
    if new_amount < ZERO:
        raise DomainValidationError("adjustment_amount", "Le montant ajuste ne peut pas etre negatif.")
    new_amount = quantize_money(new_amount)
    original = commission.original_amount if commission.original_amount is not None else commission.commission_amount
    changes = {
        "original_amount": original,
        "commission_amount": new_amount,
        "adjustment_reason": reason,
    }
    metadata = {
        "adjusted": True,
        "original_amount": str(commission.commission_amount),
        "adjusted_amount": str(new_amount),
        "reason": reason,
    }
    return changes, metadata


def transition(commission: Commission, action: str, principal, *, notes: str = "",
               adjustment_amount=None, adjustment_reason: str = "", payment_reference: str = "",
               payment_date=None, metadata=None) -> Commission:
    """Apply a user-initiated workflow action on behalf of ``principal``."""
    if action not in A.USER_ACTIONS:
        raise InvalidTransitionError(commission.status, action)
    new_status = next_status(commission.status, action)
    _check_permission(principal, commission, action)

    now = timezone.now()
    audit_action = action
    audit_metadata = dict(metadata or {})
    changes = {}

    if action in (A.REVIEW, A.REQUEST_CHANGE):
        changes = {"reviewed_at": now, "reviewed_by_id": principal.id}
        if action == A.REQUEST_CHANGE:
            audit_metadata["requested_change"] = True
    elif action == A.APPROVE:
        changes = {"approved_at": now, "approved_by_id": principal.id}
    elif action == A.ADJUST_AND_APPROVE:
        changes, adjustment = _adjustment_changes(commission, adjustment_amount, adjustment_reason)
        changes.update(approved_at=now, approved_by_id=principal.id)
        audit_metadata.update(adjustment)
        audit_action = A.APPROVE
    elif action == A.REJECT:
        if notes:
            audit_metadata["reason"] = notes
    elif action == A.PAY:
        reference = (payment_reference or "").strip()
        if not reference:
            raise DomainValidationError("payment_reference", "La reference de paiement est obligatoire.")
        changes = {"paid_at": _as_datetime(payment_date), "payment_reference": reference}
        audit_metadata["payment_reference"] = reference

    commission = _apply(
        commission,
        action=action,
        audit_action=audit_action,
        new_status=new_status,
        performed_by_id=principal.id,
        actor_label=principal.label or principal.id,
        notes=notes,
        metadata=audit_metadata,
        changes=changes,
    )

    from commissions import notifications

    if new_status == S.APPROVED:
        notifications.notify_approved(commission)
    elif new_status == S.REJECTED:
        notifications.notify_rejected(commission)
    return commission


def system_transition(commission: Commission, action: str, *, notes: str = "", metadata=None, changes=None) -> Commission:
    """Apply an automated transition (auto-approval, void, reinstate)."""
    new_status = next_status(commission.status, action, system=True)
    return _apply(
        commission,
        action=action,
        audit_action=action,
        new_status=new_status,
        performed_by_id=None,
        actor_label=SYSTEM_ACTOR,
        notes=notes,
        metadata=metadata,
        changes=changes,
    )


@dataclass
class BulkActionResult:
    processed: int = 0
    failed: int = 0
    commission_ids: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "commission_ids": self.commission_ids,
            "errors": self.errors,
        }


def _run_batch(commission_ids, principal, apply_one, *, allowed_statuses=None) -> BulkActionResult:
    result = BulkActionResult()
    wanted = [str(pk) for pk in commission_ids]
    found = {
        str(c.pk): c
        for c in Commission.objects.filter(pk__in=wanted, company_id=principal.company_id)
    }
    for pk in wanted:
        commission = found.get(pk)
        if commission is None:
            result.failed += 1
            result.errors.append({"id": pk, "error": "Commission introuvable."})
            continue
        if allowed_statuses is not None and commission.status not in allowed_statuses:
            result.failed += 1
            result.errors.append({"id": pk, "error": f"Statut '{commission.status}' non eligible."})
            continue
        try:
            apply_one(commission)
        except DomainError as exc:
            result.failed += 1
            result.errors.append({"id": pk, "error": str(exc)})
            continue
        result.processed += 1
        result.commission_ids.append(pk)
    return result


def bulk_transition(commission_ids, action: str, principal, *, notes: str = "") -> BulkActionResult:
    """Approve or reject many commissions; each one succeeds or fails on its own."""
    if action not in A.BULK_ACTIONS:
        raise DomainValidationError("action", "Actions groupees autorisees: approve, reject.")
    if not principal.is_manager:
        raise ActionNotPermittedError("Action reservee aux managers et administrateurs.")
    result = _run_batch(
        commission_ids,
        principal,
        lambda c: transition(c, action, principal, notes=notes, metadata={"bulk": True}),
        allowed_statuses=BULK_SOURCE_STATUSES,
    )
    logger.info("Bulk %s: processed=%d failed=%d", action, result.processed, result.failed)
    return result


def mark_paid(commission_ids, principal, *, payment_reference: str, payment_date=None, notes: str = "") -> BulkActionResult:
    """Batch payment of approved commissions (admins only)."""
    if not principal.is_admin:
        raise ActionNotPermittedError("Seul un administrateur peut marquer des commissions comme payees.")
    if not (payment_reference or "").strip():
        raise DomainValidationError("payment_reference", "La reference de paiement est obligatoire.")
    result = _run_batch(
        commission_ids,
        principal,
        lambda c: transition(
            c,
            A.PAY,
            principal,
            notes=notes,
            payment_reference=payment_reference,
            payment_date=payment_date,
            metadata={"batch": True},
        ),
    )
    logger.info("Batch payment %s: processed=%d failed=%d", payment_reference, result.processed, result.failed)
    return result
