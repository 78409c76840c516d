"""Notification collaborator for commission events.

The core only decides *who* should hear about *what*; delivery is handed to
the notifier class named by ``settings.COMMISSION_NOTIFIER`` from a Celery
task queued after the surrounding transaction commits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REJECTED = "rejected"
EVENTS = (PENDING_APPROVAL, APPROVED, REJECTED)


@dataclass(frozen=True)
class CommissionEvent:
    kind: str
    commission_id: str
    deal_id: str
    target_user_ids: tuple[str, ...]
    company_id: str


class EmailNotifier:
    """Default delivery: one templated email per event."""

    subjects = {
        PENDING_APPROVAL: "Commission en attente d'approbation",
        APPROVED: "Votre commission a ete approuvee",
        REJECTED: "Votre commission a ete rejetee",
    }

    def send(self, event: CommissionEvent) -> int:
        from accounts.models import User
        from commissions.models import Commission
        from core.email import send_templated_email

        commission = Commission.objects.select_related("deal", "user").filter(pk=event.commission_id).first()
        if commission is None:
            logger.warning("Notification %s dropped: commission %s not found", event.kind, event.commission_id)
            return 0
        recipients = list(
            User.objects.filter(pk__in=event.target_user_ids, is_active=True).values_list("email", flat=True)
        )
        return send_templated_email(
            subject=self.subjects[event.kind],
            template_name=f"emails/commission_{event.kind}",
            context={"commission": commission, "deal": commission.deal, "seller": commission.user},
            recipient_list=recipients,
        )


def get_notifier():
    return import_string(getattr(settings, "COMMISSION_NOTIFIER", "commissions.notifications.EmailNotifier"))()


def notify(kind: str, commission, deal, target_user_ids, company_id) -> None:
    """Queue delivery of ``kind`` once the current transaction commits."""
    if kind not in EVENTS:
        raise ValueError(f"Unknown commission event: {kind}")
    recipients = tuple(str(pk) for pk in target_user_ids if pk)
    if not recipients:
        logger.debug("Notification %s for commission %s has no recipient", kind, commission.pk)
        return

    payload = {
        "kind": kind,
        "commission_id": str(commission.pk),
        "deal_id": str(getattr(deal, "pk", "") or commission.deal_id),
        "target_user_ids": list(recipients),
        "company_id": str(company_id),
    }

    def _dispatch() -> None:
        try:
            from commissions.tasks import send_commission_notification

            send_commission_notification.delay(**payload)
        except Exception as exc:
            # Delivery problems must never undo a commission write.
            logger.warning("commission notification dispatch failed: %s", exc, exc_info=True)

    transaction.on_commit(_dispatch)


def manager_ids(company_id) -> list:
    from accounts.models import User

    return list(
        User.objects.filter(
            company_id=company_id,
            is_active=True,
            role__in=(User.Role.ADMIN, User.Role.MANAGER),
        ).values_list("pk", flat=True)
    )


def notify_pending_approval(commission) -> None:
    notify(PENDING_APPROVAL, commission, commission.deal, manager_ids(commission.company_id), commission.company_id)


def notify_approved(commission) -> None:
    notify(APPROVED, commission, commission.deal, [commission.user_id], commission.company_id)


def notify_rejected(commission) -> None:
    notify(REJECTED, commission, commission.deal, [commission.user_id], commission.company_id)
