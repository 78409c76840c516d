"""Celery tasks for the commissions module."""
from __future__ import annotations

import logging
from dataclasses import asdict

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def handle_deal_stage_change(self, *, deal_id: str, old_stage: str, new_stage: str):
    """Calculate, reinstate or void the commission of a deal whose stage moved."""
    from core.exceptions import DomainError
    from commissions.calculator import handle_deal_update

    try:
        outcome = handle_deal_update(deal_id, old_stage, new_stage)
    except DomainError as exc:
        # Workflow refusals are final, retrying would not change them.
        logger.warning("Deal %s stage change %s -> %s refused: %s", deal_id, old_stage, new_stage, exc)
        return {"action": "refused", "detail": str(exc)}
    except Exception as exc:
        logger.exception("handle_deal_stage_change failed for deal=%s: %s", deal_id, exc)
        raise self.retry(exc=exc)
    logger.info("Deal %s stage change %s -> %s: %s", deal_id, old_stage, new_stage, outcome.action)
    return asdict(outcome)


@shared_task
def send_commission_notification(*, kind: str, commission_id: str, deal_id: str,
                                 target_user_ids: list, company_id: str):
    """Hand one commission event to the configured notifier."""
    from commissions.notifications import CommissionEvent, get_notifier

    event = CommissionEvent(
        kind=kind,
        commission_id=commission_id,
        deal_id=deal_id,
        target_user_ids=tuple(target_user_ids),
        company_id=company_id,
    )
    try:
        return get_notifier().send(event)
    except Exception as exc:
        logger.warning("Commission notification %s failed for %s: %s", kind, commission_id, exc, exc_info=True)
        return 0


@shared_task
def recalculate_missing_commissions():
    """
    Scheduled daily (Celery Beat). Calculate closed-won deals that still
    have no commission, typically because no target existed at close time,
    and reinstate voided commissions of deals that were won again.
    """
    from commissions.calculator import (
        deals_missing_commission,
        deals_with_voided_commission,
        recalculate_deals,
        reinstate_voided_commissions,
    )

    missing = recalculate_deals(deals_missing_commission(), recalculate=False)
    voided = reinstate_voided_commissions(deals_with_voided_commission())
    result = {
        key: getattr(missing, key) + getattr(voided, key)
        for key in ("processed", "succeeded", "skipped", "errored")
    }
    logger.info(
        "recalculate_missing_commissions: processed=%d succeeded=%d skipped=%d errored=%d",
        result["processed"],
        result["succeeded"],
        result["skipped"],
        result["errored"],
    )
    return result


@shared_task
def recalculate_company_commissions(*, company_id: str, user_ids=None, period_start=None, period_end=None):
    """Admin-triggered recalculation of one company, run off the request cycle."""
    from companies.models import Company
    from commissions.calculator import recalculate_commissions
    from targets.naming import as_date

    company = Company.objects.get(pk=company_id)
    summary = recalculate_commissions(
        company,
        user_ids=user_ids,
        period_start=as_date(period_start),
        period_end=as_date(period_end),
    )
    return summary.as_dict()
