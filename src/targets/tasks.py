"""Celery tasks for the targets module."""
from __future__ import annotations

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def backfill_target_names_task(company_id: str | None = None) -> int:
    """Scheduled daily (Celery Beat). Re-derive stored target names."""
    from companies.models import Company
    from targets.services import backfill_target_names

    company = Company.objects.filter(pk=company_id).first() if company_id else None
    renamed = backfill_target_names(company=company)
    logger.info("backfill_target_names_task renamed=%d company=%s", renamed, company_id)
    return renamed
