"""Signals: forward deal stage changes to the commission lifecycle hook."""
from __future__ import annotations

import logging

from django.db import transaction
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


def _queue_stage_change(*, deal_id, old_stage, new_stage) -> None:
    def _dispatch() -> None:
        try:
            from commissions.tasks import handle_deal_stage_change

            handle_deal_stage_change.delay(
                deal_id=str(deal_id),
                old_stage=old_stage,
                new_stage=new_stage,
            )
        except Exception as exc:
            # Never let a signal crash the CRM write that triggered it.
            logger.error("commission stage hook dispatch failed: %s", exc, exc_info=True)

    # Queue after DB commit so the worker reads the committed deal.
    transaction.on_commit(_dispatch)


@receiver(pre_save, sender="deals.Deal")
def on_deal_pre_save(sender, instance, **kwargs):
    """Capture previous stage to detect transitions in post_save."""
    if instance._state.adding:
        instance._previous_stage = None
        return
    previous = sender.objects.filter(pk=instance.pk).only("stage").first()
    instance._previous_stage = getattr(previous, "stage", None)


@receiver(post_save, sender="deals.Deal")
def on_deal_saved(sender, instance, created, **kwargs):
    previous_stage = getattr(instance, "_previous_stage", None)
    if not created and previous_stage == instance.stage:
        return
    if created and not instance.is_closed_won:
        return
    _queue_stage_change(
        deal_id=instance.pk,
        old_stage=previous_stage,
        new_stage=instance.stage,
    )
