"""Signals: deactivate a user's targets when the user is offboarded."""
from __future__ import annotations

import logging

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(pre_save, sender="accounts.User")
def on_user_pre_save(sender, instance, **kwargs):
    """Capture previous activity flag to detect offboarding in post_save."""
    if instance._state.adding:
        instance._was_active = None
        return
    previous = sender.objects.filter(pk=instance.pk).only("is_active").first()
    instance._was_active = getattr(previous, "is_active", None)


@receiver(post_save, sender="accounts.User")
def on_user_saved(sender, instance, created, **kwargs):
    if created or instance.is_active:
        return
    if getattr(instance, "_was_active", None) is not True:
        return
    from targets.services import deactivate_user_targets

    count = deactivate_user_targets(instance)
    logger.info("User %s offboarded: %d target(s) deactivated", instance.pk, count)
