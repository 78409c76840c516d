"""Email helpers used by the notification collaborator."""

from __future__ import annotations

import logging
from typing import Sequence

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

logger = logging.getLogger("quotaflow")


def send_templated_email(
    *,
    subject: str,
    template_name: str,
    context: dict,
    recipient_list: Sequence[str],
    from_email: str | None = None,
) -> int:
    """Render ``<template_name>.txt`` / ``.html`` and send them as one message.

    Recipients without an address are dropped. Returns the number of
    messages sent (0 when nobody is left to receive it).
    """
    recipients = [address for address in recipient_list if address]
    if not recipients:
        logger.debug("Email %s skipped: no recipient", template_name)
        return 0

    context = {"currency": getattr(settings, "CURRENCY", ""), **context}
    text_body = render_to_string(f"{template_name}.txt", context).strip()
    html_body = render_to_string(f"{template_name}.html", context)

    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=from_email or getattr(settings, "DEFAULT_FROM_EMAIL", None),
        to=recipients,
    )
    message.attach_alternative(html_body, "text/html")
    sent = message.send()
    logger.info("Email %s sent to %d recipient(s)", template_name, len(recipients))
    return sent
