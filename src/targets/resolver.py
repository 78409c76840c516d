"""Active target resolution.

Several active targets can overlap for one user (an annual parent and its
monthly children, or targets created with the ``concurrent`` policy). Every
consumer that needs "the" target for a user and a period goes through
:func:`select_governing_target` so they all agree on the winner.
"""
from __future__ import annotations

from datetime import date, datetime

from django.db.models import Q

from targets.models import Target


def target_precedence_key(target) -> tuple:
    """Sort key: children first, then newest ``created_at``, then id.

    Lower sorts first. Works on model instances and on any object exposing
    ``parent_target_id``, ``created_at`` and ``id``.
    """
    created = target.created_at
    stamp = created.timestamp() if isinstance(created, datetime) else 0.0
    return (0 if target.parent_target_id else 1, -stamp, str(target.id))


def select_governing_target(candidates):
    ordered = sorted(candidates, key=target_precedence_key)
    return ordered[0] if ordered else None


def _reference_window(period_start, period_end=None) -> tuple[date, date]:
    if isinstance(period_start, datetime):
        period_start = period_start.date()
    if isinstance(period_end, datetime):
        period_end = period_end.date()
    return period_start, period_end or period_start


def candidate_targets(user_id, period_start, period_end=None, company_id=None):
    start, end = _reference_window(period_start, period_end)
    qs = Target.objects.active().overlapping(start, end).filter(user_id=user_id)
    if company_id is not None:
        qs = qs.filter(company_id=company_id)
    return qs.select_related("user", "parent_target")


def resolve_active_target(user_id, period_start, period_end=None, company_id=None):
    """Governing active target for ``user_id`` over the reference period, or None."""
    return select_governing_target(candidate_targets(user_id, period_start, period_end, company_id))


def resolve_active_targets(user_ids, period_start, period_end=None, company_id=None) -> dict:
    """Batch variant used by team aggregation: ``{user_id: target | None}``."""
    start, end = _reference_window(period_start, period_end)
    qs = Target.objects.active().overlapping(start, end).filter(user_id__in=list(user_ids))
    if company_id is not None:
        qs = qs.filter(company_id=company_id)
    grouped: dict = {str(user_id): [] for user_id in user_ids}
    for target in qs.select_related("user", "parent_target"):
        grouped.setdefault(str(target.user_id), []).append(target)
    return {user_id: select_governing_target(targets) for user_id, targets in grouped.items()}


def overlapping_active_targets(user_id, period_start, period_end):
    """Every active target intersecting the range (conflict detection)."""
    return (
        Target.objects.active()
        .filter(user_id=user_id)
        .filter(Q(period_start__lte=period_end) & Q(period_end__gte=period_start))
        .order_by("period_start")
    )
