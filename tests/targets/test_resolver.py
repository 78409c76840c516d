"""Tests for active target resolution."""
from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from targets.models import Target
from targets.resolver import resolve_active_target, resolve_active_targets


@pytest.mark.django_db
class TestResolveActiveTarget:
    def test_child_beats_parent(self, sales_user, make_target):
        parent = make_target(sales_user)
        child = make_target(
            sales_user,
            period_start=date(2025, 3, 1),
            period_end=date(2025, 3, 31),
            quota=Decimal("80000"),
            parent=parent,
            period_type=Target.PeriodType.MONTHLY,
        )
        assert resolve_active_target(sales_user.pk, date(2025, 3, 15)) == child
        assert resolve_active_target(sales_user.pk, date(2025, 4, 15)) == parent

    def test_most_recent_wins_among_parentless(self, sales_user, make_target):
        older = make_target(sales_user)
        newer = make_target(sales_user, period_type=Target.PeriodType.CUSTOM)
        Target.objects.filter(pk=older.pk).update(created_at=timezone.now() - timedelta(days=3))
        assert resolve_active_target(sales_user.pk, date(2025, 6, 1)) == newer

    def test_period_length_does_not_break_ties(self, sales_user, make_target):
        quarter = make_target(sales_user, period_start=date(2025, 4, 1), period_end=date(2025, 6, 30))
        annual = make_target(sales_user)
        Target.objects.filter(pk=quarter.pk).update(created_at=timezone.now() - timedelta(days=3))
        assert resolve_active_target(sales_user.pk, date(2025, 5, 1)) == annual

    def test_inactive_targets_are_ignored(self, sales_user, make_target):
        make_target(sales_user, is_active=False)
        assert resolve_active_target(sales_user.pk, date(2025, 6, 1)) is None

    def test_reference_period_overlap(self, sales_user, make_target):
        target = make_target(sales_user, period_start=date(2025, 4, 1), period_end=date(2025, 6, 30))
        assert resolve_active_target(sales_user.pk, date(2025, 3, 1), date(2025, 4, 1)) == target
        assert resolve_active_target(sales_user.pk, date(2025, 7, 1)) is None

    def test_scoped_to_company(self, sales_user, make_target, other_company):
        make_target(sales_user)
        assert resolve_active_target(sales_user.pk, date(2025, 6, 1), company_id=other_company.pk) is None

    def test_batch_resolution(self, sales_user, manager_user, make_target):
        target = make_target(sales_user)
        resolved = resolve_active_targets([sales_user.pk, manager_user.pk], date(2025, 5, 1))
        assert resolved[str(sales_user.pk)] == target
        assert resolved[str(manager_user.pk)] is None
