"""Tests for target clean-up when a user leaves."""
from datetime import date

import pytest

from accounts.principal import Principal
from targets.models import Target


@pytest.mark.django_db
class TestOffboarding:
    def test_deactivating_user_deactivates_targets(self, sales_user, make_target):
        annual = make_target(sales_user)
        march = make_target(
            sales_user,
            period_start=date(2025, 3, 1),
            period_end=date(2025, 3, 31),
            parent=annual,
            period_type="monthly",
        )

        sales_user.is_active = False
        sales_user.save()

        assert not Target.objects.filter(pk__in=[annual.pk, march.pk], is_active=True).exists()

    def test_other_saves_leave_targets_alone(self, sales_user, make_target):
        target = make_target(sales_user)

        sales_user.first_name = "Alfred"
        sales_user.save()

        target.refresh_from_db()
        assert target.is_active


class TestPrincipal:
    def test_roles(self):
        class Stub:
            pk = "u1"
            company_id = "c1"
            email = "a@test.com"
            is_superuser = False

        admin = Stub()
        admin.role = "ADMIN"
        seller = Stub()
        seller.role = "SALES"

        assert Principal.from_user(admin).is_manager
        assert Principal.from_user(admin).is_admin
        assert not Principal.from_user(seller).is_manager
        assert Principal.from_user(seller).same_company("c1")
        assert not Principal.from_user(seller).same_company("c2")

    def test_user_without_company(self):
        class Stub:
            pk = "u1"
            company_id = None
            role = "ADMIN"

        principal = Principal.from_user(Stub())
        assert principal.company_id is None
        assert not principal.same_company("c1")
