"""Shared fixtures for all tests."""
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from companies.models import Company, Team
from deals.models import Deal
from targets.models import Target

User = get_user_model()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def company(db):
    return Company.objects.create(
        name="Ferris Analytics",
        code="FERRIS",
        currency="GBP",
        subscription_plan=Company.SubscriptionPlan.PROFESSIONAL,
    )


@pytest.fixture
def trial_company(db):
    return Company.objects.create(
        name="Trial Ltd",
        code="TRIAL",
        subscription_plan=Company.SubscriptionPlan.TRIAL,
    )


@pytest.fixture
def other_company(db):
    return Company.objects.create(name="Other Co", code="OTHER")


@pytest.fixture
def team(company):
    return Team.objects.create(company=company, name="Inside Sales")


@pytest.fixture
def admin_user(company):
    return User.objects.create_user(
        email="admin@test.com",
        password="TestPass123!",
        first_name="Ada",
        last_name="Admin",
        role=User.Role.ADMIN,
        company=company,
    )


@pytest.fixture
def manager_user(company):
    return User.objects.create_user(
        email="manager@test.com",
        password="TestPass123!",
        first_name="Maya",
        last_name="Manager",
        role=User.Role.MANAGER,
        company=company,
    )


@pytest.fixture
def sales_user(company):
    return User.objects.create_user(
        email="sales@test.com",
        password="TestPass123!",
        first_name="Alfie",
        last_name="Ferris",
        role=User.Role.SALES,
        company=company,
    )


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client


@pytest.fixture
def manager_client(api_client, manager_user):
    api_client.force_authenticate(user=manager_user)
    return api_client


@pytest.fixture
def sales_client(api_client, sales_user):
    api_client.force_authenticate(user=sales_user)
    return api_client


@pytest.fixture
def make_target(company):
    def _make(user, *, period_start=date(2025, 1, 1), period_end=date(2025, 12, 31),
              quota=Decimal("1000000"), rate=Decimal("0.10"), parent=None, **extra):
        extra.setdefault("period_type", Target.PeriodType.ANNUAL)
        extra.setdefault(
            "distribution_method",
            Target.DistributionMethod.CHILD if parent else Target.DistributionMethod.ONE_TIME,
        )
        return Target.objects.create(
            company=user.company or company,
            user=user,
            period_start=period_start,
            period_end=period_end,
            quota_amount=quota,
            commission_rate=rate,
            parent_target=parent,
            **extra,
        )

    return _make


@pytest.fixture
def make_deal(company):
    def _make(user, *, amount=Decimal("100000"), stage="Closed Won", close_date=date(2025, 3, 15), **extra):
        return Deal.objects.create(
            company=user.company or company,
            user=user,
            name=extra.pop("name", f"Deal {amount}"),
            amount=amount,
            stage=stage,
            close_date=close_date,
            **extra,
        )

    return _make


@pytest.fixture
def make_commission(make_deal):
    from commissions.models import Commission, CommissionStatus

    def _make(user, *, amount=Decimal("10000"), status=CommissionStatus.CALCULATED, deal=None,
              period_start=date(2025, 1, 1), period_end=date(2025, 12, 31), **extra):
        deal = deal or make_deal(user)
        return Commission.objects.create(
            deal=deal,
            user=user,
            company=deal.company,
            period_start=period_start,
            period_end=period_end,
            quota_amount=extra.pop("quota_amount", Decimal("1000000")),
            actual_amount=deal.amount,
            commission_rate=Decimal("0.10"),
            commission_amount=amount,
            base_commission=amount,
            status=status,
            **extra,
        )

    return _make
