from datetime import date
from decimal import Decimal

import pytest

from accounts.principal import Principal
from commissions.models import CommissionStatus
from commissions.state_machine import transition


@pytest.mark.django_db
def test_periods_requires_a_window(manager_client):
    response = manager_client.get("/api/v1/commission-reports/periods/")
    assert response.status_code == 400


@pytest.mark.django_db
def test_periods_rejects_unknown_granularity(manager_client):
    response = manager_client.get(
        "/api/v1/commission-reports/periods/",
        {"start": "2025-01-01", "end": "2025-12-31", "granularity": "weekly"},
    )
    assert response.status_code == 400


@pytest.mark.django_db
def test_periods_quarterly(manager_client, sales_user, make_commission):
    make_commission(sales_user, amount=Decimal("1200"), period_start=date(2025, 1, 1), period_end=date(2025, 3, 31))

    response = manager_client.get(
        "/api/v1/commission-reports/periods/",
        {"start": "2025-01-01", "end": "2025-12-31", "granularity": "quarterly"},
    )

    assert response.status_code == 200
    [row] = response.json()["rows"]
    assert row["period"] == "2025-Q1"
    assert row["commission"] == "1200.00"


@pytest.mark.django_db
def test_summary(manager_client, sales_user, make_commission):
    make_commission(sales_user, amount=Decimal("300"))

    response = manager_client.get("/api/v1/commission-reports/summary/")

    assert response.status_code == 200
    assert response.json()["by_status"]["calculated"] == {"count": 1, "total": "300.00"}


@pytest.mark.django_db
def test_payment_ready(admin_client, sales_user, make_commission):
    make_commission(sales_user, amount=Decimal("300"), status=CommissionStatus.APPROVED)

    response = admin_client.get("/api/v1/commission-reports/payment-ready/")

    assert response.status_code == 200
    assert response.json()["total"] == "300.00"


@pytest.mark.django_db
def test_audit_trail_is_paginated(manager_client, manager_user, sales_user, make_commission):
    commission = transition(make_commission(sales_user), "approve", Principal.from_user(manager_user))

    response = manager_client.get("/api/v1/commission-reports/audit-trail/")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["results"][0]["commission"] == str(commission.pk)
    assert body["results"][0]["action"] == "approve"


@pytest.mark.django_db
def test_reports_are_for_managers(sales_client):
    assert sales_client.get("/api/v1/commission-reports/summary/").status_code == 403
