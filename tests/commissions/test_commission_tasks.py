"""Tests for the commission Celery tasks."""
from datetime import date
from decimal import Decimal

import pytest
from django.core import mail

from commissions.calculator import calculate_deal_commission, handle_deal_update
from commissions.models import Commission, CommissionStatus
from commissions.tasks import (
    handle_deal_stage_change,
    recalculate_company_commissions,
    recalculate_missing_commissions,
    send_commission_notification,
)
from core.exceptions import InvalidTransitionError


@pytest.fixture(autouse=True)
def quiet_notifications(monkeypatch):
    monkeypatch.setattr("commissions.notifications.notify_pending_approval", lambda commission: None)


@pytest.mark.django_db
class TestDealStageTask:
    def test_returns_outcome(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user)

        result = handle_deal_stage_change(deal_id=str(deal.pk), old_stage="Negotiation", new_stage="Closed Won")

        assert result["action"] == "calculated"
        assert result["commission_id"] == str(Commission.objects.get(deal=deal).pk)

    def test_domain_refusal_is_not_retried(self, monkeypatch, sales_user, make_deal):
        def refuse(deal_id, old_stage, new_stage):
            raise InvalidTransitionError("paid", "void")

        monkeypatch.setattr("commissions.calculator.handle_deal_update", refuse)
        deal = make_deal(sales_user)

        result = handle_deal_stage_change(deal_id=str(deal.pk), old_stage="Closed Won", new_stage="Closed Lost")

        assert result["action"] == "refused"


@pytest.mark.django_db
class TestNotificationTask:
    def test_delivers_email(self, manager_user, sales_user, make_commission):
        commission = make_commission(sales_user)

        sent = send_commission_notification(
            kind="rejected",
            commission_id=str(commission.pk),
            deal_id=str(commission.deal_id),
            target_user_ids=[str(sales_user.pk)],
            company_id=str(commission.company_id),
        )

        assert sent == 1
        assert mail.outbox[0].to == ["sales@test.com"]

    def test_missing_commission(self, company):
        sent = send_commission_notification(
            kind="approved",
            commission_id="00000000-0000-0000-0000-000000000000",
            deal_id="",
            target_user_ids=[],
            company_id=str(company.pk),
        )
        assert sent == 0

    def test_notifier_failure_returns_zero(self, monkeypatch, sales_user, make_commission):
        class Broken:
            def send(self, event):
                raise RuntimeError("smtp down")

        monkeypatch.setattr("commissions.notifications.get_notifier", lambda: Broken())
        commission = make_commission(sales_user)

        sent = send_commission_notification(
            kind="approved",
            commission_id=str(commission.pk),
            deal_id=str(commission.deal_id),
            target_user_ids=[str(sales_user.pk)],
            company_id=str(commission.company_id),
        )

        assert sent == 0


@pytest.mark.django_db
class TestRecalculationTasks:
    def test_missing_commissions(self, sales_user, manager_user, make_target, make_deal):
        make_target(sales_user)
        make_deal(sales_user)
        make_deal(manager_user)

        result = recalculate_missing_commissions()

        assert result == {"processed": 2, "succeeded": 1, "skipped": 1, "errored": 0}
        assert Commission.objects.count() == 1

    def test_voided_commission_of_won_deal_is_reinstated_once_target_exists(
        self, sales_user, make_target, make_deal
    ):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        handle_deal_update(deal.pk, "Closed Won", "Closed Lost")
        target.is_active = False
        target.save()
        handle_deal_update(deal.pk, "Closed Lost", "Closed Won")
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.VOIDED

        assert recalculate_missing_commissions() == {"processed": 1, "succeeded": 0, "skipped": 1, "errored": 0}

        make_target(sales_user, rate=Decimal("0.12"))
        result = recalculate_missing_commissions()

        assert result == {"processed": 1, "succeeded": 1, "skipped": 0, "errored": 0}
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.CALCULATED
        assert commission.commission_amount == Decimal("12000.00")
        deal.refresh_from_db()
        assert deal.commission_amount == Decimal("12000.00")

    def test_company_recalculation(self, company, sales_user, make_target, make_deal):
        make_target(sales_user)
        make_deal(sales_user, close_date=date(2025, 2, 1))
        make_deal(sales_user, amount=Decimal("5000"), close_date=date(2025, 9, 1))

        result = recalculate_company_commissions(
            company_id=str(company.pk), period_start="2025-01-01", period_end="2025-06-30"
        )

        assert result["processed"] == 1
        assert result["succeeded"] == 1
        assert result["errors"] == []
