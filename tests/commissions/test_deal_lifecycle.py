"""Tests for the deal stage change hook."""
from decimal import Decimal

import pytest

from commissions.calculator import calculate_deal_commission, handle_deal_update
from commissions.models import Commission, CommissionStatus
from deals.models import Deal


@pytest.fixture(autouse=True)
def quiet_notifications(monkeypatch):
    monkeypatch.setattr("commissions.notifications.notify_pending_approval", lambda commission: None)


def move(deal, stage):
    old_stage = deal.stage
    Deal.objects.filter(pk=deal.pk).update(stage=stage)
    return handle_deal_update(deal.pk, old_stage, stage)


@pytest.mark.django_db
class TestHandleDealUpdate:
    def test_unrelated_stage_change_is_noop(self, sales_user, make_target, make_deal):
        deal = make_deal(sales_user, stage="Proposal")
        assert move(deal, "Negotiation").action == "noop"
        assert handle_deal_update(deal.pk, "Closed Won", "closed_won").action == "noop"

    def test_closing_a_deal_calculates(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user, stage="Negotiation")

        outcome = move(deal, "Closed Won")

        assert outcome.action == "calculated"
        commission = Commission.objects.get(deal=deal)
        assert outcome.commission_id == str(commission.pk)
        assert commission.commission_amount == Decimal("10000.00")

    def test_closing_without_target_is_skipped(self, sales_user, make_deal):
        deal = make_deal(sales_user, stage="Negotiation")

        outcome = move(deal, "Closed Won")

        assert outcome.action == "skipped"
        assert not Commission.objects.exists()

    def test_reopening_voids_and_clears_cache(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)

        outcome = move(deal, "Closed Lost")

        assert outcome.action == "voided"
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.VOIDED
        entry = commission.approvals.get(action="void")
        assert entry.metadata == {"old_stage": "Closed Won", "new_stage": "Closed Lost"}
        deal.refresh_from_db()
        assert deal.commission_amount is None
        assert deal.commission_rate is None
        assert deal.commission_calculated_at is None

    def test_paid_commission_is_untouched(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        Commission.objects.filter(pk=commission.pk).update(status=CommissionStatus.PAID)

        outcome = move(deal, "Closed Lost")

        assert outcome.action == "unchanged"
        assert outcome.detail == CommissionStatus.PAID
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.PAID
        assert commission.commission_amount == Decimal("10000.00")

    def test_reopening_without_commission(self, sales_user, make_deal):
        deal = make_deal(sales_user)
        assert move(deal, "Negotiation").action == "cleared"

    def test_winning_again_reinstates(self, sales_user, make_target, make_deal):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        move(deal, "Closed Lost")
        deal.stage = "Closed Lost"
        target.commission_rate = Decimal("0.15")
        target.save()

        outcome = move(deal, "Closed Won")

        assert outcome.action == "reinstated"
        assert outcome.commission_id == str(commission.pk)
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.CALCULATED
        assert commission.commission_amount == Decimal("15000.00")
        actions = set(commission.approvals.values_list("action", flat=True))
        assert {"calculate", "void", "reinstate", "recalculate"} <= actions
        assert Commission.objects.filter(deal=deal).count() == 1

    def test_winning_again_without_target_stays_voided(self, sales_user, make_target, make_deal):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        move(deal, "Closed Lost")
        deal.stage = "Closed Lost"
        target.is_active = False
        target.save()

        outcome = move(deal, "Closed Won")

        assert outcome.action == "skipped"
        assert outcome.commission_id == str(commission.pk)
        commission.refresh_from_db()
        assert commission.status == CommissionStatus.VOIDED
        assert not commission.approvals.filter(action__in=["reinstate", "recalculate"]).exists()
        deal.refresh_from_db()
        assert deal.commission_amount is None

    def test_reinstated_small_commission_is_auto_approved(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user, amount=Decimal("5000"))
        commission = calculate_deal_commission(deal)
        assert commission.status == CommissionStatus.APPROVED
        move(deal, "Closed Lost")
        deal.stage = "Closed Lost"

        move(deal, "Closed Won")

        commission.refresh_from_db()
        assert commission.status == CommissionStatus.APPROVED


@pytest.mark.django_db
class TestDealSignals:
    def test_saving_a_won_deal_queues_calculation(self, sales_user, make_target, make_deal,
                                                  django_capture_on_commit_callbacks):
        make_target(sales_user)
        deal = make_deal(sales_user, stage="Negotiation")

        with django_capture_on_commit_callbacks(execute=True):
            deal.stage = "Closed Won"
            deal.save()

        assert Commission.objects.filter(deal=deal).exists()

    def test_new_open_deal_queues_nothing(self, sales_user, make_deal, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks() as callbacks:
            make_deal(sales_user, stage="Prospecting")
        assert callbacks == []

    def test_losing_a_deal_voids_through_the_task(self, sales_user, make_target, make_deal,
                                                  django_capture_on_commit_callbacks):
        make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)

        with django_capture_on_commit_callbacks(execute=True):
            deal.stage = "Closed Lost"
            deal.save()

        commission.refresh_from_db()
        assert commission.status == CommissionStatus.VOIDED
