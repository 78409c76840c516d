"""Tests for commission calculation on closed-won deals."""
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from commissions.calculator import (
    CommissionComputation,
    calculate_deal_commission,
    deals_missing_commission,
    recalculate_commissions,
    reinstate_deal_commission,
    user_sales_total,
)
from commissions.models import Commission, CommissionApproval, CommissionRule, CommissionStatus
from commissions.state_machine import CommissionAction, system_transition
from core.exceptions import NoActiveTargetError

User = get_user_model()


@pytest.fixture
def pending_notifications(monkeypatch):
    sent = []
    monkeypatch.setattr(
        "commissions.notifications.notify_pending_approval",
        lambda commission: sent.append(commission.pk),
    )
    return sent


@pytest.mark.django_db
class TestFlatCalculation:
    def test_amount_times_target_rate(self, sales_user, make_target, make_deal, pending_notifications):
        target = make_target(sales_user)
        deal = make_deal(sales_user)

        commission = calculate_deal_commission(deal)

        assert commission.commission_amount == Decimal("10000.00")
        assert commission.commission_rate == Decimal("0.10")
        assert commission.status == CommissionStatus.CALCULATED
        assert commission.target_id == target.pk
        assert commission.actual_amount == Decimal("100000")
        assert commission.quota_amount == Decimal("1000000")
        assert commission.attainment_pct == Decimal("10.00")
        assert commission.calculation_details["engine"] == "flat"
        assert pending_notifications == [commission.pk]

    def test_deal_cache_written(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        deal = make_deal(sales_user)

        calculate_deal_commission(deal)

        deal.refresh_from_db()
        assert deal.commission_amount == Decimal("10000.00")
        assert deal.commission_rate == Decimal("0.10")
        assert deal.commission_calculated_at is not None

    def test_second_call_returns_existing_row(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        deal = make_deal(sales_user)

        first = calculate_deal_commission(deal)
        second = calculate_deal_commission(deal)

        assert first.pk == second.pk
        assert Commission.objects.filter(deal=deal).count() == 1
        assert CommissionApproval.objects.filter(commission=first).count() == 1

    def test_audit_entry_for_creation(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        commission = calculate_deal_commission(make_deal(sales_user))

        entry = CommissionApproval.objects.get(commission=commission)
        assert entry.action == "calculate"
        assert entry.actor_label == "system"
        assert entry.previous_status == ""
        assert entry.new_status == CommissionStatus.CALCULATED
        assert entry.metadata["commission_amount"] == "10000.00"

    def test_prior_sales_exclude_the_deal(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        make_deal(sales_user, amount=Decimal("100000"), close_date=date(2025, 2, 1))
        make_deal(sales_user, amount=Decimal("999"), stage="Negotiation", close_date=date(2025, 2, 2))
        deal = make_deal(sales_user, amount=Decimal("50000"), close_date=date(2025, 4, 1))

        commission = calculate_deal_commission(deal)

        assert commission.attainment_pct == Decimal("15.00")
        assert user_sales_total(sales_user.pk, date(2025, 1, 1), date(2025, 12, 31)) == Decimal("150000")
        assert user_sales_total(
            sales_user.pk, date(2025, 1, 1), date(2025, 12, 31), exclude_deal_id=deal.pk
        ) == Decimal("100000")

    def test_open_deal_is_ignored(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        assert calculate_deal_commission(make_deal(sales_user, stage="Proposal")) is None
        assert not Commission.objects.exists()

    def test_no_target_raises_and_writes_nothing(self, sales_user, make_deal):
        deal = make_deal(sales_user)

        with pytest.raises(NoActiveTargetError):
            calculate_deal_commission(deal)

        deal.refresh_from_db()
        assert deal.commission_amount is None
        assert not Commission.objects.exists()

    def test_inactive_target_is_not_used(self, sales_user, make_target, make_deal):
        make_target(sales_user, is_active=False)
        with pytest.raises(NoActiveTargetError):
            calculate_deal_commission(make_deal(sales_user))

    def test_child_target_governs(self, sales_user, make_target, make_deal, pending_notifications):
        annual = make_target(sales_user)
        march = make_target(
            sales_user,
            period_start=date(2025, 3, 1),
            period_end=date(2025, 3, 31),
            quota=Decimal("80000"),
            rate=Decimal("0.12"),
            parent=annual,
            period_type="monthly",
        )

        commission = calculate_deal_commission(make_deal(sales_user))

        assert commission.target_id == march.pk
        assert commission.commission_amount == Decimal("12000.00")
        assert commission.period_start == date(2025, 3, 1)

    def test_computation_only(self, sales_user, make_target, make_deal):
        make_target(sales_user)
        deal = make_deal(sales_user)

        result = calculate_deal_commission(deal, create_audit_record=False)

        assert isinstance(result, CommissionComputation)
        assert result.commission_amount == Decimal("10000.00")
        assert not Commission.objects.exists()
        deal.refresh_from_db()
        assert deal.commission_amount == Decimal("10000.00")


@pytest.mark.django_db
class TestAutoApproval:
    def test_small_commission_is_approved(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        commission = calculate_deal_commission(make_deal(sales_user, amount=Decimal("5000")))

        assert commission.commission_amount == Decimal("500.00")
        assert commission.status == CommissionStatus.APPROVED
        assert commission.approved_at is not None
        assert pending_notifications == []
        actions = set(commission.approvals.values_list("action", flat=True))
        assert actions == {"calculate", "approve"}
        approval = commission.approvals.get(action="approve")
        assert approval.metadata["auto_approved"] is True
        assert approval.actor_label == "system"

    def test_trial_company_needs_review(self, trial_company, make_target, make_deal, pending_notifications):
        seller = User.objects.create_user(
            email="trial@test.com", password="TestPass123!", role=User.Role.SALES, company=trial_company
        )
        make_target(seller)

        commission = calculate_deal_commission(make_deal(seller, amount=Decimal("5000")))

        assert commission.status == CommissionStatus.CALCULATED
        assert pending_notifications == [commission.pk]

    def test_ceiling_is_inclusive(self, settings, sales_user, make_target, make_deal, pending_notifications):
        settings.COMMISSION_AUTO_APPROVE_CEILING = "500"
        make_target(sales_user)
        commission = calculate_deal_commission(make_deal(sales_user, amount=Decimal("5000")))
        assert commission.status == CommissionStatus.APPROVED


@pytest.mark.django_db
class TestRecalculation:
    def test_recalculate_updates_calculated_row(self, sales_user, make_target, make_deal, pending_notifications):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)

        target.commission_rate = Decimal("0.20")
        target.save()
        updated = calculate_deal_commission(deal, recalculate=True)

        assert updated.pk == commission.pk
        assert updated.commission_amount == Decimal("20000.00")
        assert updated.status == CommissionStatus.CALCULATED
        assert commission.approvals.filter(action="recalculate").count() == 1
        assert pending_notifications == [commission.pk]

    def test_recalculating_unchanged_inputs_is_stable(self, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)

        first = calculate_deal_commission(deal, recalculate=True)
        second = calculate_deal_commission(deal, recalculate=True)

        assert first.pk == second.pk == commission.pk
        assert (first.commission_amount, first.commission_rate) == (Decimal("10000.00"), Decimal("0.10"))
        assert (second.commission_amount, second.commission_rate) == (first.commission_amount, first.commission_rate)
        assert second.calculation_details == first.calculation_details
        assert Commission.objects.filter(deal=deal).count() == 1
        assert commission.approvals.filter(action="calculate").count() == 1
        deal.refresh_from_db()
        assert deal.commission_amount == Decimal("10000.00")

    def test_concurrent_creation_returns_existing_row(self, monkeypatch, sales_user, make_target, make_deal,
                                                      make_commission, pending_notifications):
        make_target(sales_user)
        deal = make_deal(sales_user)
        winner = make_commission(sales_user, deal=deal, amount=Decimal("9999.00"))
        real_filter = Commission.objects.filter
        lookups = []

        def first_lookup_misses(*args, **kwargs):
            lookups.append(kwargs)
            if len(lookups) == 1:
                return Commission.objects.none()
            return real_filter(*args, **kwargs)

        monkeypatch.setattr(Commission.objects, "filter", first_lookup_misses)

        result = calculate_deal_commission(deal)

        assert result.pk == winner.pk
        assert result.commission_amount == Decimal("9999.00")
        assert Commission.objects.count() == 1
        assert not CommissionApproval.objects.filter(commission=winner).exists()
        assert pending_notifications == []

    def test_reinstating_without_target_keeps_row_voided(self, sales_user, make_target, make_deal,
                                                         pending_notifications):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        voided = system_transition(commission, CommissionAction.VOID)
        target.is_active = False
        target.save()

        with pytest.raises(NoActiveTargetError):
            reinstate_deal_commission(deal, voided)

        voided.refresh_from_db()
        assert voided.status == CommissionStatus.VOIDED
        assert voided.commission_amount == Decimal("10000.00")
        assert list(voided.approvals.values_list("action", flat=True)) == ["calculate", "void"]

    @pytest.mark.parametrize("status", [CommissionStatus.APPROVED, CommissionStatus.PAID, CommissionStatus.VOIDED])
    def test_settled_rows_are_left_alone(self, status, sales_user, make_target, make_deal, pending_notifications):
        target = make_target(sales_user)
        deal = make_deal(sales_user)
        commission = calculate_deal_commission(deal)
        Commission.objects.filter(pk=commission.pk).update(status=status)

        target.commission_rate = Decimal("0.20")
        target.save()
        result = calculate_deal_commission(deal, recalculate=True)

        assert result.commission_amount == Decimal("10000.00")
        assert result.status == status
        assert not commission.approvals.filter(action="recalculate").exists()

    def test_recalculate_company(self, company, sales_user, manager_user, make_target, make_deal,
                                 pending_notifications):
        make_target(sales_user)
        make_deal(sales_user)
        make_deal(sales_user, amount=Decimal("20000"), close_date=date(2025, 5, 1))
        make_deal(manager_user)
        make_deal(sales_user, stage="Closed Lost")

        summary = recalculate_commissions(company)

        assert summary.processed == 3
        assert summary.succeeded == 2
        assert summary.skipped == 1
        assert summary.errored == 0
        assert Commission.objects.count() == 2

    def test_recalculate_with_filters(self, company, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        make_deal(sales_user, close_date=date(2025, 1, 10))
        make_deal(sales_user, close_date=date(2025, 6, 10))

        summary = recalculate_commissions(
            company, user_ids=[sales_user.pk], period_start=date(2025, 6, 1), period_end=date(2025, 6, 30)
        )

        assert summary.processed == 1
        assert Commission.objects.get().period_end == date(2025, 12, 31)

    def test_missing_commissions_query(self, company, other_company, sales_user, make_target, make_deal,
                                       pending_notifications):
        make_target(sales_user)
        done = make_deal(sales_user)
        calculate_deal_commission(done)
        missing = make_deal(sales_user, amount=Decimal("2000"), stage="closed_won")
        make_deal(sales_user, stage="Proposal")

        assert list(deals_missing_commission()) == [missing]
        assert list(deals_missing_commission(other_company)) == []


@pytest.mark.django_db
class TestAdvancedRules:
    def _rule(self, company, **overrides):
        values = {
            "company": company,
            "name": "Base five",
            "rule_type": "base_rate",
            "priority": 10,
            "config": {"rate": "0.05"},
            "effective_from": date(2025, 1, 1),
        }
        values.update(overrides)
        return CommissionRule.objects.create(**values)

    def test_rules_replace_flat_rate(self, company, sales_user, make_target, make_deal, pending_notifications):
        make_target(sales_user)
        rule = self._rule(company)

        commission = calculate_deal_commission(make_deal(sales_user), use_advanced_rules=True)

        assert commission.commission_amount == Decimal("5000.00")
        assert commission.commission_rate == Decimal("0.050000")
        assert commission.base_commission == Decimal("10000.00")
        details = commission.calculation_details
        assert details["engine"] == "rules"
        assert details["applied_rules"][0]["rule_id"] == str(rule.pk)

    def test_rule_outside_effective_window_is_ignored(self, company, sales_user, make_target, make_deal,
                                                      pending_notifications):
        make_target(sales_user)
        self._rule(company, effective_from=date(2025, 6, 1))
        self._rule(company, name="Expired", effective_to=date(2025, 2, 28))
        self._rule(company, name="Disabled", is_active=False)

        commission = calculate_deal_commission(make_deal(sales_user), use_advanced_rules=True)

        assert commission.commission_amount == Decimal("10000.00")
        assert commission.calculation_details["engine"] == "flat"
        assert commission.calculation_details["rules_fallback"] is True

    def test_settings_switch(self, settings, company, sales_user, make_target, make_deal, pending_notifications):
        settings.COMMISSION_USE_ADVANCED_RULES = True
        make_target(sales_user)
        self._rule(company)

        commission = calculate_deal_commission(make_deal(sales_user))

        assert commission.calculation_details["engine"] == "rules"
