"""Tests for mixed-granularity commission aggregation."""
from collections import Counter
from datetime import date
from decimal import Decimal

import pytest

from commissions.aggregation import PeriodRecord, aggregate, bucket_for, dedupe_months, slice_by_month
from core.money import quantize_money

D = Decimal


def annual(user_id="u1", quota="365000", actual="0", commission="0", allocations=None):
    return PeriodRecord(
        user_id=user_id,
        period_start=date(2025, 1, 1),
        period_end=date(2025, 12, 31),
        quota=D(quota),
        actual=D(actual),
        commission=D(commission),
        allocations=allocations,
        commission_ids=["annual"],
    )


def monthly(month, user_id="u1", quota="50000", actual="0", commission="0"):
    end = {2: 28, 4: 30, 6: 30, 9: 30, 11: 30}.get(month, 31)
    return PeriodRecord(
        user_id=user_id,
        period_start=date(2025, month, 1),
        period_end=date(2025, month, end),
        quota=D(quota),
        actual=D(actual),
        commission=D(commission),
        commission_ids=[f"m{month}"],
    )


class TestSlicing:
    def test_day_weighted_slices(self):
        slices = slice_by_month(annual())
        assert len(slices) == 12
        assert quantize_money(slices[0].quota) == D("31000.00")
        assert quantize_money(slices[1].quota) == D("28000.00")
        assert quantize_money(sum(s.quota for s in slices)) == D("365000.00")

    def test_seasonal_shares_weight_quarters(self):
        quarters = [
            ("2025-01-01", "2025-03-31", "40"),
            ("2025-04-01", "2025-06-30", "20"),
            ("2025-07-01", "2025-09-30", "20"),
            ("2025-10-01", "2025-12-31", "20"),
        ]
        record = annual(
            quota="1000",
            allocations=[{"period_start": s, "period_end": e, "share_pct": p} for s, e, p in quarters],
        )

        rows = aggregate([record], "quarterly")

        assert [r.label for r in rows] == ["2025-Q1", "2025-Q2", "2025-Q3", "2025-Q4"]
        assert [quantize_money(r.quota) for r in rows] == [D("400.00"), D("200.00"), D("200.00"), D("200.00")]


class TestDeduplication:
    def test_one_record_per_user_and_month(self):
        records = [annual(), monthly(3), monthly(4)]

        winners = dedupe_months(records, schedule_months=1)

        assert len(winners) == 12
        assert winners[("u1", 2025, 3)].record.commission_ids == ["m3"]
        assert winners[("u1", 2025, 1)].record.commission_ids == ["annual"]

    def test_monthly_view_never_double_counts(self):
        records = [annual(actual="120000", commission="12000"), monthly(3, actual="30000", commission="3000")]

        rows = aggregate(records, "monthly", schedule_months=1)

        assert len(rows) == 12
        months = Counter(month for row in rows for month in row.months)
        assert set(months.values()) == {1}
        march = next(r for r in rows if r.label == "2025-03")
        assert march.actual == D("30000")
        assert march.commission == D("3000")
        assert march.quota == D("50000")

    def test_schedule_prefers_matching_length(self):
        quarter = PeriodRecord(
            user_id="u1",
            period_start=date(2025, 1, 1),
            period_end=date(2025, 3, 31),
            quota=D("90000"),
            commission_ids=["q1"],
        )
        winners = dedupe_months([monthly(2), quarter], schedule_months=3)
        assert winners[("u1", 2025, 2)].record.commission_ids == ["q1"]

        winners = dedupe_months([monthly(2), quarter], schedule_months=1)
        assert winners[("u1", 2025, 2)].record.commission_ids == ["m2"]

    def test_newest_start_breaks_ties(self):
        early = PeriodRecord("u1", date(2025, 3, 1), date(2025, 3, 31), commission_ids=["early"])
        late = PeriodRecord("u1", date(2025, 3, 10), date(2025, 4, 9), commission_ids=["late"])

        winners = dedupe_months([early, late], schedule_months=1)

        assert winners[("u1", 2025, 3)].record.commission_ids == ["late"]

    def test_users_are_kept_apart(self):
        rows = aggregate([monthly(5, user_id="u1"), monthly(5, user_id="u2")], "monthly")
        assert [(r.user_id, r.label) for r in rows] == [("u1", "2025-05"), ("u2", "2025-05")]


class TestBuckets:
    @pytest.mark.parametrize(
        "granularity,expected",
        [
            ("monthly", ("2025-05", date(2025, 5, 1), date(2025, 5, 31))),
            ("quarterly", ("2025-Q2", date(2025, 4, 1), date(2025, 6, 30))),
            ("yearly", ("2025", date(2025, 1, 1), date(2025, 12, 31))),
        ],
    )
    def test_labels(self, granularity, expected):
        assert bucket_for(2025, 5, granularity) == expected

    def test_unknown_granularity(self):
        with pytest.raises(ValueError):
            aggregate([], "weekly")

    def test_bounds_drop_outside_months(self):
        rows = aggregate([annual()], "monthly", period_start=date(2025, 6, 15), period_end=date(2025, 8, 1))
        assert [r.label for r in rows] == ["2025-06", "2025-07", "2025-08"]

    def test_yearly_rollup(self):
        rows = aggregate([annual(actual="100000")], "yearly")
        assert len(rows) == 1
        assert quantize_money(rows[0].actual) == D("100000.00")
        assert rows[0].as_dict()["attainment_pct"] == "27.40"
