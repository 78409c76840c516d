"""Read-side reporting over commissions and targets.

Views and tasks call these functions so the query logic lives in one place.
"""
import logging
from decimal import Decimal

from django.db.models import Count, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.money import ZERO, percentage, quantize_money
from commissions.aggregation import aggregate, records_from_commissions
from commissions.calculator import closed_won_q
from commissions.models import Commission, CommissionApproval, CommissionStatus

logger = logging.getLogger("quotaflow")

MONEY_ZERO = Value(Decimal("0.00"))


# ---------------------------------------------------------------------------
# Period reporting
# ---------------------------------------------------------------------------

def period_report(company, period_start, period_end, granularity="monthly", user_ids=None):
    """Commission totals per user and view bucket, one record per user-month."""
    qs = (
        Commission.objects.filter(
            company=company,
            period_start__lte=period_end,
            period_end__gte=period_start,
        )
        .exclude(status=CommissionStatus.VOIDED)
        .select_related("target", "target__parent_target")
    )
    if user_ids:
        qs = qs.filter(user_id__in=user_ids)
    rows = aggregate(
        records_from_commissions(qs),
        granularity,
        schedule_months=company.payment_schedule_months,
        period_start=period_start,
        period_end=period_end,
    )
    return {
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "granularity": granularity,
        "payment_schedule": company.payment_schedule,
        "rows": [row.as_dict() for row in rows],
    }


def status_summary(company, period_start=None, period_end=None):
    """Count and amount per status, optionally restricted to a calculation window."""
    qs = Commission.objects.filter(company=company)
    if period_start is not None:
        qs = qs.filter(calculated_at__date__gte=period_start)
    if period_end is not None:
        qs = qs.filter(calculated_at__date__lte=period_end)

    rows = {
        row["status"]: row
        for row in qs.values("status").annotate(
            count=Count("id"),
            total=Coalesce(Sum("commission_amount"), MONEY_ZERO),
        )
    }
    by_status = {
        status: {
            "count": rows.get(status, {}).get("count", 0),
            "total": str(quantize_money(rows.get(status, {}).get("total", ZERO))),
        }
        for status in CommissionStatus.values
    }
    return {
        "by_status": by_status,
        "count": sum(entry["count"] for entry in by_status.values()),
        "total": str(quantize_money(sum((row["total"] for row in rows.values()), ZERO))),
    }


def payment_ready_summary(company):
    """Approved commissions grouped by seller, ready for a payment batch."""
    rows = (
        Commission.objects.filter(company=company, status=CommissionStatus.APPROVED)
        .values("pk", "user_id", "user__email", "user__first_name", "user__last_name", "commission_amount")
        .order_by("user__last_name", "user__first_name", "user_id", "calculated_at")
    )
    by_user = {}
    for row in rows:
        entry = by_user.get(row["user_id"])
        if entry is None:
            entry = by_user[row["user_id"]] = {
                "user_id": str(row["user_id"]),
                "email": row["user__email"],
                "name": f"{row['user__first_name']} {row['user__last_name']}".strip(),
                "count": 0,
                "total": ZERO,
                "commission_ids": [],
            }
        entry["count"] += 1
        entry["total"] += row["commission_amount"]
        entry["commission_ids"].append(str(row["pk"]))
    users = [{**entry, "total": str(quantize_money(entry["total"]))} for entry in by_user.values()]
    return {
        "currency": company.currency,
        "users": users,
        "count": sum(u["count"] for u in users),
        "total": str(quantize_money(sum((Decimal(u["total"]) for u in users), ZERO))),
    }


def pending_approval_count(user) -> dict:
    """Commissions awaiting a decision from ``user``.

    Admins count the whole company; managers count the members of the teams
    they manage plus themselves, or the whole company when they manage no
    team. Sales users never approve, so their count is zero.
    """
    role = getattr(user, "role", None)
    if not (user.is_superuser or role in ("ADMIN", "MANAGER")):
        return {"count": 0, "requires_action": False}
    qs = Commission.objects.filter(
        company_id=user.company_id,
        status__in=[CommissionStatus.CALCULATED, CommissionStatus.PENDING_REVIEW],
    )
    if role == "MANAGER" and not user.is_superuser:
        teams = user.managed_teams.filter(is_active=True)
        if teams.exists():
            qs = qs.filter(Q(user__team__in=teams) | Q(user=user))
    count = qs.count()
    return {"count": count, "requires_action": count > 0}


def audit_trail(company, period_start=None, period_end=None, user=None):
    """Audit entries of the company's commissions, oldest first."""
    qs = CommissionApproval.objects.filter(commission__company=company).select_related(
        "commission", "performed_by"
    )
    if period_start is not None:
        qs = qs.filter(performed_at__date__gte=period_start)
    if period_end is not None:
        qs = qs.filter(performed_at__date__lte=period_end)
    if user is not None:
        qs = qs.filter(Q(commission__user=user) | Q(performed_by=user))
    return qs.order_by("performed_at", "id")


# ---------------------------------------------------------------------------
# Quota progress
# ---------------------------------------------------------------------------

def _progress_entry(user, target, sales: Decimal) -> dict:
    if target is None:
        return {
            "user_id": str(user.pk),
            "user": user.get_full_name() or user.email,
            "target": None,
            "sales": str(quantize_money(sales)),
            "attainment_pct": None,
        }
    return {
        "user_id": str(user.pk),
        "user": user.get_full_name() or user.email,
        "target": {
            "id": str(target.pk),
            "name": target.name,
            "period_start": target.period_start.isoformat(),
            "period_end": target.period_end.isoformat(),
            "quota_amount": str(target.quota_amount),
        },
        "sales": str(quantize_money(sales)),
        "attainment_pct": str(quantize_money(percentage(sales, target.quota_amount))),
        "remaining": str(quantize_money(max(target.quota_amount - sales, ZERO))),
    }


def quota_progress(user, on_date=None):
    """Closed-won sales against the governing target on ``on_date``."""
    from commissions.calculator import user_sales_total
    from targets.resolver import resolve_active_target

    on_date = on_date or timezone.localdate()
    target = resolve_active_target(user.pk, on_date, on_date, company_id=user.company_id)
    if target is None:
        return _progress_entry(user, None, ZERO)
    return _progress_entry(user, target, user_sales_total(user.pk, target.period_start, target.period_end))


def team_quota_progress(company, on_date=None, team=None):
    """Quota progress for every active seller, targets resolved in one pass."""
    from accounts.models import User
    from deals.models import Deal
    from targets.resolver import resolve_active_targets

    on_date = on_date or timezone.localdate()
    users = User.objects.filter(company=company, is_active=True).order_by("last_name", "first_name")
    if team is not None:
        users = users.filter(team=team)
    users = list(users)
    targets = resolve_active_targets([u.pk for u in users], on_date, on_date, company_id=company.pk)

    entries = []
    for user in users:
        target = targets.get(str(user.pk))
        sales = ZERO
        if target is not None:
            sales = Deal.objects.filter(
                closed_won_q(),
                user=user,
                close_date__range=(target.period_start, target.period_end),
            ).aggregate(total=Coalesce(Sum("amount"), MONEY_ZERO))["total"]
        entries.append(_progress_entry(user, target, sales))
    return {"date": on_date.isoformat(), "users": entries}
