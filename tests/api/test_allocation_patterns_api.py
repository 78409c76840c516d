from datetime import date

import pytest

from targets.models import AllocationPattern, Target
from targets.patterns import create_pattern


def _unwrap_results(payload):
    if isinstance(payload, dict) and "results" in payload:
        return payload["results"]
    return payload


PERIODS = [
    {"name": "H1", "period_start": "2025-01-01", "period_end": "2025-06-30", "allocation_pct": "40"},
    {"name": "H2", "period_start": "2025-07-01", "period_end": "2025-12-31", "allocation_pct": "60"},
]


@pytest.mark.django_db
def test_admin_creates_pattern(admin_client, admin_user):
    response = admin_client.post(
        "/api/v1/allocation-patterns/",
        {"name": "Semestres", "periods": PERIODS},
        format="json",
    )

    assert response.status_code == 201
    body = response.json()
    assert [p["name"] for p in body["periods"]] == ["H1", "H2"]
    assert body["targets_count"] == 0
    assert AllocationPattern.objects.get(pk=body["id"]).created_by == admin_user


@pytest.mark.django_db
def test_percentages_must_total_hundred(admin_client):
    periods = [PERIODS[0], dict(PERIODS[1], allocation_pct="50")]
    response = admin_client.post(
        "/api/v1/allocation-patterns/", {"name": "Faux", "periods": periods}, format="json"
    )

    assert response.status_code == 400
    assert "periods" in response.json()
    assert not AllocationPattern.objects.exists()


@pytest.mark.django_db
def test_duplicate_name_is_a_conflict(admin_client, company):
    create_pattern(company, name="Semestres", periods=PERIODS)

    response = admin_client.post(
        "/api/v1/allocation-patterns/", {"name": "Semestres", "periods": PERIODS}, format="json"
    )

    assert response.status_code == 409


@pytest.mark.django_db
def test_manager_cannot_write_but_can_read(manager_client, company):
    create_pattern(company, name="Semestres", periods=PERIODS)

    assert manager_client.post(
        "/api/v1/allocation-patterns/", {"name": "Autre", "periods": PERIODS}, format="json"
    ).status_code == 403
    response = manager_client.get("/api/v1/allocation-patterns/")
    assert response.status_code == 200
    assert [p["name"] for p in _unwrap_results(response.json())] == ["Semestres"]


@pytest.mark.django_db
def test_list_hides_inactive_and_other_companies(sales_client, company, other_company):
    create_pattern(company, name="Actif", periods=PERIODS)
    inactive = create_pattern(company, name="Ancien", periods=PERIODS)
    AllocationPattern.objects.filter(pk=inactive.pk).update(is_active=False)
    create_pattern(other_company, name="Ailleurs", periods=PERIODS)

    names = [p["name"] for p in _unwrap_results(sales_client.get("/api/v1/allocation-patterns/").json())]
    assert names == ["Actif"]
    names = [
        p["name"]
        for p in _unwrap_results(sales_client.get("/api/v1/allocation-patterns/?include_inactive=true").json())
    ]
    assert names == ["Actif", "Ancien"]


@pytest.mark.django_db
def test_periods_for_a_year(sales_client, company):
    pattern = create_pattern(
        company,
        name="Deux ans",
        periods=[
            {"name": "2025", "period_start": "2025-01-01", "period_end": "2025-12-31", "allocation_pct": "50"},
            {"name": "2026", "period_start": "2026-01-01", "period_end": "2026-12-31", "allocation_pct": "50"},
        ],
    )

    response = sales_client.get(f"/api/v1/allocation-patterns/{pattern.pk}/periods/?year=2026")

    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["2026"]
    assert sales_client.get(f"/api/v1/allocation-patterns/{pattern.pk}/periods/?year=abc").status_code == 400


@pytest.mark.django_db
def test_update_replaces_periods(admin_client, company):
    pattern = create_pattern(company, name="Semestres", periods=PERIODS)
    periods = [dict(PERIODS[0], allocation_pct="50"), dict(PERIODS[1], allocation_pct="50")]

    response = admin_client.patch(
        f"/api/v1/allocation-patterns/{pattern.pk}/", {"periods": periods}, format="json"
    )

    assert response.status_code == 200
    assert [p["allocation_pct"] for p in response.json()["periods"]] == ["50.000", "50.000"]
    assert response.json()["name"] == "Semestres"


@pytest.mark.django_db
def test_delete_is_a_soft_deactivation(admin_client, company):
    pattern = create_pattern(company, name="Semestres", periods=PERIODS)

    response = admin_client.delete(f"/api/v1/allocation-patterns/{pattern.pk}/")

    assert response.status_code == 204
    pattern.refresh_from_db()
    assert not pattern.is_active


@pytest.mark.django_db
def test_seasonal_targets_from_pattern(manager_client, company, sales_user):
    pattern = create_pattern(company, name="Semestres", periods=PERIODS)

    response = manager_client.post(
        "/api/v1/targets/",
        {
            "user_ids": [str(sales_user.pk)],
            "quota_amount": "100000",
            "commission_rate": "0.10",
            "period_start": "2025-01-01",
            "period_end": "2025-12-31",
            "distribution_method": "seasonal",
            "allocation_pattern": str(pattern.pk),
        },
        format="json",
    )

    assert response.status_code == 201
    parent = Target.objects.get(pk=response.json()["target_ids"][0])
    assert parent.allocation_pattern_id == pattern.pk
    assert [c.period_end for c in parent.children.order_by("period_start")] == [
        date(2025, 6, 30),
        date(2025, 12, 31),
    ]


@pytest.mark.django_db
def test_foreign_pattern_is_rejected_for_targets(manager_client, other_company, sales_user):
    pattern = create_pattern(other_company, name="Ailleurs", periods=PERIODS)

    response = manager_client.post(
        "/api/v1/targets/",
        {
            "user_ids": [str(sales_user.pk)],
            "quota_amount": "100000",
            "commission_rate": "0.10",
            "period_start": "2025-01-01",
            "period_end": "2025-12-31",
            "distribution_method": "seasonal",
            "allocation_pattern": str(pattern.pk),
        },
        format="json",
    )

    assert response.status_code == 400
    assert "allocation_pattern" in response.json()
    assert not Target.objects.exists()
