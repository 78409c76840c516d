from datetime import date

import pytest

from targets.models import Target


def _unwrap_results(payload):
    if isinstance(payload, dict) and "results" in payload:
        return payload["results"]
    return payload


def _payload(**overrides):
    payload = {
        "quota_amount": "120000",
        "commission_rate": "0.05",
        "period_start": "2025-01-01",
        "period_end": "2025-12-31",
        "distribution_method": "even",
    }
    payload.update(overrides)
    return payload


@pytest.mark.django_db
def test_manager_creates_even_targets(manager_client, sales_user):
    response = manager_client.post(
        "/api/v1/targets/", _payload(user_ids=[str(sales_user.pk)]), format="json"
    )

    assert response.status_code == 201
    body = response.json()
    assert body["created"] == 1
    assert body["skipped"] == 0
    assert Target.objects.filter(user=sales_user).count() == 13
    parent = Target.objects.get(pk=body["target_ids"][0])
    assert parent.children.count() == 12


@pytest.mark.django_db
def test_existing_target_is_reported_as_conflict(manager_client, sales_user, make_target):
    existing = make_target(sales_user)

    response = manager_client.post(
        "/api/v1/targets/", _payload(user_ids=[str(sales_user.pk)]), format="json"
    )

    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 0
    assert body["skipped"] == 1
    [conflict] = body["conflicts"]
    assert conflict["user_id"] == str(sales_user.pk)
    existing.refresh_from_db()
    assert existing.is_active


@pytest.mark.django_db
def test_create_by_role(manager_client, sales_user, manager_user):
    response = manager_client.post(
        "/api/v1/targets/", _payload(role="SALES", distribution_method="one-time"), format="json"
    )

    assert response.status_code == 201
    assert response.json()["created"] == 1
    assert not Target.objects.filter(user=manager_user).exists()


@pytest.mark.django_db
def test_custom_breakdown_must_sum_to_total(manager_client, sales_user):
    response = manager_client.post(
        "/api/v1/targets/",
        _payload(
            user_ids=[str(sales_user.pk)],
            distribution_method="custom",
            custom_breakdown=[
                {"period_start": "2025-01-01", "period_end": "2025-06-30", "quota_amount": "60000"},
                {"period_start": "2025-07-01", "period_end": "2025-12-31", "quota_amount": "50000"},
            ],
        ),
        format="json",
    )

    assert response.status_code == 400
    assert "custom_breakdown" in response.json()
    assert not Target.objects.exists()


@pytest.mark.django_db
def test_inverted_period_is_rejected(manager_client, sales_user):
    response = manager_client.post(
        "/api/v1/targets/",
        _payload(user_ids=[str(sales_user.pk)], period_start="2025-12-31", period_end="2025-01-01"),
        format="json",
    )
    assert response.status_code == 400
    assert "period_end" in response.json()


@pytest.mark.django_db
def test_sales_cannot_create_targets(sales_client, sales_user):
    response = sales_client.post(
        "/api/v1/targets/", _payload(user_ids=[str(sales_user.pk)]), format="json"
    )
    assert response.status_code == 403


@pytest.mark.django_db
def test_sales_only_sees_own_targets(sales_client, sales_user, manager_user, make_target, other_company):
    own = make_target(sales_user)
    make_target(manager_user)

    response = sales_client.get("/api/v1/targets/")

    assert response.status_code == 200
    assert [t["id"] for t in _unwrap_results(response.json())] == [str(own.pk)]


@pytest.mark.django_db
def test_active_target(sales_client, sales_user, make_target):
    target = make_target(sales_user)

    response = sales_client.get("/api/v1/targets/active/", {"date": "2025-03-15"})

    assert response.status_code == 200
    assert response.json()["id"] == str(target.pk)


@pytest.mark.django_db
def test_no_active_target(sales_client, sales_user, make_target):
    make_target(sales_user)

    response = sales_client.get("/api/v1/targets/active/", {"date": "2030-01-01"})

    assert response.status_code == 404
    assert response.json()["code"] == "no_active_target"


@pytest.mark.django_db
def test_active_target_bad_date(sales_client, sales_user):
    response = sales_client.get("/api/v1/targets/active/", {"date": "15/03/2025"})
    assert response.status_code == 400


@pytest.mark.django_db
def test_delete_is_a_soft_deactivation(manager_client, sales_user, make_target):
    parent = make_target(sales_user)
    child = make_target(
        sales_user, period_start=date(2025, 1, 1), period_end=date(2025, 1, 31), parent=parent, period_type="monthly"
    )

    response = manager_client.delete(f"/api/v1/targets/{parent.pk}/")

    assert response.status_code == 204
    parent.refresh_from_db()
    child.refresh_from_db()
    assert not parent.is_active
    assert not child.is_active
    assert parent.deactivated_at is not None


@pytest.mark.django_db
def test_deactivate_action(manager_client, sales_user, make_target):
    target = make_target(sales_user)

    response = manager_client.post(f"/api/v1/targets/{target.pk}/deactivate/")

    assert response.status_code == 200
    assert response.json() == {"deactivated": 1}


@pytest.mark.django_db
def test_resolve_conflicts_replace(manager_client, sales_user, make_target):
    existing = make_target(sales_user)

    response = manager_client.post(
        "/api/v1/targets/resolve-conflicts/",
        _payload(
            distribution_method="one-time",
            decisions=[{"user_id": str(sales_user.pk), "action": "replace"}],
        ),
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["created"] == 1
    existing.refresh_from_db()
    assert not existing.is_active


@pytest.mark.django_db
def test_progress_for_self(sales_client, sales_user, make_target, make_deal):
    make_target(sales_user, quota=100000)
    make_deal(sales_user, amount=40000)

    response = sales_client.get("/api/v1/targets/progress/", {"date": "2025-06-01"})

    assert response.status_code == 200
    assert response.json()["attainment_pct"] == "40.00"


@pytest.mark.django_db
def test_team_progress_is_for_managers(sales_client, sales_user):
    response = sales_client.get("/api/v1/targets/progress/", {"scope": "team"})
    assert response.status_code == 403


@pytest.mark.django_db
def test_team_progress(manager_client, sales_user, make_target):
    make_target(sales_user)

    response = manager_client.get("/api/v1/targets/progress/", {"scope": "team", "date": "2025-06-01"})

    assert response.status_code == 200
    users = {entry["user_id"]: entry for entry in response.json()["users"]}
    assert users[str(sales_user.pk)]["target"] is not None


@pytest.mark.django_db
def test_backfill_names_is_admin_only(manager_client):
    response = manager_client.post("/api/v1/targets/backfill-names/")
    assert response.status_code == 403


@pytest.mark.django_db
def test_backfill_names(admin_client, sales_user, make_target):
    target = make_target(sales_user, name="old name")

    response = admin_client.post("/api/v1/targets/backfill-names/")

    assert response.status_code == 200
    assert response.json()["renamed"] == 1
    target.refresh_from_db()
    assert target.name == target.derived_name()


@pytest.mark.django_db
def test_manager_updates_rate_and_name(manager_client, sales_user, make_target):
    target = make_target(sales_user)

    response = manager_client.patch(
        f"/api/v1/targets/{target.pk}/", {"commission_rate": "0.12", "name": "AF-2025"}, format="json"
    )

    assert response.status_code == 200
    assert response.json()["commission_rate"] == "0.120000"
    target.refresh_from_db()
    assert target.name == "AF-2025"


@pytest.mark.django_db
def test_quota_of_split_target_cannot_change(manager_client, sales_user):
    manager_client.post("/api/v1/targets/", _payload(user_ids=[str(sales_user.pk)]), format="json")
    parent = Target.objects.get(user=sales_user, parent_target__isnull=True)

    response = manager_client.put(f"/api/v1/targets/{parent.pk}/", {"quota_amount": "150000"}, format="json")

    assert response.status_code == 400
    assert "quota_amount" in response.json()


@pytest.mark.django_db
def test_sales_cannot_update_targets(sales_client, sales_user, make_target):
    target = make_target(sales_user)
    response = sales_client.patch(f"/api/v1/targets/{target.pk}/", {"commission_rate": "0.5"}, format="json")
    assert response.status_code == 403
