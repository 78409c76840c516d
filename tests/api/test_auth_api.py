import pytest
from rest_framework_simplejwt.tokens import AccessToken


@pytest.mark.django_db
def test_token_carries_role_and_company(api_client, sales_user, company):
    response = api_client.post(
        "/api/v1/auth/token/",
        {"email": "sales@test.com", "password": "TestPass123!"},
        format="json",
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "sales@test.com"
    assert body["user"]["role"] == "SALES"
    token = AccessToken(body["access"])
    assert token["role"] == "SALES"
    assert token["company_id"] == str(company.pk)


@pytest.mark.django_db
def test_wrong_password(api_client, sales_user):
    response = api_client.post(
        "/api/v1/auth/token/",
        {"email": "sales@test.com", "password": "nope"},
        format="json",
    )
    assert response.status_code == 401


@pytest.mark.django_db
def test_bearer_token_authenticates(api_client, sales_user):
    access = api_client.post(
        "/api/v1/auth/token/",
        {"email": "sales@test.com", "password": "TestPass123!"},
        format="json",
    ).json()["access"]

    api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
    response = api_client.get("/api/v1/commissions/")

    assert response.status_code == 200


@pytest.mark.django_db
def test_refresh(api_client, sales_user):
    refresh = api_client.post(
        "/api/v1/auth/token/",
        {"email": "sales@test.com", "password": "TestPass123!"},
        format="json",
    ).json()["refresh"]

    response = api_client.post("/api/v1/auth/token/refresh/", {"refresh": refresh}, format="json")

    assert response.status_code == 200
    assert "access" in response.json()


@pytest.mark.django_db
def test_anonymous_is_rejected(api_client):
    assert api_client.get("/api/v1/commissions/").status_code == 401


@pytest.mark.django_db
def test_user_without_company_is_forbidden(api_client, django_user_model):
    user = django_user_model.objects.create_user(email="nocompany@test.com", password="TestPass123!")
    api_client.force_authenticate(user=user)

    assert api_client.get("/api/v1/commissions/").status_code == 403
    assert api_client.get("/api/v1/targets/").status_code == 403
