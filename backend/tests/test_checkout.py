"""Checkout initiation tests"""
import pytest
from datetime import datetime, timezone, timedelta
from fastapi import status

from app.core.errors import ProviderError
from app.models.survey import Survey


def _checkout(client, survey_id=None, **extra):
    body = dict(extra)
    if survey_id is not None:
        body["surveyId"] = survey_id
    return client.post("/api/checkout", json=body)


@pytest.mark.critical
class TestCheckoutPreconditions:
    """Each failed check maps to its own error code; the first failure wins"""

    def test_missing_survey_id_is_checked_before_auth(self, client):
        response = _checkout(client)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_malformed_body_is_invalid_request(self, client):
        response = client.post(
            "/api/checkout", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_unauthenticated(self, client, test_user, make_survey):
        survey = make_survey(test_user)
        response = _checkout(client, survey.id)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_expired_session_is_unauthenticated(self, client, test_user, make_survey):
        survey = make_survey(test_user)
        client.headers["Cookie"] = "session_id=not-a-real-session"
        response = _checkout(client, survey.id)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_survey(self, authenticated_client):
        response = _checkout(authenticated_client, "6f1c1f7e-8d0b-4e0a-9a51-3f7a8f3e2b11")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "NOT_FOUND"

    def test_malformed_survey_id_is_not_found(self, authenticated_client):
        response = _checkout(authenticated_client, "not-a-uuid")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.parametrize("is_paid,expired_days", [(False, 0), (True, 0), (False, 40), (True, 40)])
    def test_other_users_survey_is_forbidden(self, client, two_users, login, make_survey, is_paid, expired_days):
        """Ownership is checked before paid and window state"""
        user1, user2 = two_users
        expires_at = datetime.now(timezone.utc) + timedelta(hours=24) - timedelta(days=expired_days)
        survey = make_survey(user2, expires_at=expires_at, is_paid=is_paid)
        login(client, user1)

        response = _checkout(client, survey.id)
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "FORBIDDEN"

    def test_already_unlocked(self, authenticated_client, test_user, make_survey):
        survey = make_survey(test_user, is_paid=True)
        response = _checkout(authenticated_client, survey.id)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "ALREADY_UNLOCKED"

    def test_unlock_window_closed(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user, expires_at=datetime.now(timezone.utc) - timedelta(days=31))
        response = _checkout(authenticated_client, survey.id)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "UNLOCK_WINDOW_CLOSED"
        assert fake_gateway.sessions == []

    def test_explicit_deadline_passed(self, authenticated_client, test_user, make_survey):
        survey = make_survey(
            test_user,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            unlock_deadline=datetime.now(timezone.utc) - timedelta(minutes=1)
        )
        response = _checkout(authenticated_client, survey.id)
        assert response.json()["code"] == "UNLOCK_WINDOW_CLOSED"


@pytest.mark.critical
class TestCheckoutSuccess:
    def test_returns_checkout_url(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user)
        response = _checkout(authenticated_client, survey.id)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_1"}
        assert fake_gateway.sessions[0]["survey_id"] == survey.id
        assert fake_gateway.sessions[0]["owner_id"] == test_user.id

    def test_default_redirect_urls(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user)
        _checkout(authenticated_client, survey.id)

        session = fake_gateway.sessions[0]
        assert session["success_url"] == f"http://localhost:3000/dashboard?surveyId={survey.id}&unlocked=1"
        assert session["cancel_url"] == f"http://localhost:3000/unlock/{survey.id}"

    def test_caller_redirect_urls(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user)
        success = f"http://localhost:3000/dashboard?surveyId={survey.id}&unlocked=1"
        cancel = f"http://localhost:3000/dashboard?surveyId={survey.id}"
        response = _checkout(authenticated_client, survey.id, successUrl=success, cancelUrl=cancel)

        assert response.status_code == status.HTTP_200_OK
        assert fake_gateway.sessions[0]["success_url"] == success
        assert fake_gateway.sessions[0]["cancel_url"] == cancel

    def test_foreign_redirect_url_rejected(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user)
        response = _checkout(authenticated_client, survey.id, successUrl="https://evil.example/steal")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_REQUEST"
        assert fake_gateway.sessions == []

    def test_checkout_does_not_modify_survey(self, authenticated_client, test_user, make_survey, db_session):
        survey = make_survey(test_user)
        _checkout(authenticated_client, survey.id)

        db_session.expire_all()
        stored = db_session.get(Survey, survey.id)
        assert stored.is_paid is False
        assert stored.paid_at is None

    def test_double_click_creates_two_sessions(self, authenticated_client, test_user, make_survey, fake_gateway):
        survey = make_survey(test_user)
        first = _checkout(authenticated_client, survey.id).json()["url"]
        second = _checkout(authenticated_client, survey.id).json()["url"]
        assert first != second
        assert len(fake_gateway.sessions) == 2

    def test_survey_without_expiry_can_be_unlocked(self, authenticated_client, test_user, make_survey):
        survey = make_survey(test_user, no_expiry=True)
        assert _checkout(authenticated_client, survey.id).status_code == status.HTTP_200_OK


@pytest.mark.high
class TestCheckoutFailures:
    def test_provider_error(self, authenticated_client, test_user, make_survey, fake_gateway):
        fake_gateway.fail_with = ProviderError("Failed to create checkout session")
        survey = make_survey(test_user)

        response = _checkout(authenticated_client, survey.id)
        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json() == {"error": "Failed to create checkout session", "code": "PROVIDER_ERROR"}

    def test_unexpected_error_is_internal(self, authenticated_client, test_user, make_survey, fake_gateway):
        fake_gateway.fail_with = RuntimeError("boom")
        survey = make_survey(test_user)

        response = _checkout(authenticated_client, survey.id)
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["code"] == "INTERNAL"
