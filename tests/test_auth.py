"""Tests for OIDC JWT authentication on protected routes."""

from __future__ import annotations

import time
from unittest.mock import patch
from uuid import uuid4

import pytest
import requests
from fastapi.testclient import TestClient

from roomly.api.auth import CurrentUser

from .helpers import _create_jwks, _create_token, _generate_rsa_keypair

PROTECTED_URL = "/payments/history"
EMPTY_PAGE = {"payments": [], "pagination": {"page": 1, "limit": 10, "total": 0, "pages": 0}}


@pytest.fixture(scope="module")
def rsa_keypair():
    return _generate_rsa_keypair()


@pytest.fixture
def jwks(rsa_keypair):
    _, public_key = rsa_keypair
    return _create_jwks(public_key)


@pytest.fixture(autouse=True)
def oidc_env():
    env = {
        "OIDC_ISSUER": "https://auth.example.com",
        "OIDC_AUDIENCE": "roomly-api",
        "OIDC_JWKS_URL": "https://auth.example.com/.well-known/jwks.json",
    }
    with patch.dict("os.environ", env):
        yield env


@pytest.fixture
def mock_jwks_fetch(jwks):
    with patch("roomly.api.auth._fetch_jwks", return_value=jwks) as mock:
        yield mock


@pytest.fixture
def mock_db_user():
    user_id = str(uuid4())

    def mock_get_user(external_subject: str):
        if external_subject == "user-123":
            return CurrentUser(
                id=user_id,
                external_subject="user-123",
                email="test@example.com",
                name="Test User",
            )
        return None

    with patch("roomly.api.auth._get_user_from_db", side_effect=mock_get_user) as mock:
        mock.user_id = user_id
        yield mock


@pytest.fixture
def history():
    with patch("roomly.domain.payments.list_payment_history", return_value=EMPTY_PAGE) as mock:
        yield mock


def _get(app, token: str | None = None, scheme: str = "Bearer"):
    headers = {"Authorization": f"{scheme} {token}"} if token else {}
    return TestClient(app).get(PROTECTED_URL, headers=headers)


class TestAuthRejected:
    def test_missing_auth_header(self, app):
        response = _get(app)
        assert response.status_code == 401
        assert "Missing authorization header" in response.json()["detail"]

    def test_invalid_bearer_format(self, app):
        response = _get(app, "abc", scheme="Basic")
        assert response.status_code == 401
        assert "Invalid authorization header" in response.json()["detail"]

    def test_malformed_token(self, app, mock_jwks_fetch):
        response = _get(app, "abc")
        assert response.status_code == 401
        assert "Invalid token" in response.json()["detail"]

    def test_expired_token(self, app, rsa_keypair, mock_jwks_fetch):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, exp=int(time.time()) - 3600))
        assert response.status_code == 401
        assert "Token expired" in response.json()["detail"]

    def test_wrong_issuer(self, app, rsa_keypair, mock_jwks_fetch):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, iss="https://wrong-issuer.com"))
        assert response.status_code == 401

    def test_wrong_audience(self, app, rsa_keypair, mock_jwks_fetch):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, aud="wrong-audience"))
        assert response.status_code == 401

    def test_unknown_kid(self, app, rsa_keypair, mock_jwks_fetch):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, kid="unknown-key"))
        assert response.status_code == 401

    def test_not_configured(self, app, rsa_keypair, monkeypatch):
        monkeypatch.delenv("OIDC_ISSUER")
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key))
        assert response.status_code == 401

    def test_user_not_found(self, app, rsa_keypair, mock_jwks_fetch):
        private_key, _ = rsa_keypair
        with patch("roomly.api.auth._get_user_from_db", return_value=None):
            response = _get(app, _create_token(private_key, sub="unknown-user"))
        assert response.status_code == 403
        assert "User not found" in response.json()["detail"]


class TestAuthSuccess:
    def test_valid_token_resolves_caller(self, app, rsa_keypair, mock_jwks_fetch, mock_db_user, history):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, sub="user-123"))

        assert response.status_code == 200
        assert history.call_args.kwargs["caller_id"] == mock_db_user.user_id


class TestAuthorizedParties:
    def test_azp_valid(self, app, rsa_keypair, mock_jwks_fetch, mock_db_user, history, monkeypatch):
        monkeypatch.setenv("OIDC_AUTHORIZED_PARTIES", "roomly-web,roomly-mobile")
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, sub="user-123", azp="roomly-web"))
        assert response.status_code == 200

    def test_azp_invalid(self, app, rsa_keypair, mock_jwks_fetch, monkeypatch):
        monkeypatch.setenv("OIDC_AUTHORIZED_PARTIES", "roomly-web")
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, sub="user-123", azp="unauthorized-app"))
        assert response.status_code == 401

    def test_azp_not_required_when_not_configured(self, app, rsa_keypair, mock_jwks_fetch, mock_db_user, history):
        private_key, _ = rsa_keypair
        response = _get(app, _create_token(private_key, sub="user-123", azp="any-app"))
        assert response.status_code == 200


class TestJWKSCache:
    def test_jwks_cached(self, app, rsa_keypair, mock_jwks_fetch, mock_db_user, history):
        private_key, _ = rsa_keypair
        token = _create_token(private_key, sub="user-123")

        assert _get(app, token).status_code == 200
        assert _get(app, token).status_code == 200
        assert mock_jwks_fetch.call_count == 1

    def test_jwks_refresh_on_unknown_kid(self, app, rsa_keypair, jwks, mock_db_user, history):
        private_key, _ = rsa_keypair
        with patch("roomly.api.auth._fetch_jwks", side_effect=[{"keys": []}, jwks]) as fetch:
            response = _get(app, _create_token(private_key, sub="user-123"))

        assert response.status_code == 200
        assert fetch.call_count == 2

    def test_jwks_refresh_on_rotated_key(self, app, rsa_keypair, mock_db_user, history):
        private_key, public_key = rsa_keypair
        _, stale_public_key = _generate_rsa_keypair()
        stale = _create_jwks(stale_public_key)
        fresh = _create_jwks(public_key)

        with patch("roomly.api.auth._fetch_jwks", side_effect=[stale, fresh]) as fetch:
            response = _get(app, _create_token(private_key, sub="user-123"))

        assert response.status_code == 200
        assert fetch.call_count == 2


class TestJWKSFetchError:
    @pytest.mark.parametrize(
        "error", [requests.RequestException("Network error"), requests.Timeout("Timeout")]
    )
    def test_jwks_fetch_failure_is_503(self, app, rsa_keypair, error):
        private_key, _ = rsa_keypair
        with patch("roomly.api.auth._fetch_jwks", side_effect=error):
            response = _get(app, _create_token(private_key, sub="user-123"))

        assert response.status_code == 503
        assert "Auth temporarily unavailable" in response.json()["detail"]
