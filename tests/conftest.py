"""Shared pytest fixtures for roomly tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from .helpers import FakeGateway, RecordingNotifier, make_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the module-level JWKS cache so keys never leak between tests."""
    import roomly.api.auth as auth_module

    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
    yield
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(settings, gateway, notifier):
    from roomly.api.factory import create_app

    return create_app(settings=settings, gateway=gateway, notifier=notifier)


@pytest.fixture
def as_user(app):
    """Authenticate requests as the given user id (bypasses token checks)."""
    from roomly.api.auth import CurrentUser, get_current_user

    def _login(user_id: str) -> TestClient:
        app.dependency_overrides[get_current_user] = lambda: CurrentUser(
            id=user_id,
            external_subject=f"sub-{user_id}",
            email=None,
            name=None,
        )
        return TestClient(app)

    yield _login
    app.dependency_overrides.clear()
