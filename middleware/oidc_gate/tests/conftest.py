"""
Shared fixtures for the OpenID Connect gate tests.
"""

import pytest
from fastapi.testclient import TestClient

from oidc_gate.main import create_app

from helpers import FakeProvider, login_redirect_params, make_settings


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def client(settings, fake_provider):
    """TestClient for the example app; startup discovery runs against the fake provider"""
    app = create_app(settings, transport=fake_provider.transport)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client, fake_provider):
    """
    Drive a complete login and return the callback response.

    Usage:
        response = login()
    """
    def _login(**claim_overrides):
        login_response = client.get("/login", follow_redirects=False)
        params = login_redirect_params(login_response)
        fake_provider.claim_overrides = claim_overrides
        code = fake_provider.issue_code(params["nonce"])
        return client.get(
            "/callback",
            params={"code": code, "state": params["state"]},
            follow_redirects=False,
        )

    return _login
