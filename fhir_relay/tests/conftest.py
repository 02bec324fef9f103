"""
Shared fixtures for FHIR relay tests.

Outbound traffic (token endpoint and FHIR server) is stubbed with respx;
the inbound HTTP surface is exercised with FastAPI's TestClient.
"""

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from fhir_relay.config import Settings
from fhir_relay.main import create_app

TOKEN_URL = "https://login.example.com/test-tenant/oauth2/v2.0/token"
FHIR_URL = "https://fhir.example.com"


@pytest.fixture
def settings():
    """Settings built explicitly, ignoring any local .env file"""
    return Settings(
        _env_file=None,
        TENANT_ID="test-tenant",
        CLIENT_ID="test-client",
        CLIENT_SECRET="test-secret",
        SCOPE="https://fhir.example.com/.default",
        TOKEN_URL=TOKEN_URL,
        FHIR_SERVER_URL=FHIR_URL,
        ALLOWED_ORIGINS="http://localhost:3001",
    )


@pytest.fixture
def mock_router():
    """respx router intercepting every outbound httpx call"""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def token_route(mock_router):
    """Token endpoint that always issues token "T" """
    return mock_router.post(TOKEN_URL).mock(
        return_value=httpx.Response(
            200,
            json={"token_type": "Bearer", "expires_in": 3599, "access_token": "T"},
        )
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)
