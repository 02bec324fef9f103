"""
Configuration tests for environment-backed Settings.
"""

import pytest
from pydantic import ValidationError

from fhir_relay.config import Settings, validate_configuration

BASE = {
    "_env_file": None,
    "TENANT_ID": "test-tenant",
    "CLIENT_ID": "test-client",
    "CLIENT_SECRET": "test-secret",
    "SCOPE": "https://fhir.example.com/.default",
    "FHIR_SERVER_URL": "https://fhir.example.com/",
}


def make_settings(**overrides):
    return Settings(**{**BASE, **overrides})


def test_token_url_derived_from_tenant():
    settings = make_settings()

    assert settings.token_url == "https://login.microsoftonline.com/test-tenant/oauth2/v2.0/token"


def test_explicit_token_url_wins():
    settings = make_settings(TOKEN_URL="https://idp.example.com/token")

    assert settings.credentials.token_url == "https://idp.example.com/token"


def test_fhir_url_has_no_trailing_slash():
    assert make_settings().fhir_server_url_str == "https://fhir.example.com"


def test_defaults():
    settings = make_settings()

    assert settings.FHIR_PAGE_SIZE == 10000
    assert settings.TOKEN_CACHE_ENABLED is False
    assert settings.proxied_resources_list == ["Task", "Patient", "ServiceRequest", "PractitionerRole"]


def test_credentials_never_expose_secret():
    credentials = make_settings().credentials

    assert "test-secret" not in repr(credentials)
    assert credentials.client_secret.get_secret_value() == "test-secret"


@pytest.mark.parametrize("field", ["TENANT_ID", "CLIENT_ID", "SCOPE", "CLIENT_SECRET"])
def test_empty_credential_rejected(field):
    with pytest.raises(ValidationError):
        make_settings(**{field: ""})


def test_invalid_resource_type_rejected():
    with pytest.raises(ValidationError):
        make_settings(PROXIED_RESOURCES="Patient,../admin")


def test_log_level_normalised():
    assert make_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


def test_validate_configuration_report():
    report = validate_configuration(make_settings(TOKEN_CACHE_ENABLED=True))

    assert report["valid"] is True
    assert any("cache" in warning.lower() for warning in report["warnings"])
    assert any("ALLOWED_ORIGINS" in warning for warning in report["warnings"])
    assert "test-secret" not in str(report)


def test_validate_configuration_flags_timeouts():
    report = validate_configuration(make_settings(CONNECT_TIMEOUT_SECONDS=60, UPSTREAM_TIMEOUT_SECONDS=5))

    assert report["valid"] is False
