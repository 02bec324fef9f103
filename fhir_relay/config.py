"""
Configuration module for the FHIR Relay service.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider (client-credentials flow), the downstream FHIR
server, upstream timeouts and CORS settings.

Environment variables are loaded from .env file or system environment and
read once at startup. The resulting Settings object is passed explicitly to
the token provider and request relay.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, HttpUrl, SecretStr, field_validator

from pydantic_settings import BaseSettings, SettingsConfigDict

from fhir_relay.models import Credentials


AZURE_AUTHORITY = "https://login.microsoftonline.com"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Identity provider credentials, FHIR server location, outbound call
    timeouts and server options are all defined here.
    """

    # =========================================================================
    # Identity Provider (Client Credentials Flow)
    # =========================================================================

    TENANT_ID: str = Field(
        ...,
        description="Azure AD / Entra ID tenant identifier",
        min_length=1,
    )

    CLIENT_ID: str = Field(
        ...,
        description="Application (client) ID registered for this service",
        min_length=1,
    )

    CLIENT_SECRET: SecretStr = Field(
        ...,
        description="Client secret for the client-credentials grant",
    )

    SCOPE: str = Field(
        ...,
        description="Requested scope (e.g., https://<fhir-host>/.default)",
        min_length=1,
    )

    TOKEN_URL: str = Field(
        default="",
        description="Token endpoint URL (defaults to the tenant's v2.0 endpoint)",
    )

    # =========================================================================
    # FHIR Server
    # =========================================================================

    FHIR_SERVER_URL: HttpUrl = Field(
        ...,
        description="FHIR API base URL (e.g., https://workspace-fhir.fhir.azurehealthcareapis.com)",
    )

    FHIR_PAGE_SIZE: int = Field(
        default=10000,
        description="_count requested on list and search calls (single page)",
        ge=1,
    )

    PROXIED_RESOURCES: str = Field(
        default="Task,Patient,ServiceRequest,PractitionerRole",
        description="Comma-separated resource types exposed as list/read routes",
        min_length=1,
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Total timeout for each outbound call",
        gt=0,
    )

    CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Connect timeout for each outbound call",
        gt=0,
    )

    # =========================================================================
    # Token Cache
    # =========================================================================

    TOKEN_CACHE_ENABLED: bool = Field(
        default=False,
        description="Reuse a token across requests until shortly before expiry",
    )

    TOKEN_CACHE_SKEW_SECONDS: int = Field(
        default=60,
        description="Seconds before expiry at which a cached token is dropped",
        ge=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the relay server",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the relay server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def token_url(self) -> str:
        """Token endpoint, derived from the tenant when TOKEN_URL is unset."""
        if self.TOKEN_URL:
            return self.TOKEN_URL
        return f"{AZURE_AUTHORITY}/{self.TENANT_ID}/oauth2/v2.0/token"

    @property
    def fhir_server_url_str(self) -> str:
        """
        Get FHIR server URL as string (for HTTP client usage).

        Returns:
            FHIR base URL as string without trailing slash.
        """
        return str(self.FHIR_SERVER_URL).rstrip("/")

    @property
    def proxied_resources_list(self) -> List[str]:
        return [
            resource.strip()
            for resource in self.PROXIED_RESOURCES.split(",")
            if resource.strip()
        ]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def credentials(self) -> Credentials:
        """Immutable credential set handed to the token provider."""
        return Credentials(
            tenant_id=self.TENANT_ID,
            client_id=self.CLIENT_ID,
            client_secret=self.CLIENT_SECRET,
            scope=self.SCOPE,
            token_url=self.token_url,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("CLIENT_SECRET")
    @classmethod
    def validate_client_secret(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("CLIENT_SECRET must not be empty")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate log level is one of the standard logging levels.

        Raises:
            ValueError: If level is not recognised
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()

    @field_validator("PROXIED_RESOURCES")
    @classmethod
    def validate_proxied_resources(cls, v: str) -> str:
        resources = [r.strip() for r in v.split(",") if r.strip()]

        if not resources:
            raise ValueError("PROXIED_RESOURCES must contain at least one resource type")

        for resource in resources:
            if not resource.isalpha() or not resource[0].isupper():
                raise ValueError(
                    f"Invalid resource type: '{resource}'. "
                    "Expected a FHIR resource type such as 'Patient'"
                )

        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Returns:
        Dictionary with validation status and any warnings. Secrets are
        never included.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if not settings.token_url.startswith("https://"):
        warnings.append("TOKEN_URL is not HTTPS (client secret sent in clear)")

    if not settings.fhir_server_url_str.startswith("https://"):
        warnings.append("FHIR_SERVER_URL is not HTTPS (bearer token sent in clear)")

    if settings.ALLOWED_ORIGINS.strip() == "*":
        warnings.append("ALLOWED_ORIGINS allows every origin")

    if settings.TOKEN_CACHE_ENABLED:
        warnings.append("Token cache enabled: tokens are shared across requests")

    if settings.CONNECT_TIMEOUT_SECONDS > settings.UPSTREAM_TIMEOUT_SECONDS:
        errors.append("CONNECT_TIMEOUT_SECONDS exceeds UPSTREAM_TIMEOUT_SECONDS")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "token_url": settings.token_url,
        "fhir_server_url": settings.fhir_server_url_str,
        "proxied_resources": settings.proxied_resources_list,
    }


if __name__ == "__main__":
    """
    Validate your .env configuration:
        python -m fhir_relay.config
    """
    import json

    print("=" * 80)
    print("FHIR RELAY CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()
    except Exception as e:
        print(f"\n✗ Configuration error: {e}")
        print("""
Required variables:
  - TENANT_ID
  - CLIENT_ID
  - CLIENT_SECRET
  - SCOPE
  - FHIR_SERVER_URL

Optional variables:
  - TOKEN_URL (default: tenant v2.0 token endpoint)
  - HOST (default: 0.0.0.0)
  - PORT (default: 3000)
  - ALLOWED_ORIGINS (default: *)
  - LOG_LEVEL (default: INFO)
  - UPSTREAM_TIMEOUT_SECONDS (default: 30)
  - CONNECT_TIMEOUT_SECONDS (default: 10)
  - FHIR_PAGE_SIZE (default: 10000)
  - PROXIED_RESOURCES (default: Task,Patient,ServiceRequest,PractitionerRole)
  - TOKEN_CACHE_ENABLED (default: false)
  - TOKEN_CACHE_SKEW_SECONDS (default: 60)
        """)
        raise SystemExit(1)

    print("\n✓ Configuration loaded successfully!\n")
    print(json.dumps(validate_configuration(config), indent=2))
