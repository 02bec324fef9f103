"""
Data Models Module

This module defines Pydantic models for the values that flow through the
relay:

- Credentials / Token for the client-credentials exchange
- ProxyRequest / UpstreamResponse for outbound FHIR calls
- ClassifiedError for caller-visible failures
- PatchOperation for JSON Patch update bodies
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, SecretStr


# ============================================================================
# Authentication Models
# ============================================================================

class Credentials(BaseModel):
    """Client-credentials grant inputs. The secret is masked in repr/logs."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., description="Identity provider tenant identifier")
    client_id: str = Field(..., description="Application (client) ID")
    client_secret: SecretStr = Field(..., description="Client secret")
    scope: str = Field(..., description="Requested scope")
    token_url: str = Field(..., description="Token endpoint URL")

    def missing_fields(self) -> List[str]:
        """Names of fields that are empty or whitespace only."""
        values = {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "client_secret": self.client_secret.get_secret_value(),
            "scope": self.scope,
            "token_url": self.token_url,
        }
        return [name for name, value in values.items() if not (value or "").strip()]

    def cache_key(self) -> tuple:
        return (self.tenant_id, self.client_id, self.scope, self.token_url)


class Token(BaseModel):
    """Bearer token returned by the identity provider."""

    access_token: str = Field(..., description="Bearer token value")
    expires_in: Optional[int] = Field(None, description="Lifetime in seconds, if reported")
    acquired_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"Token(expires_in={self.expires_in!r}, acquired_at={self.acquired_at!r})"

    __str__ = __repr__

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return self.acquired_at + timedelta(seconds=self.expires_in)

    def is_fresh(self, skew_seconds: int = 0) -> bool:
        """True while the token is still usable ``skew_seconds`` from now."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return datetime.now(timezone.utc) + timedelta(seconds=skew_seconds) < expires_at


# ============================================================================
# Relay Models
# ============================================================================

class ProxyRequest(BaseModel):
    """An outbound call against the FHIR server, built by a route handler."""

    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    resource_path: str = Field(..., description="Path relative to the FHIR base URL")
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None
    content_type: Optional[str] = None


class UpstreamResponse(BaseModel):
    """A successful FHIR server response."""

    status_code: int
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    def entries(self) -> List[Any]:
        """Resources held in a Bundle's ``entry`` list (empty when absent)."""
        if not isinstance(self.body, dict):
            return []
        return [
            entry.get("resource", entry) if isinstance(entry, dict) else entry
            for entry in self.body.get("entry") or []
        ]

    def raw_entries(self) -> List[Any]:
        """The Bundle's ``entry`` list exactly as the server returned it."""
        if not isinstance(self.body, dict):
            return []
        return list(self.body.get("entry") or [])


class PatchOperation(BaseModel):
    """One JSON Patch (RFC 6902) operation."""

    model_config = ConfigDict(extra="allow")

    op: Literal["add", "remove", "replace", "move", "copy", "test"]
    path: str
    value: Optional[Any] = None
    from_: Optional[str] = Field(None, alias="from")


# ============================================================================
# Error Models
# ============================================================================

class ErrorCategory(str, Enum):
    UPSTREAM_REJECTED = "upstream-rejected"
    UPSTREAM_UNREACHABLE = "upstream-unreachable"
    LOCAL_FAULT = "local-fault"


class ClassifiedError(BaseModel):
    """Caller-visible rendering of a failed request."""

    category: ErrorCategory
    status_code: int
    message: str
    error: Any = None

    def body(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.error}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body())
