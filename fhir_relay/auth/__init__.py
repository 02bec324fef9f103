"""
Authentication Package

Obtains bearer tokens for outbound FHIR calls using the OAuth2
client-credentials grant against Azure AD / Entra ID.

Modules:
- token_provider: TokenProvider, one token exchange per call (optional cache)
- middleware: AuthMiddleware, acquires a token before any route handler runs

The request flow:
1. Client calls any proxied route
2. AuthMiddleware asks TokenProvider for a token
3. On success the token is attached to request.state and the route runs
4. On failure the shared error handler responds and the route never runs
"""

from .middleware import AuthMiddleware, get_access_token
from .token_provider import TokenProvider

__all__ = [
    "AuthMiddleware",
    "TokenProvider",
    "get_access_token",
]
