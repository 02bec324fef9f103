"""
Per-request token middleware.

Every inbound request (other than liveness, docs and CORS preflight) gets a
bearer token from the TokenProvider before any route handler runs:

    START -> TOKEN_PENDING -> TOKEN_OK     -> route handler
                           -> TOKEN_FAILED -> shared error handler

The token is stored on ``request.state`` for the duration of the request and
read by handlers through the ``get_access_token`` dependency.
"""

import logging
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from fhir_relay.auth.token_provider import TokenProvider
from fhir_relay.errors import AuthFailure, UpstreamError, error_response

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health", "/ping", "/docs", "/redoc", "/openapi.json", "/docs/oauth2-redirect")


class AuthMiddleware(BaseHTTPMiddleware):
    """Acquires a token per request and short-circuits on failure."""

    def __init__(
        self,
        app: ASGIApp,
        token_provider: TokenProvider,
        exempt_paths: Iterable[str] = EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.token_provider = token_provider
        self.exempt_paths = frozenset(exempt_paths)

    def is_exempt(self, request: Request) -> bool:
        path = request.url.path.rstrip("/") or "/"
        return request.method == "OPTIONS" or path in self.exempt_paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.is_exempt(request):
            return await call_next(request)

        try:
            token = await self.token_provider.acquire_token()
        except UpstreamError as e:
            logger.error(
                "Token acquisition failed, request not forwarded",
                extra={"path": request.url.path, "method": request.method},
            )
            return error_response(request, e)

        request.state.token = token
        request.state.access_token = token.access_token

        return await call_next(request)


# =============================================================================
# Dependencies
# =============================================================================

def get_access_token(request: Request) -> str:
    """
    Dependency returning the bearer token attached by AuthMiddleware.

    Raises:
        AuthFailure: If the middleware did not run for this request
    """
    access_token = getattr(request.state, "access_token", None)
    if not access_token:
        raise AuthFailure("Access token not attached to request")
    return access_token
