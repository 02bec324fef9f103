"""
Client-credentials token acquisition.

This module handles:
- Exchanging the configured client ID / secret for a bearer token
- Surfacing every failure as AuthFailure (no retry)
- An opt-in, time-bounded token cache keyed by credential set
"""

import asyncio
import logging
from typing import Dict, Optional

import httpx

from fhir_relay.http import client_session
from fhir_relay.models import Credentials, Token
from fhir_relay.errors import HTTPX_CALL_ERRORS, AuthFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class TokenProvider:
    """
    Acquires bearer tokens with the OAuth2 client-credentials grant.

    By default every call to ``acquire_token`` performs a fresh round trip to
    the token endpoint and nothing is kept between calls. With
    ``cache_enabled`` a token is reused until ``cache_skew_seconds`` before
    its reported expiry.
    """

    GRANT_TYPE = "client_credentials"

    def __init__(
        self,
        credentials: Credentials,
        client: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
        cache_enabled: bool = False,
        cache_skew_seconds: int = 60,
    ):
        self.credentials = credentials
        self.client = client
        self.timeout = timeout
        self.cache_enabled = cache_enabled
        self.cache_skew_seconds = cache_skew_seconds

        self._cache: Dict[tuple, Token] = {}
        self._lock = asyncio.Lock()

    async def acquire_token(self) -> Token:
        """
        Return a bearer token for the configured credentials.

        Raises:
            AuthFailure: If credentials are incomplete, the endpoint rejects
                         the request, or no response is received
        """
        if not self.cache_enabled:
            return await self._request_token()

        key = self.credentials.cache_key()
        async with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.is_fresh(self.cache_skew_seconds):
                logger.debug("Reusing cached access token")
                return cached

            token = await self._request_token()
            if token.expires_in:
                self._cache[key] = token
            else:
                self._cache.pop(key, None)
            return token

    def invalidate(self) -> None:
        """Drop any cached token for these credentials."""
        self._cache.pop(self.credentials.cache_key(), None)

    def _form_data(self) -> Dict[str, str]:
        return {
            "client_id": self.credentials.client_id,
            "scope": self.credentials.scope,
            "client_secret": self.credentials.client_secret.get_secret_value(),
            "grant_type": self.GRANT_TYPE,
        }

    async def _request_token(self) -> Token:
        missing = self.credentials.missing_fields()
        if missing:
            raise AuthFailure(f"Missing credential fields: {', '.join(missing)}")

        try:
            async with client_session(self.client, self.timeout) as client:
                response = await client.post(
                    self.credentials.token_url,
                    data=self._form_data(),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
        except HTTPX_CALL_ERRORS as e:
            failure = AuthFailure.from_exception(e)
            logger.error(
                f"Error obtaining token from identity provider: {failure.message}",
                extra={"token_url": self.credentials.token_url},
            )
            raise failure from e

        if not response.is_success:
            failure = AuthFailure.from_response(response)
            logger.error(
                "Identity provider rejected token request",
                extra={
                    "token_url": self.credentials.token_url,
                    "status_code": response.status_code,
                },
            )
            raise failure

        try:
            token_json = response.json()
            expires_in = token_json.get("expires_in")
            token = Token(
                access_token=token_json["access_token"],
                expires_in=int(expires_in) if expires_in is not None else None,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise AuthFailure("Token response did not contain an access_token") from e

        logger.info(
            "Obtained access token",
            extra={"client_id": self.credentials.client_id, "expires_in": token.expires_in},
        )
        return token
