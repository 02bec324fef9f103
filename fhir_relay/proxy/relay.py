"""
Request Relay - Authenticated FHIR Calls
========================================

Issues bearer-authenticated calls against the configured FHIR server and
returns the upstream payload, or raises RelayFailure carrying the upstream
status and body when available.

Call Shapes:
------------
- list_resources: GET {base}/{type}?_count=<page size>
- search:         GET {base}/{type}?<filters>&_count=<page size>
- read:           GET {base}/{type}/{id}
- create:         POST {base}/{type} with a full resource body
- patch:          PATCH {base}/{type}/{id} with a JSON Patch document

A single oversized page is requested for list/search; there is no
pagination loop. Nothing is retried.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from fhir_relay.http import client_session
from fhir_relay.models import ProxyRequest, UpstreamResponse
from fhir_relay.errors import HTTPX_CALL_ERRORS, RelayFailure, response_payload

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"
JSON_PATCH = "application/json-patch+json"

RELAYED_HEADERS = ("content-type", "location", "etag", "last-modified")

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class RequestRelay:
    """
    Relays requests to the FHIR server on behalf of the caller.

    Args:
        base_url: FHIR server base URL (no trailing slash)
        page_size: ``_count`` sent on list and search calls
        client: Shared httpx client, or None for a client per call
        timeout: Timeout applied to every call
    """

    def __init__(
        self,
        base_url: str,
        page_size: int = 10000,
        client: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.client = client
        self.timeout = timeout

    def build_headers(self, token: str, content_type: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": FHIR_JSON,
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def send(self, proxy_request: ProxyRequest, token: str) -> UpstreamResponse:
        """
        Send one request and return the upstream response.

        Raises:
            RelayFailure: On non-2xx responses, transport errors, or when the
                          request could not be built
        """
        url = f"{self.base_url}/{proxy_request.resource_path.lstrip('/')}"

        try:
            content = None
            if proxy_request.body is not None:
                content = json.dumps(proxy_request.body).encode("utf-8")
            headers = self.build_headers(
                token,
                proxy_request.content_type or (FHIR_JSON if content is not None else None),
            )
        except (TypeError, ValueError) as e:
            raise RelayFailure(f"Could not encode request body: {e}") from e

        logger.info(
            f"Relaying {proxy_request.method} /{proxy_request.resource_path.lstrip('/')}",
            extra={"method": proxy_request.method, "query_params": sorted(proxy_request.query)},
        )

        try:
            async with client_session(self.client, self.timeout) as client:
                response = await client.request(
                    proxy_request.method,
                    url,
                    params=proxy_request.query or None,
                    content=content,
                    headers=headers,
                    timeout=self.timeout,
                )
        except HTTPX_CALL_ERRORS as e:
            logger.error(
                f"FHIR request failed before a response was received: {e}",
                extra={"method": proxy_request.method, "url": url},
            )
            raise RelayFailure.from_exception(e) from e

        if not response.is_success:
            logger.warning(
                f"FHIR server returned {response.status_code}",
                extra={"method": proxy_request.method, "url": url},
            )
            raise RelayFailure.from_response(response)

        return UpstreamResponse(
            status_code=response.status_code,
            body=response_payload(response),
            headers={
                name: value
                for name, value in response.headers.items()
                if name.lower() in RELAYED_HEADERS
            },
        )

    # =========================================================================
    # Call Shapes
    # =========================================================================

    async def list_resources(
        self,
        resource_type: str,
        token: str,
        query: Optional[Dict[str, Any]] = None,
    ) -> UpstreamResponse:
        params = dict(query or {})
        params["_count"] = str(self.page_size)
        return await self.send(
            ProxyRequest(method="GET", resource_path=resource_type, query=params),
            token,
        )

    async def search(
        self,
        resource_type: str,
        token: str,
        query: Dict[str, Any],
    ) -> UpstreamResponse:
        return await self.list_resources(resource_type, token, query=query)

    async def read(self, resource_type: str, resource_id: str, token: str) -> UpstreamResponse:
        return await self.send(
            ProxyRequest(method="GET", resource_path=f"{resource_type}/{resource_id}"),
            token,
        )

    async def create(
        self,
        resource_type: str,
        resource: Dict[str, Any],
        token: str,
    ) -> UpstreamResponse:
        return await self.send(
            ProxyRequest(
                method="POST",
                resource_path=resource_type,
                body=resource,
                content_type=FHIR_JSON,
            ),
            token,
        )

    async def patch(
        self,
        resource_type: str,
        resource_id: str,
        operations: List[Dict[str, Any]],
        token: str,
    ) -> UpstreamResponse:
        return await self.send(
            ProxyRequest(
                method="PATCH",
                resource_path=f"{resource_type}/{resource_id}",
                body=operations,
                content_type=JSON_PATCH,
            ),
            token,
        )

