"""
Proxy Routes - FHIR Request Forwarding
======================================

Thin route handlers that turn inbound requests into RequestRelay calls. The
bearer token is attached by AuthMiddleware before any of these run; failures
propagate as UpstreamError and are rendered by the shared error handler.

Endpoints:
----------
- GET  /{ResourceType}                  : Bundle entries for a proxied type
- GET  /{ResourceType}/{id}             : Single resource by ID
- GET  /search/{resourceType}           : Filtered search (query forwarded)
- POST /create{ResourceType}            : Build from form fields and create
- POST /update/{resourceType}/{id}      : Apply a JSON Patch document
- GET  /referrals                       : ServiceRequests with their Tasks

Per-type routes are generated from the declarative tables below.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Union

from fastapi import APIRouter, Body, Depends, Path, Request, status
from fastapi.responses import JSONResponse

from fhir_relay.auth.middleware import get_access_token
from fhir_relay.errors import RelayFailure
from fhir_relay.models import PatchOperation
from fhir_relay.proxy.relay import RequestRelay
from fhir_relay.resources import build_resource

logger = logging.getLogger(__name__)

RESOURCE_TYPE_PATTERN = r"^[A-Z][A-Za-z]+$"
RESOURCE_ID_PATTERN = r"^[A-Za-z0-9\-\.]{1,64}$"

# path -> resource kind handed to build_resource
CREATE_ROUTES: Dict[str, str] = {
    "/createPatient": "Patient",
    "/createServiceRequest": "ServiceRequest",
    "/createReferral": "ServiceRequest",
    "/createTask": "Task",
}


# ============================================================================
# Dependencies
# ============================================================================

def get_relay(request: Request) -> RequestRelay:
    """
    Dependency to get the RequestRelay from app state.

    Raises:
        RelayFailure: If the application was built without a relay
    """
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise RelayFailure("Request relay not initialized")
    return relay


def query_params(request: Request) -> Dict[str, Union[str, List[str]]]:
    """Inbound query string as a dict; repeated keys become lists."""
    params: Dict[str, Union[str, List[str]]] = {}
    for key, value in request.query_params.multi_items():
        if key in params:
            existing = params[key]
            params[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params


# ============================================================================
# Handler Factories
# ============================================================================

def _list_handler(resource_type: str) -> Callable:
    async def list_resources(
        relay: RequestRelay = Depends(get_relay),
        token: str = Depends(get_access_token),
    ) -> List[Any]:
        response = await relay.list_resources(resource_type, token)
        return response.raw_entries()

    list_resources.__name__ = f"list_{resource_type}"
    return list_resources


def _read_handler(resource_type: str) -> Callable:
    async def read_resource(
        resource_id: str = Path(..., pattern=RESOURCE_ID_PATTERN),
        relay: RequestRelay = Depends(get_relay),
        token: str = Depends(get_access_token),
    ) -> Any:
        response = await relay.read(resource_type, resource_id, token)
        return response.body

    read_resource.__name__ = f"read_{resource_type}"
    return read_resource


def _create_handler(kind: str) -> Callable:
    async def create_resource(
        fields: Dict[str, Any] = Body(...),
        relay: RequestRelay = Depends(get_relay),
        token: str = Depends(get_access_token),
    ) -> JSONResponse:
        try:
            resource = build_resource(kind, fields)
        except ValueError as e:
            raise RelayFailure(f"Could not build {kind}: {e}") from e

        response = await relay.create(kind, resource, token)

        created = response.body if isinstance(response.body, dict) else {}
        logger.info(f"Created {kind}", extra={"resource_id": created.get("id")})

        headers = {"Location": response.headers["location"]} if "location" in response.headers else None
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=response.body,
            headers=headers,
        )

    create_resource.__name__ = f"create_{kind}"
    return create_resource


# ============================================================================
# Fixed Routes
# ============================================================================

async def search_resources(
    resource_type: str = Path(..., pattern=RESOURCE_TYPE_PATTERN),
    query: Dict[str, Union[str, List[str]]] = Depends(query_params),
    relay: RequestRelay = Depends(get_relay),
    token: str = Depends(get_access_token),
) -> List[Any]:
    """Search a resource type with the caller's query parameters (e.g. family, birthdate)."""
    response = await relay.search(resource_type, token, query)
    return response.raw_entries()


async def update_resource(
    resource_type: str = Path(..., pattern=RESOURCE_TYPE_PATTERN),
    resource_id: str = Path(..., pattern=RESOURCE_ID_PATTERN),
    operations: List[PatchOperation] = Body(...),
    relay: RequestRelay = Depends(get_relay),
    token: str = Depends(get_access_token),
) -> Dict[str, str]:
    """
    Apply a JSON Patch document to a resource.

    The operations are forwarded in the order received as a PATCH with
    ``application/json-patch+json``.
    """
    patch_document = [
        operation.model_dump(by_alias=True, exclude_unset=True)
        for operation in operations
    ]
    await relay.patch(resource_type, resource_id, patch_document, token)

    logger.info(
        f"Updated {resource_type}",
        extra={"resource_id": resource_id, "operations": len(patch_document)},
    )

    return {
        "message": f"{resource_type} updated successfully",
        "resourceType": resource_type,
        "id": resource_id,
    }


async def list_referrals(
    relay: RequestRelay = Depends(get_relay),
    token: str = Depends(get_access_token),
) -> List[Dict[str, Any]]:
    """
    ServiceRequests paired with the Tasks based on each of them.

    The per-referral Task searches run concurrently; if any one fails the
    remaining searches are cancelled and the whole request fails.
    """
    referrals = (await relay.list_resources("ServiceRequest", token)).entries()
    if not all(isinstance(referral, dict) for referral in referrals):
        raise RelayFailure("ServiceRequest bundle contains an entry that is not a resource")

    searches = [
        asyncio.ensure_future(
            relay.search("Task", token, {"based-on": f"ServiceRequest/{referral.get('id')}"})
        )
        for referral in referrals
    ]
    try:
        task_responses = await asyncio.gather(*searches)
    except Exception:
        for search in searches:
            search.cancel()
        await asyncio.gather(*searches, return_exceptions=True)
        raise

    return [
        {"serviceRequest": referral, "tasks": tasks.entries()}
        for referral, tasks in zip(referrals, task_responses)
    ]


# ============================================================================
# Router Factory
# ============================================================================

def build_router(resource_types: Iterable[str]) -> APIRouter:
    """
    Register every proxy route.

    Args:
        resource_types: Types exposed through GET /{type} and GET /{type}/{id}

    Returns:
        APIRouter with list, read, search, create, update and aggregate routes
    """
    router = APIRouter(tags=["FHIR Proxy"])

    router.add_api_route("/search/{resource_type}", search_resources, methods=["GET"])
    router.add_api_route("/update/{resource_type}/{resource_id}", update_resource, methods=["POST"])
    router.add_api_route("/referrals", list_referrals, methods=["GET"])

    for path, kind in CREATE_ROUTES.items():
        router.add_api_route(
            path,
            _create_handler(kind),
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
        )

    for resource_type in resource_types:
        router.add_api_route(f"/{resource_type}", _list_handler(resource_type), methods=["GET"])
        router.add_api_route(
            f"/{resource_type}/{{resource_id}}",
            _read_handler(resource_type),
            methods=["GET"],
        )

    return router
