"""
Request Relay Tests

Outbound call shapes against a stubbed FHIR server and the RelayFailure
raised for each failure mode.
"""

import json

import httpx
import pytest

from fhir_relay.errors import RelayFailure, classify
from fhir_relay.models import ErrorCategory, ProxyRequest
from fhir_relay.proxy.relay import RequestRelay

from .conftest import FHIR_URL


@pytest.fixture
def relay():
    return RequestRelay(FHIR_URL, page_size=10000)


class TestCallShapes:

    @pytest.mark.asyncio
    async def test_list_returns_bundle_entries(self, relay, mock_router):
        a = {"fullUrl": f"{FHIR_URL}/Task/1", "resource": {"resourceType": "Task", "id": "1"}}
        b = {"fullUrl": f"{FHIR_URL}/Task/2", "resource": {"resourceType": "Task", "id": "2"}}
        route = mock_router.get(f"{FHIR_URL}/Task").mock(
            return_value=httpx.Response(200, json={"resourceType": "Bundle", "entry": [a, b]})
        )

        response = await relay.list_resources("Task", "T")

        assert response.raw_entries() == [a, b]
        assert [r["id"] for r in response.entries()] == ["1", "2"]

        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer T"
        assert request.url.params["_count"] == "10000"

    @pytest.mark.asyncio
    async def test_list_without_entries_is_empty(self, relay, mock_router):
        mock_router.get(f"{FHIR_URL}/Patient").mock(
            return_value=httpx.Response(200, json={"resourceType": "Bundle", "total": 0})
        )

        response = await relay.list_resources("Patient", "T")

        assert response.raw_entries() == []

    @pytest.mark.asyncio
    async def test_search_forwards_filters(self, relay, mock_router):
        route = mock_router.get(f"{FHIR_URL}/Patient").mock(
            return_value=httpx.Response(200, json={"resourceType": "Bundle", "entry": []})
        )

        await relay.search("Patient", "T", {"family": "Smith", "birthdate": "1980-01-01"})

        params = route.calls.last.request.url.params
        assert params["family"] == "Smith"
        assert params["birthdate"] == "1980-01-01"
        assert params["_count"] == "10000"

    @pytest.mark.asyncio
    async def test_read_fetches_by_id(self, relay, mock_router):
        role = {"resourceType": "PractitionerRole", "id": "pr-1"}
        mock_router.get(f"{FHIR_URL}/PractitionerRole/pr-1").mock(
            return_value=httpx.Response(200, json=role)
        )

        response = await relay.read("PractitionerRole", "pr-1", "T")

        assert response.body == role

    @pytest.mark.asyncio
    async def test_create_returns_server_assigned_id(self, relay, mock_router):
        route = mock_router.post(f"{FHIR_URL}/Patient").mock(
            return_value=httpx.Response(
                201,
                json={"resourceType": "Patient", "id": "new-id"},
                headers={"Location": f"{FHIR_URL}/Patient/new-id/_history/1"},
            )
        )

        response = await relay.create("Patient", {"resourceType": "Patient"}, "T")

        assert response.status_code == 201
        assert response.body["id"] == "new-id"
        assert response.headers["location"].endswith("/Patient/new-id/_history/1")

        request = route.calls.last.request
        assert request.headers["content-type"] == "application/fhir+json"
        assert json.loads(request.content) == {"resourceType": "Patient"}

    @pytest.mark.asyncio
    async def test_patch_sends_json_patch_document(self, relay, mock_router):
        route = mock_router.patch(f"{FHIR_URL}/Task/123").mock(
            return_value=httpx.Response(200, json={"resourceType": "Task", "id": "123"})
        )
        operations = [
            {"op": "replace", "path": "/status", "value": "completed"},
            {"op": "add", "path": "/note/-", "value": {"text": "done"}},
        ]

        await relay.patch("Task", "123", operations, "T")

        request = route.calls.last.request
        assert request.method == "PATCH"
        assert request.headers["content-type"] == "application/json-patch+json"
        assert request.headers["authorization"] == "Bearer T"
        assert json.loads(request.content) == operations


class TestRelayFailures:

    @pytest.mark.asyncio
    async def test_not_found_preserves_status_and_body(self, relay, mock_router):
        mock_router.get(f"{FHIR_URL}/Task/missing").mock(
            return_value=httpx.Response(404, json={"issue": "not found"})
        )

        with pytest.raises(RelayFailure) as exc_info:
            await relay.read("Task", "missing", "T")

        assert exc_info.value.status_code == 404
        assert exc_info.value.payload == {"issue": "not found"}

        classified = classify(exc_info.value)
        assert classified.category == ErrorCategory.UPSTREAM_REJECTED
        assert classified.status_code == 404
        assert classified.body() == {"message": "FHIR Server Error", "error": {"issue": "not found"}}

    @pytest.mark.asyncio
    async def test_plain_text_error_body_kept(self, relay, mock_router):
        mock_router.get(f"{FHIR_URL}/Task").mock(return_value=httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(RelayFailure) as exc_info:
            await relay.list_resources("Task", "T")

        assert exc_info.value.payload == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_timeout_is_unreachable(self, relay, mock_router):
        mock_router.get(f"{FHIR_URL}/Task").mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(RelayFailure) as exc_info:
            await relay.list_resources("Task", "T")

        classified = classify(exc_info.value)
        assert classified.category == ErrorCategory.UPSTREAM_UNREACHABLE
        assert classified.status_code == 500
        assert classified.message == "No response received from FHIR Server"

    @pytest.mark.asyncio
    async def test_unencodable_body_is_local_fault(self, relay, mock_router):
        route = mock_router.post(f"{FHIR_URL}/Patient")

        with pytest.raises(RelayFailure) as exc_info:
            await relay.send(
                ProxyRequest(method="POST", resource_path="Patient", body={"when": object()}),
                "T",
            )

        assert exc_info.value.request_sent is False
        assert classify(exc_info.value).category == ErrorCategory.LOCAL_FAULT
        assert route.call_count == 0

    @pytest.mark.asyncio
    async def test_malformed_base_url_is_local_fault(self, mock_router):
        relay = RequestRelay("https://fhir.example.com/ba\x01se")

        with pytest.raises(RelayFailure) as exc_info:
            await relay.read("Patient", "p1", "T")

        assert exc_info.value.request_sent is False
        assert classify(exc_info.value).category == ErrorCategory.LOCAL_FAULT

    @pytest.mark.asyncio
    async def test_single_attempt_only(self, relay, mock_router):
        route = mock_router.get(f"{FHIR_URL}/Task").mock(return_value=httpx.Response(503))

        with pytest.raises(RelayFailure):
            await relay.list_resources("Task", "T")

        assert route.call_count == 1
