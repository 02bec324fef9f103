"""
Resource builder tests: form fields in, FHIR documents out.
"""

import pytest

from fhir_relay.resources import build_resource
from fhir_relay.resources import codes


class TestPatientBuilder:

    def test_full_form(self):
        patient = build_resource("Patient", {
            "firstName": "Ana",
            "middleName": "Maria",
            "lastName": "Lopez",
            "gender": "F",
            "birthDate": "1985-04-12",
            "phone": "555-0100",
            "email": "ana@example.com",
            "addressLine": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "postalCode": "62701",
            "language": "Spanish",
            "race": "Asian",
            "ethnicity": "Hispanic or Latino",
        })

        assert patient["resourceType"] == "Patient"
        assert patient["name"] == [{"use": "official", "family": "Lopez", "given": ["Ana", "Maria"]}]
        assert patient["gender"] == "female"
        assert patient["birthDate"] == "1985-04-12"
        assert {"system": "email", "value": "ana@example.com"} in patient["telecom"]
        assert patient["address"][0]["line"] == ["1 Main St"]
        assert patient["communication"][0]["language"]["coding"][0]["code"] == "es"

        race, ethnicity = patient["extension"]
        assert race["url"] == codes.US_CORE_RACE_URL
        assert race["extension"][0]["valueCoding"]["code"] == "2028-9"
        assert ethnicity["extension"][0]["valueCoding"]["code"] == "2135-2"

    def test_missing_fields_are_omitted(self):
        patient = build_resource("Patient", {"firstName": "Ana"})

        assert patient == {
            "resourceType": "Patient",
            "name": [{"use": "official", "given": ["Ana"]}],
        }

    def test_unknown_race_kept_as_text(self):
        patient = build_resource("Patient", {"race": "Prefer to self-describe"})

        assert patient["extension"] == [{
            "url": codes.US_CORE_RACE_URL,
            "extension": [{"url": "text", "valueString": "Prefer to self-describe"}],
        }]

    def test_unknown_form_fields_ignored(self):
        patient = build_resource("Patient", {"lastName": "Lopez", "favouriteColour": "blue"})

        assert "favouriteColour" not in patient


class TestReferralAndTaskBuilders:

    def test_service_request_references(self):
        referral = build_resource("ServiceRequest", {
            "patientId": "p1",
            "practitionerId": "Practitioner/dr-1",
            "performerId": "role-9",
            "serviceCode": "183519002",
            "serviceDisplay": "Referral to cardiology service",
            "reason": "Chest pain",
            "authoredOn": "2024-01-01T00:00:00Z",
        })

        assert referral["status"] == "active"
        assert referral["intent"] == "order"
        assert referral["subject"] == {"reference": "Patient/p1"}
        assert referral["requester"] == {"reference": "Practitioner/dr-1"}
        assert referral["performer"] == [{"reference": "PractitionerRole/role-9"}]
        assert referral["code"]["coding"][0]["code"] == "183519002"
        assert referral["reasonCode"] == [{"text": "Chest pain"}]
        assert referral["authoredOn"] == "2024-01-01T00:00:00Z"

    def test_task_based_on_referral(self):
        task = build_resource("Task", {
            "serviceRequestId": "sr1",
            "patientId": "p1",
            "ownerId": "role-9",
            "note": "Call patient",
        })

        assert task["basedOn"] == [{"reference": "ServiceRequest/sr1"}]
        assert task["for"] == {"reference": "Patient/p1"}
        assert task["owner"] == {"reference": "PractitionerRole/role-9"}
        assert task["status"] == "requested"
        assert task["note"][0]["text"] == "Call patient"


class TestBuildResource:

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="No resource builder"):
            build_resource("Observation", {})

    def test_non_object_fields(self):
        with pytest.raises(ValueError):
            build_resource("Patient", ["Ana"])


class TestCodeTables:

    @pytest.mark.parametrize("value, expected", [
        ("English", "en"),
        ("  spanish ", "es"),
        ("vi", "vi"),
        ("Klingon", None),
        (None, None),
    ])
    def test_language_code(self, value, expected):
        assert codes.language_code(value) == expected

    @pytest.mark.parametrize("value, expected", [
        ("M", "male"),
        ("Female", "female"),
        ("nonbinary", "other"),
        ("", None),
    ])
    def test_gender_code(self, value, expected):
        assert codes.gender_code(value) == expected
