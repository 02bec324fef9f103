"""
Resource builders: flat UI form payloads -> FHIR resource documents.

Form fields are declared on pydantic models with camelCase aliases so the
front-end payload can be passed straight through. Every field is optional:
nothing is validated locally, missing values are simply left out of the
document and the FHIR server decides whether the resource is acceptable.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from fhir_relay.resources import codes

Document = Dict[str, Any]


class FormModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


# ============================================================================
# Form Models
# ============================================================================

class PatientForm(FormModel):
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    race: Optional[str] = None
    ethnicity: Optional[str] = None


class ReferralForm(FormModel):
    patient_id: Optional[str] = None
    practitioner_id: Optional[str] = None
    performer_id: Optional[str] = None
    service_code: Optional[str] = None
    service_system: Optional[str] = "http://snomed.info/sct"
    service_display: Optional[str] = None
    reason: Optional[str] = None
    priority: Optional[str] = "routine"
    status: Optional[str] = "active"
    intent: Optional[str] = "order"
    note: Optional[str] = None
    authored_on: Optional[str] = None


class TaskForm(FormModel):
    service_request_id: Optional[str] = None
    patient_id: Optional[str] = None
    owner_id: Optional[str] = None
    status: Optional[str] = "requested"
    intent: Optional[str] = "order"
    priority: Optional[str] = "routine"
    description: Optional[str] = None
    note: Optional[str] = None


# ============================================================================
# Helpers
# ============================================================================

def _compact(value: Any) -> Any:
    """Recursively drop None values and containers left empty."""
    if isinstance(value, dict):
        cleaned = {k: _compact(v) for k, v in value.items()}
        return {k: v for k, v in cleaned.items() if v not in (None, {}, [])}
    if isinstance(value, list):
        cleaned = [_compact(v) for v in value]
        return [v for v in cleaned if v not in (None, {}, [])]
    return value


def _reference(resource_type: str, resource_id: Optional[str]) -> Optional[Dict[str, str]]:
    if not resource_id:
        return None
    if "/" in resource_id:
        return {"reference": resource_id}
    return {"reference": f"{resource_type}/{resource_id}"}


def _note(text: Optional[str]) -> Optional[List[Dict[str, str]]]:
    if not text:
        return None
    return [{"text": text, "time": datetime.now(timezone.utc).isoformat()}]


def _omb_extension(url: str, code: Optional[str], text: Optional[str]) -> Optional[Document]:
    if not text:
        return None
    parts: List[Document] = []
    if code:
        parts.append({
            "url": "ombCategory",
            "valueCoding": {
                "system": codes.RACE_ETHNICITY_SYSTEM,
                "code": code,
                "display": text,
            },
        })
    parts.append({"url": "text", "valueString": text})
    return {"url": url, "extension": parts}


# ============================================================================
# Builders
# ============================================================================

def build_patient(fields: Dict[str, Any]) -> Document:
    form = PatientForm.model_validate(fields)

    given = [name for name in (form.first_name, form.middle_name) if name]
    has_address = any((form.address_line, form.city, form.state, form.postal_code, form.country))
    language = codes.language_code(form.language)

    resource = {
        "resourceType": "Patient",
        "name": [{
            "use": "official",
            "family": form.last_name,
            "given": given,
        }] if (form.last_name or given) else None,
        "gender": codes.gender_code(form.gender),
        "birthDate": form.birth_date,
        "telecom": [
            {"system": "phone", "value": form.phone, "use": "home"} if form.phone else None,
            {"system": "email", "value": form.email} if form.email else None,
        ],
        "address": [{
            "use": "home",
            "line": [form.address_line] if form.address_line else None,
            "city": form.city,
            "state": form.state,
            "postalCode": form.postal_code,
            "country": form.country,
        }] if has_address else None,
        "communication": [{
            "language": {
                "coding": [{
                    "system": codes.LANGUAGE_SYSTEM,
                    "code": language,
                    "display": form.language,
                }] if language else None,
                "text": form.language,
            },
            "preferred": True,
        }] if form.language else None,
        "extension": [
            _omb_extension(codes.US_CORE_RACE_URL, codes.race_code(form.race), form.race),
            _omb_extension(codes.US_CORE_ETHNICITY_URL, codes.ethnicity_code(form.ethnicity), form.ethnicity),
        ],
    }
    return _compact(resource)


def build_service_request(fields: Dict[str, Any]) -> Document:
    """Referral form -> ServiceRequest."""
    form = ReferralForm.model_validate(fields)

    code = None
    if form.service_code or form.service_display:
        code = {
            "coding": [{
                "system": form.service_system,
                "code": form.service_code,
                "display": form.service_display,
            }] if form.service_code else None,
            "text": form.service_display,
        }

    resource = {
        "resourceType": "ServiceRequest",
        "status": form.status,
        "intent": form.intent,
        "priority": form.priority,
        "code": code,
        "subject": _reference("Patient", form.patient_id),
        "requester": _reference("Practitioner", form.practitioner_id),
        "performer": [_reference("PractitionerRole", form.performer_id)],
        "reasonCode": [{"text": form.reason}] if form.reason else None,
        "note": _note(form.note),
        "authoredOn": form.authored_on or datetime.now(timezone.utc).isoformat(),
    }
    return _compact(resource)


def build_task(fields: Dict[str, Any]) -> Document:
    form = TaskForm.model_validate(fields)

    resource = {
        "resourceType": "Task",
        "status": form.status,
        "intent": form.intent,
        "priority": form.priority,
        "basedOn": [_reference("ServiceRequest", form.service_request_id)],
        "focus": _reference("ServiceRequest", form.service_request_id),
        "for": _reference("Patient", form.patient_id),
        "owner": _reference("PractitionerRole", form.owner_id),
        "description": form.description,
        "note": _note(form.note),
        "authoredOn": datetime.now(timezone.utc).isoformat(),
    }
    return _compact(resource)


BUILDERS: Dict[str, Callable[[Dict[str, Any]], Document]] = {
    "Patient": build_patient,
    "ServiceRequest": build_service_request,
    "Task": build_task,
}


def build_resource(kind: str, fields: Dict[str, Any]) -> Document:
    """
    Build a FHIR resource document of type ``kind`` from form fields.

    Raises:
        ValueError: If ``kind`` has no builder or ``fields`` is not an object
    """
    builder = BUILDERS.get(kind)
    if builder is None:
        raise ValueError(f"No resource builder for '{kind}'")
    if not isinstance(fields, dict):
        raise ValueError(f"{kind} form must be a JSON object")
    return builder(fields)
