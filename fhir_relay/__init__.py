"""
FHIR Relay
==========

Backend proxy that authenticates against an identity provider with the
OAuth2 client-credentials grant and forwards requests to a FHIR REST API on
behalf of a front-end client.

Packages:
    - auth:      TokenProvider and the per-request AuthMiddleware
    - proxy:     RequestRelay and the proxy route table
    - resources: Form payload -> FHIR resource builders and code tables

Modules:
    - config:    Environment-backed Settings
    - errors:    Upstream error taxonomy and the shared classifier
    - models:    Pydantic models shared across packages
    - main:      Application factory (create_app)
"""

__version__ = "1.0.0"
