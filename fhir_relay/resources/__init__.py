"""
Resource Builders Package
=========================

Turns flat, form-shaped JSON from the front end into FHIR resource documents.

Modules:
- builders: build_resource(kind, fields) and the per-kind form models
- codes: language, race, ethnicity and gender code tables
"""

from .builders import BUILDERS, build_resource

__all__ = ["BUILDERS", "build_resource"]
