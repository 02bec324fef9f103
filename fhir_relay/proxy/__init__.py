"""
Proxy Package
=============

Forwards authenticated requests from the front end to the FHIR server.

Main Components:
----------------
- relay.py: RequestRelay, the single outbound call path (list, search,
  read, create, patch)
- routes.py: Route table and handlers built on top of the relay

Usage:
------
    from fhir_relay.proxy import RequestRelay, build_router
    app.include_router(build_router(["Patient", "Task"]))
"""

from .relay import RequestRelay
from .routes import build_router

__all__ = ["RequestRelay", "build_router"]
