"""
Shared httpx helpers for outbound calls (token endpoint and FHIR server).
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx


@asynccontextmanager
async def client_session(
    client: Optional[httpx.AsyncClient],
    timeout: httpx.Timeout,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yield the shared client when one is attached, otherwise a short-lived
    client that is closed when the call completes.
    """
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(timeout=timeout) as session:
        yield session
