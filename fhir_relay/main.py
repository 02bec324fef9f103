"""
FastAPI Application Factory
===========================

Entry point for the FHIR relay service that sits between the front-end
client and the FHIR server.

Architecture:
    Front end → FHIR Relay (this service) → FHIR server
                        ↘ Identity provider (client-credentials token per request)

Routes:
    - /{ResourceType}, /search/*, /create*, /update/*, /referrals : FHIR proxy
    - /health, /ping : Liveness probes (no token acquisition)

Environment Variables Required:
    - TENANT_ID, CLIENT_ID, CLIENT_SECRET, SCOPE: Client-credentials grant
    - FHIR_SERVER_URL: FHIR API base URL
    - TOKEN_URL: Token endpoint (optional, derived from TENANT_ID)
    - ALLOWED_ORIGINS: Comma-separated CORS origins (default: *)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn fhir_relay.main:create_app --factory --reload --port 3000

    Production:
        uvicorn fhir_relay.main:create_app --factory --host 0.0.0.0 --port 3000 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fhir_relay import __version__
from fhir_relay.auth import AuthMiddleware, TokenProvider
from fhir_relay.config import Settings, get_settings, validate_configuration
from fhir_relay.errors import UpstreamError, upstream_error_handler
from fhir_relay.proxy import RequestRelay, build_router

SERVICE_NAME = "fhir-relay"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Log configuration status (never secrets)
        - Open one pooled httpx client shared by the token provider and relay

    Shutdown tasks:
        - Close the shared client
    """
    settings: Settings = app.state.settings
    logger = logging.getLogger("fhir_relay.main")

    status_report = validate_configuration(settings)
    for warning in status_report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in status_report["errors"]:
        logger.error(f"Configuration error: {error}")

    http_client = httpx.AsyncClient(timeout=app.state.timeout)
    app.state.token_provider.client = http_client
    app.state.relay.client = http_client

    logger.info(
        "FHIR relay started",
        extra={
            "service": SERVICE_NAME,
            "version": __version__,
            "fhir_server_url": settings.fhir_server_url_str,
            "proxied_resources": settings.proxied_resources_list,
            "token_cache_enabled": settings.TOKEN_CACHE_ENABLED,
        }
    )

    yield

    logger.info("Shutting down FHIR relay")
    app.state.token_provider.client = None
    app.state.relay.client = None
    await http_client.aclose()
    logger.info("FHIR relay shutdown complete")


# Create FastAPI application
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Token provider and request relay built from ``settings``
        - CORS and per-request token middleware
        - Proxy routes
        - Shared exception handlers

    Args:
        settings: Explicit configuration; loaded from the environment if omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    timeout = httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS, connect=settings.CONNECT_TIMEOUT_SECONDS)

    token_provider = TokenProvider(
        settings.credentials,
        timeout=timeout,
        cache_enabled=settings.TOKEN_CACHE_ENABLED,
        cache_skew_seconds=settings.TOKEN_CACHE_SKEW_SECONDS,
    )
    relay = RequestRelay(
        settings.fhir_server_url_str,
        page_size=settings.FHIR_PAGE_SIZE,
        timeout=timeout,
    )

    app = FastAPI(
        title="FHIR Relay",
        description="Client-credentials authenticated proxy for a FHIR REST API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.timeout = timeout
    app.state.token_provider = token_provider
    app.state.relay = relay

    # Token middleware runs inside CORS so preflight and CORS headers are
    # handled before a token is requested
    app.add_middleware(AuthMiddleware, token_provider=token_provider)

    origins = settings.allowed_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "PUT", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(build_router(settings.proxied_resources_list))

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Liveness probe. Does not touch the identity provider or FHIR server.
        """
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__
        }

    @app.get("/ping", tags=["System"])
    async def ping() -> Dict[str, str]:
        return {"message": "Get method confirmation"}

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "description": "Client-credentials authenticated proxy for a FHIR REST API",
            "resources": settings.proxied_resources_list,
        }

    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(RequestValidationError, upstream_error_handler)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Global exception handler
    app.add_exception_handler(Exception, upstream_error_handler)

    return app


if __name__ == "__main__":
    """
    Direct execution entry point: python -m fhir_relay.main
    """
    settings = get_settings()

    uvicorn.run(
        "fhir_relay.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
