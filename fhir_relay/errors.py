"""
Upstream Error Taxonomy and Classification
==========================================

Every failure on an outbound call is turned into a caller-visible JSON body
with ``message`` and ``error`` fields by the single ``classify`` function in
this module.

Categories:
-----------
- upstream-rejected:    a response came back with a non-2xx status. The
                        upstream status is echoed to the caller.
- upstream-unreachable: the request was sent but no response arrived
                        (timeout, connection reset, DNS failure). 500.
- local-fault:          the request was never dispatched (bad input, local
                        exception). 500.
"""

import logging
from typing import Any, Optional

import httpx
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from fhir_relay.models import ClassifiedError, ErrorCategory

logger = logging.getLogger(__name__)

FHIR_SERVICE = "FHIR"
IDENTITY_SERVICE = "Identity Provider"

LOCAL_FAULT_MESSAGE = "Error processing your request"

# RequestError subclasses raised before any bytes leave the process
_LOCAL_HTTPX_ERRORS = (httpx.UnsupportedProtocol,)

# Everything httpx raises while building or sending a request. InvalidURL
# is not an HTTPError subclass.
HTTPX_CALL_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


# =============================================================================
# Exceptions
# =============================================================================

class UpstreamError(Exception):
    """
    Base exception for failed outbound calls.

    Attributes:
        service: Label of the upstream service ("FHIR", "Identity Provider")
        status_code: Upstream HTTP status, when a response came back
        payload: Upstream response body, when a response came back
        request_sent: True once the request left the process
    """

    def __init__(
        self,
        message: str,
        *,
        service: str = FHIR_SERVICE,
        status_code: Optional[int] = None,
        payload: Any = None,
        request_sent: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.service = service
        self.status_code = status_code
        self.payload = payload
        self.request_sent = request_sent or status_code is not None

    @property
    def has_response(self) -> bool:
        return self.status_code is not None

    @classmethod
    def from_response(cls, response: httpx.Response, **kwargs) -> "UpstreamError":
        """Build from a non-2xx response, keeping its status and body."""
        return cls(
            f"{response.request.method} {response.request.url.path} "
            f"returned {response.status_code}",
            status_code=response.status_code,
            payload=response_payload(response),
            **kwargs,
        )

    @classmethod
    def from_exception(cls, exc: Exception, **kwargs) -> "UpstreamError":
        """Build from a transport or local exception raised during a call."""
        sent = isinstance(exc, httpx.RequestError) and not isinstance(exc, _LOCAL_HTTPX_ERRORS)
        return cls(str(exc) or type(exc).__name__, request_sent=sent, **kwargs)


class AuthFailure(UpstreamError):
    """The client-credentials token exchange failed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("service", IDENTITY_SERVICE)
        super().__init__(message, **kwargs)


class RelayFailure(UpstreamError):
    """A call against the FHIR server failed."""


# =============================================================================
# Helpers
# =============================================================================

def response_payload(response: httpx.Response) -> Any:
    """Parsed JSON body if possible, raw text otherwise, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


# =============================================================================
# Classifier
# =============================================================================

def classify(error: BaseException, service: str = FHIR_SERVICE) -> ClassifiedError:
    """
    Map a failure onto a caller-visible ClassifiedError.

    ``service`` is only used for errors that do not carry their own label
    (raw httpx exceptions).

    Args:
        error: Exception raised while handling the request

    Returns:
        ClassifiedError with category, status and body fields
    """
    if isinstance(error, UpstreamError):
        service = error.service
        if error.has_response:
            return ClassifiedError(
                category=ErrorCategory.UPSTREAM_REJECTED,
                status_code=error.status_code,
                message=f"{service} Server Error",
                error=error.payload,
            )
        if error.request_sent:
            return _unreachable(service, error.message)
        return _local_fault(error.message)

    if isinstance(error, httpx.HTTPStatusError):
        return ClassifiedError(
            category=ErrorCategory.UPSTREAM_REJECTED,
            status_code=error.response.status_code,
            message=f"{service} Server Error",
            error=response_payload(error.response),
        )

    if isinstance(error, httpx.RequestError) and not isinstance(error, _LOCAL_HTTPX_ERRORS):
        return _unreachable(service, str(error) or type(error).__name__)

    if isinstance(error, RequestValidationError):
        return _local_fault(jsonable_encoder(error.errors()))

    return _local_fault(str(error) or type(error).__name__)


def _unreachable(service: str, message: Any) -> ClassifiedError:
    return ClassifiedError(
        category=ErrorCategory.UPSTREAM_UNREACHABLE,
        status_code=500,
        message=f"No response received from {service} Server",
        error=message,
    )


def _local_fault(message: Any) -> ClassifiedError:
    return ClassifiedError(
        category=ErrorCategory.LOCAL_FAULT,
        status_code=500,
        message=LOCAL_FAULT_MESSAGE,
        error=message,
    )


# =============================================================================
# Error Handler
# =============================================================================

def error_response(request: Request, exc: BaseException) -> JSONResponse:
    """Classify ``exc``, log it with request context and render the response."""
    classified = classify(exc)

    log = logger.warning if classified.category is ErrorCategory.UPSTREAM_REJECTED else logger.error
    log(
        f"Request failed: {classified.message}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "category": classified.category.value,
            "status_code": classified.status_code,
            "exception_type": type(exc).__name__,
        },
        exc_info=exc if classified.category is ErrorCategory.LOCAL_FAULT else None,
    )

    return classified.to_response()


async def upstream_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler shared by every route."""
    return error_response(request, exc)
