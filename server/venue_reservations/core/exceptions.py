"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Exception for requests that are malformed for the targeted resource."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "INVALID_REQUEST", "retryable": False}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions: Dict[str, Any] = {
            "code": "NOT_FOUND",
            "retryable": False,
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"retryable": False}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class AvailabilityConflictError(ConflictError):
    """The resource is not available for the requested interval."""

    def __init__(
        self,
        resource_id: str,
        reason: str,
        detail: str,
        conflicting_resource: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail=detail, conflicting_resource=conflicting_resource)
        self.resource_id = resource_id
        self.reason = reason
        self.problem_details.update({
            "code": reason,
            "resource_id": resource_id,
        })


class HoldConflictError(AvailabilityConflictError):
    """Another requester holds an active claim on the resource."""

    def __init__(
        self,
        resource_id: str,
        resource_name: str,
        hold_expiry: Optional[datetime] = None,
    ):
        conflicting_resource: Dict[str, Any] = {"type": "hold", "resource_id": resource_id}
        if hold_expiry:
            conflicting_resource["hold_expiry"] = hold_expiry.isoformat() + "Z"

        super().__init__(
            resource_id=resource_id,
            reason="HOLD",
            detail=f"'{resource_name}' is currently on hold by another user",
            conflicting_resource=conflicting_resource,
        )


class RoomsUnavailableError(ConflictError):
    """Fewer rooms of a type are free than were requested."""

    def __init__(self, room_type: str, available: int, requested: int):
        super().__init__(detail=f"Only {available} room(s) available. Requested: {requested}")
        self.problem_details.update({
            "code": "INSUFFICIENT_ROOMS",
            "room_type": room_type,
            "available": available,
            "requested": requested,
        })


class TransientWriteConflictError(ProblemDetailsException):
    """Database deadlock or serialization failure that outlived its retries."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        detail: Optional[str] = None,
    ):
        if not detail:
            detail = f"'{operation}' hit concurrent updates; please try again"

        super().__init__(
            status_code=503,
            title="Try Again",
            detail=detail,
            type_uri="https://example.com/problems/transient-write-conflict",
            extensions={
                "code": "TRANSIENT_WRITE_CONFLICT",
                "retryable": True,
                "operation": operation,
                "attempts": attempts,
            },
            headers={"Retry-After": "1"},
        )


class GatewayFailureError(ProblemDetailsException):
    """The payment gateway could not create an invoice."""

    def __init__(
        self,
        resource_id: str,
        detail: str = "Failed to generate invoice with payment gateway",
    ):
        super().__init__(
            status_code=502,
            title="Payment Gateway Failure",
            detail=detail,
            type_uri="https://example.com/problems/payment-gateway-failure",
            extensions={
                "code": "GATEWAY_FAILURE",
                "retryable": False,
                "resource_id": resource_id,
            },
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation failures as a 422 problem with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=422,
        content={
            "type": "https://example.com/problems/validation-error",
            "title": "Unprocessable Request",
            "status": 422,
            "detail": "The request body failed validation",
            "instance": str(request.url),
            "violations": violations,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path},
    )

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
    )
