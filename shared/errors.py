"""
Shared error handling for the edge proxy control plane.

Every error surfaced to a caller is a JSON body with a single ``error`` field
and, where useful, a ``message``. Internal identifiers and stack traces never
reach the response.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ControlPlaneException(Exception):
    """Base exception for edge and control-plane services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        public_message: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.public_message = public_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, message=self.public_message)


class ClientError(ControlPlaneException):
    """Malformed input or missing required field."""

    status_code = 400

    def __init__(self, message: str = "Invalid request", details: Optional[Dict[str, Any]] = None):
        super().__init__("CLIENT_ERROR", message, details)


class InvalidConfigError(ControlPlaneException):
    """A stored project carries a value the edge does not recognise."""

    status_code = 400

    def __init__(self, message: str = "Invalid authentication type", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_CONFIG", message, details)


class AuthenticationError(ControlPlaneException):
    """Missing, invalid or expired credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AccessDeniedError(ControlPlaneException):
    """Valid identity without a sufficient grant."""

    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCESS_DENIED", message, details)


class NotFoundError(ControlPlaneException):
    """Unknown project, credential or resource."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class MethodNotAllowedError(ControlPlaneException):
    """Route exists but not for this method."""

    status_code = 405

    def __init__(self, message: str = "Method not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__("METHOD_NOT_ALLOWED", message, details)


class UpstreamError(ControlPlaneException):
    """Proxy target unreachable or errored."""

    status_code = 502

    def __init__(self, message: str = "Bad gateway", details: Optional[Dict[str, Any]] = None,
                 public_message: Optional[str] = "Upstream request failed"):
        super().__init__("UPSTREAM_ERROR", message, details, public_message=public_message)


class InternalError(ControlPlaneException):
    """Unexpected failure in core logic."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)


class StoreUnavailableError(InternalError):
    """The authoritative config store could not be reached."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("Internal server error", details={"operation": operation, **(details or {})})
        self.code = "STORE_UNAVAILABLE"
        self.operation = operation


class CacheBackendError(ControlPlaneException):
    """The edge cache backend failed; callers degrade to a miss."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_BACKEND_ERROR", f"Cache {operation} failed", details)
        self.operation = operation
