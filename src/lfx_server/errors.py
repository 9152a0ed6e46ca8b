"""API error taxonomy.

Every failure that reaches the HTTP boundary is a ``BaseApiError``:
it carries the status to respond with, a stable machine code, and the
operation/service/path it came from. The FastAPI handler in
``api/error_handlers.py`` turns these into ``{error, code, ...}`` bodies.
"""

from __future__ import annotations

from typing import Any, Literal

from lfx_server.constants import ErrorCode

type Severity = Literal["error", "warn", "info"]

_CODES_BY_STATUS: dict[int, ErrorCode] = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    412: ErrorCode.PRECONDITION_FAILED,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.INTERNAL_ERROR,
    502: ErrorCode.BAD_GATEWAY,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.GATEWAY_TIMEOUT,
}

_UNAVAILABLE = "Service temporarily unavailable. Please try again later."

_MESSAGES_BY_STATUS: dict[int, str] = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required. Please log in and try again.",
    403: (
        "Access denied. You do not have permission"
        " to access this resource."
    ),
    404: "The requested resource was not found.",
    409: (
        "Conflict. The resource you are trying"
        " to create already exists."
    ),
    412: (
        "The resource was modified by someone else."
        " Please refresh and try again."
    ),
    422: "Validation error. Please check your input and try again.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "Internal server error. Please try again later.",
    502: _UNAVAILABLE,
    503: _UNAVAILABLE,
    504: _UNAVAILABLE,
}


def code_for_status(status_code: int) -> str:
    """Map an HTTP status to its stable error code."""
    code = _CODES_BY_STATUS.get(status_code)
    if code is not None:
        return code
    if status_code >= 500:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.CLIENT_ERROR


def default_message_for_status(status_code: int) -> str:
    """User-facing fallback message for an HTTP status."""
    return _MESSAGES_BY_STATUS.get(
        status_code,
        "An unexpected error occurred. Please try again later.",
    )


class BaseApiError(Exception):
    """Root of all errors that map to an HTTP response."""

    status_code: int = 500
    default_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        operation: str | None = None,
        service: str | None = None,
        path: str | None = None,
        metadata: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.operation = operation
        self.service = service
        self.path = path
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.original_error = original_error

    @property
    def severity(self) -> Severity:
        if self.status_code >= 500:
            return "error"
        if self.status_code >= 400:
            return "warn"
        return "info"

    def log_context(self) -> dict[str, Any]:
        """Fields for structured logging of this error."""
        ctx: dict[str, Any] = {
            "error_type": type(self).__name__,
            "code": self.code,
            "status_code": self.status_code,
        }
        for name in ("operation", "service", "path"):
            value = getattr(self, name)
            if value:
                ctx[name] = value
        ctx.update(self.metadata)
        if self.original_error is not None:
            ctx["original_error"] = str(self.original_error)
        return ctx

    def to_response(self, path: str | None = None) -> dict[str, Any]:
        """JSON body sent to the client."""
        body: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
        }
        body.update(self.response_extras())
        request_path = path or self.path
        if request_path:
            body["path"] = request_path
        return body

    def response_extras(self) -> dict[str, Any]:
        return {}


class ValidationError(BaseApiError):
    """Request input failed validation (400)."""

    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        errors: list[dict[str, str]] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        self.errors: list[dict[str, str]] = list(errors or [])

    @classmethod
    def for_field(
        cls, field: str, message: str, **kwargs: Any
    ) -> ValidationError:
        return cls(
            message,
            field=field,
            errors=[{"field": field, "message": message}],
            **kwargs,
        )

    @classmethod
    def from_field_errors(
        cls, errors: list[dict[str, str]], **kwargs: Any
    ) -> ValidationError:
        """Collapse several field errors into one exception."""
        if len(errors) == 1:
            return cls.for_field(
                errors[0]["field"], errors[0]["message"], **kwargs
            )
        return cls(
            f"Validation failed for {len(errors)} fields",
            errors=errors,
            **kwargs,
        )

    def response_extras(self) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        if self.field:
            extras["field"] = self.field
        if self.errors:
            extras["errors"] = self.errors
        return extras


class ReadOnlyViolationError(ValidationError):
    """A warehouse statement contained a write operation."""

    default_code = ErrorCode.READ_ONLY_VIOLATION


class AuthenticationError(BaseApiError):
    status_code = 401
    default_code = ErrorCode.UNAUTHORIZED


class AuthorizationError(BaseApiError):
    status_code = 403
    default_code = ErrorCode.FORBIDDEN


class ResourceNotFoundError(BaseApiError):
    """The resource does not exist upstream (404)."""

    status_code = 404
    default_code = ErrorCode.NOT_FOUND

    def __init__(
        self,
        resource_type: str,
        resource_id: str | None = None,
        *,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        if message is None:
            message = (
                f"{resource_type} not found"
                if resource_id is None
                else f"{resource_type} '{resource_id}' not found"
            )
        super().__init__(message, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id


class PreconditionFailedError(BaseApiError):
    """Upstream rejected an If-Match write; the caller must re-fetch."""

    status_code = 412
    default_code = ErrorCode.PRECONDITION_FAILED

    def __init__(
        self,
        message: str = (
            "Resource has been modified by another user."
            " Please refresh and try again."
        ),
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class ETagMissingError(BaseApiError):
    """Upstream answered without an ETag; the resource cannot be written safely."""

    status_code = 500
    default_code = ErrorCode.ETAG_MISSING

    def __init__(
        self,
        message: str = (
            "Unable to obtain ETag header for safe operation"
        ),
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class MicroserviceError(BaseApiError):
    """An upstream service answered with an error; status is preserved."""

    status_code = 502
    default_code = ErrorCode.BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        error_body: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.error_body = error_body

    @classmethod
    def from_upstream_response(
        cls,
        status_code: int,
        body: Any,
        *,
        reason: str = "",
        **kwargs: Any,
    ) -> MicroserviceError:
        """Build from a non-2xx upstream response.

        Prefers the body's ``message`` then ``error`` field, then the
        HTTP reason phrase, then a generic message for the status.
        """
        message = ""
        if isinstance(body, dict):
            message = str(body.get("message") or body.get("error") or "")
        elif isinstance(body, str) and body.strip():
            message = body.strip()
        if not message:
            message = reason or default_message_for_status(status_code)
        return cls(
            message,
            code=code_for_status(status_code),
            status_code=status_code,
            error_body=body,
            **kwargs,
        )

    def response_extras(self) -> dict[str, Any]:
        if self.service:
            return {"service": self.service}
        return {}


class ServiceTimeoutError(BaseApiError):
    """An upstream call or pool acquire exceeded its deadline."""

    status_code = 504
    default_code = ErrorCode.TIMEOUT


class ConfigurationError(BaseApiError):
    """Required configuration is missing or invalid."""

    status_code = 500
    default_code = ErrorCode.CONFIGURATION_ERROR


class QueryExecutionError(BaseApiError):
    """A warehouse query failed after passing validation."""

    status_code = 500
    default_code = ErrorCode.QUERY_EXECUTION_FAILED
