"""
Error taxonomy for the notification pipeline.

HTTP-facing errors carry the status code and the coarse ``error`` slug the
endpoint answers with. Job-processing errors are split into ``DataError``
(dead-letter at once) and ``TransientError`` (retry with backoff); the
classification is made where the error is raised.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    INTERNAL_ERROR = "internal_error"
    UNAUTHORIZED = "unauthorized"
    INVALID_JSON = "invalid_json"
    MISSING_FIELDS = "missing_fields"
    NOT_CONFIGURED = "not_configured"
    RATE_LIMITED = "rate_limited"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    ENQUEUE_FAILED = "enqueue_failed"
    ENQUEUE_REJECTED = "enqueue_rejected"
    STORE_UNAVAILABLE = "store_unavailable"
    FETCH_JOBS_FAILED = "fetch_jobs_failed"
    PAYMENT_NOT_FOUND = "payment_not_found"
    MISSING_PROVIDER_PAYMENT_ID = "missing_provider_payment_id"

    # Job processing
    MISSING_EMAIL_OR_PAYMENT_ID = "missing_email_or_payment_id"
    ACCESS_CODE_MISSING = "access_code_missing"
    CODE_NOT_FOUND = "code_not_found"
    PROVIDER_ERROR = "provider_error"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code.value}


class AuthError(AppException):
    """Bad or missing signature or shared secret."""

    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, ErrorCode.UNAUTHORIZED, status_code=401)


class ValidationError(AppException):
    """Malformed JSON or missing fields in a request body."""

    def __init__(self, error_code: ErrorCode, field: str | None = None):
        super().__init__(error_code.value, error_code, status_code=400)
        if field:
            self.details["field"] = field


class NotConfiguredError(AppException):
    def __init__(self, feature: str):
        super().__init__(
            f"{feature} is not configured",
            ErrorCode.NOT_CONFIGURED,
            status_code=501,
            details={"feature": feature},
        )


class NotFoundError(AppException):
    def __init__(self, error_code: ErrorCode, identifier: Any):
        super().__init__(
            f"{error_code.value}: {identifier}",
            error_code,
            status_code=404,
            details={"identifier": str(identifier)},
        )


class PayloadTooLargeError(AppException):
    def __init__(self, limit: int):
        super().__init__(
            f"request body exceeds {limit} bytes",
            ErrorCode.PAYLOAD_TOO_LARGE,
            status_code=413,
        )


class RateLimitedError(AppException):
    def __init__(self, key: str, retry_after_ms: int):
        super().__init__(
            f"rate limit exceeded for {key}",
            ErrorCode.RATE_LIMITED,
            status_code=429,
            details={"retry_after_ms": retry_after_ms},
        )
        self.retry_after_ms = retry_after_ms


class EnqueueError(AppException):
    """The webhook receiver could not hand the event to the enqueue endpoint."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_code, status_code=502, details=details)


class DataError(AppException):
    """
    Referential inconsistency found while processing a job.

    Retrying cannot fix it, so the job is dead-lettered on the first failure.
    """

    retryable = False

    def __init__(self, error_code: ErrorCode, details: dict[str, Any] | None = None):
        super().__init__(
            f"data:{error_code.value}", error_code, status_code=422, details=details
        )


class TransientError(AppException):
    """Network, provider or store failure; retried with backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 503,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_code, status_code=status_code, details=details)


class StoreError(TransientError):
    def __init__(self, operation: str, cause: Exception | None = None):
        super().__init__(
            f"store operation failed: {operation}",
            ErrorCode.STORE_UNAVAILABLE,
            details={"operation": operation, "cause": type(cause).__name__ if cause else None},
        )


class ProviderError(TransientError):
    """Non-2xx or network failure talking to the payment or email provider."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status: int | None = None,
        body: str = "",
    ):
        super().__init__(
            f"{service_name}: {message}",
            ErrorCode.PROVIDER_ERROR,
            details={"service": service_name, "status": status, "body": body},
        )
        self.service_name = service_name
        self.status = status
        self.body = body

    @classmethod
    def from_response(
        cls,
        service_name: str,
        operation: str,
        response: Any,
        *,
        max_body_chars: int = 500,
    ) -> "ProviderError":
        status = getattr(response, "status_code", None)
        body = (getattr(response, "text", "") or "")[:max_body_chars]
        return cls(
            service_name,
            f"{operation} returned status {status}: {body}",
            status=status,
            body=body,
        )
