"""
Unified error taxonomy for forgeline.

Errors fall into two families:

- Expected failures (``ProviderError`` and subclasses): the remote system
  rejected an operation, a property cannot be changed in place, or the
  network misbehaved. These are normal reconciliation outcomes that the
  orchestrator reports against a single resource id.
- Defects (``DefectError`` and subclasses): a provider or the runtime broke
  its own contract. These are bugs and are always fatal.

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: Provider error (external service failure)
- 12: Validation error
- 70: Defect (internal contract violation)
- 127: Unknown/internal error
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx


class ExitCode(IntEnum):
    """Standardized exit codes for failed applies."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    DEFECT = 70
    UNKNOWN_ERROR = 127


class ErrorCategory(StrEnum):
    """Machine-checkable category of a remote API failure."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK = "network"


RETRYABLE_CATEGORIES = frozenset(
    {ErrorCategory.RATE_LIMITED, ErrorCategory.SERVER_ERROR, ErrorCategory.NETWORK}
)


def category_for_status(status: int) -> ErrorCategory:
    """Map an HTTP status code onto an error category."""
    if status in (401, 403):
        return ErrorCategory.AUTH
    if status in (404, 410):
        return ErrorCategory.NOT_FOUND
    if status == 409:
        return ErrorCategory.CONFLICT
    if status == 429:
        return ErrorCategory.RATE_LIMITED
    if status == 408 or status >= 500:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.VALIDATION


class ForgelineError(Exception):
    """Base exception for forgeline errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ForgelineError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(ForgelineError):
    """Raised when an external provider/service fails in an expected way."""

    exit_code = ExitCode.PROVIDER_ERROR


class ValidationError(ProviderError):
    """Raised when desired properties are rejected before reaching the API."""

    exit_code = ExitCode.VALIDATION_ERROR


class ApiError(ProviderError):
    """The remote API rejected an operation."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status = status
        if category is None:
            category = category_for_status(status) if status is not None else ErrorCategory.SERVER_ERROR
        self.category = category

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES

    @property
    def not_found(self) -> bool:
        return self.category is ErrorCategory.NOT_FOUND

    @property
    def conflict(self) -> bool:
        return self.category is ErrorCategory.CONFLICT

    @classmethod
    def from_response(cls, response: "httpx.Response", operation: str | None = None) -> "ApiError":
        """Build an error from a failed HTTP response.

        The message prefers the body's ``message`` or ``error`` field and falls
        back to the status line when the body is not JSON.
        """
        target = operation or f"{response.request.method} {response.request.url.path}"
        message = f"Failed to {target}: HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("message") or body.get("error")
            if detail:
                message = f"Failed to {target}: {detail}"
        return cls(
            message,
            status=response.status_code,
            details={"status": response.status_code},
        )


class TransientError(ApiError):
    """Connection reset, timeout, or a retryable status that outlived retries."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        category: ErrorCategory = ErrorCategory.NETWORK,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status=status, category=category, details=details)


class ImmutablePropertyError(ProviderError):
    """A property that cannot change after creation was changed."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(self, kind: str, resource_id: str, fields: list[str]):
        names = ", ".join(fields)
        super().__init__(
            f"Cannot change {names} of {kind} '{resource_id}' after creation",
            {"kind": kind, "id": resource_id, "fields": fields},
        )
        self.fields = fields


class ReplaceCleanupError(ProviderError):
    """Destroying the replaced object failed after its successor was created.

    ``state`` holds the already-persisted state pointing at the new object.
    """

    def __init__(self, message: str, state: Any, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.state = state


class DefectError(ForgelineError):
    """Unexpected failure: a bug in a provider or in the runtime."""

    exit_code = ExitCode.DEFECT
    show_traceback = True


class ContractViolation(DefectError):
    """A resource, handler, or caller broke the lifecycle contract."""


def is_defect(exc: BaseException) -> bool:
    """Whether an exception should be reported as a bug rather than an outcome."""
    return not isinstance(exc, (ProviderError, ConfigurationError))


def format_error_message(error: ForgelineError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
