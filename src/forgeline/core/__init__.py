"""Core modules for forgeline - centralized definitions and utilities."""

from forgeline.core.errors import (
    ApiError,
    ConfigurationError,
    ContractViolation,
    DefectError,
    ErrorCategory,
    ExitCode,
    ForgelineError,
    ImmutablePropertyError,
    ProviderError,
    ReplaceCleanupError,
    TransientError,
    ValidationError,
    category_for_status,
    format_error_message,
    is_defect,
)

__all__ = [
    "ExitCode",
    "ErrorCategory",
    "ForgelineError",
    "ConfigurationError",
    "ProviderError",
    "ValidationError",
    "ApiError",
    "TransientError",
    "ImmutablePropertyError",
    "ReplaceCleanupError",
    "DefectError",
    "ContractViolation",
    "category_for_status",
    "format_error_message",
    "is_defect",
]
