"""
Unified Exception Hierarchy for Research Master.

Every failure the dispatch core can observe is one of these types, so a
caller can tell structural misuse (configuration, validation) apart from
failures that belong to a single provider and are reported per provider.

Exception Hierarchy:
    ResearchMasterError (base)
    ├── ConfigurationError
    │   └── DuplicateSourceIdError
    ├── ValidationError
    │   ├── InvalidQueryError
    │   ├── InvalidParameterError
    │   └── UnknownSourceError
    ├── ProviderError
    │   ├── NetworkError
    │   ├── ParseError
    │   ├── NotFoundError
    │   ├── ServiceUnavailableError
    │   ├── RateLimitError
    │   ├── CircuitOpenError
    │   └── UnsupportedOperationError
    ├── RateLimitTimeoutError
    ├── DeadlineExceededError
    └── CacheIOError
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = auto()      # Recoverable, can continue
    ERROR = auto()        # Failed but can retry
    CRITICAL = auto()     # Cannot continue
    TRANSIENT = auto()    # Temporary, should retry automatically


class ErrorCategory(Enum):
    """Categories for error classification."""
    PROVIDER = "provider"
    VALIDATION = "validation"
    CONFIGURATION = "config"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CACHE = "cache"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Structured context attached to every error."""
    source_id: str | None = None
    operation: str | None = None
    input_value: Any = None
    suggestion: str | None = None
    retry_after: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _with(context: ErrorContext | None, **changes: Any) -> ErrorContext:
    """Return ``context`` (or a fresh one) with unset fields filled from ``changes``."""
    ctx = context or ErrorContext()
    updates = {k: v for k, v in changes.items() if getattr(ctx, k) in (None, {})}
    return replace(ctx, **updates) if updates else ctx


class ResearchMasterError(Exception):
    """
    Base exception for all Research Master errors.

    Provides:
    - Structured error context
    - Severity classification
    - Retry guidance
    """

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.PROVIDER,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": str(self),
            "type": type(self).__name__,
            "category": self.category.value,
            "severity": self.severity.name.lower(),
            "retryable": self.retryable,
        }
        if self.context.source_id:
            result["source"] = self.context.source_id
        if self.context.operation:
            result["operation"] = self.context.operation
        if self.context.suggestion:
            result["suggestion"] = self.context.suggestion
        if self.context.retry_after:
            result["retry_after_seconds"] = self.context.retry_after
        return result


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ResearchMasterError):
    """Raised for configuration-related errors and registry misuse."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
        )


class DuplicateSourceIdError(ConfigurationError):
    """Raised when a source id is registered twice."""

    def __init__(self, source_id: str, *, context: ErrorContext | None = None) -> None:
        ctx = _with(
            context,
            source_id=source_id,
            suggestion="Every source must be registered under a unique id",
        )
        super().__init__(f"Source id already registered: {source_id!r}", context=ctx)
        self.source_id = source_id


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(ResearchMasterError):
    """Base class for validation errors."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.VALIDATION,
            retryable=False,
        )


class InvalidQueryError(ValidationError):
    """Raised when search query is invalid."""

    def __init__(
        self,
        query: str | None,
        reason: str = "Query cannot be empty",
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, input_value=query, suggestion="Provide a valid search query")
        super().__init__(f"Invalid query: {reason}", context=ctx)


class InvalidParameterError(ValidationError):
    """Raised when a parameter value is invalid."""

    def __init__(
        self,
        param_name: str,
        value: Any,
        expected: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, input_value=value, suggestion=f"Expected {expected}")
        super().__init__(
            f"Invalid parameter '{param_name}': {value!r} (expected {expected})",
            context=ctx,
        )
        self.param_name = param_name


class UnknownSourceError(ValidationError):
    """Raised (or recorded) when a caller names a source id that is not registered."""

    def __init__(self, source_id: str, *, context: ErrorContext | None = None) -> None:
        ctx = _with(
            context,
            source_id=source_id,
            suggestion="Use list_sources to see the registered source ids",
        )
        super().__init__(f"Unknown source: {source_id!r}", context=ctx)
        self.source_id = source_id


# =============================================================================
# Provider Errors
# =============================================================================

class ProviderError(ResearchMasterError):
    """
    Failure reported by (or on behalf of) one provider.

    Always isolated to that provider: the dispatcher records it in the
    per-provider outcome list and carries on with the siblings.
    """

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        context: ErrorContext | None = None,
        retryable: bool = True,
        category: ErrorCategory = ErrorCategory.PROVIDER,
    ) -> None:
        ctx = _with(context, source_id=source_id)
        super().__init__(
            message,
            context=ctx,
            severity=ErrorSeverity.ERROR,
            category=category,
            retryable=retryable,
        )

    @property
    def source_id(self) -> str | None:
        return self.context.source_id


class NetworkError(ProviderError):
    """Raised for network connectivity issues."""

    def __init__(
        self,
        message: str = "Network connection failed",
        *,
        source_id: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            source_id=source_id,
            context=context,
            category=ErrorCategory.NETWORK,
        )


class ParseError(ProviderError):
    """Raised when a provider response cannot be decoded."""

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        full_msg = f"Parse error ({source_id}): {message}" if source_id else f"Parse error: {message}"
        super().__init__(full_msg, source_id=source_id, context=context, retryable=False)


class NotFoundError(ProviderError):
    """Raised when requested data is not found."""

    def __init__(
        self,
        resource: str,
        identifier: str | None = None,
        *,
        source_id: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        msg = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        ctx = _with(
            context,
            input_value=identifier,
            suggestion="Check the identifier and try again",
        )
        super().__init__(msg, source_id=source_id, context=ctx, retryable=False)


class ServiceUnavailableError(ProviderError):
    """Raised when the external service is temporarily unavailable."""

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        *,
        source_id: str | None = None,
        status_code: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            f"{source_id or 'provider'}: {message}",
            source_id=source_id,
            context=context,
        )
        self.status_code = status_code
        self.severity = ErrorSeverity.TRANSIENT


class RateLimitError(ProviderError):
    """Raised when the remote API answers with HTTP 429."""

    def __init__(
        self,
        message: str = "API rate limit exceeded",
        *,
        source_id: str | None = None,
        retry_after: float = 1.0,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, retry_after=retry_after, suggestion="Wait and retry the request")
        super().__init__(
            message,
            source_id=source_id,
            context=ctx,
            category=ErrorCategory.RATE_LIMIT,
        )
        self.severity = ErrorSeverity.TRANSIENT


class CircuitOpenError(ProviderError):
    """Raised instead of calling a provider whose circuit breaker is open."""

    def __init__(
        self,
        source_id: str | None = None,
        *,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, retry_after=retry_after)
        super().__init__(
            f"Circuit breaker open for {source_id or 'provider'}",
            source_id=source_id,
            context=ctx,
        )
        self.severity = ErrorSeverity.TRANSIENT


class UnsupportedOperationError(ProviderError):
    """Raised when a provider is asked for an operation it does not declare."""

    def __init__(
        self,
        operation: str,
        *,
        source_id: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, operation=operation)
        super().__init__(
            f"{source_id or 'provider'} does not support {operation}",
            source_id=source_id,
            context=ctx,
            retryable=False,
        )


# =============================================================================
# Admission / Deadline Errors
# =============================================================================

class RateLimitTimeoutError(ResearchMasterError):
    """Raised when rate-limiter admission is not granted within the wait bound."""

    def __init__(
        self,
        source_id: str,
        timeout: float,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, source_id=source_id, retry_after=timeout)
        super().__init__(
            f"Rate limiter did not admit {source_id!r} within {timeout:.2f}s",
            context=ctx,
            severity=ErrorSeverity.TRANSIENT,
            category=ErrorCategory.RATE_LIMIT,
            retryable=True,
        )
        self.source_id = source_id
        self.timeout = timeout


class DeadlineExceededError(ResearchMasterError):
    """Recorded for a provider call that was cancelled by the caller's deadline."""

    def __init__(
        self,
        source_id: str,
        deadline: float,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, source_id=source_id)
        super().__init__(
            f"{source_id!r} did not finish within the {deadline:.2f}s deadline",
            context=ctx,
            severity=ErrorSeverity.TRANSIENT,
            category=ErrorCategory.TIMEOUT,
            retryable=True,
        )
        self.source_id = source_id
        self.deadline = deadline


# =============================================================================
# Cache Errors
# =============================================================================

class CacheIOError(ResearchMasterError):
    """Raised by the persistent cache tier; callers degrade to a cache miss."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = _with(context, input_value=path)
        super().__init__(
            message,
            context=ctx,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.CACHE,
            retryable=False,
        )


# =============================================================================
# Helpers
# =============================================================================

def is_retryable_error(error: BaseException) -> bool:
    """Check if an error should be retried."""
    if isinstance(error, ResearchMasterError):
        return error.retryable

    error_str = str(error).lower()
    transient_patterns = [
        "rate limit",
        "too many requests",
        "temporarily unavailable",
        "service unavailable",
        "connection reset",
        "timeout",
    ]
    return any(pattern in error_str for pattern in transient_patterns)


def get_retry_delay(
    error: BaseException,
    attempt: int,
    *,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> float:
    """
    Calculate retry delay with exponential backoff.

    A server-provided ``retry_after`` is used as-is (capped at ``max_delay``).

    Args:
        error: The exception that occurred
        attempt: Current attempt number (0-based)
        base_delay: Delay before the first retry
        max_delay: Upper bound on any delay

    Returns:
        Delay in seconds before next retry
    """
    if isinstance(error, ResearchMasterError) and error.context.retry_after:
        return min(float(error.context.retry_after), max_delay)

    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, 0.1 * delay)
    return min(delay + jitter, max_delay)
