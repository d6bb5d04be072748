"""
Shared kernel for Research Master.

Provides:
- Unified exception hierarchy
- Async admission primitives (token bucket, FIFO concurrency limiter, circuit breaker)
- Resolved configuration

Every layer may import from here; this package imports no other layer.
"""

from .async_utils import CircuitBreaker, ConcurrencyLimiter, TokenBucket
from .config import (
    ApiKeys,
    CacheConfig,
    Config,
    ProxyConfig,
    RateLimitConfig,
    SourceConfig,
    load_config,
    parse_rate_limits,
    parse_source_list,
)
from .exceptions import (
    CacheIOError,
    CircuitOpenError,
    ConfigurationError,
    DeadlineExceededError,
    DuplicateSourceIdError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    InvalidParameterError,
    InvalidQueryError,
    NetworkError,
    NotFoundError,
    ParseError,
    ProviderError,
    RateLimitError,
    RateLimitTimeoutError,
    ResearchMasterError,
    ServiceUnavailableError,
    UnknownSourceError,
    UnsupportedOperationError,
    ValidationError,
    get_retry_delay,
    is_retryable_error,
)

__all__ = [
    # Async primitives
    "TokenBucket",
    "ConcurrencyLimiter",
    "CircuitBreaker",
    # Config
    "Config",
    "ApiKeys",
    "CacheConfig",
    "ProxyConfig",
    "RateLimitConfig",
    "SourceConfig",
    "load_config",
    "parse_rate_limits",
    "parse_source_list",
    # Errors
    "ResearchMasterError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "ConfigurationError",
    "DuplicateSourceIdError",
    "ValidationError",
    "InvalidQueryError",
    "InvalidParameterError",
    "UnknownSourceError",
    "ProviderError",
    "NetworkError",
    "ParseError",
    "NotFoundError",
    "ServiceUnavailableError",
    "RateLimitError",
    "CircuitOpenError",
    "UnsupportedOperationError",
    "RateLimitTimeoutError",
    "DeadlineExceededError",
    "CacheIOError",
    "is_retryable_error",
    "get_retry_delay",
]
