"""Typed error taxonomy for the memory engine.

Every exception raised across a public boundary is a MemoryEngineError and
carries an ErrorKind, so callers (and UpdateResult) can report failures
without string matching.

  ProviderError          — any failure talking to the embedding/LLM provider or store
    RateLimited          — upstream quota exhausted (HTTP 429); retryable after a delay
    AuthError            — bad or missing credentials (HTTP 401/403); not retryable
    TransientError       — network failure, timeout or 5xx; retryable with backoff
  SchemaError            — malformed LLM output; recovered locally by falling back
  TenantScopeViolation   — read or write without a valid scope filter; fatal
  DimensionMismatch      — vector length differs from the store's dimensionality; fatal

Low-confidence classification is not an exception: it surfaces as a
keep_both Resolution with needs_review=True.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    TRANSIENT = "transient"
    PROVIDER = "provider"
    SCHEMA = "schema"
    TENANT_SCOPE_VIOLATION = "tenant_scope_violation"
    DIMENSION_MISMATCH = "dimension_mismatch"


class MemoryEngineError(Exception):
    """Base class for all memory engine errors."""

    kind: ErrorKind = ErrorKind.PROVIDER


class ProviderError(MemoryEngineError):
    """An external provider call failed for a reason with no more specific kind."""

    kind = ErrorKind.PROVIDER
    retryable = False


class RateLimited(ProviderError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthError(ProviderError):
    kind = ErrorKind.AUTH_ERROR


class TransientError(ProviderError):
    kind = ErrorKind.TRANSIENT
    retryable = True


class SchemaError(MemoryEngineError):
    """LLM output could not be parsed or did not match the expected schema."""

    kind = ErrorKind.SCHEMA


class TenantScopeViolation(MemoryEngineError):
    """A store operation was attempted without a valid scope, or crossed scopes."""

    kind = ErrorKind.TENANT_SCOPE_VIOLATION


class DimensionMismatch(MemoryEngineError):
    kind = ErrorKind.DIMENSION_MISMATCH
