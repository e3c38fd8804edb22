# src/dossierforge/llm/errors.py - v1
"""Error taxonomy for calls to the external generative-text service.

Adapters translate provider SDK exceptions into these classes so the
retry policy only ever reasons about two families: transient (retried
with backoff) and non-retryable (fail immediately).
"""

from __future__ import annotations

import asyncio


class ExternalServiceError(Exception):
    """Base class for failures of the external generative service."""

    error_type = "external_error"


class TransientExternalError(ExternalServiceError):
    """Failure expected to clear up on its own; retried with backoff."""

    error_type = "transient"


class RateLimitError(TransientExternalError):
    error_type = "rate_limit"


class ExternalTimeoutError(TransientExternalError):
    error_type = "timeout"


class ServerError(TransientExternalError):
    error_type = "server_error"


class NonRetryableExternalError(ExternalServiceError):
    """Failure that no amount of waiting fixes; never consumes a retry."""

    error_type = "non_retryable"


class AuthenticationError(NonRetryableExternalError):
    error_type = "authentication"


class PolicyViolationError(NonRetryableExternalError):
    error_type = "policy_violation"


class ContextTooLargeError(NonRetryableExternalError):
    error_type = "context_too_large"


class InvalidRequestError(NonRetryableExternalError):
    error_type = "invalid_request"


class InvalidResponseError(NonRetryableExternalError):
    """The service answered, but not with parseable structured output."""

    error_type = "invalid_response"


_NON_RETRYABLE_PATTERNS: tuple[tuple[str, type[NonRetryableExternalError]], ...] = (
    ("invalid api key", AuthenticationError),
    ("incorrect api key", AuthenticationError),
    ("insufficient quota", AuthenticationError),
    ("context length exceeded", ContextTooLargeError),
    ("context_length_exceeded", ContextTooLargeError),
    ("prompt is too long", ContextTooLargeError),
    ("content policy violation", PolicyViolationError),
    ("content_policy_violation", PolicyViolationError),
    ("model not found", InvalidRequestError),
    ("invalid request", InvalidRequestError),
)


def classify_error(error: BaseException) -> type[ExternalServiceError] | None:
    """Map an arbitrary exception to a taxonomy class.

    Returns None for exceptions that do not look like service failures;
    callers treat those as non-retryable.
    """
    if isinstance(error, ExternalServiceError):
        return type(error)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ExternalTimeoutError

    msg = str(error).lower()
    name = type(error).__name__.lower()

    for pattern, cls in _NON_RETRYABLE_PATTERNS:
        if pattern in msg:
            return cls
    if "429" in msg or "rate limit" in msg or "ratelimit" in name:
        return RateLimitError
    if "timeout" in name or "timed out" in msg:
        return ExternalTimeoutError
    if any(code in msg for code in ("500", "502", "503", "504", "overloaded")):
        return ServerError
    return None


def is_retryable(error: BaseException) -> bool:
    cls = classify_error(error)
    return cls is not None and issubclass(cls, TransientExternalError)
