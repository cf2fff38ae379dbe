"""Structured error types for cline_bridge.

The collapse engine itself never raises: malformed input degrades to
fallback text. These types cover the layers around it (scaffold loading,
catalog parsing, credentials, and the upstream completion call):

    from cline_bridge.errors import UpstreamAuthError, UpstreamRateLimitError

    try:
        result = await acall_collapsed("x-ai/grok-code-fast-1", messages, credentials=creds)
    except UpstreamAuthError:
        # Token expired or revoked; refresh credentials and retry
        ...
    except UpstreamRateLimitError:
        # Transient; back off before the next turn
        ...
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base for all cline_bridge errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class ScaffoldError(BridgeError):
    """A captured scaffold file is missing or malformed."""


class CatalogError(BridgeError):
    """Model catalog payload could not be interpreted."""


class CredentialsError(BridgeError):
    """Credentials are missing, malformed, or expired."""


class UpstreamError(BridgeError):
    """Base for failures of the upstream completion call."""


class UpstreamRateLimitError(UpstreamError):
    """Transient rate limit (429) - retry with backoff."""


class UpstreamQuotaExhaustedError(UpstreamError):
    """Free-tier quota exhausted - don't retry, switch model or abort."""


class UpstreamAuthError(UpstreamError):
    """Authentication failed (401/403) - access token invalid or expired."""


class UpstreamTransientError(UpstreamError):
    """Server error (500/502/503), timeout, connection - retry."""


class UpstreamModelNotFoundError(UpstreamError):
    """Model id is not served by the upstream (404)."""


# Patterns that indicate permanent quota exhaustion (not transient rate limit).
_QUOTA_PATTERNS = [
    "quota",
    "billing",
    "insufficient",
    "exceeded your current",
    "credits",
]


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_error(error: Exception) -> type[UpstreamError]:
    """Classify an upstream call failure into an UpstreamError subtype.

    Uses litellm exception types first, falls back to string matching.
    """
    import litellm as _lt

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return UpstreamAuthError

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return UpstreamModelNotFoundError

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        error_str = str(error).lower()
        if any(p in error_str for p in _QUOTA_PATTERNS):
            return UpstreamQuotaExhaustedError
        return UpstreamRateLimitError

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "BadGatewayError",
            "Timeout",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return UpstreamTransientError

    error_str = str(error).lower()

    if any(p in error_str for p in _QUOTA_PATTERNS):
        return UpstreamQuotaExhaustedError
    if "401" in error_str or "authentication" in error_str or "unauthorized" in error_str:
        return UpstreamAuthError
    if "403" in error_str or "forbidden" in error_str:
        return UpstreamAuthError
    if "404" in error_str or "not found" in error_str:
        return UpstreamModelNotFoundError
    if "rate" in error_str and "limit" in error_str:
        return UpstreamRateLimitError
    if any(p in error_str for p in ("timeout", "timed out", "connection", "500", "502", "503")):
        return UpstreamTransientError

    return UpstreamError


def wrap_error(error: Exception) -> BridgeError:
    """Wrap an exception in the appropriate BridgeError subclass.

    If the error is already a BridgeError, returns it unchanged.
    """
    if isinstance(error, BridgeError):
        return error
    cls = classify_error(error)
    return cls(str(error), original=error)
