"""Structured error types for llm_gateway.

Callers can tell a fatal request mistake from a transport failure and from
malformed model output:

    from llm_gateway.errors import ConflictingOptionsError, SchemaValidationError

    try:
        data = await gateway.create_chat_completion(request)
    except ConflictingOptionsError:
        # Fix the request; retrying won't help
        ...
    except SchemaValidationError as e:
        # The gateway already retried; e.data holds the last parsed output
        ...
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base for all llm_gateway errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class ConflictingOptionsError(GatewayError):
    """Request asks for tools and a response schema on a model that can't do both."""


# -- Transport ------------------------------------------------------------


class TransportError(GatewayError):
    """Provider call failed. Never retried by the gateway."""


class TransportRateLimitError(TransportError):
    """Rate limit or quota (429)."""


class TransportAuthError(TransportError):
    """Authentication failed (401/403)."""


class TransportTimeoutError(TransportError):
    """Request timed out."""


class TransportUnavailableError(TransportError):
    """Server error (500/502/503) or connection failure."""


class TransportBadRequestError(TransportError):
    """Provider rejected the request (400/404, unknown model, content policy)."""


# -- Model output ---------------------------------------------------------


class SchemaParseError(GatewayError):
    """Model output could not be parsed as JSON."""

    def __init__(
        self,
        message: str,
        *,
        content: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.content = content


class SchemaValidationError(GatewayError):
    """Parsed model output failed the schema's validation."""

    def __init__(
        self,
        message: str,
        *,
        data: Any = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.data = data
        self.errors = errors or []


class ToolCallParseError(GatewayError):
    """Emulated tool-call text could not be parsed into ``{name, arguments}``."""

    def __init__(
        self,
        message: str,
        *,
        content: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.content = content


# Errors that re-enter the gateway while retry budget remains.
RETRYABLE_ERRORS: tuple[type[GatewayError], ...] = (
    SchemaParseError,
    SchemaValidationError,
    ToolCallParseError,
)


# -- Classification -------------------------------------------------------

_RATE_LIMIT_PATTERNS = ("rate limit", "rate_limit", "too many requests", "429", "quota")
_AUTH_PATTERNS = ("401", "403", "authentication", "unauthorized", "forbidden", "api key")
_TIMEOUT_PATTERNS = ("timeout", "timed out")
_UNAVAILABLE_PATTERNS = (
    "connection",
    "service unavailable",
    "server error",
    "overloaded",
    "500",
    "502",
    "503",
    "529",
)
_BAD_REQUEST_PATTERNS = ("400", "404", "not found", "does not exist", "invalid request", "bad request")


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_transport_error(error: Exception) -> type[TransportError]:
    """Classify a provider exception into a TransportError subtype.

    Uses litellm exception types when available, falls back to string matching.
    """
    try:
        import litellm as _lt

        checks: tuple[tuple[tuple[str, ...], type[TransportError]], ...] = (
            (("AuthenticationError", "PermissionDeniedError"), TransportAuthError),
            (("RateLimitError", "BudgetExceededError"), TransportRateLimitError),
            (("Timeout",), TransportTimeoutError),
            (
                ("BadRequestError", "NotFoundError", "ContentPolicyViolationError",
                 "ContextWindowExceededError", "UnsupportedParamsError"),
                TransportBadRequestError,
            ),
            (
                ("InternalServerError", "ServiceUnavailableError",
                 "APIConnectionError", "BadGatewayError"),
                TransportUnavailableError,
            ),
        )
        for names, cls in checks:
            types = _litellm_error_types(_lt, names)
            if types and isinstance(error, types):
                return cls
    except ImportError:
        pass

    if isinstance(error, TimeoutError):
        return TransportTimeoutError
    if isinstance(error, ConnectionError):
        return TransportUnavailableError

    error_str = str(error).lower()
    if any(p in error_str for p in _RATE_LIMIT_PATTERNS):
        return TransportRateLimitError
    if any(p in error_str for p in _AUTH_PATTERNS):
        return TransportAuthError
    if any(p in error_str for p in _TIMEOUT_PATTERNS):
        return TransportTimeoutError
    if any(p in error_str for p in _UNAVAILABLE_PATTERNS):
        return TransportUnavailableError
    if any(p in error_str for p in _BAD_REQUEST_PATTERNS):
        return TransportBadRequestError
    return TransportError


def wrap_transport_error(error: Exception) -> TransportError:
    """Wrap a provider exception in the matching TransportError subclass.

    If the error is already a TransportError, returns it unchanged.
    """
    if isinstance(error, TransportError):
        return error
    cls = classify_transport_error(error)
    return cls(str(error) or type(error).__name__, original=error)
