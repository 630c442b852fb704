"""Custom exceptions for the article research core."""

from enum import Enum

import httpx


class ArticleGenerationError(Exception):
    """Base exception for all article generation errors."""

    pass


class ConfigurationError(ArticleGenerationError):
    """Raised when configuration is invalid or credentials are missing."""

    pass


class ErrorKind(str, Enum):
    """Failure classification produced at the provider and store boundaries."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    PERMANENT = "permanent"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.UNAVAILABLE}
)

# Message fragments recognised on errors that were not tagged at a boundary
RETRY_VOCABULARY: dict[str, ErrorKind] = {
    "timeout": ErrorKind.TIMEOUT,
    "timed out": ErrorKind.TIMEOUT,
    "network": ErrorKind.NETWORK,
    "rate limit": ErrorKind.RATE_LIMITED,
    "temporary": ErrorKind.UNAVAILABLE,
    "service unavailable": ErrorKind.UNAVAILABLE,
}


class ProviderError(ArticleGenerationError):
    """Raised when a third-party knowledge provider call fails."""

    def __init__(self, message: str, kind: ErrorKind, provider: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider


class NotFoundError(ArticleGenerationError):
    """Raised when a repository lookup finds no row."""

    kind = ErrorKind.NOT_FOUND


class StoreError(ArticleGenerationError):
    """Raised when the persistent store fails for a reason other than not-found."""

    pass


class OutlineError(ArticleGenerationError):
    """Raised when an outline is malformed (bad ordering, dangling dependencies)."""

    kind = ErrorKind.PERMANENT


class InvalidTransitionError(ArticleGenerationError):
    """Raised when an article or section status change is not allowed."""

    kind = ErrorKind.PERMANENT


class QueueError(ArticleGenerationError):
    """Raised when a queue operation cannot be applied to an entry."""

    pass


def error_kind_from_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an error kind.

    Args:
        status_code: HTTP response status.

    Returns:
        The matching ErrorKind.
    """
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    if status_code >= 500:
        return ErrorKind.UNAVAILABLE
    return ErrorKind.PERMANENT


def provider_error_from_httpx(provider: str, exc: httpx.HTTPError) -> ProviderError:
    """Wrap an httpx failure into a tagged ProviderError.

    Args:
        provider: Provider name used in the message.
        exc: The httpx exception.

    Returns:
        ProviderError with a kind derived from the failure.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        kind = error_kind_from_status(status)
        label = "rate limit exceeded" if kind == ErrorKind.RATE_LIMITED else "API error"
        return ProviderError(f"{provider} {label} ({status}): {exc}", kind, provider)
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(f"{provider} request timeout: {exc}", ErrorKind.TIMEOUT, provider)
    return ProviderError(f"{provider} network error: {exc}", ErrorKind.NETWORK, provider)


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify any exception into an ErrorKind.

    Tagged errors keep their kind. Untagged errors are matched against the
    retry vocabulary; anything unrecognised is permanent.

    Args:
        exc: The exception to classify.

    Returns:
        The ErrorKind for the exception.
    """
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    if isinstance(exc, httpx.TimeoutException | TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.RequestError | ConnectionError):
        return ErrorKind.NETWORK

    message = str(exc).lower()
    for fragment, fragment_kind in RETRY_VOCABULARY.items():
        if fragment in message:
            return fragment_kind
    return ErrorKind.PERMANENT


def is_retryable(exc: BaseException) -> bool:
    """Return True when the exception should be retried with backoff."""
    return classify_error(exc) in RETRYABLE_KINDS
