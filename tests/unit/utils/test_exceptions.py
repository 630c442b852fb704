"""Unit tests for error classification."""

import httpx
import pytest

from src.utils.exceptions import (
    ErrorKind,
    NotFoundError,
    ProviderError,
    classify_error,
    error_kind_from_status,
    is_retryable,
    provider_error_from_httpx,
)


@pytest.mark.unit
class TestErrorClassification:
    """Tests for classify_error and is_retryable."""

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (429, ErrorKind.RATE_LIMITED),
            (404, ErrorKind.NOT_FOUND),
            (408, ErrorKind.TIMEOUT),
            (504, ErrorKind.TIMEOUT),
            (503, ErrorKind.UNAVAILABLE),
            (400, ErrorKind.PERMANENT),
        ],
    )
    def test_status_mapping(self, status: int, kind: ErrorKind) -> None:
        """HTTP statuses should map to error kinds."""
        assert error_kind_from_status(status) == kind

    def test_tagged_kind_wins_over_message(self) -> None:
        """A tagged error keeps its kind even if its message mentions a timeout."""
        error = ProviderError("timeout while validating", ErrorKind.PERMANENT, "tavily")
        assert classify_error(error) == ErrorKind.PERMANENT
        assert not is_retryable(error)

    @pytest.mark.parametrize(
        "message",
        ["Rate limit exceeded", "Request timed out", "Network unreachable", "Service Unavailable", "temporary glitch"],
    )
    def test_untagged_messages_use_vocabulary(self, message: str) -> None:
        """Untagged errors matching the retry vocabulary should be retryable."""
        assert is_retryable(RuntimeError(message))

    def test_unknown_errors_are_permanent(self) -> None:
        """Anything unrecognised should be permanent."""
        assert classify_error(ValueError("missing required metadata")) == ErrorKind.PERMANENT

    def test_not_found_is_not_retryable(self) -> None:
        """Repository not-found errors should never be retried."""
        assert classify_error(NotFoundError("gone")) == ErrorKind.NOT_FOUND
        assert not is_retryable(NotFoundError("gone"))

    def test_httpx_connect_error_is_network(self) -> None:
        """Transport errors should become retryable network errors."""
        request = httpx.Request("POST", "https://example.com")
        error = provider_error_from_httpx("Tavily", httpx.ConnectError("refused", request=request))
        assert error.kind == ErrorKind.NETWORK
        assert is_retryable(error)
