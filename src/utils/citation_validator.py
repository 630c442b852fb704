"""Citation validation.

Flags citations that cannot be rendered or traced back to a source. Issues
are reported, never acted on: callers decide whether to drop a citation.
"""

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

if TYPE_CHECKING:
    from src.utils.models import Citation, CitationIssue

logger = logging.getLogger(__name__)

# Max characters to display for URLs in log messages
_MAX_URL_DISPLAY_LENGTH = 80

LOW_RELEVANCE_THRESHOLD = 0.3


def is_valid_url(url: str) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _display_url(url: str) -> str:
    if len(url) > _MAX_URL_DISPLAY_LENGTH:
        return url[:_MAX_URL_DISPLAY_LENGTH] + "..."
    return url


def validate_citation(citation: "Citation") -> list["CitationIssue"]:
    """Check a single citation.

    Args:
        citation: The citation to check.

    Returns:
        Issues found, empty when the citation is clean.
    """
    from src.utils.models import CitationIssue

    issues: list[CitationIssue] = []
    source = citation.source

    if not source.title.strip():
        issues.append(
            CitationIssue(
                citation_id=citation.id,
                issue_type="missing_title",
                severity="error",
                message="Citation is missing a title",
            )
        )

    if not source.url.strip():
        issues.append(
            CitationIssue(
                citation_id=citation.id,
                issue_type="missing_url",
                severity="warning",
                message="Citation is missing a URL",
            )
        )
    elif not is_valid_url(source.url):
        issues.append(
            CitationIssue(
                citation_id=citation.id,
                issue_type="invalid_url",
                severity="error",
                message=f"Citation has an invalid URL: {_display_url(source.url)}",
            )
        )

    if citation.relevance_score < LOW_RELEVANCE_THRESHOLD:
        issues.append(
            CitationIssue(
                citation_id=citation.id,
                issue_type="low_relevance",
                severity="warning",
                message=f"Citation relevance {citation.relevance_score:.2f} is below "
                f"{LOW_RELEVANCE_THRESHOLD}",
            )
        )

    return issues


def validate_citations(
    citations: list["Citation"],
) -> tuple[list["Citation"], list["Citation"], list["CitationIssue"]]:
    """Split citations into valid and invalid sets.

    A citation is invalid when it has at least one error-severity issue.
    Warnings are reported but leave the citation valid.

    Args:
        citations: Citations to check.

    Returns:
        Tuple of (valid, invalid, all issues).
    """
    valid: list[Citation] = []
    invalid: list[Citation] = []
    all_issues: list[CitationIssue] = []

    for citation in citations:
        issues = validate_citation(citation)
        all_issues.extend(issues)
        if any(issue.severity == "error" for issue in issues):
            invalid.append(citation)
        else:
            valid.append(citation)

    if invalid:
        logger.info(
            f"Citation validation found {len(invalid)} invalid citations. "
            f"{len(valid)} valid citations remain."
        )

    return valid, invalid, all_issues
