"""Status state machines for articles and article sections.

Articles move forward only; the single backwards edge is failed -> queued
or failed -> generating when a failed article is retried.
"""

import structlog

from src.utils.exceptions import InvalidTransitionError
from src.utils.models import ArticleStatus, SectionStatus

logger = structlog.get_logger()

ARTICLE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"queued", "generating", "cancelled", "failed"}),
    "queued": frozenset({"generating", "cancelled", "failed"}),
    "generating": frozenset({"completed", "failed", "cancelled"}),
    "failed": frozenset({"queued", "generating"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

SECTION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"researching", "failed"}),
    "researching": frozenset({"completed", "failed", "pending"}),
    "failed": frozenset({"pending"}),
    "completed": frozenset({"pending"}),
}

TERMINAL_ARTICLE_STATUSES: frozenset[str] = frozenset({"completed", "cancelled"})


def can_transition_article(current: ArticleStatus, target: ArticleStatus) -> bool:
    """Return True when an article may move from ``current`` to ``target``.

    Re-applying the current status is always allowed so repeated writes
    from at-least-once scheduling are harmless.
    """
    return current == target or target in ARTICLE_TRANSITIONS[current]


def ensure_article_transition(
    article_id: str, current: ArticleStatus, target: ArticleStatus
) -> None:
    """Raise InvalidTransitionError when the article status change is not allowed."""
    if not can_transition_article(current, target):
        logger.warning(
            "Rejected article status change", article_id=article_id, current=current, target=target
        )
        raise InvalidTransitionError(
            f"Article {article_id} cannot move from {current} to {target}"
        )


def can_transition_section(current: SectionStatus, target: SectionStatus) -> bool:
    return current == target or target in SECTION_TRANSITIONS[current]


def ensure_section_transition(
    section_id: str, current: SectionStatus, target: SectionStatus
) -> None:
    """Raise InvalidTransitionError when the section status change is not allowed."""
    if not can_transition_section(current, target):
        raise InvalidTransitionError(
            f"Section {section_id} cannot move from {current} to {target}"
        )


def is_terminal(status: ArticleStatus) -> bool:
    return status in TERMINAL_ARTICLE_STATUSES
