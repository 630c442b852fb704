"""Unit tests for article and section status transitions."""

import pytest

from src.middleware.state_machine import (
    can_transition_article,
    can_transition_section,
    ensure_article_transition,
    ensure_section_transition,
    is_terminal,
)
from src.utils.exceptions import InvalidTransitionError


@pytest.mark.unit
class TestArticleTransitions:
    """Tests for the article state machine."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            ("pending", "queued"),
            ("queued", "generating"),
            ("generating", "completed"),
            ("generating", "cancelled"),
            ("failed", "queued"),
            ("failed", "generating"),
        ],
    )
    def test_allowed(self, current: str, target: str) -> None:
        """Forward transitions and failed retries should be allowed."""
        assert can_transition_article(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            ("completed", "generating"),
            ("cancelled", "queued"),
            ("generating", "queued"),
            ("completed", "failed"),
        ],
    )
    def test_rejected(self, current: str, target: str) -> None:
        """Terminal states and backwards moves should be rejected."""
        assert not can_transition_article(current, target)
        with pytest.raises(InvalidTransitionError):
            ensure_article_transition("a1", current, target)

    def test_same_status_is_idempotent(self) -> None:
        """Re-applying a status should always be allowed."""
        assert can_transition_article("completed", "completed")

    def test_terminal_states(self) -> None:
        """Only completed and cancelled are terminal."""
        assert is_terminal("completed")
        assert is_terminal("cancelled")
        assert not is_terminal("failed")


@pytest.mark.unit
class TestSectionTransitions:
    """Tests for the section state machine."""

    def test_research_cycle(self) -> None:
        """Sections move pending, researching, completed; failed goes back to pending."""
        assert can_transition_section("pending", "researching")
        assert can_transition_section("researching", "completed")
        assert can_transition_section("failed", "pending")

    def test_failed_cannot_complete_directly(self) -> None:
        """A failed section must be reset before it can complete."""
        with pytest.raises(InvalidTransitionError):
            ensure_section_transition("s1", "failed", "completed")
