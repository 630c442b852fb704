"""Unit tests for query construction helpers."""

import pytest

from src.tools.query_builder import (
    build_batch_query,
    build_comprehensive_query,
    build_section_query,
    build_targeted_query,
    compose_research_query,
    estimate_query_complexity,
    extract_topics,
    generate_cache_key,
    optimize_query_for_api,
    simplify_query,
)


@pytest.mark.unit
class TestQueryBuilder:
    """Tests for query builders."""

    def test_comprehensive_query_caps_lists(self) -> None:
        """Expanded keyword lists should respect their caps."""
        query = build_comprehensive_query("content marketing seo strategy")

        assert query.main_query == "content marketing seo strategy"
        assert len(query.variations) <= 5
        assert len(query.semantic_keywords) <= 8
        assert len(query.long_tail_keywords) <= 6
        assert len(query.question_keywords) <= 5
        assert "advertising" in query.semantic_keywords

    def test_targeted_query_adds_context_and_intent(self) -> None:
        """Context and intent modifiers should follow the keyword."""
        query = build_targeted_query("crm software", "advice for beginner teams", "commercial")

        assert query.query.startswith("crm software for beginners")
        assert "review" in query.modifiers

    def test_section_query_strips_stop_words(self) -> None:
        """Section queries should drop stop words from the title."""
        query = build_section_query("The Benefits of Automation", "email marketing")

        assert query.query == "email marketing benefits automation advantages"

    def test_compose_research_query_dedupes_keyword(self) -> None:
        """The main keyword should not be repeated when the title contains it."""
        query = compose_research_query(
            "Introduction to Email Marketing",
            "email marketing",
            ["overview", "definition", "importance", "background"],
            "introduction",
        )

        assert query.lower().count("email marketing") == 1
        assert "background" not in query
        assert query.endswith("overview definition importance")

    def test_cache_key_normalizes_case_and_whitespace(self) -> None:
        """Cache keys should be lower-case with collapsed whitespace."""
        assert generate_cache_key("section_research", "Email  Marketing", "Intro") == (
            "section_research:email_marketing:intro"
        )

    def test_optimize_for_dataforseo_strips_stop_words_and_clips(self) -> None:
        """DataForSEO queries should be short and stop-word free."""
        long_query = "the best " + " ".join(f"word{i}" for i in range(40))

        optimized = optimize_query_for_api(long_query, "dataforseo")

        assert not optimized.startswith("the ")
        assert len(optimized) <= 80

    def test_optimize_for_tavily_keeps_natural_language(self) -> None:
        """Tavily queries keep stop words."""
        assert optimize_query_for_api("how to   start a blog", "tavily") == "how to start a blog"

    def test_batch_query(self) -> None:
        """Three primary keywords are OR-ed and the rest grouped."""
        query = build_batch_query(["a", "b", "c", "d", "e"])
        assert query == "a OR b OR c AND (d OR e)"

    def test_complexity_and_simplify(self) -> None:
        """Long queries should be classified high and truncated."""
        long_query = "one two three four five six seven eight nine ten eleven"

        assert estimate_query_complexity("short query") == "low"
        assert estimate_query_complexity(long_query) == "high"
        assert simplify_query(long_query, "medium") == "one two three four five six"

    def test_extract_topics_orders_title_first(self) -> None:
        """Title terms come before content terms without duplicates."""
        topics = extract_topics("Email Marketing Guide", "marketing automation increases revenue")
        assert topics[:3] == ["email", "marketing", "guide"]
        assert "automation" in topics
        assert topics.count("marketing") == 1
