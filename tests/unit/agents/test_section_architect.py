"""Unit tests for SectionArchitect."""

import pytest

from src.agents.section_architect import SectionArchitect
from src.utils.models import KeywordResearch, RankedSource, ResearchSource, SerpAnalysis


def _ranked(topics: list[str], url: str) -> RankedSource:
    return RankedSource(
        source=ResearchSource(title="t", url=url, topics=topics),
        relevance=0.5,
        recency=0.5,
        authority=0.5,
        diversity=1.0,
        final_score=0.5,
    )


@pytest.mark.unit
class TestDetermineComplexity:
    """Tests for complexity tiers."""

    def test_short_articles_are_simple(self) -> None:
        """Targets under 1500 words should be simple."""
        assert SectionArchitect().determine_complexity(1499, None, None) == "simple"

    def test_mid_length_articles_are_moderate(self) -> None:
        """Targets from 1500 to 2999 words should be moderate."""
        architect = SectionArchitect()
        assert architect.determine_complexity(1500, None, None) == "moderate"
        assert architect.determine_complexity(2999, None, None) == "moderate"

    def test_long_article_needs_rich_research_to_be_complex(self) -> None:
        """Long targets should be complex only with many sources or SERP results."""
        architect = SectionArchitect()
        research = KeywordResearch(
            keyword="kw", sources=[_ranked([], f"https://s{i}.com") for i in range(11)]
        )
        serp = SerpAnalysis(top_results=[ResearchSource(url=f"https://r{i}.com") for i in range(6)])

        assert architect.determine_complexity(3000, None, None) == "moderate"
        assert architect.determine_complexity(3000, research, None) == "complex"
        assert architect.determine_complexity(3000, None, serp) == "complex"


@pytest.mark.unit
class TestDetermineStructure:
    """Tests for structure selection."""

    @pytest.mark.parametrize(
        ("keyword", "expected"),
        [
            ("how to brew coffee", "linear"),
            ("python tutorial", "linear"),
            ("react vs vue", "thematic"),
            ("laptop review", "thematic"),
            ("content marketing", "hierarchical"),
        ],
    )
    def test_structure_from_keyword(self, keyword: str, expected: str) -> None:
        """Keyword markers should pick the outline structure."""
        assert SectionArchitect().determine_structure(keyword) == expected


@pytest.mark.unit
class TestCreateSectionArchitecture:
    """Tests for the H2/H3 skeleton."""

    def test_section_count_clamped_to_tier_range(self) -> None:
        """Section counts should stay inside the tier's min and max."""
        architect = SectionArchitect()
        assert architect.determine_section_count(500, "simple") == 3
        assert architect.determine_section_count(10_000, "moderate") == 8
        assert architect.determine_section_count(2100, "complex") == 7

    def test_estimates_sum_to_budget(self) -> None:
        """H2 and H3 estimates should add up to exactly the word budget."""
        architecture = SectionArchitect().create_section_architecture(
            "content marketing", 2000, word_budget=1601
        )

        assert architecture.estimated_word_count == 1601

    def test_subsections_reference_their_parent(self) -> None:
        """Each H3 should point at the H2 that contains it."""
        architecture = SectionArchitect().create_section_architecture("how to bake bread", 1000)

        assert architecture.structure == "linear"
        assert architecture.complexity == "simple"
        assert len(architecture.sections) == 3
        for section in architecture.sections:
            assert len(section.subsections) == 2
            assert all(sub.parent_id == section.id for sub in section.subsections)

    def test_hierarchical_outline_uses_research_themes(self) -> None:
        """Research topics should become H2 titles before defaults fill the rest."""
        research = KeywordResearch(
            keyword="solar panels",
            sources=[
                _ranked(["installation cost", "Solar Panels"], "https://a.com"),
                _ranked(["installation cost", "maintenance"], "https://b.com"),
            ],
        )

        architecture = SectionArchitect().create_section_architecture(
            "solar panels", 1200, research=research
        )
        titles = [section.title for section in architecture.sections]

        assert titles[0] == "Installation Cost in solar panels"
        assert titles[1] == "Maintenance in solar panels"
        assert titles[2] == "Understanding solar panels"

    def test_thematic_outline_starts_with_content_gaps(self) -> None:
        """Comparison keywords should turn content gaps into H2 topics."""
        architecture = SectionArchitect().create_section_architecture(
            "react vs vue", 1000, content_gaps=["pricing"]
        )

        assert architecture.sections[0].title == "react vs vue and Pricing"
        assert architecture.sections[0].angle == "analytical"
