"""Unit tests for OutlineGenerator."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.orchestrator.batch_research_optimizer import BatchResearchResult, SectionSources
from src.orchestrator.outline_generator import (
    OutlineGenerator,
    OutlineRequest,
    calculate_seo_score,
    estimate_difficulty,
    validate_outline,
)
from src.services.article_service import ArticleService
from src.services.repositories import InMemoryStore
from src.utils.exceptions import NotFoundError, OutlineError
from src.utils.models import (
    KeywordMetrics,
    Outline,
    OutlineMetadata,
    OutlineSection,
    RankedSource,
    ResearchSource,
)


def _ranked(url: str, title: str, topics: list[str]) -> RankedSource:
    return RankedSource(
        source=ResearchSource(title=title, url=url, topics=topics),
        relevance=0.7,
        recency=0.5,
        authority=0.5,
        diversity=1.0,
        final_score=0.6,
    )


def _optimizer(sources: list[RankedSource]) -> MagicMock:
    optimizer = MagicMock()
    optimizer.perform_batch_research = AsyncMock(
        return_value=BatchResearchResult(
            main_keyword="content marketing",
            main_keyword_metrics=KeywordMetrics(keyword="content marketing", search_volume=5400),
            sections=[
                SectionSources(title="content marketing", keyword="content marketing", sources=sources)
            ],
        )
    )
    return optimizer


async def _request(service: ArticleService, target: int = 1500) -> OutlineRequest:
    article = await service.create_article("org-1", "user-1", "content marketing", target_word_count=target)
    return OutlineRequest(
        article_id=article.id,
        organization_id="org-1",
        user_id="user-1",
        keyword="content marketing",
        target_word_count=target,
    )


@pytest.mark.unit
class TestGenerateOutline:
    """Tests for outline generation."""

    @pytest.mark.asyncio
    async def test_outline_without_research(self) -> None:
        """Without research the outline should skip the FAQ and rate as hard."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)

        outline = await OutlineGenerator(service).generate_outline(request)

        types = [s.section_type for s in outline.sections]
        assert types[0] == "introduction"
        assert types[-1] == "conclusion"
        assert "faq" not in types
        assert outline.estimated_word_count == 1500
        assert outline.sections[0].estimated_words == 150
        assert outline.metadata.difficulty == "hard"
        assert outline.metadata.has_research_data is False
        assert outline.metadata.estimated_read_time_minutes == 8
        assert outline.metadata.complexity == "moderate"
        assert outline.metadata.seo_score == 85

    @pytest.mark.asyncio
    async def test_outline_is_a_dependency_dag(self) -> None:
        """Every dependency should point at an earlier section."""
        service = ArticleService(InMemoryStore())
        request = await _request(service, target=2400)

        outline = await OutlineGenerator(service).generate_outline(request)

        order_by_id = {s.id: s.order for s in outline.sections}
        assert [s.order for s in outline.sections] == list(range(1, len(outline.sections) + 1))
        for section in outline.sections:
            assert all(order_by_id[dep] < section.order for dep in section.dependencies)
            if section.section_type == "h3":
                assert section.parent_id in section.dependencies
        conclusion = next(s for s in outline.sections if s.section_type == "conclusion")
        assert len(conclusion.dependencies) == conclusion.order - 1

    @pytest.mark.asyncio
    async def test_outline_with_research_adds_faq(self) -> None:
        """Research data should add a FAQ after the conclusion and lower difficulty."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        optimizer = _optimizer(
            [
                _ranked("https://a.com", "Storytelling", ["storytelling", "seo"]),
                _ranked("https://b.com", "Distribution", ["distribution", "seo"]),
            ]
        )

        outline = await OutlineGenerator(service, research_optimizer=optimizer).generate_outline(request)

        assert outline.sections[-1].section_type == "faq"
        assert outline.sections[-1].dependencies == [outline.sections[-2].id]
        assert outline.sections[-1].estimated_words == 150
        assert outline.estimated_word_count == 1500
        assert outline.metadata.difficulty == "easy"
        assert "benefits" in outline.metadata.content_gaps
        h2_titles = [s.title for s in outline.sections if s.section_type == "h2"]
        assert "Seo in content marketing" in h2_titles
        optimizer.perform_batch_research.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_research_failure_falls_back(self) -> None:
        """A failing optimizer should still yield an outline without research."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        optimizer = MagicMock()
        optimizer.perform_batch_research = AsyncMock(side_effect=RuntimeError("providers down"))

        outline = await OutlineGenerator(service, research_optimizer=optimizer).generate_outline(request)

        assert outline.metadata.has_research_data is False
        assert outline.metadata.difficulty == "hard"

    @pytest.mark.asyncio
    async def test_outline_is_saved_with_metadata(self) -> None:
        """The outline should be stored on the article with summary metadata."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)

        outline = await OutlineGenerator(service).generate_outline(request)

        article = await service.get_article(request.article_id)
        assert article.outline is not None
        assert article.outline.sections == outline.sections
        assert article.metadata["outline_generated"] is True
        assert article.metadata["sections_count"] == len(outline.sections)
        assert article.metadata["estimated_word_count"] == 1500

    @pytest.mark.asyncio
    async def test_unknown_article_raises(self) -> None:
        """Generating for a missing article should raise NotFoundError."""
        service = ArticleService(InMemoryStore())
        request = OutlineRequest(
            article_id="missing", organization_id="org-1", user_id="user-1", keyword="kw"
        )

        with pytest.raises(NotFoundError):
            await OutlineGenerator(service).generate_outline(request)

    @pytest.mark.asyncio
    async def test_sections_carry_strategy_and_key_points(self) -> None:
        """Planned sections should have strategies adapted to their type."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)

        outline = await OutlineGenerator(service).generate_outline(request)

        intro = outline.sections[0]
        assert intro.content_strategy.approach == "narrative"
        assert intro.key_points[0] == "Main point about Introduction to content marketing"
        assert intro.research_topics == ["overview", "definition", "importance", "background"]


@pytest.mark.unit
class TestOutlinePersistence:
    """Tests for reading, updating and deleting outlines."""

    @pytest.mark.asyncio
    async def test_update_outline_validates(self) -> None:
        """Updates that break the dependency order should be rejected."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        generator = OutlineGenerator(service)
        outline = await generator.generate_outline(request)

        sections = [s.model_dump() for s in outline.sections]
        sections[0]["dependencies"] = [outline.sections[-1].id]

        with pytest.raises(OutlineError, match="depends on later section"):
            await generator.update_outline(request.article_id, {"sections": sections})

    @pytest.mark.asyncio
    async def test_update_outline_saves_valid_changes(self) -> None:
        """A valid update should be merged and stored."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        generator = OutlineGenerator(service)
        outline = await generator.generate_outline(request)

        sections = [s.model_dump() for s in outline.sections]
        sections[0]["title"] = "Why content marketing works"
        updated = await generator.update_outline(request.article_id, {"sections": sections})

        assert updated.sections[0].title == "Why content marketing works"
        stored = await generator.get_outline(request.article_id)
        assert stored is not None
        assert stored.sections[0].title == "Why content marketing works"

    @pytest.mark.asyncio
    async def test_delete_outline(self) -> None:
        """Deleting should clear the outline and its sections."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        generator = OutlineGenerator(service)
        outline = await generator.generate_outline(request)
        await service.create_sections_from_outline(request.article_id, outline)

        await generator.delete_outline(request.article_id)

        assert await generator.get_outline(request.article_id) is None
        assert await service.get_sections(request.article_id) == []

    @pytest.mark.asyncio
    async def test_get_outline_for_missing_article(self) -> None:
        """A missing article should read as no outline."""
        generator = OutlineGenerator(ArticleService(InMemoryStore()))

        assert await generator.get_outline("missing") is None


@pytest.mark.unit
class TestOutlineHelpers:
    """Tests for validation and scoring helpers."""

    @pytest.mark.asyncio
    async def test_validate_outline_word_tolerance(self) -> None:
        """Estimates more than 10% away from the target should be invalid."""
        service = ArticleService(InMemoryStore())
        request = await _request(service)
        outline = await OutlineGenerator(service).generate_outline(request)

        within = outline.model_copy(update={"target_word_count": 1650})
        outside = outline.model_copy(update={"target_word_count": 1700})

        assert validate_outline(within).valid is True
        result = validate_outline(outside)
        assert result.valid is False
        assert "target 1700" in result.errors[0]

    def test_validate_outline_rejects_unknown_dependency(self) -> None:
        """A dependency on a missing section should be reported."""
        outline = Outline(
            article_id="a",
            keyword="kw",
            target_word_count=100,
            sections=[
                OutlineSection(
                    id="section-1",
                    section_type="introduction",
                    title="Intro",
                    order=1,
                    estimated_words=100,
                    dependencies=["section-9"],
                )
            ],
            metadata=OutlineMetadata(
                seo_score=50,
                difficulty="hard",
                estimated_read_time_minutes=1,
                structure="linear",
                complexity="simple",
            ),
        )

        result = validate_outline(outline)

        assert result.errors == ["section-1 depends on unknown section section-9"]

    def test_seo_score_bonuses(self) -> None:
        """Structure, coverage and data availability should add to the base score."""
        sections = [
            OutlineSection(id="s1", section_type="introduction", title="Coffee basics", order=1, estimated_words=1),
            OutlineSection(id="s2", section_type="conclusion", title="Wrap", order=2, estimated_words=1),
            OutlineSection(id="s3", section_type="faq", title="FAQ", order=3, estimated_words=1),
        ]

        assert calculate_seo_score(sections, "coffee", False, False) == 60
        assert calculate_seo_score(sections, "coffee", True, True) == 70

    def test_difficulty(self) -> None:
        """Difficulty should fall as research and SERP data become available."""
        assert estimate_difficulty(False, False) == "hard"
        assert estimate_difficulty(True, False) == "medium"
        assert estimate_difficulty(True, True) == "easy"
