"""Outline generation: research, architecture, strategy and metadata.

The outline is a dependency-ordered list of sections. Section ids are
``section-<order>`` and every dependency points at an earlier section.
"""

import math
from collections import Counter
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.agents.content_planner import ContentPlanner
from src.agents.section_architect import SectionArchitect, SectionArchitecture
from src.orchestrator.batch_research_optimizer import (
    BatchResearchOptimizer,
    BatchResearchOptions,
    BatchResearchRequest,
    BatchSection,
)
from src.services.article_service import ArticleService
from src.tools.query_builder import extract_topics
from src.utils.exceptions import NotFoundError, OutlineError
from src.utils.models import (
    Difficulty,
    KeywordResearch,
    Outline,
    OutlineMetadata,
    OutlineSection,
    ResearchSource,
    SectionType,
    SerpAnalysis,
    utc_now,
)

logger = structlog.get_logger()

WORDS_PER_MINUTE = 200
WORD_COUNT_TOLERANCE = 0.10

INTRO_SHARE = 0.10
INTRO_MAX_WORDS = 300
CONCLUSION_MAX_WORDS = 300
FAQ_MAX_WORDS = 400

MAX_SERP_RESULTS = 10
MAX_COMMON_TOPICS = 10

RESEARCH_TOPICS: dict[str, list[str]] = {
    "introduction": ["overview", "definition", "importance", "background"],
    "h2": ["details", "examples", "benefits", "drawbacks"],
    "h3": ["specifics", "implementation", "best practices"],
    "conclusion": ["summary", "key takeaways", "final thoughts"],
    "faq": ["questions", "answers", "common concerns"],
}

GAP_CANDIDATES = [
    "benefits",
    "drawbacks",
    "examples",
    "case studies",
    "best practices",
    "common mistakes",
    "future trends",
    "comparison",
    "how-to",
    "troubleshooting",
]


class OutlineRequest(BaseModel):
    article_id: str
    organization_id: str
    user_id: str
    keyword: str
    target_word_count: int = Field(default=1500, ge=1)
    writing_style: str = "professional"
    target_audience: str = "general"


class OutlineValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


def validate_outline(outline: Outline, tolerance: float = WORD_COUNT_TOLERANCE) -> OutlineValidation:
    """Check word budget, ordering and the dependency DAG.

    Orders must be unique, dependencies must name sections with a strictly
    smaller order, and the estimates must sum to the target within
    ``tolerance``.
    """
    errors: list[str] = []
    orders = [s.order for s in outline.sections]
    if len(set(orders)) != len(orders):
        errors.append("Section orders are not unique")

    order_by_id = {s.id: s.order for s in outline.sections}
    if len(order_by_id) != len(outline.sections):
        errors.append("Section ids are not unique")
    for section in outline.sections:
        for dependency in section.dependencies:
            dep_order = order_by_id.get(dependency)
            if dep_order is None:
                errors.append(f"{section.id} depends on unknown section {dependency}")
            elif dep_order >= section.order:
                errors.append(f"{section.id} depends on later section {dependency}")

    target = outline.target_word_count
    if abs(outline.estimated_word_count - target) > target * tolerance:
        errors.append(
            f"Estimated {outline.estimated_word_count} words, target {target} (±{tolerance:.0%})"
        )
    return OutlineValidation(valid=not errors, errors=errors)


def generate_research_topics(section_type: SectionType) -> list[str]:
    return list(RESEARCH_TOPICS[section_type])


def calculate_seo_score(
    sections: list[OutlineSection],
    keyword: str,
    has_research: bool,
    has_serp: bool,
) -> int:
    """Placeholder structural score: base 50 plus weighted counts, capped at 100."""
    score = 50
    if len(sections) >= 5:
        score += 10
    if any(s.section_type == "faq" for s in sections):
        score += 5
    if any(s.section_type == "conclusion" for s in sections):
        score += 5

    keyword_lower = keyword.lower()
    keyword_words = keyword_lower.split()
    coverage = sum(1 for s in sections if keyword_lower in s.title.lower())
    coverage += sum(
        1
        for s in sections
        for topic in s.research_topics
        if any(word in topic.lower() for word in keyword_words)
    )
    if coverage >= 10:
        score += 10
    if coverage >= 20:
        score += 10

    if has_research:
        score += 5
    if has_serp:
        score += 5
    return min(score, 100)


def estimate_difficulty(has_research: bool, has_serp: bool) -> Difficulty:
    if not has_research and not has_serp:
        return "hard"
    if has_research and has_serp:
        return "easy"
    return "medium"


class OutlineGenerator:
    """Composes section architecture and content strategy into an outline."""

    def __init__(
        self,
        article_service: ArticleService,
        research_optimizer: BatchResearchOptimizer | None = None,
        architect: SectionArchitect | None = None,
        planner: ContentPlanner | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            article_service: Persists the outline on the article.
            research_optimizer: Upstream research; outlines are built without
                research data when omitted or when research fails.
            architect: Section architect, default instance when omitted.
            planner: Content planner, default instance when omitted.
        """
        self.article_service = article_service
        self.research_optimizer = research_optimizer
        self.architect = architect or SectionArchitect()
        self.planner = planner or ContentPlanner()

    async def generate_outline(self, request: OutlineRequest) -> Outline:
        """Plan, validate and save an outline for an article.

        Raises:
            OutlineError: If the planned outline breaks ordering or word-budget rules.
            NotFoundError: If the article does not exist.
        """
        research = await self.gather_research(request)
        serp = self.analyze_serp(research)
        content_gaps = self.identify_content_gaps(research, serp)

        outline = self.build_outline(request, research, serp, content_gaps)
        validation = validate_outline(outline)
        if not validation.valid:
            raise OutlineError("; ".join(validation.errors))

        await self.article_service.save_outline(request.article_id, outline)
        await self.article_service.merge_metadata(
            request.article_id,
            {
                "outline_generated": True,
                "sections_count": len(outline.sections),
                "estimated_word_count": outline.estimated_word_count,
            },
        )
        logger.info(
            "Outline generated",
            article_id=request.article_id,
            sections=len(outline.sections),
            seo_score=outline.metadata.seo_score,
            difficulty=outline.metadata.difficulty,
        )
        return outline

    async def gather_research(self, request: OutlineRequest) -> KeywordResearch | None:
        """Best-effort keyword research; failures yield None."""
        if self.research_optimizer is None:
            return None
        try:
            result = await self.research_optimizer.perform_batch_research(
                BatchResearchRequest(
                    organization_id=request.organization_id,
                    user_id=request.user_id,
                    main_keyword=request.keyword,
                    sections=[BatchSection(title=request.keyword, keyword=request.keyword)],
                    options=BatchResearchOptions(max_sources_per_section=10),
                )
            )
        except Exception as e:
            logger.warning("Outline research failed", keyword=request.keyword, error=str(e))
            return None

        sources = [ranked for section in result.sections for ranked in section.sources]
        if not sources and result.main_keyword_metrics is None:
            return None
        return KeywordResearch(
            keyword=request.keyword, metrics=result.main_keyword_metrics, sources=sources
        )

    @staticmethod
    def _topics(source: ResearchSource) -> list[str]:
        return source.topics or extract_topics(source.title, source.content)

    def analyze_serp(self, research: KeywordResearch | None) -> SerpAnalysis | None:
        """Search landscape derived from the researched sources."""
        if research is None or not research.sources:
            return None
        top_results = [ranked.source for ranked in research.sources[:MAX_SERP_RESULTS]]
        counts = Counter(topic.lower() for source in top_results for topic in set(self._topics(source)))
        common_topics = [
            topic for topic, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ][:MAX_COMMON_TOPICS]
        return SerpAnalysis(
            top_results=top_results,
            common_topics=common_topics,
            faq_present=True,
            content_gaps=self._uncovered(top_results),
        )

    def _uncovered(self, sources: list[ResearchSource]) -> list[str]:
        covered = " ".join(" ".join(self._topics(s)) + " " + s.title for s in sources).lower()
        return [topic for topic in GAP_CANDIDATES if topic not in covered]

    def identify_content_gaps(
        self, research: KeywordResearch | None, serp: SerpAnalysis | None
    ) -> list[str]:
        gaps: list[str] = []
        if research is not None and research.sources:
            gaps.extend(self._uncovered([ranked.source for ranked in research.sources]))
        if serp is not None:
            gaps.extend(serp.content_gaps)
        return list(dict.fromkeys(gaps))

    def build_outline(
        self,
        request: OutlineRequest,
        research: KeywordResearch | None,
        serp: SerpAnalysis | None,
        content_gaps: list[str],
    ) -> Outline:
        """Lay out sections so that their estimates sum to the target word count."""
        target = request.target_word_count
        include_faq = serp is not None and serp.faq_present

        intro_words = min(INTRO_MAX_WORDS, round(target * INTRO_SHARE))
        conclusion_words = min(CONCLUSION_MAX_WORDS, round(target * INTRO_SHARE))
        faq_words = min(FAQ_MAX_WORDS, round(target * INTRO_SHARE)) if include_faq else 0
        body_words = max(target - intro_words - conclusion_words - faq_words, 0)

        architecture = self.architect.create_section_architecture(
            request.keyword,
            target,
            research=research,
            serp=serp,
            content_gaps=content_gaps,
            word_budget=body_words,
        )
        sections = self._sections(request.keyword, architecture, intro_words, conclusion_words, faq_words)
        strategy = self.planner.create_content_strategy(request.writing_style, request.target_audience)
        sections = self.planner.plan_sections(sections, strategy)

        has_research = research is not None
        has_serp = serp is not None
        estimated = sum(s.estimated_words for s in sections)
        metadata = OutlineMetadata(
            seo_score=calculate_seo_score(sections, request.keyword, has_research, has_serp),
            difficulty=estimate_difficulty(has_research, has_serp),
            estimated_read_time_minutes=math.ceil(estimated / WORDS_PER_MINUTE),
            structure=architecture.structure,
            complexity=architecture.complexity,
            has_research_data=has_research,
            has_serp_data=has_serp,
            content_gaps=content_gaps,
        )
        return Outline(
            article_id=request.article_id,
            keyword=request.keyword,
            target_word_count=target,
            sections=sections,
            metadata=metadata,
            created_at=utc_now(),
        )

    @staticmethod
    def _sections(
        keyword: str,
        architecture: SectionArchitecture,
        intro_words: int,
        conclusion_words: int,
        faq_words: int,
    ) -> list[OutlineSection]:
        sections: list[OutlineSection] = []

        def add(
            section_type: SectionType,
            title: str,
            words: int,
            dependencies: list[str],
            parent_id: str | None = None,
        ) -> str:
            order = len(sections) + 1
            section_id = f"section-{order}"
            sections.append(
                OutlineSection(
                    id=section_id,
                    section_type=section_type,
                    title=title,
                    order=order,
                    estimated_words=words,
                    research_topics=generate_research_topics(section_type),
                    dependencies=dependencies,
                    parent_id=parent_id,
                )
            )
            return section_id

        intro_id = add("introduction", f"Introduction to {keyword}", intro_words, [])
        for plan in architecture.sections:
            h2_id = add("h2", plan.title, plan.estimated_words, [intro_id])
            for sub in plan.subsections:
                add("h3", sub.title, sub.estimated_words, [h2_id], parent_id=h2_id)

        conclusion_id = add(
            "conclusion",
            f"Conclusion: {keyword} Summary",
            conclusion_words,
            [s.id for s in sections],
        )
        if faq_words:
            add(
                "faq",
                f"Frequently Asked Questions About {keyword}",
                faq_words,
                [conclusion_id],
            )
        return sections

    # --- Persistence ---

    async def get_outline(self, article_id: str) -> Outline | None:
        try:
            return await self.article_service.get_outline(article_id)
        except NotFoundError:
            return None

    async def update_outline(self, article_id: str, updates: dict[str, Any]) -> Outline:
        """Merge ``updates`` into the stored outline and save it.

        Raises:
            NotFoundError: If the article has no outline.
            OutlineError: If the result breaks ordering or word-budget rules.
        """
        current = await self.article_service.get_outline(article_id)
        if current is None:
            raise NotFoundError(f"Article {article_id} has no outline")
        updated = Outline.model_validate({**current.model_dump(exclude={"estimated_word_count"}), **updates})
        validation = validate_outline(updated)
        if not validation.valid:
            raise OutlineError("; ".join(validation.errors))
        await self.article_service.save_outline(article_id, updated)
        return updated

    async def delete_outline(self, article_id: str) -> None:
        await self.article_service.delete_outline(article_id)
