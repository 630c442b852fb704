"""Section architecture: complexity tier, structure and the H2/H3 skeleton."""

import re
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from src.utils.models import ComplexityTier, KeywordResearch, SerpAnalysis, StructureType

logger = structlog.get_logger()

H2Angle = Literal["informative", "persuasive", "practical", "analytical"]
H3Angle = Literal["detailed", "example", "comparison", "implementation"]

# (max words exclusive) -> tier, for the word-count driven part of the decision
SIMPLE_MAX_WORDS = 1500
MODERATE_MAX_WORDS = 3000

# tier -> (min sections, max sections, words per section)
SECTION_COUNT_RULES: dict[str, tuple[int, int, int]] = {
    "simple": (3, 5, 400),
    "moderate": (5, 8, 350),
    "complex": (7, 10, 300),
}

SUBSECTION_COUNTS: dict[str, int] = {"simple": 2, "moderate": 3, "complex": 4}

# Share of an H2's budget given to its H3 children
SUBSECTION_SHARE = 0.6

_LINEAR_MARKERS = re.compile(r"\bhow to\b|\bguide\b|\btutorial\b")
_THEMATIC_MARKERS = re.compile(r"\bvs\.?(?=\s|$)|\bversus\b|\breview\b|\bcomparison\b")


class SubsectionPlan(BaseModel):
    """An H3 heading under an H2."""

    id: str
    title: str
    order: int = Field(ge=1)
    parent_id: str
    estimated_words: int = Field(ge=0)
    keywords: list[str] = Field(default_factory=list)
    research_focus: list[str] = Field(default_factory=list)
    angle: H3Angle


class SectionPlan(BaseModel):
    """An H2 heading and its H3 children."""

    id: str
    title: str
    order: int = Field(ge=1)
    estimated_words: int = Field(ge=0)
    keywords: list[str] = Field(default_factory=list)
    research_focus: list[str] = Field(default_factory=list)
    angle: H2Angle
    subsections: list[SubsectionPlan] = Field(default_factory=list)


class SectionArchitecture(BaseModel):
    keyword: str
    target_word_count: int
    complexity: ComplexityTier
    structure: StructureType
    sections: list[SectionPlan]

    @property
    def estimated_word_count(self) -> int:
        return sum(
            s.estimated_words + sum(sub.estimated_words for sub in s.subsections)
            for s in self.sections
        )


class _Topic(BaseModel):
    title: str
    keywords: list[str]
    research_focus: list[str]
    angle: H2Angle


def _linear_topics(keyword: str) -> list[_Topic]:
    return [
        _Topic(
            title=f"What is {keyword}?",
            keywords=[keyword, "definition", "overview"],
            research_focus=["definition", "basics"],
            angle="informative",
        ),
        _Topic(
            title=f"Why {keyword} Matters",
            keywords=[keyword, "importance", "benefits"],
            research_focus=["benefits", "importance"],
            angle="persuasive",
        ),
        _Topic(
            title=f"How to Implement {keyword}",
            keywords=[keyword, "implementation", "guide"],
            research_focus=["implementation", "steps"],
            angle="practical",
        ),
        _Topic(
            title=f"Best Practices for {keyword}",
            keywords=[keyword, "best practices", "tips"],
            research_focus=["best practices", "tips"],
            angle="practical",
        ),
        _Topic(
            title=f"Common Challenges with {keyword}",
            keywords=[keyword, "challenges", "problems"],
            research_focus=["challenges", "solutions"],
            angle="analytical",
        ),
        _Topic(
            title=f"{keyword} Examples and Case Studies",
            keywords=[keyword, "examples", "case studies"],
            research_focus=["examples", "case studies"],
            angle="informative",
        ),
        _Topic(
            title=f"Future of {keyword}",
            keywords=[keyword, "future", "trends"],
            research_focus=["future", "trends"],
            angle="analytical",
        ),
        _Topic(
            title=f"{keyword} Tools and Resources",
            keywords=[keyword, "tools", "resources"],
            research_focus=["tools", "resources"],
            angle="practical",
        ),
    ]


def _default_topics(keyword: str) -> list[_Topic]:
    specs: list[tuple[str, str, H2Angle]] = [
        (f"Understanding {keyword}", "basics", "informative"),
        (f"Benefits of {keyword}", "benefits", "persuasive"),
        (f"Implementing {keyword}", "implementation", "practical"),
        (f"{keyword} Best Practices", "best practices", "practical"),
        (f"{keyword} Challenges", "challenges", "analytical"),
        (f"{keyword} Examples", "examples", "informative"),
        (f"Common {keyword} Mistakes", "mistakes", "analytical"),
        (f"{keyword} Tools", "tools", "practical"),
        (f"Measuring {keyword} Results", "metrics", "analytical"),
        (f"The Future of {keyword}", "trends", "analytical"),
    ]
    return [
        _Topic(title=title, keywords=[keyword, focus], research_focus=[focus], angle=angle)
        for title, focus, angle in specs
    ]


class SectionArchitect:
    """Builds the H2/H3 skeleton of an article."""

    def determine_complexity(
        self,
        target_word_count: int,
        research: KeywordResearch | None,
        serp: SerpAnalysis | None,
    ) -> ComplexityTier:
        if target_word_count < SIMPLE_MAX_WORDS:
            return "simple"
        if target_word_count < MODERATE_MAX_WORDS:
            return "moderate"
        if research is not None and len(research.sources) > 10:
            return "complex"
        if serp is not None and len(serp.top_results) > 5:
            return "complex"
        return "moderate"

    def determine_structure(self, keyword: str) -> StructureType:
        keyword_lower = keyword.lower()
        if _LINEAR_MARKERS.search(keyword_lower):
            return "linear"
        if _THEMATIC_MARKERS.search(keyword_lower):
            return "thematic"
        return "hierarchical"

    def determine_section_count(self, target_word_count: int, complexity: ComplexityTier) -> int:
        minimum, maximum, words_per_section = SECTION_COUNT_RULES[complexity]
        return max(minimum, min(maximum, target_word_count // words_per_section))

    def extract_main_themes(
        self, keyword: str, research: KeywordResearch | None, serp: SerpAnalysis | None
    ) -> list[str]:
        """Unique themes from research source topics and SERP common topics."""
        themes: list[str] = []
        if research is not None:
            for ranked in research.sources:
                themes.extend(ranked.source.topics)
        if serp is not None:
            themes.extend(serp.common_topics)
        return self._unique_themes(themes, keyword)

    @staticmethod
    def _unique_themes(themes: list[str], keyword: str) -> list[str]:
        keyword_lower = keyword.lower()
        seen: set[str] = set()
        unique: list[str] = []
        for theme in themes:
            cleaned = theme.strip().strip(".,:;!?\"'()")
            key = cleaned.lower()
            if not cleaned or key in seen or key in keyword_lower:
                continue
            seen.add(key)
            unique.append(cleaned)
        return unique

    def _topics(
        self,
        keyword: str,
        count: int,
        structure: StructureType,
        research: KeywordResearch | None,
        serp: SerpAnalysis | None,
        content_gaps: list[str],
    ) -> list[_Topic]:
        topics: list[_Topic]
        if structure == "linear":
            topics = _linear_topics(keyword)[:count]
        elif structure == "hierarchical":
            themes = self.extract_main_themes(keyword, research, serp)
            topics = [
                _Topic(
                    title=f"{theme.title()} in {keyword}",
                    keywords=[keyword, theme],
                    research_focus=[theme],
                    angle="informative",
                )
                for theme in themes[:count]
            ]
        else:
            themes = list(content_gaps)
            if research is not None:
                for ranked in research.sources:
                    themes.extend(ranked.source.topics)
            topics = [
                _Topic(
                    title=f"{keyword} and {theme.title()}",
                    keywords=[keyword, theme],
                    research_focus=[theme],
                    angle="analytical",
                )
                for theme in self._unique_themes(themes, keyword)[:count]
            ]

        used = {topic.title for topic in topics}
        for default in _default_topics(keyword):
            if len(topics) >= count:
                break
            if default.title not in used:
                topics.append(default)
                used.add(default.title)
        return topics

    @staticmethod
    def _subsection_specs(parent: _Topic) -> list[tuple[str, list[str], list[str], H3Angle]]:
        return [
            (f"Key Aspects of {parent.title}", parent.keywords, parent.research_focus, "detailed"),
            (
                f"{parent.title} Examples",
                [*parent.keywords, "examples"],
                ["examples"],
                "example",
            ),
            (
                f"Comparing {parent.title} Options",
                [*parent.keywords, "comparison"],
                ["comparison"],
                "comparison",
            ),
            (
                f"Implementing {parent.title}",
                [*parent.keywords, "implementation"],
                ["implementation"],
                "implementation",
            ),
        ]

    def create_section_architecture(
        self,
        keyword: str,
        target_word_count: int,
        research: KeywordResearch | None = None,
        serp: SerpAnalysis | None = None,
        content_gaps: list[str] | None = None,
        word_budget: int | None = None,
    ) -> SectionArchitecture:
        """Choose complexity and structure, then lay out H2 and H3 sections.

        Args:
            keyword: Article keyword.
            target_word_count: Article length, drives complexity and section count.
            research: Upstream keyword research, if any.
            serp: SERP analysis, if any.
            content_gaps: Topics competitors miss, used by thematic outlines.
            word_budget: Words to spread over the skeleton; defaults to target_word_count.

        Returns:
            SectionArchitecture whose estimates sum exactly to the budget.
        """
        complexity = self.determine_complexity(target_word_count, research, serp)
        structure = self.determine_structure(keyword)
        section_count = self.determine_section_count(target_word_count, complexity)
        subsection_count = SUBSECTION_COUNTS[complexity]
        budget = target_word_count if word_budget is None else max(word_budget, 0)

        topics = self._topics(keyword, section_count, structure, research, serp, content_gaps or [])
        per_section, remainder = divmod(budget, len(topics))

        sections: list[SectionPlan] = []
        for index, topic in enumerate(topics, start=1):
            section_budget = per_section + (remainder if index == 1 else 0)
            per_subsection = int(section_budget * SUBSECTION_SHARE) // subsection_count
            section_id = f"h2-{index}"

            subsections = [
                SubsectionPlan(
                    id=f"h3-{index}-{sub_index}",
                    title=title,
                    order=sub_index,
                    parent_id=section_id,
                    estimated_words=per_subsection,
                    keywords=keywords,
                    research_focus=focus,
                    angle=angle,
                )
                for sub_index, (title, keywords, focus, angle) in enumerate(
                    self._subsection_specs(topic)[:subsection_count], start=1
                )
            ]
            sections.append(
                SectionPlan(
                    id=section_id,
                    title=topic.title,
                    order=index,
                    estimated_words=section_budget - per_subsection * len(subsections),
                    keywords=topic.keywords,
                    research_focus=topic.research_focus,
                    angle=topic.angle,
                    subsections=subsections,
                )
            )

        architecture = SectionArchitecture(
            keyword=keyword,
            target_word_count=target_word_count,
            complexity=complexity,
            structure=structure,
            sections=sections,
        )
        logger.info(
            "Section architecture created",
            keyword=keyword,
            complexity=complexity,
            structure=structure,
            sections=len(sections),
            subsections_per_section=subsection_count,
        )
        return architecture
