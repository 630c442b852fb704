"""Content planning: writing strategy, key points, flow and research needs."""

from typing import Literal

import structlog
from pydantic import BaseModel, Field

from src.utils.models import ContentStrategy, OutlineSection, SectionType

logger = structlog.get_logger()

FlowElementType = Literal[
    "hook",
    "context",
    "main_point",
    "support",
    "example",
    "data",
    "conclusion",
    "summary",
    "call_to_action",
]

SECTION_GUIDANCE: dict[str, list[str]] = {
    "introduction": ["Hook the reader", "Establish relevance", "Preview content"],
    "h2": ["Develop main argument", "Provide supporting evidence", "Connect to overall theme"],
    "h3": ["Explore specific aspect", "Provide detailed examples", "Link to parent section"],
    "conclusion": ["Summarize key points", "Reinforce main message", "Call to action"],
    "faq": ["Answer common questions", "Address misconceptions", "Point to next steps"],
}

CALLS_TO_ACTION: dict[str, str] = {
    "introduction": "Continue reading to discover more",
    "h2": "Apply these insights in your context",
    "conclusion": "Take action on what you've learned",
}

TRANSITIONS: dict[str, str] = {
    "introduction": "Now let's dive deeper into",
    "h2": "Building on this foundation",
    "h3": "Let's explore this further",
}


class FlowElement(BaseModel):
    type: FlowElementType
    order: int = Field(ge=1)
    description: str
    estimated_words: int = Field(ge=0)


class Transition(BaseModel):
    from_section: str
    to_section: str
    type: Literal["smooth", "contrast", "question", "summary"] = "smooth"
    text: str


class ContentFlow(BaseModel):
    introduction: list[FlowElement] = Field(default_factory=list)
    body: list[FlowElement] = Field(default_factory=list)
    conclusion: list[FlowElement] = Field(default_factory=list)
    transitions: list[Transition] = Field(default_factory=list)


class ResearchRequirements(BaseModel):
    """What the research stage should look for, deduplicated in first-seen order."""

    primary_topics: list[str] = Field(default_factory=list)
    secondary_topics: list[str] = Field(default_factory=list)
    data_points: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    citations: list[str] = Field(default_factory=list)


class SectionStrategy(BaseModel):
    section_id: str
    strategy: ContentStrategy
    word_count_target: int = Field(ge=0)
    key_points: list[str] = Field(default_factory=list)
    call_to_action: str | None = None
    transition_to_next: str | None = None


class ContentPlan(BaseModel):
    keyword: str
    writing_style: str
    target_audience: str
    strategy: ContentStrategy
    section_strategies: dict[str, SectionStrategy] = Field(default_factory=dict)
    content_flow: ContentFlow = Field(default_factory=ContentFlow)
    research_requirements: ResearchRequirements = Field(default_factory=ResearchRequirements)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


class ContentPlanner:
    """Derives writing strategy from style and audience."""

    @staticmethod
    def determine_approach(writing_style: str) -> str:
        style = writing_style.lower()
        if "professional" in style or "formal" in style:
            return "informative"
        if "conversational" in style or "casual" in style:
            return "narrative"
        if "technical" in style:
            return "technical"
        return "informative"

    @staticmethod
    def determine_tone(writing_style: str, target_audience: str) -> str:
        style = writing_style.lower()
        audience = target_audience.lower()
        if "professional" in style or "formal" in style:
            return "professional"
        if "conversational" in style:
            return "conversational"
        if "casual" in style:
            return "casual"
        if "academic" in audience or "expert" in audience:
            return "formal"
        return "professional"

    @staticmethod
    def determine_perspective(target_audience: str) -> str:
        audience = target_audience.lower()
        if "beginner" in audience or "general" in audience:
            return "second-person"
        if "expert" in audience or "academic" in audience:
            return "third-person"
        return "second-person"

    @staticmethod
    def determine_complexity(target_audience: str) -> str:
        audience = target_audience.lower()
        if "beginner" in audience or "general" in audience:
            return "beginner"
        if "expert" in audience or "academic" in audience:
            return "advanced"
        return "intermediate"

    def create_content_strategy(self, writing_style: str, target_audience: str) -> ContentStrategy:
        """Article-wide strategy from writing style and audience keywords."""
        style = writing_style.lower()
        audience = target_audience.lower()
        return ContentStrategy(
            approach=self.determine_approach(writing_style),
            tone=self.determine_tone(writing_style, target_audience),
            perspective=self.determine_perspective(target_audience),
            complexity=self.determine_complexity(target_audience),
            include_citations=any(
                marker in style for marker in ("professional", "formal")
            )
            or any(marker in audience for marker in ("academic", "expert")),
            include_examples=any(marker in audience for marker in ("beginner", "general"))
            or "conversational" in style,
            include_data=any(marker in style for marker in ("technical", "professional"))
            or "b2b" in audience,
        )

    @staticmethod
    def adapt_strategy_for_section(
        strategy: ContentStrategy, section_type: SectionType
    ) -> ContentStrategy:
        """Section-level overrides on top of the article strategy."""
        if section_type == "introduction":
            return strategy.model_copy(update={"approach": "narrative", "include_citations": False})
        if section_type == "conclusion":
            return strategy.model_copy(update={"approach": "persuasive", "include_examples": False})
        if section_type == "faq":
            return strategy.model_copy(
                update={"approach": "informative", "perspective": "second-person"}
            )
        return strategy.model_copy()

    @staticmethod
    def generate_key_points(section: OutlineSection) -> list[str]:
        points = [f"Main point about {section.title}"]
        points.extend(f"Key insight on {topic}" for topic in section.research_topics[:3])
        points.extend(SECTION_GUIDANCE[section.section_type])
        return _unique(points)

    def plan_sections(
        self, sections: list[OutlineSection], strategy: ContentStrategy
    ) -> list[OutlineSection]:
        """Return copies of ``sections`` with strategy and key points filled in."""
        return [
            section.model_copy(
                update={
                    "content_strategy": self.adapt_strategy_for_section(
                        strategy, section.section_type
                    ),
                    "key_points": self.generate_key_points(section),
                }
            )
            for section in sections
        ]

    @staticmethod
    def plan_content_flow(sections: list[OutlineSection], strategy: ContentStrategy) -> ContentFlow:
        introduction = [
            FlowElement(type="hook", order=1, description="Engaging opening", estimated_words=50),
            FlowElement(type="context", order=2, description="Background and context", estimated_words=100),
            FlowElement(type="main_point", order=3, description="Thesis statement", estimated_words=50),
            FlowElement(type="support", order=4, description="Overview of what is covered", estimated_words=100),
        ]

        body: list[FlowElement] = []
        body_sections = [s for s in sections if s.section_type in ("h2", "h3")]
        for index, section in enumerate(body_sections):
            base = index * 4
            body.append(
                FlowElement(
                    type="main_point",
                    order=base + 1,
                    description=f"Main point for {section.title}",
                    estimated_words=100,
                )
            )
            body.append(
                FlowElement(
                    type="support",
                    order=base + 2,
                    description=f"Supporting evidence for {section.title}",
                    estimated_words=150,
                )
            )
            if strategy.include_examples:
                body.append(
                    FlowElement(
                        type="example",
                        order=base + 3,
                        description=f"Example for {section.title}",
                        estimated_words=100,
                    )
                )
            if strategy.include_data:
                body.append(
                    FlowElement(
                        type="data",
                        order=base + 4,
                        description=f"Data point for {section.title}",
                        estimated_words=50,
                    )
                )

        conclusion = [
            FlowElement(type="summary", order=1, description="Summary of main points", estimated_words=100),
            FlowElement(type="conclusion", order=2, description="Final thoughts", estimated_words=100),
            FlowElement(type="call_to_action", order=3, description="Next steps", estimated_words=50),
        ]

        transitions = [
            Transition(
                from_section=current.id,
                to_section=following.id,
                text=f"Building on {current.title}, let's explore {following.title}",
            )
            for current, following in zip(sections, sections[1:])
        ]
        return ContentFlow(
            introduction=introduction, body=body, conclusion=conclusion, transitions=transitions
        )

    @staticmethod
    def determine_research_requirements(
        keyword: str, sections: list[OutlineSection], strategy: ContentStrategy
    ) -> ResearchRequirements:
        secondary: list[str] = []
        data_points: list[str] = []
        examples: list[str] = []
        citations: list[str] = []
        for section in sections:
            secondary.extend(section.research_topics)
            if strategy.include_data:
                data_points += [f"Statistics for {section.title}", f"Metrics related to {section.title}"]
            if strategy.include_examples:
                examples += [f"Example of {section.title}", f"Case study for {section.title}"]
            if strategy.include_citations:
                citations += [f"Academic sources for {section.title}", f"Industry reports on {section.title}"]

        return ResearchRequirements(
            primary_topics=[keyword],
            secondary_topics=[t for t in _unique(secondary) if t != keyword],
            data_points=_unique(data_points),
            examples=_unique(examples),
            citations=_unique(citations),
        )

    def create_content_plan(
        self,
        keyword: str,
        sections: list[OutlineSection],
        writing_style: str = "professional",
        target_audience: str = "general",
    ) -> ContentPlan:
        """Build the full plan for an ordered list of outline sections.

        Args:
            keyword: Article keyword.
            sections: Outline sections in reading order.
            writing_style: Free-form style label, matched on keywords.
            target_audience: Free-form audience label, matched on keywords.

        Returns:
            ContentPlan with per-section strategies keyed by section id.
        """
        strategy = self.create_content_strategy(writing_style, target_audience)
        planned = self.plan_sections(sections, strategy)

        section_strategies: dict[str, SectionStrategy] = {}
        for index, section in enumerate(planned):
            following = planned[index + 1] if index + 1 < len(planned) else None
            transition = TRANSITIONS.get(section.section_type)
            section_strategies[section.id] = SectionStrategy(
                section_id=section.id,
                strategy=section.content_strategy,
                word_count_target=section.estimated_words,
                key_points=section.key_points,
                call_to_action=CALLS_TO_ACTION.get(section.section_type),
                transition_to_next=(
                    f"{transition} {following.title}" if transition and following else None
                ),
            )

        plan = ContentPlan(
            keyword=keyword,
            writing_style=writing_style,
            target_audience=target_audience,
            strategy=strategy,
            section_strategies=section_strategies,
            content_flow=self.plan_content_flow(planned, strategy),
            research_requirements=self.determine_research_requirements(keyword, planned, strategy),
        )
        logger.info(
            "Content plan created",
            keyword=keyword,
            approach=strategy.approach,
            tone=strategy.tone,
            sections=len(planned),
        )
        return plan
