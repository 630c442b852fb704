"""Citation formatting, selection and quality reporting."""

from collections import Counter
from collections.abc import Callable
from datetime import datetime
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from src.agents.real_time_researcher import citation_context, citation_position
from src.utils.citation_validator import validate_citations
from src.utils.models import (
    Citation,
    CitationIssue,
    CitationStyleName,
    ResearchSource,
    SectionType,
    utc_now,
)

logger = structlog.get_logger()

SortBy = Literal["relevance", "credibility", "date", "alphabetical"]

AUTHORITATIVE_SUFFIXES = (".edu", ".gov", ".org")
DIVERSE_DOMAIN_COUNT = 3
RECENT_DAYS = 365


def _year(source: ResearchSource) -> str:
    return str(source.published_date.year) if source.published_date else "n.d."


def _short_title(source: ResearchSource, words: int) -> str:
    return " ".join(source.title.split()[:words])


def _last_name(author: str) -> str:
    return author.split()[-1] if author.split() else author


def _joined(parts: list[str], separator: str = ". ") -> str:
    return separator.join(part for part in parts if part)


def _apa_in_text(c: Citation) -> str:
    name = c.source.author or _short_title(c.source, 2)
    return f"({name}, {_year(c.source)})"


def _apa_reference(c: Citation) -> str:
    return _joined([c.source.author or "", f"({_year(c.source)})", c.source.title, c.source.url])


def _mla_in_text(c: Citation) -> str:
    if c.source.author:
        year = f" {c.source.published_date.year}" if c.source.published_date else ""
        return f"({_last_name(c.source.author)}{year})"
    return f'("{_short_title(c.source, 3)}")'


def _dated_reference(c: Citation, separator: str = ". ") -> str:
    date = c.source.published_date.date().isoformat() if c.source.published_date else ""
    title = f'"{c.source.title}"' if c.source.title else ""
    return _joined([c.source.author or "", title, c.source.url, date], separator)


def _chicago_in_text(c: Citation) -> str:
    if c.source.author:
        return _last_name(c.source.author)
    return _short_title(c.source, 2)


def _harvard_reference(c: Citation) -> str:
    url = f"Available at: {c.source.url}" if c.source.url else ""
    return _joined([c.source.author or "", f"({_year(c.source)})", c.source.title, url])


class CitationStyle(BaseModel):
    """A named pair of formatting functions."""

    name: str
    format: CitationStyleName
    in_text: Callable[[Citation], str]
    reference: Callable[[Citation], str]


CITATION_STYLES: dict[str, CitationStyle] = {
    "apa": CitationStyle(name="APA", format="apa", in_text=_apa_in_text, reference=_apa_reference),
    "mla": CitationStyle(name="MLA", format="mla", in_text=_mla_in_text, reference=_dated_reference),
    "chicago": CitationStyle(
        name="Chicago", format="chicago", in_text=_chicago_in_text, reference=_dated_reference
    ),
    "harvard": CitationStyle(
        name="Harvard", format="harvard", in_text=_apa_in_text, reference=_harvard_reference
    ),
    "ieee": CitationStyle(
        name="IEEE",
        format="ieee",
        in_text=lambda c: f"[{c.index}]",
        reference=lambda c: f"[{c.index}] " + _dated_reference(c, ", "),
    ),
}


class CitationQuality(BaseModel):
    average_relevance_score: float = 0.0
    average_credibility_score: float = 0.0
    diverse_sources: bool = False
    recent_sources: bool = False
    authoritative_sources: bool = False


class CitationReport(BaseModel):
    section_id: str
    total_citations: int
    valid_citations: int
    invalid_citations: int
    issues: list[CitationIssue] = Field(default_factory=list)
    style: CitationStyleName
    quality: CitationQuality
    generated_at: datetime = Field(default_factory=utc_now)


class CitationStatistics(BaseModel):
    total: int = 0
    by_domain: dict[str, int] = Field(default_factory=dict)
    by_year: dict[str, int] = Field(default_factory=dict)
    average_relevance: float = 0.0
    average_credibility: float = 0.0


def get_citation_style(style: str) -> CitationStyle:
    try:
        return CITATION_STYLES[style]
    except KeyError:
        raise ValueError(f"Unsupported citation style: {style}") from None


class CitationManager:
    """Turns ranked sources into formatted citations."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    @staticmethod
    def sort_sources(sources: list[ResearchSource], sort_by: SortBy = "relevance") -> list[ResearchSource]:
        if sort_by == "relevance":
            return sorted(sources, key=lambda s: (-s.relevance_score, s.url))
        if sort_by == "credibility":
            return sorted(sources, key=lambda s: (-s.credibility_score, s.url))
        if sort_by == "date":
            dated = sorted(
                (s for s in sources if s.published_date), key=lambda s: s.published_date, reverse=True
            )
            return dated + [s for s in sources if s.published_date is None]
        return sorted(sources, key=lambda s: s.title.lower())

    @staticmethod
    def _format(citation: Citation) -> Citation:
        style = get_citation_style(citation.style)
        return citation.model_copy(
            update={"in_text": style.in_text(citation), "reference": style.reference(citation)}
        )

    def generate_citations(
        self,
        sources: list[ResearchSource],
        style: CitationStyleName = "apa",
        section_type: SectionType = "h2",
        section_id: str = "section",
        max_citations: int = 10,
        sort_by: SortBy = "relevance",
    ) -> list[Citation]:
        """Build formatted citations for a section.

        Args:
            sources: Scored research sources.
            style: Citation style.
            section_type: Section type, selects context phrase and position.
            section_id: Used in citation ids.
            max_citations: Maximum citations returned.
            sort_by: Ordering applied before truncation.

        Returns:
            Citations numbered from 1 in list order.
        """
        get_citation_style(style)
        selected = self.sort_sources(sources, sort_by)[: max(max_citations, 0)]
        citations = [
            self._format(
                Citation(
                    id=f"citation-{section_id}-{index}",
                    index=index,
                    source=source,
                    style=style,
                    context=citation_context(source.title, section_type),
                    relevance_score=source.relevance_score,
                    credibility_score=source.credibility_score,
                    position=citation_position(source, section_type),
                )
            )
            for index, source in enumerate(selected, start=1)
        ]
        logger.debug("Citations generated", section_id=section_id, style=style, count=len(citations))
        return citations

    def format_citations(
        self, citations: list[Citation], style: CitationStyleName
    ) -> tuple[list[str], list[str]]:
        """Return (in-text markers, references) for ``citations`` in ``style``."""
        restyled = [self._format(c.model_copy(update={"style": style})) for c in citations]
        return [c.in_text for c in restyled], [c.reference for c in restyled]

    def format_reference_list(self, citations: list[Citation], style: CitationStyleName = "apa") -> str:
        _, references = self.format_citations(citations, style)
        if style != "ieee":
            references = sorted(references, key=str.lower)
        return "\n".join(references)

    def optimize_citations(self, citations: list[Citation], target_count: int) -> list[Citation]:
        """Pick ``target_count`` citations, one per domain before any repeats.

        Citations are taken in descending combined score. The first pass keeps
        the best citation of each domain; remaining slots are filled by score.
        The result is renumbered from 1.
        """
        ranked = sorted(citations, key=lambda c: (-c.combined_score, c.source.url))
        if target_count <= 0:
            return []

        selected: list[Citation] = []
        seen_domains: set[str] = set()
        for citation in ranked:
            domain = citation.source.domain
            if domain is None or domain in seen_domains:
                continue
            if len(selected) >= target_count:
                break
            seen_domains.add(domain)
            selected.append(citation)

        chosen = {id(c) for c in selected}
        for citation in ranked:
            if len(selected) >= target_count:
                break
            if id(citation) not in chosen:
                selected.append(citation)

        return [
            self._format(citation.model_copy(update={"index": index}))
            for index, citation in enumerate(selected, start=1)
        ]

    @staticmethod
    def validate_citations(
        citations: list[Citation],
    ) -> tuple[list[Citation], list[Citation], list[CitationIssue]]:
        return validate_citations(citations)

    def calculate_citation_quality(self, citations: list[Citation]) -> CitationQuality:
        if not citations:
            return CitationQuality()
        now = self._clock()
        domains = {c.source.domain for c in citations if c.source.domain}
        return CitationQuality(
            average_relevance_score=sum(c.relevance_score for c in citations) / len(citations),
            average_credibility_score=sum(c.credibility_score for c in citations) / len(citations),
            diverse_sources=len(domains) >= DIVERSE_DOMAIN_COUNT,
            recent_sources=any(
                c.source.published_date is not None
                and (now - c.source.published_date).days < RECENT_DAYS
                for c in citations
            ),
            authoritative_sources=any(
                (c.source.domain or "").endswith(AUTHORITATIVE_SUFFIXES) for c in citations
            ),
        )

    def generate_citation_report(
        self, section_id: str, citations: list[Citation], style: CitationStyleName = "apa"
    ) -> CitationReport:
        valid, invalid, issues = validate_citations(citations)
        return CitationReport(
            section_id=section_id,
            total_citations=len(citations),
            valid_citations=len(valid),
            invalid_citations=len(invalid),
            issues=issues,
            style=style,
            quality=self.calculate_citation_quality(citations),
            generated_at=self._clock(),
        )

    @staticmethod
    def get_citation_statistics(citations: list[Citation]) -> CitationStatistics:
        if not citations:
            return CitationStatistics()
        by_domain = Counter(c.source.domain or "invalid" for c in citations)
        by_year = Counter(
            str(c.source.published_date.year) if c.source.published_date else "unknown"
            for c in citations
        )
        return CitationStatistics(
            total=len(citations),
            by_domain=dict(by_domain),
            by_year=dict(by_year),
            average_relevance=sum(c.relevance_score for c in citations) / len(citations),
            average_credibility=sum(c.credibility_score for c in citations) / len(citations),
        )
