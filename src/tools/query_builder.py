"""Query construction for the keyword-metrics and web-search providers.

Everything here is a pure function of its arguments.
"""

import re
from typing import Literal

from pydantic import BaseModel, Field

from src.utils.models import SectionType

QueryIntent = Literal["informational", "commercial", "transactional", "navigational"]
QueryComplexity = Literal["low", "medium", "high"]

STOP_WORDS: set[str] = {
    "the",
    "a",
    "an",
    "and",
    "or",
    "but",
    "in",
    "on",
    "at",
    "to",
    "for",
    "of",
    "with",
    "by",
}

# Appended to a section's research query so results match the section's role
SECTION_TYPE_SUFFIXES: dict[str, str] = {
    "introduction": "overview definition importance",
    "h2": "details benefits implementation",
    "h3": "specific examples best practices",
    "conclusion": "summary key takeaways",
    "faq": "questions answers common concerns",
}

SEMANTIC_MAP: dict[str, list[str]] = {
    "marketing": ["advertising", "promotion", "branding", "outreach"],
    "seo": ["search optimization", "ranking", "visibility", "traffic"],
    "content": ["writing", "creation", "articles", "blogging"],
    "research": ["analysis", "investigation", "study", "data"],
    "optimization": ["improvement", "enhancement", "refinement", "tuning"],
    "strategy": ["planning", "approach", "methodology", "framework"],
}

# Extra terms attached to section titles mentioning these words
TITLE_EXPANSIONS: dict[str, list[str]] = {
    "introduction": ["intro", "overview", "getting started"],
    "conclusion": ["summary", "wrap-up", "final thoughts"],
    "benefits": ["advantages", "pros", "value"],
    "drawbacks": ["disadvantages", "cons", "limitations"],
}

INTENT_MODIFIERS: dict[str, list[str]] = {
    "informational": ["guide", "tutorial", "explanation"],
    "commercial": ["review", "comparison", "best"],
    "transactional": ["buy", "purchase", "order"],
    "navigational": ["website", "official", "login"],
}

CONTEXT_MODIFIERS: dict[str, list[str]] = {
    "beginner": ["for beginners", "basic", "introductory"],
    "advanced": ["advanced", "expert", "professional"],
    "business": ["for business", "commercial", "enterprise"],
}

# Per-provider query length limits in characters
API_QUERY_LIMITS: dict[str, int] = {
    "tavily": 400,
    "dataforseo": 80,
}

_BOOLEAN_PATTERN = re.compile(r"\b(AND|OR|NOT)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class ComprehensiveQuery(BaseModel):
    """Expanded query set for one keyword."""

    main_query: str
    variations: list[str] = Field(default_factory=list, max_length=5)
    semantic_keywords: list[str] = Field(default_factory=list, max_length=8)
    long_tail_keywords: list[str] = Field(default_factory=list, max_length=6)
    question_keywords: list[str] = Field(default_factory=list, max_length=5)
    language: str = "en"
    location: str = "us"
    max_results: int = Field(default=10, ge=1)


class TargetedQuery(BaseModel):
    """A single query shaped for a context and search intent."""

    query: str
    context: str
    intent: QueryIntent
    modifiers: list[str] = Field(default_factory=list)


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def generate_cache_key(*parts: str) -> str:
    """Join key parts with ':' and normalize to a lower-case, underscore form.

    Args:
        *parts: Key components, e.g. ("section_research", query, topic, keyword).

    Returns:
        Deterministic cache key.
    """
    key = ":".join(parts)
    return _WHITESPACE.sub("_", key.strip()).lower()


def _variations(keyword: str) -> list[str]:
    variations = [
        f"{keyword} guide",
        f"{keyword} tutorial",
        f"{keyword} examples",
        f"{keyword} best practices",
        f"how to {keyword}",
        f"{keyword} for beginners",
        f"advanced {keyword}",
    ]
    lower = keyword.lower()
    if "marketing" in lower:
        variations += [f"{keyword} strategy", f"{keyword} campaign", f"{keyword} automation"]
    if "seo" in lower:
        variations += [f"{keyword} optimization", f"{keyword} techniques", f"{keyword} checklist"]
    if "content" in lower:
        variations += [f"{keyword} creation", f"{keyword} strategy", f"{keyword} marketing"]
    return variations[:5]


def _semantic_keywords(keyword: str) -> list[str]:
    lower = keyword.lower()
    related: list[str] = []
    for term, terms in SEMANTIC_MAP.items():
        if term in lower:
            related.extend(terms)
    return related[:8]


def _long_tail_keywords(keyword: str) -> list[str]:
    long_tail = [
        f"{keyword} for small business",
        f"{keyword} step by step",
        f"{keyword} without experience",
        f"{keyword} on a budget",
        f"{keyword} that works",
        f"{keyword} best practices",
        f"{keyword} common mistakes",
        f"{keyword} tips and tricks",
    ]
    return long_tail[:6]


def _question_keywords(keyword: str) -> list[str]:
    questions = [
        f"what is {keyword}",
        f"how does {keyword} work",
        f"why is {keyword} important",
        f"when to use {keyword}",
        f"where to learn {keyword}",
        f"who needs {keyword}",
        f"how much does {keyword} cost",
    ]
    return questions[:5]


def build_comprehensive_query(
    keyword: str, language: str = "en", location: str = "us", max_results: int = 10
) -> ComprehensiveQuery:
    """Expand a keyword into variations, semantic, long-tail and question keywords.

    Args:
        keyword: The main keyword.
        language: Provider language code.
        location: Provider location code.
        max_results: Results requested per provider call.

    Returns:
        ComprehensiveQuery with capped lists.
    """
    return ComprehensiveQuery(
        main_query=keyword,
        variations=_variations(keyword),
        semantic_keywords=_semantic_keywords(keyword),
        long_tail_keywords=_long_tail_keywords(keyword),
        question_keywords=_question_keywords(keyword),
        language=language,
        location=location,
        max_results=max_results,
    )


def build_targeted_query(keyword: str, context: str, intent: QueryIntent) -> TargetedQuery:
    """Shape a keyword with context and intent modifiers.

    Args:
        keyword: The keyword to search for.
        context: Free-text context, e.g. an audience description.
        intent: Search intent.

    Returns:
        TargetedQuery whose query is the keyword followed by its modifiers.
    """
    modifiers: list[str] = []
    context_lower = context.lower()
    for marker, terms in CONTEXT_MODIFIERS.items():
        if marker in context_lower:
            modifiers.extend(terms)
    modifiers.extend(INTENT_MODIFIERS.get(intent, []))

    return TargetedQuery(
        query=normalize_whitespace(f"{keyword} {' '.join(modifiers)}"),
        context=context,
        intent=intent,
        modifiers=modifiers,
    )


def extract_section_keywords(section_title: str, limit: int = 3) -> list[str]:
    """Pull meaningful terms out of a section title.

    Args:
        section_title: The section heading.
        limit: Maximum number of terms to return.

    Returns:
        Title words without stop words, followed by related expansions.
    """
    lower = section_title.lower()
    keywords = [word for word in lower.split() if word not in STOP_WORDS]
    for marker, expansions in TITLE_EXPANSIONS.items():
        if marker in lower:
            keywords.extend(expansions)
    return keywords[:limit]


def build_section_query(section_title: str, main_keyword: str) -> TargetedQuery:
    """Build an informational query for one section's batch research."""
    section_keywords = extract_section_keywords(section_title)
    return TargetedQuery(
        query=normalize_whitespace(f"{main_keyword} {' '.join(section_keywords)}"),
        context=section_title,
        intent="informational",
        modifiers=section_keywords,
    )


def compose_research_query(
    section_title: str,
    main_keyword: str,
    research_topics: list[str],
    section_type: SectionType,
) -> str:
    """Compose the real-time research query for a section.

    The main keyword is only appended when the title does not already
    contain it, and at most three research topics are used.

    Args:
        section_title: Section heading.
        main_keyword: Article keyword.
        research_topics: Section research topics.
        section_type: Section type, selects the query suffix.

    Returns:
        Whitespace-normalized query string.
    """
    parts = [section_title]
    if main_keyword and main_keyword.lower() not in section_title.lower():
        parts.append(main_keyword)
    parts.extend(research_topics[:3])
    parts.append(SECTION_TYPE_SUFFIXES.get(section_type, ""))
    return normalize_whitespace(" ".join(parts))


def extract_topics(title: str, content: str = "", max_content_terms: int = 10) -> list[str]:
    """Derive coarse topic terms from a document.

    Title words longer than three characters come first, then up to
    ``max_content_terms`` content words longer than four characters.
    Order is preserved and duplicates removed.
    """
    title_terms = [word for word in title.lower().split() if len(word) > 3]
    content_terms = [word for word in content.lower().split() if len(word) > 4]
    return list(dict.fromkeys(title_terms + content_terms[:max_content_terms]))


def optimize_query_for_api(query: str, api: Literal["tavily", "dataforseo"]) -> str:
    """Adapt a query to a provider's expectations.

    DataForSEO keyword lookups want short lower-case phrases without stop
    words; Tavily takes natural language. Both are clipped to their limits.
    """
    query = normalize_whitespace(query)
    if api == "dataforseo":
        words = [word for word in query.lower().split() if word not in STOP_WORDS]
        query = " ".join(words)
    limit = API_QUERY_LIMITS.get(api)
    if limit is not None and len(query) > limit:
        query = query[:limit].rsplit(" ", 1)[0]
    return query


def build_batch_query(keywords: list[str]) -> str:
    """Combine keywords into one boolean query.

    Up to three primary keywords are OR-ed together; up to five more are
    attached as an AND group.
    """
    primary = keywords[:3]
    secondary = keywords[3:8]
    query = " OR ".join(primary)
    if secondary:
        query += " AND (" + " OR ".join(secondary) + ")"
    return query


def estimate_query_complexity(query: str) -> QueryComplexity:
    word_count = len(query.split())
    has_boolean = bool(_BOOLEAN_PATTERN.search(query))
    has_quotes = '"' in query

    if word_count <= 3 and not has_boolean and not has_quotes:
        return "low"
    if word_count <= 8 and has_boolean:
        return "medium"
    return "high"


def simplify_query(query: str, max_complexity: QueryComplexity = "medium") -> str:
    """Truncate a query whose estimated complexity exceeds ``max_complexity``."""
    complexity = estimate_query_complexity(query)
    if complexity == "low" or (complexity == "medium" and max_complexity != "low"):
        return query

    max_words = {"low": 3, "medium": 6, "high": 10}[max_complexity]
    return " ".join(query.split()[:max_words])
