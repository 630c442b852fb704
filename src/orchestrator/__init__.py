"""Orchestrator module for outline generation and article research.

This module provides:
- OutlineGenerator: plans a dependency-ordered outline for an article
- BatchResearchOptimizer: researches a main keyword and its sections in one pass
- SectionResearcher: researches every outline section with a scheduling strategy
- GenerationWorker: claims queued articles and runs the pipeline
"""

from src.orchestrator.batch_research_optimizer import (
    BatchResearchOptimizer,
    BatchResearchRequest,
    BatchResearchResult,
)
from src.orchestrator.generation_worker import GenerationWorker, create_generation_worker
from src.orchestrator.outline_generator import OutlineGenerator, OutlineRequest
from src.orchestrator.section_researcher import (
    ResearchConfig,
    ResearchOutcome,
    ResearchPlan,
    SectionResearcher,
    create_section_researcher,
)

__all__ = [
    "BatchResearchOptimizer",
    "BatchResearchRequest",
    "BatchResearchResult",
    "GenerationWorker",
    "OutlineGenerator",
    "OutlineRequest",
    "ResearchConfig",
    "ResearchOutcome",
    "ResearchPlan",
    "SectionResearcher",
    "create_generation_worker",
    "create_section_researcher",
]
