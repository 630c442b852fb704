"""Middleware for status transitions, batch coordination, and cost tracking.

This module provides:
- State machine: allowed article and section status transitions
- WorkflowManager: bounded batch execution of section research units
- CostTracker: provider spend rollups and threshold checks
"""

from src.middleware.cost_tracker import CostThreshold, CostTracker, ThresholdCheck
from src.middleware.state_machine import (
    can_transition_article,
    can_transition_section,
    ensure_article_transition,
    ensure_section_transition,
    is_terminal,
)
from src.middleware.workflow_manager import (
    BatchReport,
    LoopStatus,
    ResearchLoop,
    WorkflowManager,
    make_batches,
)

__all__ = [
    # State machine
    "can_transition_article",
    "can_transition_section",
    "ensure_article_transition",
    "ensure_section_transition",
    "is_terminal",
    # Workflow management
    "BatchReport",
    "LoopStatus",
    "ResearchLoop",
    "WorkflowManager",
    "make_batches",
    # Cost tracking
    "CostThreshold",
    "CostTracker",
    "ThresholdCheck",
]
