"""Extraction planning, orchestration and confidence scoring."""

from cim_extract.orchestration.factory import build_orchestrator
from cim_extract.orchestration.orchestrator import Orchestrator, select_best
from cim_extract.orchestration.planner import ExtractionPlanner
from cim_extract.orchestration.scoring import CompletenessScorer, ConfidenceScorer

__all__ = [
    "build_orchestrator",
    "Orchestrator",
    "select_best",
    "ExtractionPlanner",
    "CompletenessScorer",
    "ConfidenceScorer",
]
