"""Spec Evolution data models."""

from spec_evolution.models.anomaly import (
    AnomalyMetric,
    AnomalySeverity,
    EvidenceType,
    IntentPattern,
    IntentType,
    LifecycleStage,
    OptimizationCategory,
    OptimizationHint,
    PatternConfidence,
    SpecAnomaly,
    SuggestionEvidence,
)
from spec_evolution.models.boundary import (
    AgentSession,
    AnalyticsQueryResult,
    ApprovalRequest,
    DateRange,
)
from spec_evolution.models.config import AnalyzerConfig, EvolutionConfig
from spec_evolution.models.operation import (
    OperationCoordinate,
    OperationMetricSample,
    SpecUsageStats,
)
from spec_evolution.models.suggestion import (
    ChangeType,
    SpecSuggestion,
    SpecSuggestionProposal,
    SuggestionApproval,
    SuggestionFilters,
    SuggestionPriority,
    SuggestionStatus,
)

__all__ = [
    "AgentSession",
    "AnalyticsQueryResult",
    "AnalyzerConfig",
    "AnomalyMetric",
    "AnomalySeverity",
    "ApprovalRequest",
    "ChangeType",
    "DateRange",
    "EvidenceType",
    "EvolutionConfig",
    "IntentPattern",
    "IntentType",
    "LifecycleStage",
    "OperationCoordinate",
    "OperationMetricSample",
    "OptimizationCategory",
    "OptimizationHint",
    "PatternConfidence",
    "SpecAnomaly",
    "SpecSuggestion",
    "SpecSuggestionProposal",
    "SpecUsageStats",
    "SuggestionApproval",
    "SuggestionEvidence",
    "SuggestionFilters",
    "SuggestionPriority",
    "SuggestionStatus",
]
