"""Anomalies, evidence, intent patterns, and optimization hints."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field

from spec_evolution.models.operation import OperationCoordinate


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyMetric(str, Enum):
    LATENCY = "latency"
    ERROR_RATE = "error-rate"
    THROUGHPUT = "throughput"
    POLICY = "policy"
    SCHEMA = "schema"


class EvidenceType(str, Enum):
    TELEMETRY = "telemetry"
    USER_FEEDBACK = "user-feedback"
    SIMULATION = "simulation"
    TEST = "test"


class IntentType(str, Enum):
    LATENCY_REGRESSION = "latency-regression"
    ERROR_SPIKE = "error-spike"
    MISSING_OPERATION = "missing-operation"   # Reserved, not emitted by the analyzer
    CHAINED_INTENT = "chained-intent"         # Reserved, not emitted by the analyzer
    THROUGHPUT_DROP = "throughput-drop"
    SCHEMA_MISMATCH = "schema-mismatch"


class SuggestionEvidence(BaseModel):
    """Provenance entry. Carried unchanged from anomaly to suggestion."""

    type: EvidenceType
    description: str
    data: Optional[dict] = None


class SpecAnomaly(BaseModel):
    """A deviation of an operation's stats from thresholds or its baseline."""

    operation: OperationCoordinate
    severity: AnomalySeverity
    metric: AnomalyMetric
    description: str
    detected_at: datetime
    threshold: Optional[float] = None
    observed_value: Optional[float] = None
    evidence: List[SuggestionEvidence] = []


class PatternConfidence(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    sample_size: int = Field(ge=0)
    p_value: Optional[float] = None


class IntentPattern(BaseModel):
    """Normalized, confidence-scored description of an observed problem."""

    id: str
    type: IntentType
    description: str
    operation: Optional[OperationCoordinate] = None
    confidence: PatternConfidence
    metadata: Optional[dict] = None
    evidence: List[SuggestionEvidence] = []


class OptimizationCategory(str, Enum):
    SCHEMA = "schema"
    POLICY = "policy"
    PERFORMANCE = "performance"
    ERROR_HANDLING = "error-handling"


class LifecycleStage(IntEnum):
    """Product/organization maturity, ordered."""
    EXPLORATION = 0
    PROBLEM_SOLUTION_FIT = 1
    MVP_EARLY_TRACTION = 2
    PRODUCT_MARKET_FIT = 3
    GROWTH_SCALE_UP = 4
    EXPANSION_PLATFORM = 5
    MATURITY_OPTIMIZATION = 6


class OptimizationHint(BaseModel):
    """Reporting-only remediation advice. Never enters the approval pipeline."""

    operation: OperationCoordinate
    category: OptimizationCategory
    summary: str
    justification: str
    recommended_actions: List[str]
    lifecycle_stage: Optional[LifecycleStage] = None
    lifecycle_notes: Optional[str] = None
