"""Analyzer thresholds and evolution policy."""

from typing import Optional

from pydantic import BaseModel, Field


class AnalyzerConfig(BaseModel):
    """Thresholds for the Usage Analyzer."""

    min_sample_size: int = Field(ge=1, default=50)
    error_rate_threshold: float = Field(gt=0.0, le=1.0, default=0.05)
    latency_p99_threshold_ms: float = Field(gt=0.0, default=750)
    throughput_drop_threshold: float = Field(gt=0.0, le=1.0, default=0.2)


class EvolutionConfig(BaseModel):
    """Suggestion policy. Read-only at the point of use."""

    min_confidence: Optional[float] = Field(ge=0.0, le=1.0, default=None)
    auto_approve_threshold: Optional[float] = Field(ge=0.0, le=1.0, default=None)
    max_suggestions_per_operation: Optional[int] = Field(ge=1, default=None)
    require_approval: Optional[bool] = None
    max_concurrent_experiments: Optional[int] = Field(ge=1, default=None)

    def allows_auto_approval(self, confidence: float) -> bool:
        """True when a suggestion with this confidence is approved at creation."""
        return (
            bool(self.auto_approve_threshold)
            and confidence >= self.auto_approve_threshold
            and not self.require_approval
        )
