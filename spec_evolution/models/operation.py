"""Operation coordinates, metric samples, and windowed usage statistics."""

from datetime import datetime, timezone
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationCoordinate(BaseModel):
    """Identity of a versioned operation. Immutable and hashable."""

    model_config = ConfigDict(frozen=True)

    name: str                               # e.g., "orders.create"
    version: str                            # Coerced from int, so 3 == "3"
    tenant_id: Optional[str] = None

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Union[str, int]) -> str:
        return str(value)

    @property
    def key(self) -> str:
        """Grouping key: name.vVERSION[@tenant]."""
        key = f"{self.name}.v{self.version}"
        if self.tenant_id:
            key = f"{key}@{self.tenant_id}"
        return key

    def __str__(self) -> str:
        return f"{self.name} v{self.version}"


class OperationMetricSample(BaseModel):
    """One observed invocation of an operation."""

    model_config = ConfigDict(frozen=True)

    operation: OperationCoordinate
    duration_ms: float = Field(ge=0)
    success: bool
    timestamp: datetime
    payload_size_bytes: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    actor: Optional[str] = None
    channel: Optional[str] = None
    trace_id: Optional[str] = None
    metadata: Optional[dict] = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are read as UTC so samples stay comparable
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SpecUsageStats(BaseModel):
    """Summary of one operation over an observation window."""

    operation: OperationCoordinate
    total_calls: int = Field(ge=0)
    success_rate: float = Field(ge=0.0, le=1.0)
    error_rate: float = Field(ge=0.0, le=1.0)
    average_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    max_latency_ms: float
    last_seen_at: datetime
    window_start: datetime
    window_end: datetime
    top_errors: Dict[str, int] = {}         # error code -> count
