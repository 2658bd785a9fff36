"""
Telemetry Reader — maps windowed analytics queries onto the sample/stats model.

The analytics backend is an external collaborator. It stores raw
`<prefix>.operation` events and answers parameterized HogQL-style queries with
a tabular result (column names plus row arrays).

Behavioral Contract:
- Rows missing operationKey, version, or a parseable timestamp are discarded
- Loose column values are coerced (numeric strings, 0/1 booleans, epoch ms)
- Backend failures propagate unchanged; no retries
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from spec_evolution.errors import ConfigurationError
from spec_evolution.models.boundary import AnalyticsQueryResult, DateRange
from spec_evolution.models.operation import (
    OperationCoordinate,
    OperationMetricSample,
    SpecUsageStats,
)

logger = logging.getLogger(__name__)


class AnalyticsReader(Protocol):
    """Protocol for the analytics backend. Pluggable."""

    async def query(
        self, query: str, values: Dict[str, Any]
    ) -> Union[AnalyticsQueryResult, dict]: ...


class TelemetryReader:
    """Reads operation samples and baselines from an analytics backend."""

    def __init__(self, reader: AnalyticsReader, event_prefix: str = "observability"):
        self.reader = reader
        self.event_prefix = event_prefix

    async def read_operation_samples(
        self,
        operations: Optional[Sequence[OperationCoordinate]] = None,
        date_range: Optional[DateRange] = None,
        limit: int = 1000,
    ) -> List[OperationMetricSample]:
        """Most recent operation events as samples, newest first."""
        query = "\n".join([
            "select",
            "  properties.operation as operationKey,",
            "  properties.version as version,",
            "  properties.durationMs as durationMs,",
            "  properties.success as success,",
            "  properties.errorCode as errorCode,",
            "  properties.tenantId as tenantId,",
            "  properties.traceId as traceId,",
            "  properties.metadata as metadata,",
            "  timestamp as timestamp",
            "from events",
            f"where {self._where_clause(operations, date_range)}",
            "order by timestamp desc",
            f"limit {int(limit)}",
        ])
        result = await self._query(query, _query_values(operations, date_range))
        samples = _map_operation_samples(result)
        logger.debug("Read %d operation samples", len(samples))
        return samples

    async def read_anomaly_baseline(
        self, operation: OperationCoordinate, window_days: int = 7
    ) -> Optional[SpecUsageStats]:
        """Aggregate stats for one operation over the trailing window, or None."""
        date_range = _trailing_window(window_days)
        where = self._where_clause([operation], date_range)
        values = _query_values([operation], date_range)

        result = await self._query("\n".join([
            "select",
            "  count() as totalCalls,",
            "  avg(properties.durationMs) as averageLatencyMs,",
            "  quantile(0.95)(properties.durationMs) as p95LatencyMs,",
            "  quantile(0.99)(properties.durationMs) as p99LatencyMs,",
            "  max(properties.durationMs) as maxLatencyMs,",
            "  sum(if(properties.success = 1, 1, 0)) as successCount,",
            "  sum(if(properties.success = 0, 1, 0)) as errorCount",
            "from events",
            f"where {where}",
        ]), values)

        stats = _map_baseline_stats(result, operation, date_range)
        if stats is None:
            logger.debug("No baseline for %s over %d days", operation.key, window_days)
            return None

        if not stats.top_errors:
            top_errors = await self._read_top_errors(where, values)
            stats = stats.model_copy(update={"top_errors": top_errors})
        return stats

    async def _read_top_errors(self, where: str, values: Dict[str, Any]) -> Dict[str, int]:
        result = await self._query("\n".join([
            "select",
            "  properties.errorCode as errorCode,",
            "  count() as errorCount",
            "from events",
            f"where {where} and properties.success = 0",
            "group by errorCode",
            "order by errorCount desc",
            "limit 5",
        ]), values)

        top_errors: Dict[str, int] = {}
        for row in _map_rows(result):
            code = _as_string(row.get("errorCode"))
            if code:
                top_errors[code] = int(_as_number(row.get("errorCount")))
        return top_errors

    async def _query(self, query: str, values: Dict[str, Any]) -> AnalyticsQueryResult:
        query_fn = getattr(self.reader, "query", None)
        if not callable(query_fn):
            raise ConfigurationError("Analytics reader does not support HogQL queries.")
        result = await query_fn(query, values)
        if isinstance(result, AnalyticsQueryResult):
            return result
        return AnalyticsQueryResult.model_validate(result)

    def _where_clause(
        self,
        operations: Optional[Sequence[OperationCoordinate]],
        date_range: Optional[DateRange],
    ) -> str:
        clauses = [f"event = '{self.event_prefix}.operation'"]
        if operations:
            clauses.append(f"({_operation_filters(operations)})")
        if date_range and date_range.from_:
            clauses.append("timestamp >= {dateFrom}")
        if date_range and date_range.to:
            clauses.append("timestamp < {dateTo}")
        return " and ".join(clauses)


# --- Query building ---

def _operation_filters(operations: Sequence[OperationCoordinate]) -> str:
    filters = []
    for index, op in enumerate(operations):
        clauses = [
            f"properties.operation = {{operationKey{index}}}",
            f"properties.version = {{operationVersion{index}}}",
        ]
        if op.tenant_id:
            clauses.append(f"properties.tenantId = {{operationTenant{index}}}")
        filters.append(f"({' and '.join(clauses)})")
    return " or ".join(filters)


def _query_values(
    operations: Optional[Sequence[OperationCoordinate]],
    date_range: Optional[DateRange],
) -> Dict[str, Any]:
    values: Dict[str, Any] = {
        "dateFrom": _iso(date_range.from_) if date_range else None,
        "dateTo": _iso(date_range.to) if date_range else None,
    }
    for index, op in enumerate(operations or []):
        values[f"operationKey{index}"] = op.name
        values[f"operationVersion{index}"] = op.version
        if op.tenant_id:
            values[f"operationTenant{index}"] = op.tenant_id
    return values


def _trailing_window(window_days: int) -> DateRange:
    end = datetime.now(timezone.utc)
    return DateRange(from_=end - timedelta(days=window_days), to=end)


# --- Row mapping ---

def _map_rows(result: AnalyticsQueryResult) -> List[Dict[str, Any]]:
    rows = []
    for row in result.results:
        if not isinstance(row, (list, tuple)):
            continue
        rows.append(dict(zip(result.columns, row)))
    return rows


def _map_operation_samples(result: AnalyticsQueryResult) -> List[OperationMetricSample]:
    samples = []
    for row in _map_rows(result):
        name = _as_string(row.get("operationKey"))
        version = _as_string(row.get("version"))
        timestamp = _as_datetime(row.get("timestamp"))
        if not name or not version or timestamp is None:
            continue
        metadata = row.get("metadata")
        samples.append(OperationMetricSample(
            operation=OperationCoordinate(
                name=name,
                version=version,
                tenant_id=_as_optional_string(row.get("tenantId")),
            ),
            duration_ms=max(0.0, _as_number(row.get("durationMs"))),
            success=_as_bool(row.get("success")),
            timestamp=timestamp,
            error_code=_as_optional_string(row.get("errorCode")),
            trace_id=_as_optional_string(row.get("traceId")),
            metadata=metadata if isinstance(metadata, dict) else None,
        ))
    return samples


def _map_baseline_stats(
    result: AnalyticsQueryResult,
    operation: OperationCoordinate,
    date_range: DateRange,
) -> Optional[SpecUsageStats]:
    rows = _map_rows(result)
    if not rows:
        return None
    row = rows[0]
    total = int(_as_number(row.get("totalCalls")))
    if not total:
        return None
    # A missing count is the remainder of the other, so the rates sum to one
    if row.get("successCount") is not None:
        successes = min(max(_as_number(row.get("successCount")), 0.0), total)
    else:
        successes = total - min(max(_as_number(row.get("errorCount")), 0.0), total)
    success_rate = successes / total
    now = datetime.now(timezone.utc)
    return SpecUsageStats(
        operation=operation,
        total_calls=total,
        success_rate=success_rate,
        error_rate=1 - success_rate,
        average_latency_ms=_as_number(row.get("averageLatencyMs")),
        p95_latency_ms=_as_number(row.get("p95LatencyMs")),
        p99_latency_ms=_as_number(row.get("p99LatencyMs")),
        max_latency_ms=_as_number(row.get("maxLatencyMs")),
        last_seen_at=now,
        window_start=date_range.from_ or now,
        window_end=date_range.to or now,
        top_errors={},
    )


# --- Coercion helpers ---

def _as_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_optional_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_number(value: Any) -> float:
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return 0.0
    else:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.lower() == "true"
    return False


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)   # Epoch ms
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
