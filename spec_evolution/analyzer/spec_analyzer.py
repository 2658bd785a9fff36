"""
Usage Analyzer — turns operation samples into stats, anomalies, and intents.

Pipeline:
  samples → analyze_spec_usage → stats
  stats (+ baseline) → detect_anomalies → anomalies
  anomalies + stats → to_intent_patterns → intent patterns

Behavioral Contract:
- Total over well-formed input: never raises on domain data
- Groups below the minimum sample size are skipped, not errors
- Anomaly rules run in fixed priority order; the first match wins, so an
  operation yields at most one anomaly per pass
- Evidence attached to an anomaly is carried unchanged into its intent
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

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
from spec_evolution.models.config import AnalyzerConfig
from spec_evolution.models.operation import OperationMetricSample, SpecUsageStats

logger = logging.getLogger(__name__)


_METRIC_TO_INTENT: Dict[AnomalyMetric, IntentType] = {
    AnomalyMetric.ERROR_RATE: IntentType.ERROR_SPIKE,
    AnomalyMetric.LATENCY: IntentType.LATENCY_REGRESSION,
    AnomalyMetric.THROUGHPUT: IntentType.THROUGHPUT_DROP,
}

# Stage band -> category -> (lifecycle note, supplemental actions)
_LIFECYCLE_ADVICE: Dict[str, Dict[OptimizationCategory, tuple]] = {
    "early": {
        OptimizationCategory.PERFORMANCE: (
            "Favor guardrails that protect learning velocity before heavy rewrites.",
            ["Wrap risky changes behind progressive delivery flags"],
        ),
        OptimizationCategory.ERROR_HANDLING: (
            "Make failures loud and recoverable so you can learn faster.",
            ["Add auto-rollbacks or manual kill switches"],
        ),
    },
    "pmf": {
        OptimizationCategory.PERFORMANCE: (
            "Stabilize the core use case to avoid regressions while demand grows.",
            ["Instrument regression tests on critical specs"],
        ),
    },
    "scale": {
        OptimizationCategory.PERFORMANCE: (
            "Prioritize resilience and multi-tenant safety as volumes expand.",
            ["Introduce workload partitioning or isolation per tenant"],
        ),
        OptimizationCategory.ERROR_HANDLING: (
            "Contain blast radius with policy fallbacks and circuit breakers.",
            ["Add circuit breakers to high-risk operations"],
        ),
    },
    "mature": {
        OptimizationCategory.PERFORMANCE: (
            "Optimize for margins and predictable SLAs.",
            ["Capture unit-cost impacts alongside latency fixes"],
        ),
        OptimizationCategory.ERROR_HANDLING: (
            "Prevent regressions with automated regression specs before deploy.",
            ["Run auto-evolution simulations on renewal scenarios"],
        ),
    },
}


def percentile(sorted_values: List[float], p: float) -> float:
    """Nearest-rank percentile over ascending values: index min(n-1, floor(p*n))."""
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]
    index = min(len(sorted_values) - 1, int(p * len(sorted_values)))
    return sorted_values[index]


def severity_for_ratio(ratio: float) -> AnomalySeverity:
    """Map observed/threshold to a severity."""
    if ratio >= 2:
        return AnomalySeverity.HIGH
    if ratio >= 1.3:
        return AnomalySeverity.MEDIUM
    return AnomalySeverity.LOW


def stage_band(stage: LifecycleStage) -> str:
    if stage <= LifecycleStage.MVP_EARLY_TRACTION:
        return "early"
    if stage == LifecycleStage.PRODUCT_MARKET_FIT:
        return "pmf"
    if stage in (LifecycleStage.GROWTH_SCALE_UP, LifecycleStage.EXPANSION_PLATFORM):
        return "scale"
    return "mature"


def _dedupe(actions: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for action in actions:
        if action in seen:
            continue
        seen.add(action)
        ordered.append(action)
    return ordered


AnomalyRule = Callable[
    [SpecUsageStats, Optional[SpecUsageStats], datetime], Optional[SpecAnomaly]
]


class SpecAnalyzer:
    """
    Aggregates samples and classifies anomalies against configured thresholds.
    Stateless between calls.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        self._rules: List[AnomalyRule] = []
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        """Register anomaly rules. Order is priority."""
        self._rules = [
            self._rule_error_rate,
            self._rule_latency,
            self._rule_throughput_drop,
        ]

    # --- Usage statistics ---

    def analyze_spec_usage(
        self, samples: Iterable[OperationMetricSample]
    ) -> List[SpecUsageStats]:
        """Group samples per operation and summarize every group large enough."""
        groups: Dict[str, List[OperationMetricSample]] = {}
        for sample in samples:
            groups.setdefault(sample.operation.key, []).append(sample)

        if not groups:
            logger.debug("analyze_spec_usage skipped: no samples")
            return []

        stats = []
        for key, group in groups.items():
            if len(group) < self.config.min_sample_size:
                logger.debug(
                    "Skipping %s: %d samples, minimum is %d",
                    key, len(group), self.config.min_sample_size,
                )
                continue
            stats.append(self._build_usage_stats(group))
        return stats

    def _build_usage_stats(self, samples: List[OperationMetricSample]) -> SpecUsageStats:
        durations = sorted(s.duration_ms for s in samples)
        errors = [s for s in samples if not s.success]
        total = len(samples)

        top_errors: Dict[str, int] = {}
        for sample in errors:
            if sample.error_code:
                top_errors[sample.error_code] = top_errors.get(sample.error_code, 0) + 1

        timestamps = [s.timestamp for s in samples]
        window_start = min(timestamps)
        window_end = max(timestamps)

        return SpecUsageStats(
            operation=samples[0].operation,
            total_calls=total,
            success_rate=(total - len(errors)) / total,
            error_rate=len(errors) / total,
            average_latency_ms=sum(durations) / total,
            p95_latency_ms=percentile(durations, 0.95),
            p99_latency_ms=percentile(durations, 0.99),
            max_latency_ms=durations[-1],
            last_seen_at=window_end,
            window_start=window_start,
            window_end=window_end,
            top_errors=top_errors,
        )

    # --- Anomaly detection ---

    def detect_anomalies(
        self,
        stats: List[SpecUsageStats],
        baseline: Optional[List[SpecUsageStats]] = None,
    ) -> List[SpecAnomaly]:
        """Evaluate rules per stat in priority order; at most one anomaly each."""
        if not stats:
            logger.debug("detect_anomalies skipped: no stats")
            return []

        baseline_by_key = {b.operation.key: b for b in (baseline or [])}
        now = datetime.now(timezone.utc)
        anomalies = []

        for stat in stats:
            base = baseline_by_key.get(stat.operation.key)
            for rule in self._rules:
                anomaly = rule(stat, base, now)
                if anomaly:
                    logger.info(
                        "Anomaly on %s: %s (%s)",
                        stat.operation.key, anomaly.metric.value, anomaly.severity.value,
                    )
                    anomalies.append(anomaly)
                    break

        return anomalies

    def _rule_error_rate(
        self,
        stat: SpecUsageStats,
        baseline: Optional[SpecUsageStats],
        now: datetime,
    ) -> Optional[SpecAnomaly]:
        threshold = self.config.error_rate_threshold
        if stat.error_rate < threshold:
            return None
        return SpecAnomaly(
            operation=stat.operation,
            severity=severity_for_ratio(stat.error_rate / threshold),
            metric=AnomalyMetric.ERROR_RATE,
            description="Error rate spike",
            detected_at=now,
            threshold=threshold,
            observed_value=stat.error_rate,
            evidence=[SuggestionEvidence(
                type=EvidenceType.TELEMETRY,
                description=(
                    f"Error rate {stat.error_rate:.2f} exceeded threshold {threshold}"
                ),
                data={"error_rate": stat.error_rate, "total_calls": stat.total_calls},
            )],
        )

    def _rule_latency(
        self,
        stat: SpecUsageStats,
        baseline: Optional[SpecUsageStats],
        now: datetime,
    ) -> Optional[SpecAnomaly]:
        threshold = self.config.latency_p99_threshold_ms
        if stat.p99_latency_ms < threshold:
            return None
        return SpecAnomaly(
            operation=stat.operation,
            severity=severity_for_ratio(stat.p99_latency_ms / threshold),
            metric=AnomalyMetric.LATENCY,
            description="Latency regression detected",
            detected_at=now,
            threshold=threshold,
            observed_value=stat.p99_latency_ms,
            evidence=[SuggestionEvidence(
                type=EvidenceType.TELEMETRY,
                description=(
                    f"P99 latency {stat.p99_latency_ms}ms exceeded threshold {threshold}ms"
                ),
                data={"p99_latency_ms": stat.p99_latency_ms},
            )],
        )

    def _rule_throughput_drop(
        self,
        stat: SpecUsageStats,
        baseline: Optional[SpecUsageStats],
        now: datetime,
    ) -> Optional[SpecAnomaly]:
        if baseline is None or baseline.total_calls == 0:
            return None
        threshold = self.config.throughput_drop_threshold
        drop = (baseline.total_calls - stat.total_calls) / baseline.total_calls
        if drop < threshold:
            return None
        return SpecAnomaly(
            operation=stat.operation,
            severity=severity_for_ratio(drop / threshold),
            metric=AnomalyMetric.THROUGHPUT,
            description="Usage drop detected",
            detected_at=now,
            threshold=threshold,
            observed_value=drop,
            evidence=[SuggestionEvidence(
                type=EvidenceType.TELEMETRY,
                description=(
                    f"Throughput dropped by {drop * 100:.1f}% compared to baseline"
                ),
                data={
                    "baseline_calls": baseline.total_calls,
                    "current_calls": stat.total_calls,
                },
            )],
        )

    # --- Intent patterns ---

    def to_intent_patterns(
        self,
        anomalies: List[SpecAnomaly],
        stats: List[SpecUsageStats],
    ) -> List[IntentPattern]:
        """One intent pattern per anomaly, confidence clamped to [0, 1]."""
        stats_by_key = {s.operation.key: s for s in stats}
        patterns = []
        for anomaly in anomalies:
            stat = stats_by_key.get(anomaly.operation.key)
            observed = anomaly.observed_value or 0.0
            threshold = anomaly.threshold or 1.0
            score = max(0.0, min(1.0, observed / threshold))
            patterns.append(IntentPattern(
                id=str(uuid4()),
                type=_METRIC_TO_INTENT.get(anomaly.metric, IntentType.SCHEMA_MISMATCH),
                description=anomaly.description,
                operation=anomaly.operation,
                confidence=PatternConfidence(
                    score=score,
                    sample_size=stat.total_calls if stat else 0,
                ),
                metadata={
                    "observed_value": anomaly.observed_value,
                    "threshold": anomaly.threshold,
                    "severity": anomaly.severity.value,
                },
                evidence=list(anomaly.evidence),
            ))
        return patterns

    # --- Optimization hints (reporting only) ---

    def suggest_optimizations(
        self,
        stats: List[SpecUsageStats],
        anomalies: List[SpecAnomaly],
        lifecycle_stage: Optional[LifecycleStage] = None,
    ) -> List[OptimizationHint]:
        """Category-specific hints for every (stat, anomaly) pair on one operation."""
        anomalies_by_key: Dict[str, List[SpecAnomaly]] = {}
        for anomaly in anomalies:
            anomalies_by_key.setdefault(anomaly.operation.key, []).append(anomaly)

        hints = []
        for stat in stats:
            for anomaly in anomalies_by_key.get(stat.operation.key, []):
                hint = self._hint_for(stat, anomaly)
                if hint:
                    hints.append(self._apply_lifecycle(hint, lifecycle_stage))
        return hints

    def _hint_for(
        self, stat: SpecUsageStats, anomaly: SpecAnomaly
    ) -> Optional[OptimizationHint]:
        if anomaly.metric == AnomalyMetric.LATENCY:
            return OptimizationHint(
                operation=stat.operation,
                category=OptimizationCategory.PERFORMANCE,
                summary="Latency regression detected",
                justification=f"P99 latency at {stat.p99_latency_ms}ms",
                recommended_actions=[
                    "Add batching or caching layer",
                    "Replay golden tests to capture slow inputs",
                ],
            )
        if anomaly.metric == AnomalyMetric.ERROR_RATE:
            top_error = self._dominant_error(stat)
            return OptimizationHint(
                operation=stat.operation,
                category=OptimizationCategory.ERROR_HANDLING,
                summary="Error spike detected",
                justification=(
                    f"Dominant error code {top_error}" if top_error
                    else "Increase in failures"
                ),
                recommended_actions=[
                    "Generate regression spec from failing payloads",
                    "Add policy guardrails before rollout",
                ],
            )
        if anomaly.metric == AnomalyMetric.THROUGHPUT:
            return OptimizationHint(
                operation=stat.operation,
                category=OptimizationCategory.PERFORMANCE,
                summary="Throughput drop detected",
                justification="Significant traffic reduction relative to baseline",
                recommended_actions=[
                    "Validate routing + feature flag bucketing",
                    "Backfill spec variant to rehydrate demand",
                ],
            )
        return None

    def _dominant_error(self, stat: SpecUsageStats) -> Optional[str]:
        if not stat.top_errors:
            return None
        # Ties resolve to the first-counted code
        return max(stat.top_errors.items(), key=lambda item: item[1])[0]

    def _apply_lifecycle(
        self, hint: OptimizationHint, stage: Optional[LifecycleStage]
    ) -> OptimizationHint:
        if stage is None:
            return hint
        advice = _LIFECYCLE_ADVICE[stage_band(stage)].get(hint.category)
        if not advice:
            return hint.model_copy(update={"lifecycle_stage": stage})
        notes, supplemental = advice
        return hint.model_copy(update={
            "lifecycle_stage": stage,
            "lifecycle_notes": notes,
            "recommended_actions": _dedupe(hint.recommended_actions + supplemental),
        })
