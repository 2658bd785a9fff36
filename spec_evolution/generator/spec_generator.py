"""
Spec Generator — deterministic, template-based suggestion synthesis.

Turns an IntentPattern into a SpecSuggestion using fixed verb and change-type
tables, with no model calls. Also produces spec variants by merging a patch
onto an existing spec, and validates suggestions against EvolutionConfig.

The Approval Rule: a suggestion is created pending unless auto-approval is
configured, its confidence meets the threshold, and approval is not required.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel

from spec_evolution.errors import ConfigurationError, SpecNotFoundError
from spec_evolution.models.anomaly import IntentPattern, IntentType
from spec_evolution.models.config import EvolutionConfig
from spec_evolution.models.operation import OperationCoordinate
from spec_evolution.models.suggestion import (
    ChangeType,
    SpecSuggestion,
    SpecSuggestionProposal,
    SuggestionPriority,
    SuggestionStatus,
)

logger = logging.getLogger(__name__)

SpecLookup = Callable[[OperationCoordinate], Optional[dict]]

_VERBS: Dict[IntentType, str] = {
    IntentType.ERROR_SPIKE: "Stabilize",
    IntentType.LATENCY_REGRESSION: "Optimize",
    IntentType.MISSING_OPERATION: "Introduce",
    IntentType.THROUGHPUT_DROP: "Rebalance",
}

_CHANGE_TYPES: Dict[IntentType, ChangeType] = {
    IntentType.MISSING_OPERATION: ChangeType.NEW_SPEC,
    IntentType.SCHEMA_MISMATCH: ChangeType.SCHEMA_UPDATE,
    IntentType.ERROR_SPIKE: ChangeType.POLICY_UPDATE,
}

# Spec sections merged key-by-key in a variant; other top-level keys are replaced
MERGEABLE_SECTIONS = ("meta", "io", "policy", "telemetry", "side_effects")

_PRIORITY_RANK = {
    SuggestionPriority.HIGH: 2,
    SuggestionPriority.MEDIUM: 1,
    SuggestionPriority.LOW: 0,
}


class ValidationResult(BaseModel):
    """Outcome of validate_suggestion. Never raised."""

    ok: bool
    reasons: List[str] = []


def merge_spec(base: dict, patch: dict) -> dict:
    """Shallow per-section merge of patch onto base."""
    merged = dict(base)
    for key, value in patch.items():
        current = merged.get(key)
        if key in MERGEABLE_SECTIONS and isinstance(current, dict) and isinstance(value, dict):
            merged[key] = {**current, **value}
        else:
            merged[key] = value
    return merged


def initial_status(confidence: float, config: EvolutionConfig) -> SuggestionStatus:
    if config.allows_auto_approval(confidence):
        return SuggestionStatus.APPROVED
    return SuggestionStatus.PENDING


class SpecGenerator:
    """
    Rule-based suggestion generator.
    Same intent and options always yield the same proposal text.
    """

    def __init__(
        self,
        config: Optional[EvolutionConfig] = None,
        get_spec: Optional[SpecLookup] = None,
        created_by: str = "spec-generator",
    ):
        self.config = config or EvolutionConfig()
        self.get_spec = get_spec
        self.created_by = created_by

    def generate_from_intent(
        self,
        intent: IntentPattern,
        summary: Optional[str] = None,
        rationale: Optional[str] = None,
        change_type: Optional[ChangeType] = None,
        kind: Optional[str] = None,
        spec: Optional[dict] = None,
        diff: Optional[str] = None,
        metadata: Optional[dict] = None,
        tags: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> SpecSuggestion:
        """Build a suggestion from an intent pattern."""
        confidence = intent.confidence.score
        proposal = SpecSuggestionProposal(
            summary=summary or self._build_summary(intent),
            rationale=rationale or self._build_rationale(intent),
            change_type=change_type or self._infer_change_type(intent),
            kind=kind,
            spec=spec,
            diff=diff,
            metadata=metadata,
        )

        suggestion = SpecSuggestion(
            id=str(uuid4()),
            intent=intent,
            target=intent.operation,
            proposal=proposal,
            confidence=confidence,
            priority=self._derive_priority(intent),
            created_at=datetime.now(timezone.utc),
            created_by=created_by or self.created_by,
            status=initial_status(confidence, self.config),
            evidence=list(intent.evidence),
            tags=tags if tags is not None else [intent.type.value],
        )
        logger.debug(
            "Generated suggestion %s for intent %s (%s, %s)",
            suggestion.id, intent.id, suggestion.priority.value, suggestion.status.value,
        )
        return suggestion

    def generate_variant(
        self,
        operation: OperationCoordinate,
        patch: dict,
        intent: IntentPattern,
        **options,
    ) -> SpecSuggestion:
        """Merge a patch onto the current spec of an operation and propose it."""
        if self.get_spec is None:
            raise ConfigurationError(
                "SpecGenerator requires a get_spec lookup to generate variants."
            )
        base = self.get_spec(operation)
        if base is None:
            raise SpecNotFoundError(operation)

        options.setdefault("change_type", ChangeType.REVISION)
        return self.generate_from_intent(intent, spec=merge_spec(base, patch), **options)

    def validate_suggestion(
        self,
        suggestion: SpecSuggestion,
        config: Optional[EvolutionConfig] = None,
    ) -> ValidationResult:
        """Collect every policy violation instead of failing on the first."""
        config = config or self.config
        reasons = []

        if config.min_confidence is not None and suggestion.confidence < config.min_confidence:
            reasons.append(
                f"Confidence {suggestion.confidence:.2f} is below minimum "
                f"{config.min_confidence:.2f}"
            )
        if config.require_approval and suggestion.status == SuggestionStatus.APPROVED:
            reasons.append("Suggestion cannot be auto-approved when approval is required")

        spec = suggestion.proposal.spec
        if spec is not None:
            meta = spec.get("meta")
            if not isinstance(meta, dict) or not meta.get("key"):
                reasons.append("Proposal spec is missing meta.key")

        if not suggestion.proposal.summary or not suggestion.proposal.summary.strip():
            reasons.append("Proposal summary is required")

        return ValidationResult(ok=not reasons, reasons=reasons)

    def prune_suggestions(
        self,
        suggestions: List[SpecSuggestion],
        config: Optional[EvolutionConfig] = None,
    ) -> List[SpecSuggestion]:
        """
        Keep at most max_suggestions_per_operation per target, preferring
        higher priority then higher confidence. Survivors keep input order.
        """
        limit = (config or self.config).max_suggestions_per_operation
        if not limit:
            return list(suggestions)

        by_target: Dict[Optional[str], List[Tuple[int, SpecSuggestion]]] = {}
        for index, suggestion in enumerate(suggestions):
            key = suggestion.target.key if suggestion.target else None
            by_target.setdefault(key, []).append((index, suggestion))

        keep = set()
        for key, entries in by_target.items():
            if key is None:
                keep.update(index for index, _ in entries)   # Untargeted are never pruned
                continue
            ranked = sorted(
                entries,
                key=lambda e: (_PRIORITY_RANK[e[1].priority], e[1].confidence),
                reverse=True,
            )
            keep.update(index for index, _ in ranked[:limit])
            if len(entries) > limit:
                logger.info("Pruned %d suggestions for %s", len(entries) - limit, key)

        return [s for i, s in enumerate(suggestions) if i in keep]

    # --- Templates ---

    def _build_summary(self, intent: IntentPattern) -> str:
        verb = _VERBS.get(intent.type, "Adjust")
        subject = intent.operation.name if intent.operation else "operation"
        return f"{verb} {subject}"

    def _build_rationale(self, intent: IntentPattern) -> str:
        metadata = intent.metadata or {}
        observed = metadata.get("observed_value")
        if observed is None:
            return intent.description
        clause = f"Observed value {observed:.2f}" if isinstance(observed, float) else (
            f"Observed value {observed}"
        )
        threshold = metadata.get("threshold")
        if threshold is not None:
            clause = f"{clause} against threshold {threshold}"
        return f"{intent.description}. {clause}."

    def _infer_change_type(self, intent: IntentPattern) -> ChangeType:
        return _CHANGE_TYPES.get(intent.type, ChangeType.REVISION)

    def _derive_priority(self, intent: IntentPattern) -> SuggestionPriority:
        score = intent.confidence.score
        if intent.type == IntentType.ERROR_SPIKE or score >= 0.8:
            return SuggestionPriority.HIGH
        if score >= 0.5:
            return SuggestionPriority.MEDIUM
        return SuggestionPriority.LOW
