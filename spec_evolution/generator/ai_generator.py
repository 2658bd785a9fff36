"""
AI Spec Generator — model-backed suggestion synthesis.

Issues one structured-generation request per intent pattern. The model is
constrained to the AIGeneratedProposal shape; the generator owns prompt
construction and the mapping from model output to SpecSuggestion.

Batch mode bounds in-flight model calls: intents are split into chunks of
`max_concurrent`, chunks run strictly in order, items within a chunk run
concurrently. A failure aborts the batch and cancels the rest of its chunk.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field

from spec_evolution.generator.spec_generator import initial_status
from spec_evolution.models.anomaly import IntentPattern, IntentType
from spec_evolution.models.config import EvolutionConfig
from spec_evolution.models.suggestion import (
    ChangeType,
    SpecSuggestion,
    SpecSuggestionProposal,
    SuggestionPriority,
)

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

DEFAULT_SYSTEM_PROMPT = """You are a contract evolution expert. Your role is to analyze telemetry data, anomalies, and usage patterns to suggest improvements to API contracts and specifications.

When generating suggestions:
1. Be specific and actionable
2. Consider backwards compatibility
3. Prioritize stability and reliability
4. Explain the rationale clearly
5. Estimate impact and risk accurately"""


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AIGeneratedProposal(BaseModel):
    """Fixed output schema the model must fill."""

    summary: str = Field(description="Brief summary of the proposed change")
    rationale: str = Field(description="Detailed explanation of why this change is needed")
    change_type: ChangeType = Field(description="Type of change being proposed")
    recommended_actions: List[str] = Field(
        description="List of specific actions to implement the change"
    )
    estimated_impact: Level = Field(description="Estimated impact of implementing this change")
    risk_level: Level = Field(description="Risk level associated with this change")
    diff: Optional[str] = Field(
        default=None, description="Optional diff or code snippet showing the change"
    )


class StructuredModel(Protocol):
    """Protocol for the language model. Returns a validated instance of `schema`."""

    async def generate(self, system: str, prompt: str, schema: Type[SchemaT]) -> SchemaT: ...


_IMPACT_SCORES = {Level.HIGH: 1.0, Level.MEDIUM: 0.5, Level.LOW: 0.25}

_URGENCY = {IntentType.ERROR_SPIKE: 0.3, IntentType.LATENCY_REGRESSION: 0.2}


class AISpecGenerator:
    """Generates and enhances suggestions through a StructuredModel."""

    def __init__(
        self,
        model: StructuredModel,
        config: Optional[EvolutionConfig] = None,
        system_prompt: Optional[str] = None,
    ):
        self.model = model
        self.config = config or EvolutionConfig()
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    async def generate_from_intent(
        self,
        intent: IntentPattern,
        additional_context: Optional[str] = None,
        existing_spec: Optional[dict] = None,
    ) -> SpecSuggestion:
        """Generate a suggestion for one intent pattern."""
        prompt = self.build_prompt(intent, additional_context, existing_spec)
        logger.debug("Requesting proposal for intent %s (%d chars)", intent.id, len(prompt))
        output = await self.model.generate(self.system_prompt, prompt, AIGeneratedProposal)
        suggestion = self._build_suggestion(intent, output)
        logger.info(
            "AI suggestion %s for intent %s: %s",
            suggestion.id, intent.id, suggestion.priority.value,
        )
        return suggestion

    async def generate_batch(
        self, intents: List[IntentPattern], max_concurrent: int = 3
    ) -> List[SpecSuggestion]:
        """Generate suggestions in order, at most `max_concurrent` calls in flight."""
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        results: List[SpecSuggestion] = []
        for start in range(0, len(intents), max_concurrent):
            chunk = intents[start:start + max_concurrent]
            tasks = [
                asyncio.ensure_future(self.generate_from_intent(intent)) for intent in chunk
            ]
            try:
                results.extend(await asyncio.gather(*tasks))
            except BaseException:
                # First failure aborts the batch; siblings still in flight are cancelled
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        return results

    async def enhance_suggestion(self, suggestion: SpecSuggestion) -> SpecSuggestion:
        """Re-prompt with an existing suggestion and return an improved copy."""
        evidence = "\n".join(
            f"- {e.type.value}: {e.description}" for e in suggestion.evidence
        )
        prompt = "\n".join([
            "Review and enhance this spec suggestion:",
            "",
            f"Intent: {suggestion.intent.type.value} - {suggestion.intent.description}",
            f"Current Summary: {suggestion.proposal.summary}",
            f"Current Rationale: {suggestion.proposal.rationale}",
            "",
            "Evidence:",
            evidence,
            "",
            "Please provide an improved version with more specific recommendations.",
        ])
        output = await self.model.generate(self.system_prompt, prompt, AIGeneratedProposal)

        metadata = dict(suggestion.proposal.metadata or {})
        metadata.update({
            "ai_enhanced": True,
            "recommended_actions": output.recommended_actions,
            "estimated_impact": output.estimated_impact.value,
            "risk_level": output.risk_level.value,
        })
        proposal = suggestion.proposal.model_copy(update={
            "summary": output.summary,
            "rationale": output.rationale,
            "change_type": output.change_type,
            "diff": output.diff,
            "metadata": metadata,
        })
        return suggestion.model_copy(update={"proposal": proposal})

    def build_prompt(
        self,
        intent: IntentPattern,
        additional_context: Optional[str] = None,
        existing_spec: Optional[dict] = None,
    ) -> str:
        """Deterministic prompt for an intent pattern."""
        parts = [
            "Analyze this intent pattern and generate a spec suggestion:",
            "",
            f"Intent Type: {intent.type.value}",
            f"Description: {intent.description}",
            f"Confidence: {intent.confidence.score * 100:.0f}% "
            f"(sample size: {intent.confidence.sample_size})",
        ]

        if intent.operation:
            parts.append(f"Operation: {intent.operation.name} v{intent.operation.version}")

        if intent.evidence:
            parts.extend(["", "Evidence:"])
            for evidence in intent.evidence:
                parts.append(f"- [{evidence.type.value}] {evidence.description}")

        if intent.metadata:
            parts.extend([
                "", f"Metadata: {json.dumps(intent.metadata, indent=2, default=str)}",
            ])

        if existing_spec:
            parts.extend([
                "",
                "Existing Spec:",
                "```json",
                json.dumps(existing_spec, indent=2, default=str),
                "```",
            ])

        if additional_context:
            parts.extend(["", "Additional Context:", additional_context])

        return "\n".join(parts)

    def _build_suggestion(
        self, intent: IntentPattern, output: AIGeneratedProposal
    ) -> SpecSuggestion:
        proposal = SpecSuggestionProposal(
            summary=output.summary,
            rationale=output.rationale,
            change_type=output.change_type,
            diff=output.diff,
            metadata={
                "ai_generated": True,
                "recommended_actions": output.recommended_actions,
                "estimated_impact": output.estimated_impact.value,
                "risk_level": output.risk_level.value,
            },
        )
        confidence = intent.confidence.score
        return SpecSuggestion(
            id=str(uuid4()),
            intent=intent,
            target=intent.operation,
            proposal=proposal,
            confidence=confidence,
            priority=self.calculate_priority(intent, output),
            created_at=datetime.now(timezone.utc),
            created_by="ai-spec-generator",
            status=initial_status(confidence, self.config),
            evidence=list(intent.evidence),
            tags=["ai-generated", intent.type.value],
        )

    def calculate_priority(
        self, intent: IntentPattern, output: AIGeneratedProposal
    ) -> SuggestionPriority:
        """Blend model impact, intent confidence, and intent urgency."""
        combined = (
            _IMPACT_SCORES[output.estimated_impact] * 0.4
            + intent.confidence.score * 0.4
            + _URGENCY.get(intent.type, 0.0)
        )
        if combined >= 0.7:
            return SuggestionPriority.HIGH
        if combined >= 0.4:
            return SuggestionPriority.MEDIUM
        return SuggestionPriority.LOW
