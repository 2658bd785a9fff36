"""
Suggestion Orchestrator — the approval lifecycle of spec suggestions.

States:
  PENDING → (APPROVED | REJECTED)      both terminal

Behavioral Contract:
- submit() persists and, given a session and an approval collaborator,
  fires an out-of-band approval request; the decision arrives later via
  approve()/reject(), never through a callback
- approve() records the decision, then hands the stamped suggestion to the
  writer when one is configured; if that write fails the decision stands and
  materialize() retries the write
- reject() records the decision; nothing is written
- Terminality is enforced by the repository; its errors propagate
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from spec_evolution.errors import (
    ConfigurationError,
    InvalidTransitionError,
    SuggestionNotFoundError,
)
from spec_evolution.models.boundary import AgentSession, ApprovalRequest
from spec_evolution.models.suggestion import (
    SpecSuggestion,
    SuggestionFilters,
    SuggestionStatus,
)
from spec_evolution.persistence.repository import SuggestionRepository
from spec_evolution.persistence.writer import SuggestionWriter

logger = logging.getLogger(__name__)

APPROVAL_TOOL_NAME = "evolution.apply_suggestion"


class ApprovalRequester(Protocol):
    """Protocol for the approval transport (notifications, tickets, ...)."""

    async def request_approval(self, request: ApprovalRequest) -> None: ...


class SpecSuggestionOrchestrator:
    """Owns submit/approve/reject/list over injected collaborators."""

    def __init__(
        self,
        repository: SuggestionRepository,
        approval: Optional[ApprovalRequester] = None,
        writer: Optional[SuggestionWriter] = None,
    ):
        self.repository = repository
        self.approval = approval
        self.writer = writer

    async def submit(
        self,
        suggestion: SpecSuggestion,
        session: Optional[AgentSession] = None,
        reason: Optional[str] = None,
    ) -> SpecSuggestion:
        """Persist a suggestion and request human approval when possible."""
        await self.repository.create(suggestion)

        if session is None or self.approval is None:
            return suggestion

        if suggestion.status != SuggestionStatus.PENDING:
            # Auto-approved at creation; nothing to ask a human
            logger.info(
                "Suggestion %s submitted as %s; approval request skipped",
                suggestion.id, suggestion.status.value,
            )
            return suggestion

        await self.approval.request_approval(ApprovalRequest(
            session_id=session.session_id,
            agent_id=session.agent_id,
            tenant_id=session.tenant_id,
            tool_name=APPROVAL_TOOL_NAME,
            tool_call_id=f"suggestion_{suggestion.id}",
            tool_args={"suggestion_id": suggestion.id},
            reason=reason or suggestion.proposal.summary,
            payload=suggestion.model_dump(mode="json"),
        ))
        logger.info("Approval requested for suggestion %s", suggestion.id)
        return suggestion

    async def approve(
        self, suggestion_id: str, reviewer: str, notes: Optional[str] = None
    ) -> SpecSuggestion:
        """Human approves a suggestion; the writer materializes it if configured."""
        decided = await self._decide(suggestion_id, SuggestionStatus.APPROVED, reviewer, notes)
        if self.writer is not None:
            await self._write(decided)
        return decided

    async def materialize(self, suggestion_id: str) -> str:
        """
        Write an approved suggestion through the configured writer.

        Recovers from a writer failure during approve(): the decision is
        already recorded, so the write is retried here rather than by
        approving again.
        """
        if self.writer is None:
            raise ConfigurationError("Orchestrator has no writer configured.")
        suggestion = await self.repository.get_by_id(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(suggestion_id)
        if suggestion.status != SuggestionStatus.APPROVED:
            raise InvalidTransitionError(
                suggestion_id, suggestion.status.value, "materialized"
            )
        return await self._write(suggestion)

    async def reject(
        self, suggestion_id: str, reviewer: str, notes: Optional[str] = None
    ) -> SpecSuggestion:
        """Human rejects a suggestion."""
        return await self._decide(suggestion_id, SuggestionStatus.REJECTED, reviewer, notes)

    async def list(
        self,
        status: Optional[SuggestionStatus] = None,
        operation_name: Optional[str] = None,
    ) -> List[SpecSuggestion]:
        return await self.repository.list(
            SuggestionFilters(status=status, operation_name=operation_name)
        )

    async def _write(self, suggestion: SpecSuggestion) -> str:
        location = await self.writer.write(suggestion)
        logger.info("Suggestion %s materialized at %s", suggestion.id, location)
        return location

    async def _decide(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        reviewer: str,
        notes: Optional[str],
    ) -> SpecSuggestion:
        suggestion = await self.repository.get_by_id(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(suggestion_id)

        decided = await self.repository.update_status(
            suggestion_id,
            status,
            reviewer=reviewer,
            notes=notes,
            decided_at=datetime.now(timezone.utc),
        )
        logger.info("Suggestion %s %s by %s", suggestion_id, status.value, reviewer)
        return decided
