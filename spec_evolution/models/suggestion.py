"""Spec Suggestion — the unit of work in the approval system."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from spec_evolution.models.anomaly import IntentPattern, SuggestionEvidence
from spec_evolution.models.operation import OperationCoordinate


class ChangeType(str, Enum):
    NEW_SPEC = "new-spec"
    REVISION = "revision"
    POLICY_UPDATE = "policy-update"
    SCHEMA_UPDATE = "schema-update"


class SuggestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"     # Terminal
    REJECTED = "rejected"     # Terminal

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class SpecSuggestionProposal(BaseModel):
    """What the suggestion proposes to change."""

    summary: str
    rationale: str
    change_type: ChangeType
    kind: Optional[str] = None
    spec: Optional[dict] = None             # Full replacement/variant of the contract
    diff: Optional[str] = None              # Human-readable change description
    metadata: Optional[dict] = None


class SuggestionApproval(BaseModel):
    """The human decision recorded on a suggestion."""

    status: SuggestionStatus
    reviewer: Optional[str] = None
    notes: Optional[str] = None
    decided_at: datetime


class SpecSuggestion(BaseModel):
    """
    A proposed change to an operation's contract.

    Only `status` and `approvals` change after creation. Once `status` is
    approved or rejected the suggestion is decided and stays that way.
    """

    id: str
    intent: IntentPattern
    target: Optional[OperationCoordinate] = None
    proposal: SpecSuggestionProposal
    confidence: float = Field(ge=0.0, le=1.0)
    priority: SuggestionPriority
    created_at: datetime
    created_by: str
    status: SuggestionStatus = SuggestionStatus.PENDING
    evidence: List[SuggestionEvidence] = []
    tags: Optional[List[str]] = None
    approvals: Optional[SuggestionApproval] = None


class SuggestionFilters(BaseModel):
    status: Optional[SuggestionStatus] = None
    operation_name: Optional[str] = None

    def matches(self, suggestion: SpecSuggestion) -> bool:
        if self.status is not None and suggestion.status != self.status:
            return False
        if self.operation_name is not None:
            if suggestion.target is None or suggestion.target.name != self.operation_name:
                return False
        return True
