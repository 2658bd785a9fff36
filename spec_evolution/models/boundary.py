"""Shapes exchanged with external collaborators (analytics, approvals)."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DateRange(BaseModel):
    """Half-open time window [from, to). Either bound may be omitted."""

    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None


class AnalyticsQueryResult(BaseModel):
    """Tabular result from the analytics backend: column names plus row arrays."""

    columns: List[str] = []
    results: List[Any] = []


class AgentSession(BaseModel):
    """The caller's session, used to address an external approval request."""

    session_id: str
    agent_id: str
    tenant_id: Optional[str] = None


class ApprovalRequest(BaseModel):
    """Out-of-band approval request. The decision comes back via approve/reject."""

    session_id: str
    agent_id: str
    tenant_id: Optional[str] = None
    tool_name: str
    tool_call_id: str
    tool_args: dict
    reason: str
    payload: dict
