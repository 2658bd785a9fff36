"""Tests for the Suggestion Orchestrator."""

import asyncio
from datetime import datetime, timezone

import pytest

from spec_evolution.approval.orchestrator import APPROVAL_TOOL_NAME, SpecSuggestionOrchestrator
from spec_evolution.errors import (
    ConfigurationError,
    InvalidTransitionError,
    SuggestionNotFoundError,
)
from spec_evolution.models.anomaly import IntentPattern, IntentType, PatternConfidence
from spec_evolution.models.boundary import AgentSession
from spec_evolution.models.operation import OperationCoordinate
from spec_evolution.models.suggestion import (
    ChangeType,
    SpecSuggestion,
    SpecSuggestionProposal,
    SuggestionPriority,
    SuggestionStatus,
)
from spec_evolution.persistence.repository import InMemorySuggestionRepository

SESSION = AgentSession(session_id="sess_1", agent_id="evolution-agent", tenant_id="acme")


class RecordingApproval:
    def __init__(self):
        self.requests = []

    async def request_approval(self, request):
        self.requests.append(request)


class RecordingWriter:
    def __init__(self):
        self.written = []

    async def write(self, suggestion):
        self.written.append(suggestion)
        return f"memory://{suggestion.id}"


class FlakyWriter(RecordingWriter):
    """Fails the first write, then records like RecordingWriter."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def write(self, suggestion):
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        return await super().write(suggestion)


def _make_suggestion(
    suggestion_id: str = "sugg_1",
    operation_name: str = "search.query",
    status: SuggestionStatus = SuggestionStatus.PENDING,
) -> SpecSuggestion:
    target = OperationCoordinate(name=operation_name, version=1)
    return SpecSuggestion(
        id=suggestion_id,
        intent=IntentPattern(
            id=f"intent_{suggestion_id}",
            type=IntentType.ERROR_SPIKE,
            description="Error rate spike",
            operation=target,
            confidence=PatternConfidence(score=1.0, sample_size=60),
        ),
        target=target,
        proposal=SpecSuggestionProposal(
            summary=f"Stabilize {operation_name}",
            rationale="Error rate spike",
            change_type=ChangeType.POLICY_UPDATE,
        ),
        confidence=1.0,
        priority=SuggestionPriority.HIGH,
        created_at=datetime.now(timezone.utc),
        created_by="spec-generator",
        status=status,
    )


class TestSubmit:
    def setup_method(self):
        self.repository = InMemorySuggestionRepository()
        self.approval = RecordingApproval()
        self.orchestrator = SpecSuggestionOrchestrator(self.repository, approval=self.approval)

    def test_persists_and_requests_approval(self):
        suggestion = _make_suggestion()
        returned = asyncio.run(self.orchestrator.submit(suggestion, session=SESSION))

        assert returned == suggestion
        assert asyncio.run(self.repository.get_by_id("sugg_1")) == suggestion
        assert len(self.approval.requests) == 1

        request = self.approval.requests[0]
        assert request.session_id == "sess_1"
        assert request.agent_id == "evolution-agent"
        assert request.tenant_id == "acme"
        assert request.tool_name == APPROVAL_TOOL_NAME
        assert request.tool_call_id == "suggestion_sugg_1"
        assert request.tool_args == {"suggestion_id": "sugg_1"}
        assert request.reason == "Stabilize search.query"
        assert request.payload["id"] == "sugg_1"
        assert request.payload["status"] == "pending"

    def test_explicit_reason(self):
        asyncio.run(self.orchestrator.submit(
            _make_suggestion(), session=SESSION, reason="Timeouts on search",
        ))
        assert self.approval.requests[0].reason == "Timeouts on search"

    def test_without_session(self):
        asyncio.run(self.orchestrator.submit(_make_suggestion()))
        assert self.approval.requests == []
        assert asyncio.run(self.repository.get_by_id("sugg_1")) is not None

    def test_without_approval_collaborator(self):
        orchestrator = SpecSuggestionOrchestrator(self.repository)
        asyncio.run(orchestrator.submit(_make_suggestion(), session=SESSION))
        assert asyncio.run(self.repository.get_by_id("sugg_1")) is not None

    def test_auto_approved_skips_request(self):
        asyncio.run(self.orchestrator.submit(
            _make_suggestion(status=SuggestionStatus.APPROVED), session=SESSION,
        ))
        assert self.approval.requests == []

    def test_does_not_block_on_decision(self):
        asyncio.run(self.orchestrator.submit(_make_suggestion(), session=SESSION))
        stored = asyncio.run(self.repository.get_by_id("sugg_1"))
        assert stored.status == SuggestionStatus.PENDING


class TestDecide:
    def setup_method(self):
        self.repository = InMemorySuggestionRepository()
        self.writer = RecordingWriter()
        self.orchestrator = SpecSuggestionOrchestrator(self.repository, writer=self.writer)
        asyncio.run(self.orchestrator.submit(_make_suggestion()))

    def test_approve_writes_stamped_suggestion(self):
        approved = asyncio.run(self.orchestrator.approve("sugg_1", "alice", notes="lgtm"))

        assert approved.status == SuggestionStatus.APPROVED
        assert approved.approvals.reviewer == "alice"
        assert approved.approvals.notes == "lgtm"
        assert approved.approvals.decided_at is not None
        assert self.writer.written == [approved]

    def test_reject_does_not_write(self):
        rejected = asyncio.run(self.orchestrator.reject("sugg_1", "bob", notes="too risky"))

        assert rejected.status == SuggestionStatus.REJECTED
        assert rejected.approvals.reviewer == "bob"
        assert self.writer.written == []

    def test_unknown_suggestion(self):
        with pytest.raises(SuggestionNotFoundError):
            asyncio.run(self.orchestrator.approve("nope", "alice"))
        with pytest.raises(SuggestionNotFoundError):
            asyncio.run(self.orchestrator.reject("nope", "alice"))

    def test_second_decision_rejected(self):
        asyncio.run(self.orchestrator.approve("sugg_1", "alice"))
        with pytest.raises(InvalidTransitionError):
            asyncio.run(self.orchestrator.reject("sugg_1", "bob"))

        assert len(self.writer.written) == 1
        stored = asyncio.run(self.repository.get_by_id("sugg_1"))
        assert stored.status == SuggestionStatus.APPROVED
        assert stored.approvals.reviewer == "alice"

    def test_approve_without_writer(self):
        orchestrator = SpecSuggestionOrchestrator(self.repository)
        approved = asyncio.run(orchestrator.approve("sugg_1", "alice"))
        assert approved.status == SuggestionStatus.APPROVED


class TestMaterialize:
    def setup_method(self):
        self.repository = InMemorySuggestionRepository()
        self.writer = FlakyWriter()
        self.orchestrator = SpecSuggestionOrchestrator(self.repository, writer=self.writer)
        asyncio.run(self.orchestrator.submit(_make_suggestion()))

    def test_recovers_from_failed_write_during_approve(self):
        with pytest.raises(OSError, match="disk full"):
            asyncio.run(self.orchestrator.approve("sugg_1", "alice"))

        stored = asyncio.run(self.repository.get_by_id("sugg_1"))
        assert stored.status == SuggestionStatus.APPROVED
        assert self.writer.written == []
        with pytest.raises(InvalidTransitionError):
            asyncio.run(self.orchestrator.approve("sugg_1", "alice"))

        location = asyncio.run(self.orchestrator.materialize("sugg_1"))

        assert location == "memory://sugg_1"
        assert [s.id for s in self.writer.written] == ["sugg_1"]
        assert self.writer.written[0].approvals.reviewer == "alice"

    def test_pending_suggestion_rejected(self):
        with pytest.raises(InvalidTransitionError):
            asyncio.run(self.orchestrator.materialize("sugg_1"))

    def test_rejected_suggestion_rejected(self):
        asyncio.run(self.orchestrator.reject("sugg_1", "bob"))
        with pytest.raises(InvalidTransitionError):
            asyncio.run(self.orchestrator.materialize("sugg_1"))

    def test_unknown_suggestion(self):
        with pytest.raises(SuggestionNotFoundError):
            asyncio.run(self.orchestrator.materialize("nope"))

    def test_requires_writer(self):
        orchestrator = SpecSuggestionOrchestrator(self.repository)
        with pytest.raises(ConfigurationError):
            asyncio.run(orchestrator.materialize("sugg_1"))


class TestList:
    def setup_method(self):
        self.orchestrator = SpecSuggestionOrchestrator(InMemorySuggestionRepository())
        for suggestion in [
            _make_suggestion("a", "search.query"),
            _make_suggestion("b", "orders.create"),
            _make_suggestion("c", "search.query"),
        ]:
            asyncio.run(self.orchestrator.submit(suggestion))
        asyncio.run(self.orchestrator.approve("c", "alice"))

    def test_list_all(self):
        assert [s.id for s in asyncio.run(self.orchestrator.list())] == ["a", "b", "c"]

    def test_filter_by_status(self):
        listed = asyncio.run(self.orchestrator.list(status=SuggestionStatus.PENDING))
        assert [s.id for s in listed] == ["a", "b"]

    def test_filter_by_operation(self):
        listed = asyncio.run(self.orchestrator.list(operation_name="search.query"))
        assert [s.id for s in listed] == ["a", "c"]

    def test_combined(self):
        listed = asyncio.run(self.orchestrator.list(
            status=SuggestionStatus.APPROVED, operation_name="search.query",
        ))
        assert [s.id for s in listed] == ["c"]
