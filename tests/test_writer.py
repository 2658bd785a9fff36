"""Tests for the filesystem suggestion writer."""

import asyncio
import json
import threading
from datetime import datetime, timezone

from spec_evolution.models.anomaly import IntentPattern, IntentType, PatternConfidence
from spec_evolution.models.operation import OperationCoordinate
from spec_evolution.models.suggestion import (
    ChangeType,
    SpecSuggestion,
    SpecSuggestionProposal,
    SuggestionApproval,
    SuggestionPriority,
    SuggestionStatus,
)
from spec_evolution.persistence.writer import FileSystemSuggestionWriter, suggestion_filename


def _make_suggestion(
    target: OperationCoordinate = OperationCoordinate(name="orders.create", version=3),
    spec: dict = None,
    intent_id: str = "intent_1",
) -> SpecSuggestion:
    decided_at = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    return SpecSuggestion(
        id="sugg_1",
        intent=IntentPattern(
            id=intent_id,
            type=IntentType.ERROR_SPIKE,
            description="Error rate spike",
            operation=target,
            confidence=PatternConfidence(score=1.0, sample_size=60),
        ),
        target=target,
        proposal=SpecSuggestionProposal(
            summary="Stabilize orders.create",
            rationale="Error rate spike",
            change_type=ChangeType.POLICY_UPDATE,
            spec=spec,
        ),
        confidence=1.0,
        priority=SuggestionPriority.HIGH,
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        created_by="spec-generator",
        status=SuggestionStatus.APPROVED,
        approvals=SuggestionApproval(
            status=SuggestionStatus.APPROVED, reviewer="alice", decided_at=decided_at,
        ),
    )


class TestSuggestionFilename:
    def test_from_target(self):
        assert suggestion_filename(_make_suggestion()) == "orders.create.v3.suggestion.json"

    def test_from_intent_id(self):
        suggestion = _make_suggestion(target=None, intent_id="intent_42")
        assert suggestion_filename(suggestion) == "intent_42.suggestion.json"

    def test_fallback(self):
        suggestion = _make_suggestion(target=None, intent_id="")
        assert suggestion_filename(suggestion) == "next.suggestion.json"

    def test_unsafe_characters_replaced(self):
        target = OperationCoordinate(name="../billing/charge", version=1)
        assert suggestion_filename(_make_suggestion(target=target)) == (
            "billing-charge.v1.suggestion.json"
        )


class TestFileSystemSuggestionWriter:
    def test_writes_document(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path / "suggestions")
        spec = {"meta": {"key": "orders.create", "version": 4}, "policy": {"retries": 3}}

        location = asyncio.run(writer.write(_make_suggestion(spec=spec)))

        assert location == str(tmp_path / "suggestions" / "orders.create.v3.suggestion.json")
        document = json.loads(open(location, encoding="utf-8").read())
        assert document["meta"] == {"key": "orders.create", "version": 4}
        assert document["meta_source"] == "spec"
        assert document["suggestion"]["proposal"]["spec"] == {"policy": {"retries": 3}}
        assert document["suggestion"]["status"] == "approved"
        assert document["suggestion"]["approvals"]["decided_at"] == "2026-03-02T09:30:00Z"
        assert not list((tmp_path / "suggestions").glob("*.tmp"))

    def test_meta_from_target(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path)
        document = writer.serialize(_make_suggestion())
        assert document["meta"] == {"key": "orders.create", "version": "3", "tenant_id": None}
        assert document["meta_source"] == "target"

    def test_no_meta(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path)
        document = writer.serialize(_make_suggestion(target=None))
        assert document["meta"] == {}
        assert document["meta_source"] is None

    def test_read_restores_suggestion(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path)
        spec = {"meta": {"key": "orders.create"}, "io": {"input": "OrderInput"}}
        suggestion = _make_suggestion(spec=spec)

        restored = writer.read(asyncio.run(writer.write(suggestion)))

        assert restored == suggestion
        assert restored.proposal.spec["meta"] == {"key": "orders.create"}

    def test_overwrites_previous_write(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path)
        asyncio.run(writer.write(_make_suggestion()))
        location = asyncio.run(writer.write(_make_suggestion(spec={"meta": {"key": "v2"}})))

        assert len(list(tmp_path.iterdir())) == 1
        assert json.loads(open(location, encoding="utf-8").read())["meta"] == {"key": "v2"}

    def test_serialize_does_not_mutate(self, tmp_path):
        spec = {"meta": {"key": "orders.create"}}
        suggestion = _make_suggestion(spec=spec)
        FileSystemSuggestionWriter(tmp_path).serialize(suggestion)
        assert suggestion.proposal.spec == {"meta": {"key": "orders.create"}}

    def test_file_io_runs_off_event_loop_thread(self, tmp_path):
        writer = FileSystemSuggestionWriter(tmp_path)
        write_file = writer._write_file
        threads = []

        def recording_write_file(path, content):
            threads.append(threading.get_ident())
            write_file(path, content)

        writer._write_file = recording_write_file
        location = asyncio.run(writer.write(_make_suggestion()))

        assert threads and threads[0] != threading.get_ident()
        assert writer.read(location).id == "sugg_1"
