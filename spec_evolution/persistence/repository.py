"""
Suggestion Repository — CRUD plus the status transition for suggestions.

Behavioral Contract (both implementations):
- create() rejects a duplicate id
- update_status() moves pending → approved | rejected and records the decision
- A decided suggestion is final: a second update_status() raises
  InvalidTransitionError and the stored record (including decided_at) is
  left untouched
- Returned suggestions are copies; mutating them does not touch the store
"""

import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from spec_evolution.errors import (
    DuplicateSuggestionError,
    InvalidTransitionError,
    SuggestionNotFoundError,
)
from spec_evolution.models.suggestion import (
    SpecSuggestion,
    SuggestionApproval,
    SuggestionFilters,
    SuggestionStatus,
)


class SuggestionRepository(Protocol):
    """Protocol for suggestion persistence. Pluggable."""

    async def create(self, suggestion: SpecSuggestion) -> SpecSuggestion: ...

    async def get_by_id(self, suggestion_id: str) -> Optional[SpecSuggestion]: ...

    async def update_status(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        reviewer: Optional[str] = None,
        notes: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> SpecSuggestion: ...

    async def list(self, filters: Optional[SuggestionFilters] = None) -> List[SpecSuggestion]: ...


def apply_decision(
    suggestion: SpecSuggestion,
    status: SuggestionStatus,
    reviewer: Optional[str],
    notes: Optional[str],
    decided_at: Optional[datetime],
) -> SpecSuggestion:
    """Return a copy of `suggestion` with the decision stamped on it."""
    if suggestion.status.is_terminal:
        raise InvalidTransitionError(suggestion.id, suggestion.status.value, status.value)
    return suggestion.model_copy(
        deep=True,
        update={
            "status": status,
            "approvals": SuggestionApproval(
                status=status,
                reviewer=reviewer,
                notes=notes,
                decided_at=decided_at or datetime.now(timezone.utc),
            ),
        },
    )


class InMemorySuggestionRepository:
    """
    Dict-backed repository for defaults and tests.
    Not shared across processes.
    """

    def __init__(self):
        self._items: Dict[str, SpecSuggestion] = {}

    async def create(self, suggestion: SpecSuggestion) -> SpecSuggestion:
        if suggestion.id in self._items:
            raise DuplicateSuggestionError(suggestion.id)
        self._items[suggestion.id] = suggestion.model_copy(deep=True)
        return suggestion

    async def get_by_id(self, suggestion_id: str) -> Optional[SpecSuggestion]:
        stored = self._items.get(suggestion_id)
        return stored.model_copy(deep=True) if stored else None

    async def update_status(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        reviewer: Optional[str] = None,
        notes: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> SpecSuggestion:
        stored = self._items.get(suggestion_id)
        if stored is None:
            raise SuggestionNotFoundError(suggestion_id)
        updated = apply_decision(stored, status, reviewer, notes, decided_at)
        self._items[suggestion_id] = updated
        return updated.model_copy(deep=True)

    async def list(self, filters: Optional[SuggestionFilters] = None) -> List[SpecSuggestion]:
        filters = filters or SuggestionFilters()
        return [
            s.model_copy(deep=True) for s in self._items.values()
            if filters.matches(s)
        ]


class SqliteSuggestionRepository:
    """
    Durable repository.
    SQLite, one row per suggestion with the full record as JSON.

    Statements run synchronously on the calling thread, so each call blocks
    the event loop for the duration of one local SQLite statement. Hosts that
    share the loop with latency-sensitive work should put this repository
    behind their own executor or use a server-backed implementation.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the suggestions table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS suggestions (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                operation_name TEXT,
                operation_version TEXT,
                priority TEXT NOT NULL,
                confidence REAL NOT NULL,
                created_at TEXT NOT NULL,
                decided_at TEXT,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_suggestions_status ON suggestions(status)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_suggestions_operation ON suggestions(operation_name)
        """)
        self._conn.commit()

    async def create(self, suggestion: SpecSuggestion) -> SpecSuggestion:
        try:
            self._conn.execute(
                """
                INSERT INTO suggestions (
                    id, status, operation_name, operation_version, priority,
                    confidence, created_at, decided_at, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    suggestion.id,
                    suggestion.status.value,
                    suggestion.target.name if suggestion.target else None,
                    suggestion.target.version if suggestion.target else None,
                    suggestion.priority.value,
                    suggestion.confidence,
                    suggestion.created_at.isoformat(),
                    suggestion.approvals.decided_at.isoformat() if suggestion.approvals else None,
                    suggestion.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateSuggestionError(suggestion.id) from e
        self._conn.commit()
        return suggestion

    async def get_by_id(self, suggestion_id: str) -> Optional[SpecSuggestion]:
        row = self._conn.execute(
            "SELECT record_json FROM suggestions WHERE id = ?", (suggestion_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    async def update_status(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        reviewer: Optional[str] = None,
        notes: Optional[str] = None,
        decided_at: Optional[datetime] = None,
    ) -> SpecSuggestion:
        stored = await self.get_by_id(suggestion_id)
        if stored is None:
            raise SuggestionNotFoundError(suggestion_id)
        updated = apply_decision(stored, status, reviewer, notes, decided_at)

        # Guarded on the pending status so a concurrent decision cannot be overwritten
        cursor = self._conn.execute(
            """
            UPDATE suggestions SET status = ?, decided_at = ?, record_json = ?
            WHERE id = ? AND status = ?
            """,
            (
                updated.status.value,
                updated.approvals.decided_at.isoformat(),
                updated.model_dump_json(),
                suggestion_id,
                SuggestionStatus.PENDING.value,
            ),
        )
        self._conn.commit()
        if cursor.rowcount == 0:
            current = await self.get_by_id(suggestion_id)
            raise InvalidTransitionError(
                suggestion_id,
                current.status.value if current else "unknown",
                status.value,
            )
        return updated

    async def list(self, filters: Optional[SuggestionFilters] = None) -> List[SpecSuggestion]:
        filters = filters or SuggestionFilters()
        clauses = []
        params: List[str] = []
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.operation_name is not None:
            clauses.append("operation_name = ?")
            params.append(filters.operation_name)

        query = "SELECT record_json FROM suggestions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        rows = self._conn.execute(query + " ORDER BY rowid", params).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM suggestions").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _deserialize(self, row: sqlite3.Row) -> SpecSuggestion:
        return SpecSuggestion.model_validate_json(row["record_json"])
