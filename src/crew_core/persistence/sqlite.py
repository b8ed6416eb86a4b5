"""SQLite-backed record stores.

Both adapters keep the same contract as the in-memory stores so the API
process can switch backends through configuration. Each operation opens its
own connection with a bounded ``timeout`` so a locked database surfaces as a
retryable :class:`PersistenceError` instead of hanging the request.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Collection, Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from crew_core.errors import PersistenceError
from crew_core.persistence.store import UPDATABLE_FIELDS
from crew_core.types import (
    CollaborationRecord,
    CollaborationStatus,
    CollaborationType,
    PreloadedResponse,
    Priority,
    ResponseMetadata,
)

logger = logging.getLogger(__name__)

_COLLABORATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_collaborations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    initiating_agent_id TEXT NOT NULL,
    task_type TEXT NOT NULL,
    description TEXT NOT NULL,
    priority TEXT NOT NULL,
    collaboration_type TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL,
    required_capabilities TEXT NOT NULL,
    target_agent_id TEXT,
    context TEXT NOT NULL,
    deadline TEXT,
    created_at TEXT NOT NULL,
    responded_at TEXT,
    completed_at TEXT,
    feedback TEXT,
    result TEXT
)
"""

_RESPONSE_SCHEMA = """
CREATE TABLE IF NOT EXISTS preloaded_responses (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    question_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    response_text TEXT NOT NULL,
    confidence REAL NOT NULL,
    context TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    metadata TEXT NOT NULL
)
"""


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # fixed-width timestamps keep lexicographic order equal to time order
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _SqliteStore:
    def __init__(self, path: str | Path, timeout_seconds: float = 3.0) -> None:
        self._path = Path(path)
        self._timeout = timeout_seconds

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self._path, timeout=self._timeout)) as conn:
                conn.row_factory = sqlite3.Row
                with conn:
                    yield conn
        except sqlite3.OperationalError as exc:
            logger.exception("sqlite operation failed", extra={"operation": operation})
            raise PersistenceError(f"{operation} failed: {exc}", retryable=True) from exc
        except sqlite3.Error as exc:
            logger.exception("sqlite operation failed", extra={"operation": operation})
            raise PersistenceError(f"{operation} failed: {exc}", retryable=False) from exc


class SqliteCollaborationStore(_SqliteStore):
    """Collaboration records in an ``agent_collaborations`` table."""

    def __init__(self, path: str | Path, timeout_seconds: float = 3.0) -> None:
        super().__init__(path, timeout_seconds)
        with self._connect("init") as conn:
            conn.execute(_COLLABORATION_SCHEMA)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(agent_collaborations)")}
            if "target_agent_id" not in columns:
                conn.execute("ALTER TABLE agent_collaborations ADD COLUMN target_agent_id TEXT")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_collab_user ON agent_collaborations(user_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_collab_status ON agent_collaborations(status)"
            )

    def insert(self, record: CollaborationRecord) -> None:
        with self._connect("insert") as conn:
            conn.execute(
                """
                INSERT INTO agent_collaborations (
                    id, user_id, initiating_agent_id, task_type, description, priority,
                    collaboration_type, status, data, required_capabilities, target_agent_id,
                    context, deadline, created_at, responded_at, completed_at, feedback, result
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.initiating_agent_id,
                    record.task_type,
                    record.description,
                    record.priority.value,
                    record.collaboration_type.value,
                    record.status.value,
                    json.dumps(record.data),
                    json.dumps(record.required_capabilities),
                    record.target_agent_id,
                    json.dumps(record.context),
                    _iso(record.deadline),
                    _iso(record.created_at),
                    _iso(record.responded_at),
                    _iso(record.completed_at),
                    record.feedback,
                    json.dumps(record.result),
                ),
            )

    def get(self, record_id: str) -> CollaborationRecord | None:
        with self._connect("get") as conn:
            row = conn.execute(
                "SELECT * FROM agent_collaborations WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def list_for_user(self, user_id: str) -> list[CollaborationRecord]:
        with self._connect("list_for_user") as conn:
            rows = conn.execute(
                "SELECT * FROM agent_collaborations WHERE user_id = ? ORDER BY rowid",
                (user_id,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def list_by_status(self, statuses: Collection[CollaborationStatus]) -> list[CollaborationRecord]:
        values = [status.value for status in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        with self._connect("list_by_status") as conn:
            rows = conn.execute(
                f"SELECT * FROM agent_collaborations WHERE status IN ({placeholders}) ORDER BY rowid",
                values,
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def compare_and_set(
        self,
        record_id: str,
        expected: Collection[CollaborationStatus],
        changes: dict[str, Any],
    ) -> CollaborationRecord | None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields are not updatable: {sorted(unknown)}")
        expected_values = [status.value for status in expected]
        if not expected_values or not changes:
            return None

        assignments = ", ".join(f"{name} = ?" for name in changes)
        params: list[Any] = [_encode_change(name, value) for name, value in changes.items()]
        placeholders = ", ".join("?" for _ in expected_values)
        with self._connect("compare_and_set") as conn:
            cursor = conn.execute(
                f"UPDATE agent_collaborations SET {assignments} "
                f"WHERE id = ? AND status IN ({placeholders})",
                [*params, record_id, *expected_values],
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM agent_collaborations WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row)


class SqliteResponseStore(_SqliteStore):
    """Predictive responses in a ``preloaded_responses`` table."""

    def __init__(self, path: str | Path, timeout_seconds: float = 3.0) -> None:
        super().__init__(path, timeout_seconds)
        with self._connect("init") as conn:
            conn.execute(_RESPONSE_SCHEMA)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_preloaded_user_agent "
                "ON preloaded_responses(user_id, agent_id, expires_at)"
            )

    def insert(self, response: PreloadedResponse) -> None:
        with self._connect("insert") as conn:
            conn.execute(
                """
                INSERT INTO preloaded_responses (
                    question_id, agent_id, user_id, response_text, confidence,
                    context, generated_at, expires_at, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    response.question_id,
                    response.agent_id,
                    response.user_id,
                    response.response,
                    response.confidence,
                    json.dumps(response.context),
                    _iso(response.generated_at),
                    _iso(response.expires_at),
                    json.dumps(
                        {
                            "tokens_used": response.metadata.tokens_used,
                            "generation_time_ms": response.metadata.generation_time_ms,
                            "cache_hit": response.metadata.cache_hit,
                        }
                    ),
                ),
            )

    def query(
        self,
        user_id: str,
        *,
        now: datetime,
        agent_id: str | None = None,
        limit: int | None = None,
    ) -> list[PreloadedResponse]:
        sql = "SELECT * FROM preloaded_responses WHERE user_id = ? AND expires_at > ?"
        params: list[Any] = [user_id, _iso(now)]
        if agent_id is not None:
            sql += " AND agent_id = ?"
            params.append(agent_id)
        sql += " ORDER BY confidence DESC, seq ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connect("query") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_response(row) for row in rows]

    def list_for_user(self, user_id: str | None = None) -> list[PreloadedResponse]:
        with self._connect("list_for_user") as conn:
            if user_id is None:
                rows = conn.execute("SELECT * FROM preloaded_responses ORDER BY seq").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM preloaded_responses WHERE user_id = ? ORDER BY seq",
                    (user_id,),
                ).fetchall()
        return [_row_to_response(row) for row in rows]

    def delete_expired(self, now: datetime) -> int:
        with self._connect("delete_expired") as conn:
            cursor = conn.execute(
                "DELETE FROM preloaded_responses WHERE expires_at <= ?", (_iso(now),)
            )
            return cursor.rowcount


def _encode_change(name: str, value: Any) -> Any:
    if name == "status":
        return CollaborationStatus(value).value
    if name in {"responded_at", "completed_at"}:
        return _iso(value)
    if name == "result":
        return json.dumps(value)
    return value


def _row_to_record(row: sqlite3.Row) -> CollaborationRecord:
    return CollaborationRecord(
        id=row["id"],
        user_id=row["user_id"],
        initiating_agent_id=row["initiating_agent_id"],
        task_type=row["task_type"],
        description=row["description"],
        priority=Priority(row["priority"]),
        collaboration_type=CollaborationType(row["collaboration_type"]),
        status=CollaborationStatus(row["status"]),
        data=json.loads(row["data"]),
        required_capabilities=json.loads(row["required_capabilities"]),
        target_agent_id=row["target_agent_id"],
        context=json.loads(row["context"]),
        deadline=_parse(row["deadline"]),
        created_at=_parse(row["created_at"]),
        responded_at=_parse(row["responded_at"]),
        completed_at=_parse(row["completed_at"]),
        feedback=row["feedback"],
        result=json.loads(row["result"]) if row["result"] is not None else None,
    )


def _row_to_response(row: sqlite3.Row) -> PreloadedResponse:
    metadata = json.loads(row["metadata"])
    return PreloadedResponse(
        question_id=row["question_id"],
        agent_id=row["agent_id"],
        user_id=row["user_id"],
        response=row["response_text"],
        confidence=row["confidence"],
        context=json.loads(row["context"]),
        generated_at=_parse(row["generated_at"]),
        expires_at=_parse(row["expires_at"]),
        metadata=ResponseMetadata(
            tokens_used=int(metadata.get("tokens_used", 0)),
            generation_time_ms=float(metadata.get("generation_time_ms", 0.0)),
            cache_hit=bool(metadata.get("cache_hit", False)),
        ),
    )
