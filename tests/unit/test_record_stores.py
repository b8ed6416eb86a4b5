from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from crew_core.errors import PersistenceError
from crew_core.persistence.sqlite import SqliteCollaborationStore, SqliteResponseStore
from crew_core.persistence.store import (
    InMemoryCollaborationStore,
    InMemoryResponseStore,
    retry_read,
)
from crew_core.types import (
    CollaborationRecord,
    CollaborationStatus,
    CollaborationType,
    PreloadedResponse,
    Priority,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
PENDING = {CollaborationStatus.PENDING}


def _record(record_id: str = "c1", user_id: str = "u1") -> CollaborationRecord:
    return CollaborationRecord(
        id=record_id,
        user_id=user_id,
        initiating_agent_id="ledger",
        task_type="analyze_sales",
        description="Review Q3 sales",
        priority=Priority.HIGH,
        collaboration_type=CollaborationType.CONSULTATION,
        data={"quarter": 3},
        required_capabilities=["finance"],
        created_at=NOW,
    )


def _response(question_id: str, confidence: float, *, agent_id: str = "anchor", expired: bool = False) -> PreloadedResponse:
    return PreloadedResponse(
        question_id=question_id,
        agent_id=agent_id,
        user_id="u1",
        response=f"answer to {question_id}",
        confidence=confidence,
        generated_at=NOW - timedelta(minutes=1),
        expires_at=NOW - timedelta(seconds=1) if expired else NOW + timedelta(hours=1),
        context={"page": "inventory"},
    )


def test_compare_and_set_applies_only_from_expected_status() -> None:
    store = InMemoryCollaborationStore()
    store.insert(_record())

    updated = store.compare_and_set("c1", PENDING, {"status": CollaborationStatus.ACCEPTED, "responded_at": NOW})
    assert updated is not None
    assert updated.status is CollaborationStatus.ACCEPTED

    assert store.compare_and_set("c1", PENDING, {"status": CollaborationStatus.REJECTED}) is None
    assert store.get("c1").status is CollaborationStatus.ACCEPTED
    assert store.compare_and_set("missing", PENDING, {"status": CollaborationStatus.REJECTED}) is None


def test_identity_fields_are_not_updatable() -> None:
    store = InMemoryCollaborationStore()
    store.insert(_record())

    with pytest.raises(ValueError):
        store.compare_and_set("c1", PENDING, {"user_id": "u2"})


def test_returned_records_are_copies() -> None:
    store = InMemoryCollaborationStore()
    store.insert(_record())

    fetched = store.get("c1")
    fetched.status = CollaborationStatus.COMPLETED

    assert store.get("c1").status is CollaborationStatus.PENDING


def test_duplicate_insert_is_not_retryable() -> None:
    store = InMemoryCollaborationStore()
    store.insert(_record())

    with pytest.raises(PersistenceError) as excinfo:
        store.insert(_record())
    assert excinfo.value.retryable is False


def test_lock_timeout_raises_persistence_error() -> None:
    store = InMemoryCollaborationStore(timeout_seconds=0.05)
    store._lock.acquire()
    try:
        with pytest.raises(PersistenceError):
            store.get("c1")
    finally:
        store._lock.release()


def test_retry_read_retries_once() -> None:
    calls = []

    def _flaky() -> str:
        calls.append(1)
        if len(calls) == 1:
            raise PersistenceError("busy")
        return "ok"

    assert retry_read(_flaky) == "ok"
    assert len(calls) == 2

    def _broken() -> str:
        raise PersistenceError("corrupt", retryable=False)

    with pytest.raises(PersistenceError):
        retry_read(_broken)


def test_response_query_ranks_by_confidence_then_insertion() -> None:
    store = InMemoryResponseStore()
    store.insert(_response("a", 0.7))
    store.insert(_response("b", 0.9))
    store.insert(_response("c", 0.7))
    store.insert(_response("d", 0.99, expired=True))
    store.insert(_response("e", 0.8, agent_id="ledger"))

    ranked = store.query("u1", now=NOW, agent_id="anchor")
    assert [entry.question_id for entry in ranked] == ["b", "a", "c"]
    assert [entry.question_id for entry in store.query("u1", now=NOW, limit=2)] == ["b", "e"]
    assert store.query("u2", now=NOW) == []

    assert store.delete_expired(NOW) == 1
    assert len(store.list_for_user("u1")) == 4


def test_sqlite_collaboration_store_round_trip(tmp_path) -> None:
    store = SqliteCollaborationStore(tmp_path / "crew.db")
    store.insert(_record())
    store.insert(_record("c2", user_id="u2"))

    fetched = store.get("c1")
    assert fetched == _record()
    assert store.get("missing") is None
    assert [record.id for record in store.list_for_user("u1")] == ["c1"]

    updated = store.compare_and_set(
        "c1",
        PENDING,
        {"status": CollaborationStatus.ACCEPTED, "responded_at": NOW, "feedback": "ok"},
    )
    assert updated is not None
    assert updated.status is CollaborationStatus.ACCEPTED
    assert updated.responded_at == NOW
    assert store.compare_and_set("c1", PENDING, {"status": CollaborationStatus.REJECTED}) is None

    completed = store.compare_and_set(
        "c1",
        {CollaborationStatus.ACCEPTED},
        {"status": CollaborationStatus.COMPLETED, "result": {"merged": "done"}},
    )
    assert completed.result == {"merged": "done"}

    active = store.list_by_status({CollaborationStatus.PENDING, CollaborationStatus.ACCEPTED})
    assert [record.id for record in active] == ["c2"]


def test_sqlite_response_store_matches_in_memory_contract(tmp_path) -> None:
    store = SqliteResponseStore(tmp_path / "crew.db")
    store.insert(_response("a", 0.7))
    store.insert(_response("b", 0.9))
    store.insert(_response("c", 0.7))
    store.insert(_response("d", 0.99, expired=True))

    ranked = store.query("u1", now=NOW, agent_id="anchor")
    assert [entry.question_id for entry in ranked] == ["b", "a", "c"]
    assert ranked[0].context == {"page": "inventory"}
    assert ranked[0].expires_at == NOW + timedelta(hours=1)
    assert len(store.query("u1", now=NOW, limit=1)) == 1

    assert store.delete_expired(NOW) == 1
    assert len(store.list_for_user()) == 3


def test_sqlite_collaboration_store_keeps_target_agent(tmp_path) -> None:
    store = SqliteCollaborationStore(tmp_path / "crew.db")
    targeted = replace(_record(), target_agent_id="anchor")
    store.insert(targeted)
    store.insert(_record("c2"))

    assert store.get("c1").target_agent_id == "anchor"
    assert store.get("c2").target_agent_id is None
    reopened = SqliteCollaborationStore(tmp_path / "crew.db")
    assert reopened.get("c1") == targeted
