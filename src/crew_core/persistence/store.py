"""Record store interfaces and in-memory adapters."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol, TypeVar

from crew_core.errors import PersistenceError
from crew_core.types import CollaborationRecord, CollaborationStatus, PreloadedResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CollaborationStore(Protocol):
    """Minimal collaboration persistence contract."""

    def insert(self, record: CollaborationRecord) -> None:
        """Persist a new record."""

    def get(self, record_id: str) -> CollaborationRecord | None:
        """Fetch one record by id."""

    def list_for_user(self, user_id: str) -> list[CollaborationRecord]:
        """All records owned by a user, in insertion order."""

    def list_by_status(self, statuses: Collection[CollaborationStatus]) -> list[CollaborationRecord]:
        """All records, across users, whose status is in ``statuses``."""

    def compare_and_set(
        self,
        record_id: str,
        expected: Collection[CollaborationStatus],
        changes: dict[str, Any],
    ) -> CollaborationRecord | None:
        """Apply ``changes`` only if the current status is in ``expected``.

        Returns the updated record, or ``None`` when the status check failed.
        """


class ResponseStore(Protocol):
    """Minimal predictive response persistence contract."""

    def insert(self, response: PreloadedResponse) -> None:
        """Persist a generated answer."""

    def query(
        self,
        user_id: str,
        *,
        now: datetime,
        agent_id: str | None = None,
        limit: int | None = None,
    ) -> list[PreloadedResponse]:
        """Live entries for a user, most confident first."""

    def list_for_user(self, user_id: str | None = None) -> list[PreloadedResponse]:
        """All stored entries, including expired ones."""

    def delete_expired(self, now: datetime) -> int:
        """Remove expired entries and return how many were removed."""


UPDATABLE_FIELDS = frozenset({"status", "responded_at", "completed_at", "feedback", "result"})


class _Guarded:
    """Bounded lock acquisition shared by the in-memory stores."""

    def __init__(self, timeout_seconds: float) -> None:
        self._lock = threading.Lock()
        self._timeout = timeout_seconds

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._timeout):
            logger.error("store lock timeout", extra={"operation": operation})
            raise PersistenceError(
                f"{type(self).__name__}.{operation} timed out after {self._timeout}s"
            )
        try:
            yield
        finally:
            self._lock.release()


class InMemoryCollaborationStore(_Guarded):
    """Deterministic collaboration store used for tests and local prototyping."""

    def __init__(self, timeout_seconds: float = 3.0) -> None:
        super().__init__(timeout_seconds)
        self._records: dict[str, CollaborationRecord] = {}

    def insert(self, record: CollaborationRecord) -> None:
        with self._locked("insert"):
            if record.id in self._records:
                raise PersistenceError(f"Duplicate collaboration id: {record.id}", retryable=False)
            self._records[record.id] = copy.deepcopy(record)

    def get(self, record_id: str) -> CollaborationRecord | None:
        with self._locked("get"):
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def list_for_user(self, user_id: str) -> list[CollaborationRecord]:
        return self._select("list_for_user", lambda rec: rec.user_id == user_id)

    def list_by_status(self, statuses: Collection[CollaborationStatus]) -> list[CollaborationRecord]:
        wanted = set(statuses)
        return self._select("list_by_status", lambda rec: rec.status in wanted)

    def compare_and_set(
        self,
        record_id: str,
        expected: Collection[CollaborationStatus],
        changes: dict[str, Any],
    ) -> CollaborationRecord | None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields are not updatable: {sorted(unknown)}")
        with self._locked("compare_and_set"):
            record = self._records.get(record_id)
            if record is None or record.status not in set(expected):
                return None
            for name, value in changes.items():
                setattr(record, name, value)
            return copy.deepcopy(record)

    def _select(
        self, operation: str, predicate: Callable[[CollaborationRecord], bool]
    ) -> list[CollaborationRecord]:
        with self._locked(operation):
            return [copy.deepcopy(rec) for rec in self._records.values() if predicate(rec)]


class InMemoryResponseStore(_Guarded):
    """Deterministic predictive response store used for tests and local runs."""

    def __init__(self, timeout_seconds: float = 3.0) -> None:
        super().__init__(timeout_seconds)
        self._entries: list[PreloadedResponse] = []

    def insert(self, response: PreloadedResponse) -> None:
        with self._locked("insert"):
            self._entries.append(copy.deepcopy(response))

    def query(
        self,
        user_id: str,
        *,
        now: datetime,
        agent_id: str | None = None,
        limit: int | None = None,
    ) -> list[PreloadedResponse]:
        with self._locked("query"):
            live = [
                entry
                for entry in self._entries
                if entry.user_id == user_id
                and not entry.is_expired(now)
                and (agent_id is None or entry.agent_id == agent_id)
            ]
        # sorted() is stable, so equal confidences keep insertion order
        ranked = sorted(live, key=lambda entry: entry.confidence, reverse=True)
        if limit is not None:
            ranked = ranked[:limit]
        return [copy.deepcopy(entry) for entry in ranked]

    def list_for_user(self, user_id: str | None = None) -> list[PreloadedResponse]:
        with self._locked("list_for_user"):
            return [
                copy.deepcopy(entry)
                for entry in self._entries
                if user_id is None or entry.user_id == user_id
            ]

    def delete_expired(self, now: datetime) -> int:
        with self._locked("delete_expired"):
            before = len(self._entries)
            self._entries = [entry for entry in self._entries if not entry.is_expired(now)]
            return before - len(self._entries)


def retry_read(operation: Callable[[], T]) -> T:
    """Run an idempotent read, retrying once on a retryable store failure."""
    try:
        return operation()
    except PersistenceError as exc:
        if not exc.retryable:
            raise
        logger.warning("retrying store read after failure: %s", exc)
        return operation()
