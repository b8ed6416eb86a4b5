"""Collaboration lifecycle: request, respond, cancel, complete."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import pydantic

from crew_core.agents.registry import AgentRegistry
from crew_core.collaboration.schemas import CollaborationRequest, classify_collaboration
from crew_core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from crew_core.persistence.store import CollaborationStore, InMemoryCollaborationStore, retry_read
from crew_core.types import CollaborationRecord, CollaborationStatus, utc_now

logger = logging.getLogger(__name__)

CANCELLED_FEEDBACK = "Cancelled by user"
FAILED_FEEDBACK_PREFIX = "Failed: "
ACTIVE_STATUSES = frozenset({CollaborationStatus.PENDING, CollaborationStatus.ACCEPTED})
_RESPONSES = {
    "accept": CollaborationStatus.ACCEPTED,
    "reject": CollaborationStatus.REJECTED,
}


class CollaborationManager:
    """Tracks cross-agent task requests through an explicit state machine.

    ``pending -> accepted | rejected`` via :meth:`respond_to_collaboration`,
    ``pending | accepted -> rejected`` via :meth:`cancel_collaboration` or
    :meth:`fail_collaboration` and
    ``accepted -> completed`` via :meth:`complete_collaboration`. Every
    transition is a compare-and-set on the stored status, so two callers
    racing on the same record cannot both succeed. Records are never deleted.
    """

    def __init__(
        self,
        store: CollaborationStore | None = None,
        *,
        registry: AgentRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store or InMemoryCollaborationStore()
        self.registry = registry or AgentRegistry.default()
        self._clock = clock

    def request_collaboration(
        self,
        user_id: str,
        initiating_agent_id: str,
        request: CollaborationRequest | Mapping[str, Any],
    ) -> str:
        if not user_id:
            raise ValidationError("userId is required")
        if not initiating_agent_id or not initiating_agent_id.strip():
            raise ValidationError("initiatingAgentId is required")
        validated = _validate_request(request)
        target_agent_id = self._target_agent(initiating_agent_id.strip(), validated)

        record = CollaborationRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            initiating_agent_id=initiating_agent_id.strip(),
            task_type=validated.task_type,
            description=validated.description,
            priority=validated.priority,
            collaboration_type=classify_collaboration(validated.task_type),
            data=dict(validated.data),
            required_capabilities=list(validated.required_capabilities),
            target_agent_id=target_agent_id,
            context=dict(validated.context),
            deadline=validated.deadline,
            created_at=self._clock(),
        )
        self.store.insert(record)
        logger.info(
            "collaboration %s created by %s for %s (%s, %s)",
            record.id,
            record.initiating_agent_id,
            record.target_agent_id or "any agent",
            record.collaboration_type.value,
            record.priority.value,
        )
        return record.id

    def respond_to_collaboration(
        self,
        user_id: str,
        collaboration_id: str,
        response: str,
        feedback: str | None = None,
    ) -> CollaborationRecord:
        new_status = _RESPONSES.get(response)
        if new_status is None:
            raise ValidationError(
                f"Invalid response. Must be one of: {', '.join(_RESPONSES)}"
            )
        record = self._owned(user_id, collaboration_id)
        if record.status is not CollaborationStatus.PENDING:
            raise _already_responded(record.status)

        updated = self.store.compare_and_set(
            collaboration_id,
            {CollaborationStatus.PENDING},
            {"status": new_status, "responded_at": self._clock(), "feedback": feedback},
        )
        if updated is None:
            raise _already_responded(self._current_status(collaboration_id))
        logger.info("collaboration %s %sed", collaboration_id, response)
        return updated

    def cancel_collaboration(self, user_id: str, collaboration_id: str) -> CollaborationRecord:
        updated = self._close(user_id, collaboration_id, CANCELLED_FEEDBACK)
        logger.info("collaboration %s cancelled by user", collaboration_id)
        return updated

    def fail_collaboration(
        self,
        user_id: str,
        collaboration_id: str,
        reason: str,
    ) -> CollaborationRecord:
        """Close an active collaboration whose downstream work raised."""
        updated = self._close(user_id, collaboration_id, f"{FAILED_FEEDBACK_PREFIX}{reason}")
        logger.warning("collaboration %s failed: %s", collaboration_id, reason)
        return updated

    def complete_collaboration(
        self,
        user_id: str,
        collaboration_id: str,
        result: Any = None,
    ) -> CollaborationRecord:
        record = self._owned(user_id, collaboration_id)
        if record.status is not CollaborationStatus.ACCEPTED:
            raise _not_completable(record.status)

        updated = self.store.compare_and_set(
            collaboration_id,
            {CollaborationStatus.ACCEPTED},
            {
                "status": CollaborationStatus.COMPLETED,
                "completed_at": self._clock(),
                "result": result,
            },
        )
        if updated is None:
            raise _not_completable(self._current_status(collaboration_id))
        logger.info("collaboration %s completed", collaboration_id)
        return updated

    def get_collaboration(self, user_id: str, collaboration_id: str) -> CollaborationRecord:
        return self._owned(user_id, collaboration_id)

    def get_collaboration_history(
        self,
        user_id: str,
        agent_id: str | None = None,
    ) -> list[CollaborationRecord]:
        records = retry_read(lambda: self.store.list_for_user(user_id))
        if agent_id:
            records = [rec for rec in records if rec.initiating_agent_id == agent_id]
        indexed = sorted(
            enumerate(records),
            key=lambda pair: (pair[1].created_at, pair[0]),
            reverse=True,
        )
        return [record for _, record in indexed]

    def get_collaboration_stats(self, user_id: str) -> dict[str, Any]:
        records = retry_read(lambda: self.store.list_for_user(user_id))
        total = len(records)
        by_status = {status.value: 0 for status in CollaborationStatus}
        by_status.update(Counter(rec.status.value for rec in records))
        completed = by_status[CollaborationStatus.COMPLETED.value]
        return {
            "totalCollaborations": total,
            "completedCollaborations": completed,
            "successRate": (completed / total) * 100 if total else 0.0,
            "collaborationsByStatus": by_status,
            "collaborationsByAgent": dict(Counter(rec.initiating_agent_id for rec in records)),
            "collaborationsByType": dict(Counter(rec.collaboration_type.value for rec in records)),
            "activeCollaborations": sum(1 for rec in records if rec.status in ACTIVE_STATUSES),
        }

    def get_active_collaborations(self) -> list[CollaborationRecord]:
        return retry_read(lambda: self.store.list_by_status(ACTIVE_STATUSES))

    def get_agent_capabilities(self) -> list[dict[str, Any]]:
        return [
            {
                "agentId": agent.id,
                "name": agent.name,
                "domain": agent.domain,
                "expertise": list(agent.expertise),
            }
            for agent in self.registry.list_agents()
        ]

    def _close(self, user_id: str, collaboration_id: str, feedback: str) -> CollaborationRecord:
        record = self._owned(user_id, collaboration_id)
        if record.status not in ACTIVE_STATUSES:
            raise _not_cancellable(record.status)

        updated = self.store.compare_and_set(
            collaboration_id,
            ACTIVE_STATUSES,
            {
                "status": CollaborationStatus.REJECTED,
                "completed_at": self._clock(),
                "feedback": feedback,
            },
        )
        if updated is None:
            raise _not_cancellable(self._current_status(collaboration_id))
        return updated

    def _target_agent(self, initiating_agent_id: str, request: CollaborationRequest) -> str | None:
        """Pick the agent asked to carry out the task.

        An explicit target must be a registered agent. Otherwise the target is
        the first agent in roster order, other than the initiator, that covers
        every required capability through its domain or expertise. A request
        without required capabilities has no fixed target.
        """
        if request.target_agent_id:
            if request.target_agent_id not in self.registry:
                raise ValidationError(f"Unknown target agent: {request.target_agent_id}")
            return request.target_agent_id

        required = {_capability_key(cap) for cap in request.required_capabilities}
        if not required:
            return None

        for agent in self.registry.list_agents():
            if agent.id == initiating_agent_id:
                continue
            offered = {_capability_key(agent.domain), *(_capability_key(e) for e in agent.expertise)}
            if required <= offered:
                return agent.id
        raise ValidationError("No suitable agent found for this task")

    def _owned(self, user_id: str, collaboration_id: str) -> CollaborationRecord:
        record = retry_read(lambda: self.store.get(collaboration_id))
        if record is None:
            raise NotFoundError(f"Collaboration not found: {collaboration_id}")
        if record.user_id != user_id:
            logger.warning(
                "user %s attempted to access collaboration %s owned by another user",
                user_id,
                collaboration_id,
            )
            raise AuthorizationError(f"Collaboration not found: {collaboration_id}")
        return record

    def _current_status(self, collaboration_id: str) -> CollaborationStatus | None:
        record = self.store.get(collaboration_id)
        return record.status if record is not None else None


def _validate_request(request: CollaborationRequest | Mapping[str, Any]) -> CollaborationRequest:
    if isinstance(request, CollaborationRequest):
        return request
    try:
        return CollaborationRequest.model_validate(dict(request))
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid collaboration request: {problems}") from exc


def _capability_key(capability: str) -> str:
    return " ".join(capability.lower().replace("_", " ").replace("-", " ").split())


def _state_label(status: CollaborationStatus | None) -> str:
    return status.value if status is not None else "unknown"


def _already_responded(status: CollaborationStatus | None) -> InvalidStateError:
    return InvalidStateError(
        f"Collaboration has already been responded to (status: {_state_label(status)})",
        current_state=_state_label(status),
    )


def _not_cancellable(status: CollaborationStatus | None) -> InvalidStateError:
    return InvalidStateError(
        "Can only cancel pending or accepted collaborations "
        f"(status: {_state_label(status)})",
        current_state=_state_label(status),
    )


def _not_completable(status: CollaborationStatus | None) -> InvalidStateError:
    return InvalidStateError(
        f"Can only complete accepted collaborations (status: {_state_label(status)})",
        current_state=_state_label(status),
    )
