from datetime import datetime, timedelta, timezone

import pytest

from crew_core.collaboration.manager import CANCELLED_FEEDBACK, FAILED_FEEDBACK_PREFIX, CollaborationManager
from crew_core.collaboration.schemas import CollaborationRequest, classify_collaboration
from crew_core.errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from crew_core.types import CollaborationStatus, CollaborationType, Priority


class _StepClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _request(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {"taskType": "analyze_sales", "description": "Review Q3 sales"}
    payload.update(overrides)
    return payload


def test_request_creates_pending_record_with_derived_type() -> None:
    manager = CollaborationManager(clock=_StepClock())

    collaboration_id = manager.request_collaboration("u1", "ledger", _request(priority="high"))
    record = manager.get_collaboration("u1", collaboration_id)

    assert record.status is CollaborationStatus.PENDING
    assert record.collaboration_type is CollaborationType.CONSULTATION
    assert record.priority is Priority.HIGH
    assert record.initiating_agent_id == "ledger"
    assert record.responded_at is None


def test_request_validation_errors() -> None:
    manager = CollaborationManager()

    with pytest.raises(ValidationError):
        manager.request_collaboration("u1", "ledger", {"taskType": "sync"})
    with pytest.raises(ValidationError):
        manager.request_collaboration("u1", "ledger", _request(description="   "))
    with pytest.raises(ValidationError):
        manager.request_collaboration("u1", "", _request())
    with pytest.raises(ValidationError):
        manager.request_collaboration("u1", "ledger", _request(priority="critical"))


def test_second_response_is_rejected_with_current_state() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())

    accepted = manager.respond_to_collaboration("u1", collaboration_id, "accept", "on it")
    assert accepted.status is CollaborationStatus.ACCEPTED
    assert accepted.responded_at is not None
    assert accepted.feedback == "on it"

    with pytest.raises(InvalidStateError) as excinfo:
        manager.respond_to_collaboration("u1", collaboration_id, "reject")

    assert excinfo.value.current_state == "accepted"
    assert "already been responded to" in str(excinfo.value)
    assert manager.get_collaboration("u1", collaboration_id).status is CollaborationStatus.ACCEPTED


def test_unknown_response_value_is_a_validation_error() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())

    with pytest.raises(ValidationError):
        manager.respond_to_collaboration("u1", collaboration_id, "maybe")


def test_cancel_pending_marks_rejected_with_feedback() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())

    cancelled = manager.cancel_collaboration("u1", collaboration_id)

    assert cancelled.status is CollaborationStatus.REJECTED
    assert cancelled.feedback == CANCELLED_FEEDBACK
    assert cancelled.completed_at is not None


def test_completed_collaboration_cannot_be_cancelled() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())
    manager.respond_to_collaboration("u1", collaboration_id, "accept")
    completed = manager.complete_collaboration("u1", collaboration_id, {"summary": "done"})

    assert completed.status is CollaborationStatus.COMPLETED
    assert completed.result == {"summary": "done"}

    with pytest.raises(InvalidStateError) as excinfo:
        manager.cancel_collaboration("u1", collaboration_id)
    assert excinfo.value.current_state == "completed"


def test_only_accepted_collaborations_complete() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())

    with pytest.raises(InvalidStateError):
        manager.complete_collaboration("u1", collaboration_id)


def test_other_users_records_are_hidden() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())

    with pytest.raises(AuthorizationError):
        manager.respond_to_collaboration("u2", collaboration_id, "accept")
    with pytest.raises(AuthorizationError):
        manager.cancel_collaboration("u2", collaboration_id)
    with pytest.raises(NotFoundError):
        manager.get_collaboration("u1", "missing")

    assert manager.get_collaboration("u1", collaboration_id).status is CollaborationStatus.PENDING


def test_history_is_newest_first_and_filterable() -> None:
    manager = CollaborationManager(clock=_StepClock())
    first = manager.request_collaboration("u1", "ledger", _request())
    second = manager.request_collaboration("u1", "anchor", _request(taskType="share_stock"))
    manager.request_collaboration("u2", "ledger", _request())

    history = manager.get_collaboration_history("u1")
    assert [record.id for record in history] == [second, first]

    filtered = manager.get_collaboration_history("u1", agent_id="ledger")
    assert [record.id for record in filtered] == [first]


def test_stats_count_every_status() -> None:
    manager = CollaborationManager()
    done = manager.request_collaboration("u1", "ledger", _request())
    manager.respond_to_collaboration("u1", done, "accept")
    manager.complete_collaboration("u1", done)
    manager.request_collaboration("u1", "anchor", _request(taskType="joint_review"))

    stats = manager.get_collaboration_stats("u1")

    assert stats["totalCollaborations"] == 2
    assert stats["completedCollaborations"] == 1
    assert stats["successRate"] == 50.0
    assert stats["collaborationsByStatus"] == {
        "pending": 1,
        "accepted": 0,
        "rejected": 0,
        "completed": 1,
    }
    assert stats["collaborationsByAgent"] == {"ledger": 1, "anchor": 1}
    assert stats["collaborationsByType"] == {"consultation": 1, "joint_task": 1}
    assert stats["activeCollaborations"] == 1


def test_stats_for_new_user_are_zero() -> None:
    stats = CollaborationManager().get_collaboration_stats("nobody")

    assert stats["totalCollaborations"] == 0
    assert stats["successRate"] == 0.0


def test_active_collaborations_span_users() -> None:
    manager = CollaborationManager()
    pending = manager.request_collaboration("u1", "ledger", _request())
    accepted = manager.request_collaboration("u2", "anchor", _request())
    rejected = manager.request_collaboration("u2", "anchor", _request())
    manager.respond_to_collaboration("u2", accepted, "accept")
    manager.respond_to_collaboration("u2", rejected, "reject")

    active_ids = {record.id for record in manager.get_active_collaborations()}

    assert active_ids == {pending, accepted}


def test_capabilities_list_every_agent() -> None:
    capabilities = CollaborationManager().get_agent_capabilities()

    assert len(capabilities) == 11
    assert capabilities[0] == {
        "agentId": "coral",
        "name": "Coral",
        "domain": "support",
        "expertise": ["customer service", "support workflows", "customer communication"],
    }


def test_request_model_accepts_snake_and_camel_keys() -> None:
    camel = CollaborationRequest.model_validate(
        {"taskType": "sync", "description": "d", "requiredCapabilities": ["a", "a", " b "]}
    )
    snake = CollaborationRequest(task_type="sync", description="d")

    assert camel.required_capabilities == ["a", "b"]
    assert snake.priority is Priority.MEDIUM


def test_collaboration_type_follows_task_type() -> None:
    assert classify_collaboration("Research competitors") is CollaborationType.CONSULTATION
    assert classify_collaboration("share_inventory") is CollaborationType.DATA_SHARING
    assert classify_collaboration("collaborate") is CollaborationType.JOINT_TASK
    assert classify_collaboration("write_post") is CollaborationType.DELEGATION


def test_double_accept_fails() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())
    manager.respond_to_collaboration("u1", collaboration_id, "accept")

    with pytest.raises(InvalidStateError):
        manager.respond_to_collaboration("u1", collaboration_id, "accept")


def test_target_agent_is_first_agent_covering_required_capabilities() -> None:
    manager = CollaborationManager()

    by_expertise = manager.request_collaboration(
        "u1", "ledger", _request(requiredCapabilities=["Inventory_Management"])
    )
    by_domain = manager.request_collaboration(
        "u1", "coral", _request(requiredCapabilities=["supply", "procurement"])
    )
    open_request = manager.request_collaboration("u1", "ledger", _request())

    assert manager.get_collaboration("u1", by_expertise).target_agent_id == "anchor"
    assert manager.get_collaboration("u1", by_domain).target_agent_id == "anchor"
    assert manager.get_collaboration("u1", open_request).target_agent_id is None


def test_initiator_is_never_its_own_target() -> None:
    manager = CollaborationManager()

    with pytest.raises(ValidationError, match="No suitable agent"):
        manager.request_collaboration("u1", "ledger", _request(requiredCapabilities=["finance"]))
    with pytest.raises(ValidationError, match="No suitable agent"):
        manager.request_collaboration(
            "u1", "coral", _request(requiredCapabilities=["finance", "supply"])
        )

    assert manager.get_collaboration_history("u1") == []


def test_explicit_target_must_be_registered() -> None:
    manager = CollaborationManager()

    collaboration_id = manager.request_collaboration(
        "u1", "beacon", _request(targetAgentId="ledger", requiredCapabilities=["finance", "supply"])
    )
    assert manager.get_collaboration("u1", collaboration_id).target_agent_id == "ledger"

    with pytest.raises(ValidationError, match="Unknown target agent"):
        manager.request_collaboration("u1", "beacon", _request(targetAgentId="ghost"))


def test_fail_closes_accepted_collaboration_with_reason() -> None:
    manager = CollaborationManager()
    collaboration_id = manager.request_collaboration("u1", "ledger", _request())
    manager.respond_to_collaboration("u1", collaboration_id, "accept")

    failed = manager.fail_collaboration("u1", collaboration_id, "model timed out")

    assert failed.status is CollaborationStatus.REJECTED
    assert failed.feedback == f"{FAILED_FEEDBACK_PREFIX}model timed out"
    assert failed.completed_at is not None
    assert manager.get_active_collaborations() == []
    with pytest.raises(InvalidStateError):
        manager.complete_collaboration("u1", collaboration_id)
    with pytest.raises(AuthorizationError):
        manager.fail_collaboration("u2", collaboration_id, "again")
