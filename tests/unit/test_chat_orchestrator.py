import random

import pytest

from crew_core.agents.registry import AgentRegistry
from crew_core.cache.predictive import PredictiveResponseCache
from crew_core.chat.orchestrator import ChatOrchestrator
from crew_core.collaboration.manager import CollaborationManager
from crew_core.errors import NotFoundError, PersistenceError, ValidationError
from crew_core.persistence.store import InMemoryResponseStore
from crew_core.types import CollaborationStatus, MatchType

FINANCE_QUESTION = "What's our Q3 financial forecast and budget variance?"


class _ReadOnlyStore(InMemoryResponseStore):
    def insert(self, response) -> None:  # type: ignore[override]
        raise PersistenceError("disk full", retryable=False)


def _orchestrator(cache: PredictiveResponseCache | None = None) -> ChatOrchestrator:
    registry = AgentRegistry.default()
    return ChatOrchestrator(
        registry=registry,
        cache=cache or PredictiveResponseCache(),
        collaborations=CollaborationManager(registry=registry),
        rng=random.Random(3),
    )


def test_off_domain_question_is_referred_to_specialist() -> None:
    orchestrator = _orchestrator()

    result = orchestrator.handle("u1", "coral", FINANCE_QUESTION)

    assert result.path == "referral"
    assert result.referral is not None
    assert result.referral.target_agent_id == "ledger"
    assert "**Ledger**" in result.answer
    assert result.analysis.primary_domain == "finance"
    assert orchestrator.referral_analytics.summary()["totalReferrals"] == 1
    assert orchestrator.trace_store.get(result.trace_id).target_agent == "ledger"
    assert orchestrator.cache.stats("u1")["storedEntries"] == 0


def test_specialist_answers_and_repeat_question_is_served_from_cache() -> None:
    orchestrator = _orchestrator()

    first = orchestrator.handle("u1", "ledger", FINANCE_QUESTION)
    second = orchestrator.handle("u1", "ledger", FINANCE_QUESTION)

    assert first.path == "generated"
    assert first.tokens_used > 0
    assert second.path == "cache"
    assert second.answer == first.answer
    assert second.cache_match.match_type is MatchType.EXACT
    assert orchestrator.trace_store.get(second.trace_id).cache_match_type == "exact"
    assert orchestrator.trace_store.summary()["cache_hit_rate"] == 0.5


def test_cache_is_scoped_per_user() -> None:
    orchestrator = _orchestrator()

    orchestrator.handle("u1", "coral", "hello there")
    other = orchestrator.handle("u2", "coral", "hello there")

    assert other.path == "generated"


def test_contextual_hits_require_request_context() -> None:
    orchestrator = _orchestrator()
    context = {"page": "inventory"}

    orchestrator.handle("u1", "coral", "hello there")
    without_context = orchestrator.handle("u1", "splash", "good morning")
    orchestrator.handle("u1", "coral", "greetings friend", context=context)
    with_context = orchestrator.handle("u1", "splash", "good evening", context=context)

    assert without_context.path == "generated"
    assert with_context.path == "cache"
    assert with_context.cache_match.match_type is MatchType.CONTEXTUAL


def test_cache_write_failure_does_not_fail_the_reply() -> None:
    orchestrator = _orchestrator(PredictiveResponseCache(_ReadOnlyStore()))

    result = orchestrator.handle("u1", "coral", "hello there")

    assert result.path == "generated"
    assert "Coral" in result.answer


def test_invalid_input_is_rejected() -> None:
    orchestrator = _orchestrator()

    with pytest.raises(NotFoundError):
        orchestrator.handle("u1", "nobody", "hello")
    with pytest.raises(ValidationError):
        orchestrator.handle("u1", "coral", "   ")


def test_collaboration_merges_participant_answers() -> None:
    orchestrator = _orchestrator()

    outcome = orchestrator.collaborate("u1", "beacon", ["ledger", "anchor", "ledger"], "Plan the Q3 restock")

    assert set(outcome.contributions) == {"ledger", "anchor"}
    assert outcome.answer.startswith("**Ledger**: ")
    assert "\n\n**Anchor**: " in outcome.answer

    record = orchestrator.collaborations.get_collaboration("u1", outcome.collaboration_id)
    assert record.status is CollaborationStatus.COMPLETED
    assert record.initiating_agent_id == "beacon"
    assert record.target_agent_id == "ledger"
    assert record.result["merged"] == outcome.answer
    assert orchestrator.trace_store.get(outcome.trace_id).path == "collaboration"


def test_collaboration_requires_known_participants() -> None:
    orchestrator = _orchestrator()

    with pytest.raises(ValidationError):
        orchestrator.collaborate("u1", "beacon", [], "Plan the Q3 restock")
    with pytest.raises(NotFoundError):
        orchestrator.collaborate("u1", "beacon", ["ghost"], "Plan the Q3 restock")


class _FailingResponder:
    def respond(self, agent, message, *, chat_history=None):  # type: ignore[no-untyped-def]
        raise RuntimeError(f"{agent.id} is unavailable")


def test_failed_generation_closes_the_collaboration() -> None:
    registry = AgentRegistry.default()
    orchestrator = ChatOrchestrator(
        registry=registry,
        cache=PredictiveResponseCache(),
        collaborations=CollaborationManager(registry=registry),
        responder=_FailingResponder(),
    )

    with pytest.raises(RuntimeError, match="ledger is unavailable"):
        orchestrator.collaborate("u1", "beacon", ["ledger", "anchor"], "Plan the Q3 restock")

    [record] = orchestrator.collaborations.get_collaboration_history("u1")
    assert record.status is CollaborationStatus.REJECTED
    assert record.feedback == "Failed: ledger is unavailable"
    assert record.target_agent_id == "ledger"
    assert orchestrator.collaborations.get_active_collaborations() == []
    assert orchestrator.cache.stats("u1")["storedEntries"] == 0
