"""Decision pipeline between an inbound chat message and the model call."""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from crew_core.agents.registry import AgentRegistry
from crew_core.cache.predictive import PredictiveResponseCache
from crew_core.chat.responders import DeterministicResponder, Generation, Responder
from crew_core.collaboration.manager import CollaborationManager
from crew_core.errors import NotFoundError, PersistenceError, ValidationError
from crew_core.obs.tracing import Timer, TraceStore, estimate_token_count
from crew_core.routing.analytics import ReferralAnalytics
from crew_core.routing.classifier import DomainClassifier
from crew_core.routing.referral import ReferralEngine, build_referral_message
from crew_core.types import (
    AgentInfo,
    CacheMatch,
    DomainAnalysis,
    MatchType,
    ReferralEvent,
    ReferralMessage,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatResult:
    answer: str
    agent_id: str
    path: str
    trace_id: str
    latency_ms: float
    tokens_used: int = 0
    analysis: DomainAnalysis | None = None
    referral: ReferralMessage | None = None
    cache_match: CacheMatch | None = None


@dataclass(slots=True)
class CollaborationOutcome:
    collaboration_id: str
    answer: str
    trace_id: str
    contributions: dict[str, str] = field(default_factory=dict)


class ChatOrchestrator:
    """Routes one message through cache, classifier, referral and generation.

    The cache is probed first. On a miss the message is classified and the
    referral engine may redirect the user to a specialist; otherwise the
    responder generates an answer which is written back to the cache.
    Contextual cache matches are only served when the request carries a
    context map, because two empty maps always match.
    """

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        cache: PredictiveResponseCache,
        collaborations: CollaborationManager,
        classifier: DomainClassifier | None = None,
        referral_engine: ReferralEngine | None = None,
        responder: Responder | None = None,
        referral_analytics: ReferralAnalytics | None = None,
        trace_store: TraceStore | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.collaborations = collaborations
        self.classifier = classifier or DomainClassifier()
        self.referral_engine = referral_engine or ReferralEngine(self.classifier.index)
        self.responder = responder or DeterministicResponder()
        self.referral_analytics = referral_analytics or ReferralAnalytics()
        self.trace_store = trace_store or TraceStore()
        self._rng = rng

    def handle(
        self,
        user_id: str,
        agent_id: str,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        chat_history: list[Any] | None = None,
        thread_id: str | None = None,
    ) -> ChatResult:
        agent = self._agent(agent_id)
        if not message or not message.strip():
            raise ValidationError("message is required")

        with Timer() as timer:
            match = self.cache.lookup(user_id, agent.id, message, context)
            if match is not None and self._servable(match, context):
                outcome = self._from_cache(match)
            else:
                outcome = self._route(user_id, agent, message, context, chat_history, thread_id)

        answer, path, tokens, analysis, referral = outcome
        trace = self.trace_store.create_record(
            user_id=user_id,
            agent_id=agent.id,
            message=message,
            answer=answer,
            path=path,
            latency_ms=timer.elapsed_ms,
            domain=analysis.primary_domain if analysis else None,
            domain_confidence=analysis.confidence if analysis else 0.0,
            target_agent=referral.target_agent_id if referral else None,
            cache_match_type=match.match_type.value if path == "cache" and match else None,
            input_tokens=estimate_token_count(message) if path == "generated" else 0,
            output_tokens=tokens,
        )
        logger.info("message for %s served via %s in %.1fms", agent.id, path, timer.elapsed_ms)
        return ChatResult(
            answer=answer,
            agent_id=agent.id,
            path=path,
            trace_id=trace.trace_id,
            latency_ms=timer.elapsed_ms,
            tokens_used=tokens,
            analysis=analysis,
            referral=referral,
            cache_match=match if path == "cache" else None,
        )

    def collaborate(
        self,
        user_id: str,
        initiating_agent_id: str,
        participants: Sequence[str],
        message: str,
        *,
        task_type: str = "joint_task",
        priority: str = "medium",
        context: Mapping[str, Any] | None = None,
    ) -> CollaborationOutcome:
        """Open a collaboration, gather each participant's answer and merge them."""
        initiator = self._agent(initiating_agent_id)
        if not participants:
            raise ValidationError("at least one participant is required")
        agents = [self._agent(agent_id) for agent_id in dict.fromkeys(participants)]

        collaboration_id = self.collaborations.request_collaboration(
            user_id,
            initiator.id,
            {
                "taskType": task_type,
                "description": message,
                "priority": priority,
                "data": {"participants": [agent.id for agent in agents]},
                "requiredCapabilities": [agent.domain for agent in agents],
                "targetAgentId": agents[0].id,
                "context": dict(context or {}),
            },
        )
        self.collaborations.respond_to_collaboration(user_id, collaboration_id, "accept")

        with Timer() as timer:
            generations: dict[str, Generation] = {}
            try:
                for agent in agents:
                    generations[agent.id] = self.responder.respond(agent, message)
            except Exception as exc:
                self.collaborations.fail_collaboration(
                    user_id, collaboration_id, str(exc) or type(exc).__name__
                )
                raise
        contributions = {agent_id: gen.text for agent_id, gen in generations.items()}
        merged = "\n\n".join(
            f"**{self._agent(agent_id).name}**: {text}" for agent_id, text in contributions.items()
        )

        self.collaborations.complete_collaboration(
            user_id,
            collaboration_id,
            result={"responses": contributions, "merged": merged},
        )
        tokens = sum(gen.tokens_used for gen in generations.values())
        confidence = min(gen.confidence for gen in generations.values())
        self._write_back(user_id, initiator.id, message, merged, confidence, context, tokens, timer.elapsed_ms)

        trace = self.trace_store.create_record(
            user_id=user_id,
            agent_id=initiator.id,
            message=message,
            answer=merged,
            path="collaboration",
            latency_ms=timer.elapsed_ms,
            input_tokens=estimate_token_count(message) * len(agents),
            output_tokens=tokens,
        )
        return CollaborationOutcome(
            collaboration_id=collaboration_id,
            answer=merged,
            trace_id=trace.trace_id,
            contributions=contributions,
        )

    def _route(
        self,
        user_id: str,
        agent: AgentInfo,
        message: str,
        context: Mapping[str, Any] | None,
        chat_history: list[Any] | None,
        thread_id: str | None,
    ) -> tuple[str, str, int, DomainAnalysis, ReferralMessage | None]:
        analysis = self.classifier.classify(message)
        decision = self.referral_engine.decide(agent, analysis, self.registry.list_agents())
        target = self.registry.get_agent(decision.target_agent) if decision.target_agent else None

        if decision.should_refer and target is not None:
            referral = build_referral_message(decision, target, rng=self._rng)
            self.referral_analytics.track(
                ReferralEvent(
                    user_id=user_id,
                    source_agent_id=agent.id,
                    target_agent_id=target.id,
                    original_message=message,
                    domain_detected=analysis.primary_domain,
                    confidence_score=decision.confidence,
                    referral_reason=referral.referral_reason,
                    thread_id=thread_id,
                )
            )
            return referral.response, "referral", 0, analysis, referral

        generation = self.responder.respond(agent, message, chat_history=chat_history)
        self._write_back(
            user_id,
            agent.id,
            message,
            generation.text,
            generation.confidence,
            context,
            generation.tokens_used,
            generation.latency_ms,
        )
        return generation.text, "generated", generation.tokens_used, analysis, None

    def _from_cache(
        self, match: CacheMatch
    ) -> tuple[str, str, int, DomainAnalysis | None, ReferralMessage | None]:
        return match.response.response, "cache", 0, None, None

    def _write_back(
        self,
        user_id: str,
        agent_id: str,
        question: str,
        answer: str,
        confidence: float,
        context: Mapping[str, Any] | None,
        tokens_used: int,
        generation_time_ms: float,
    ) -> None:
        try:
            self.cache.remember(
                user_id,
                agent_id,
                question,
                answer,
                confidence=confidence,
                context=context,
                tokens_used=tokens_used,
                generation_time_ms=generation_time_ms,
            )
        except PersistenceError as exc:
            logger.warning("could not cache generated answer: %s", exc)

    @staticmethod
    def _servable(match: CacheMatch, context: Mapping[str, Any] | None) -> bool:
        if not match.should_use:
            return False
        return match.match_type is not MatchType.CONTEXTUAL or bool(context)

    def _agent(self, agent_id: str) -> AgentInfo:
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"Unknown agent: {agent_id}")
        return agent
