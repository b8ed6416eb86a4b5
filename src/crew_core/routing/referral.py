"""Referral decisions between specialist agents."""

from __future__ import annotations

import random
from collections.abc import Sequence

from crew_core.config import ReferralConfig
from crew_core.errors import ValidationError
from crew_core.routing.keywords import KeywordDomainIndex
from crew_core.types import AgentInfo, Complexity, DomainAnalysis, ReferralDecision, ReferralMessage

AgentRef = str | AgentInfo

_REFERRAL_TEMPLATES = (
    "Ahoy! While I can provide some guidance on this topic, our specialist **{name}** is your "
    "best navigator for {reason}. They have the skills and specialized tools designed "
    "specifically for this type of challenge. You can find {name} in your crew dashboard - "
    "they'll chart the perfect course for your needs!",
    "I can offer some initial direction, but **{name}** is the crew member you want for this "
    "voyage! They specialize in {reason} and have the right tools to help you navigate these "
    "waters successfully. Set sail to {name}'s station in your dashboard for expert guidance.",
    "While I'm happy to help where I can, **{name}** is the specialist who can really anchor "
    "down the details for you. Their expertise in {reason} makes them the ideal crew member "
    "for this task. Navigate to {name} in your crew dashboard for comprehensive assistance!",
)


def referral_reason(domain: str) -> str:
    return f"specialized {domain} expertise and tools"


class ReferralEngine:
    """Decides whether the current agent should hand off to a specialist.

    Rules are evaluated in order and the first match wins:
    1. the current agent already owns the detected domain -> stay;
    2. basic complexity or low confidence -> stay;
    3. no available agent declares the domain -> stay;
    4. otherwise refer to the first such agent in roster order.
    """

    def __init__(
        self,
        index: KeywordDomainIndex | None = None,
        config: ReferralConfig | None = None,
    ) -> None:
        self.index = index or KeywordDomainIndex.default()
        self.config = config or ReferralConfig()

    def decide(
        self,
        current_agent: AgentRef,
        analysis: DomainAnalysis,
        available_agents: Sequence[AgentRef],
    ) -> ReferralDecision:
        current_id = _agent_id(current_agent)
        if self._declared_domain(current_agent) == analysis.primary_domain:
            return ReferralDecision(should_refer=False, confidence=0.0)

        if (
            analysis.complexity is Complexity.BASIC
            or analysis.confidence < self.config.min_confidence
        ):
            return ReferralDecision(should_refer=False, confidence=0.0)

        target = next(
            (
                agent
                for agent in available_agents
                if _agent_id(agent) != current_id
                and self._declared_domain(agent) == analysis.primary_domain
            ),
            None,
        )
        if target is None:
            return ReferralDecision(should_refer=False, confidence=0.0)

        return ReferralDecision(
            should_refer=True,
            confidence=analysis.confidence,
            target_agent=_agent_id(target),
            reason=referral_reason(analysis.primary_domain),
        )

    def _declared_domain(self, agent: AgentRef) -> str | None:
        if isinstance(agent, AgentInfo):
            return agent.domain
        return self.index.domain_for_agent(agent)


def build_referral_message(
    decision: ReferralDecision,
    target: AgentInfo,
    *,
    rng: random.Random | None = None,
) -> ReferralMessage:
    """Render one of the fixed hand-off templates for a positive decision."""
    if not decision.should_refer or decision.target_agent is None or decision.reason is None:
        raise ValidationError("Cannot build a referral message for a non-referring decision")
    if target.id != decision.target_agent:
        raise ValidationError(
            f"Target agent mismatch: decision names {decision.target_agent}, got {target.id}"
        )

    template = (rng or random).choice(_REFERRAL_TEMPLATES)
    return ReferralMessage(
        response=template.format(name=target.name, reason=decision.reason),
        target_agent_id=target.id,
        target_agent_name=target.name,
        referral_reason=decision.reason,
    )


def _agent_id(agent: AgentRef) -> str:
    return agent.id if isinstance(agent, AgentInfo) else agent
