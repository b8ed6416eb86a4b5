"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Complexity(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class CollaborationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"


class CollaborationType(str, Enum):
    DELEGATION = "delegation"
    CONSULTATION = "consultation"
    DATA_SHARING = "data_sharing"
    JOINT_TASK = "joint_task"


class MatchType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"
    CONTEXTUAL = "contextual"


@dataclass(frozen=True, slots=True)
class AgentInfo:
    """Registry entry describing one specialist agent."""

    id: str
    name: str
    domain: str
    color: str = "#FF6A3D"
    expertise: tuple[str, ...] = ()


@dataclass(slots=True)
class DomainAnalysis:
    """Classifier output for a single message."""

    primary_domain: str
    confidence: float
    keywords: list[str]
    complexity: Complexity
    requires_specialist: bool


@dataclass(slots=True)
class ReferralDecision:
    """Whether the current agent should hand the conversation over."""

    should_refer: bool
    confidence: float
    target_agent: str | None = None
    reason: str | None = None


@dataclass(slots=True)
class ReferralMessage:
    """User-facing copy produced for a positive referral."""

    response: str
    target_agent_id: str
    target_agent_name: str
    referral_reason: str


@dataclass(slots=True)
class ReferralEvent:
    """One tracked referral, kept for analytics."""

    user_id: str
    source_agent_id: str
    target_agent_id: str
    original_message: str
    domain_detected: str
    confidence_score: float
    referral_reason: str
    timestamp: datetime = field(default_factory=utc_now)
    thread_id: str | None = None


@dataclass(slots=True)
class CollaborationRecord:
    """A cross-agent task request and its lifecycle timestamps."""

    id: str
    user_id: str
    initiating_agent_id: str
    task_type: str
    description: str
    priority: Priority
    collaboration_type: CollaborationType
    status: CollaborationStatus = CollaborationStatus.PENDING
    data: dict[str, Any] = field(default_factory=dict)
    target_agent_id: str | None = None
    required_capabilities: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    deadline: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    responded_at: datetime | None = None
    completed_at: datetime | None = None
    feedback: str | None = None
    result: Any = None


@dataclass(slots=True)
class ResponseMetadata:
    tokens_used: int = 0
    generation_time_ms: float = 0.0
    cache_hit: bool = False


@dataclass(slots=True)
class PreloadedResponse:
    """A previously generated answer, scoped to one user."""

    question_id: str
    agent_id: str
    user_id: str
    response: str
    confidence: float
    generated_at: datetime
    expires_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(slots=True)
class CacheMatch:
    """A cache hit with the evidence used to select it."""

    response: PreloadedResponse
    similarity: float
    confidence: float
    match_type: MatchType
    should_use: bool
    cache_age_seconds: float
    processing_time_ms: float = 0.0
