"""Boundary schemas for collaboration requests."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from crew_core.types import CollaborationType, Priority


class CollaborationRequest(BaseModel):
    """A validated cross-agent task request.

    Accepts both snake_case and the camelCase keys used by the web front end.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    task_type: str = Field(min_length=1)
    description: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    required_capabilities: list[str] = Field(default_factory=list)
    target_agent_id: str | None = None
    deadline: datetime | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("task_type", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("required_capabilities")
    @classmethod
    def _dedupe_capabilities(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for capability in value:
            capability = capability.strip()
            if capability and capability not in seen:
                seen.append(capability)
        return seen


def classify_collaboration(task_type: str) -> CollaborationType:
    """Derive the collaboration style from the free-form task type."""
    task = task_type.lower()
    if "analyze" in task or "research" in task:
        return CollaborationType.CONSULTATION
    if "share" in task or "sync" in task:
        return CollaborationType.DATA_SHARING
    if "joint" in task or "collaborate" in task:
        return CollaborationType.JOINT_TASK
    return CollaborationType.DELEGATION
