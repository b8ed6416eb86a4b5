"""Agent registry: declared domain, display name and color per agent."""

from __future__ import annotations

from crew_core.routing.keywords import KeywordDomainIndex
from crew_core.types import AgentInfo

_DISPLAY = {
    "coral": ("Coral", "#FF7F50"),
    "splash": ("Splash", "#E91E63"),
    "anchor": ("Anchor", "#FF6A3D"),
    "sage": ("Sage", "#4A90E2"),
    "helm": ("Helm", "#7ED321"),
    "ledger": ("Ledger", "#F5A623"),
    "patch": ("Patch", "#D0021B"),
    "pearl": ("Pearl", "#9013FE"),
    "flint": ("Flint", "#FF5722"),
    "beacon": ("Beacon", "#00BCD4"),
    "drake": ("Drake", "#795548"),
}


class AgentRegistry:
    """Stores agent entries in registration order."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentInfo] = {}

    @classmethod
    def default(cls, index: KeywordDomainIndex | None = None) -> "AgentRegistry":
        index = index or KeywordDomainIndex.default()
        registry = cls()
        for agent_id, spec in index.specializations().items():
            name, color = _DISPLAY.get(agent_id, (agent_id.title(), "#FF6A3D"))
            registry.register(
                AgentInfo(
                    id=agent_id,
                    name=name,
                    domain=spec.domain,
                    color=color,
                    expertise=spec.expertise,
                )
            )
        return registry

    def register(self, info: AgentInfo) -> None:
        if info.id in self._agents:
            raise ValueError(f"Agent already registered: {info.id}")
        self._agents[info.id] = info

    def get_agent(self, agent_id: str) -> AgentInfo | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[AgentInfo]:
        return list(self._agents.values())

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents
