"""Answer generators used when no cached answer or referral applies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from crew_core.obs.tracing import Timer, estimate_token_count
from crew_core.types import AgentInfo

_SYSTEM_PROMPT = """
You are {agent_name}, a specialist crew agent for {domain}.

Your expertise: {expertise}.

Rules:
1) Answer within your specialization; be concrete and actionable.
2) If the question clearly belongs to another specialist, say so briefly.
3) Never invent store data, figures or account details you were not given.
4) Keep answers concise; prefer short steps or bullet points.
""".strip()


@dataclass(slots=True)
class Generation:
    text: str
    tokens_used: int
    confidence: float
    latency_ms: float


class Responder(Protocol):
    def respond(
        self,
        agent: AgentInfo,
        message: str,
        *,
        chat_history: list[Any] | None = None,
    ) -> Generation:
        """Produce an answer for ``message`` in the voice of ``agent``."""


class LangChainResponder:
    """Prompt | chat-model chain with the agent's specialization in the system turn."""

    def __init__(self, *, llm: Any, confidence: float = 0.8) -> None:
        self.llm = llm
        self.confidence = confidence
        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                MessagesPlaceholder(variable_name="chat_history", optional=True),
                ("human", "{input}"),
            ]
        )
        self.chain = self.prompt | self.llm

    def respond(
        self,
        agent: AgentInfo,
        message: str,
        *,
        chat_history: list[Any] | None = None,
    ) -> Generation:
        with Timer() as timer:
            result = self.chain.invoke(
                {
                    "agent_name": agent.name,
                    "domain": agent.domain,
                    "expertise": ", ".join(agent.expertise) or agent.domain,
                    "chat_history": chat_history or [],
                    "input": message,
                }
            )
        text = _message_text(result)
        return Generation(
            text=text,
            tokens_used=_usage_tokens(result) or estimate_token_count(message) + estimate_token_count(text),
            confidence=self.confidence,
            latency_ms=timer.elapsed_ms,
        )


class DeterministicResponder:
    """Offline responder with the same contract as :class:`LangChainResponder`.

    Useful for local environments where ``OPENAI_API_KEY`` is not configured.
    """

    def __init__(self, confidence: float = 0.7) -> None:
        self.confidence = confidence

    def respond(
        self,
        agent: AgentInfo,
        message: str,
        *,
        chat_history: list[Any] | None = None,
    ) -> Generation:
        del chat_history  # deterministic responder is stateless.
        with Timer() as timer:
            focus = ", ".join(agent.expertise[:2]) or agent.domain
            text = (
                f"{agent.name} here ({agent.domain}). Regarding \"{message.strip()}\": "
                f"start from your {focus} basics, list the constraints you already know, "
                f"and I will help you turn them into concrete next steps."
            )
        return Generation(
            text=text,
            tokens_used=estimate_token_count(message) + estimate_token_count(text),
            confidence=self.confidence,
            latency_ms=timer.elapsed_ms,
        )


def _message_text(result: Any) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _usage_tokens(result: Any) -> int:
    usage = getattr(result, "usage_metadata", None)
    if isinstance(usage, dict):
        return int(usage.get("total_tokens", 0))
    return 0
