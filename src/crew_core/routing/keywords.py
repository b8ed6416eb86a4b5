"""Static keyword and specialization tables for domain routing."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

# Declaration order doubles as the classifier tie-break order.
DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "social": (
        "social media", "facebook", "instagram", "twitter", "linkedin", "tiktok", "youtube",
        "content calendar", "engagement", "followers", "hashtags", "viral", "influencer",
        "brand awareness", "social strategy", "community management", "social advertising",
        "post scheduling", "social analytics", "social listening", "brand monitoring",
    ),
    "finance": (
        "budget", "financial", "accounting", "revenue", "profit", "expense", "cost analysis",
        "roi", "cash flow", "financial planning", "investment", "tax", "payroll",
        "financial reporting", "balance sheet", "income statement", "financial forecast",
        "pricing strategy", "financial metrics", "bookkeeping", "audit",
    ),
    "technical": (
        "technical", "IT", "software", "hardware", "server", "database", "API", "integration",
        "troubleshooting", "bug", "system", "network", "security", "backup", "deployment",
        "coding", "programming", "development", "infrastructure", "cloud", "DevOps",
    ),
    "research": (
        "research", "analysis", "data", "statistics", "market research", "competitive analysis",
        "trends", "insights", "analytics", "reporting", "metrics", "KPI", "dashboard",
        "survey", "study", "investigation", "intelligence", "benchmarking",
    ),
    "content": (
        "content", "writing", "blog", "article", "copywriting", "editing", "proofreading",
        "content strategy", "SEO", "content marketing", "storytelling", "brand voice",
        "content creation", "editorial", "publishing", "content calendar",
    ),
    "project": (
        "project", "task", "deadline", "timeline", "milestone", "project management",
        "team coordination", "resource allocation", "project planning", "workflow",
        "collaboration", "project tracking", "deliverables", "project status",
    ),
    "supply": (
        "inventory", "supply chain", "procurement", "supplier", "logistics", "warehouse",
        "stock", "ordering", "fulfillment", "distribution", "supply management",
        "vendor management", "inventory tracking", "demand forecasting",
    ),
    "marketing": (
        "marketing", "campaign", "lead generation", "email marketing", "automation",
        "CRM", "customer acquisition", "marketing strategy", "brand marketing",
        "digital marketing", "advertising", "promotion", "marketing funnel",
    ),
    "ecommerce": (
        "ecommerce", "online store", "product catalog", "shopping cart", "checkout",
        "payment processing", "order management", "product listing", "inventory management",
        "customer reviews", "product recommendations", "sales optimization",
    ),
    "support": (
        "customer support", "help desk", "customer service", "ticket", "complaint",
        "customer satisfaction", "support workflow", "escalation", "customer query",
        "support documentation", "FAQ", "customer communication",
    ),
    "knowledge": (
        "documentation", "knowledge base", "information", "search", "knowledge management",
        "document search", "information retrieval", "company documents", "knowledge sharing",
        "internal documentation", "training materials", "procedures",
    ),
}

TECHNICAL_TERMS: tuple[str, ...] = (
    "API", "integration", "automation", "workflow", "analytics", "optimization",
)


@dataclass(frozen=True, slots=True)
class Specialization:
    domain: str
    expertise: tuple[str, ...]


AGENT_SPECIALIZATIONS: dict[str, Specialization] = {
    "coral": Specialization("support", ("customer service", "support workflows", "customer communication")),
    "splash": Specialization("social", ("social media strategy", "content creation", "community management")),
    "anchor": Specialization("supply", ("supply chain", "inventory management", "procurement")),
    "sage": Specialization("knowledge", ("knowledge management", "document search", "information retrieval")),
    "helm": Specialization("content", ("content creation", "copywriting", "content strategy")),
    "ledger": Specialization("finance", ("financial analysis", "budgeting", "financial reporting")),
    "patch": Specialization("technical", ("IT support", "technical troubleshooting", "system integration")),
    "pearl": Specialization("research", ("research & analytics", "data analysis", "market intelligence")),
    "flint": Specialization("marketing", ("marketing automation", "campaign management", "lead generation")),
    "beacon": Specialization("project", ("project management", "task coordination", "workflow optimization")),
    "drake": Specialization("ecommerce", ("e-commerce optimization", "online sales", "product management")),
}


class KeywordDomainIndex:
    """Read-only domain → keyword and agent → domain lookup tables.

    Keyword phrases are kept in their declared casing; matching code is
    expected to compare case-insensitively. Domain iteration order is the
    declaration order and is used as the deterministic tie-break.
    """

    def __init__(
        self,
        domain_keywords: Mapping[str, Sequence[str]],
        specializations: Mapping[str, Specialization],
        technical_terms: Sequence[str] = TECHNICAL_TERMS,
    ) -> None:
        self._domain_keywords = MappingProxyType(
            {domain: tuple(keywords) for domain, keywords in domain_keywords.items()}
        )
        self._specializations = MappingProxyType(dict(specializations))
        self._technical_terms = tuple(technical_terms)

    @classmethod
    def default(cls) -> "KeywordDomainIndex":
        return cls(DOMAIN_KEYWORDS, AGENT_SPECIALIZATIONS, TECHNICAL_TERMS)

    def domains(self) -> tuple[str, ...]:
        return tuple(self._domain_keywords)

    def keywords_for(self, domain: str) -> tuple[str, ...]:
        return self._domain_keywords.get(domain, ())

    def items(self) -> list[tuple[str, tuple[str, ...]]]:
        return list(self._domain_keywords.items())

    @property
    def technical_terms(self) -> tuple[str, ...]:
        return self._technical_terms

    def specialization(self, agent_id: str) -> Specialization | None:
        return self._specializations.get(agent_id)

    def domain_for_agent(self, agent_id: str) -> str | None:
        spec = self._specializations.get(agent_id)
        return spec.domain if spec is not None else None

    def specializations(self) -> Mapping[str, Specialization]:
        return self._specializations
