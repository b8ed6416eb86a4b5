"""Keyword-based domain and complexity classification."""

from __future__ import annotations

from crew_core.config import ClassifierConfig
from crew_core.routing.keywords import KeywordDomainIndex
from crew_core.types import Complexity, DomainAnalysis

GENERAL_DOMAIN = "general"


class DomainClassifier:
    """Scores which specialization a free-text message belongs to.

    Scoring rules:
    - A domain's raw score is the number of its distinct keyword phrases that
      occur as case-insensitive substrings of the message.
    - The highest score wins; ties go to the domain declared first in the
      index. No match at all yields ``"general"``.
    - Confidence saturates at ``confidence_saturation`` distinct matches.

    Instances hold no mutable state and can be shared across threads.
    """

    def __init__(
        self,
        index: KeywordDomainIndex | None = None,
        config: ClassifierConfig | None = None,
    ) -> None:
        self.index = index or KeywordDomainIndex.default()
        self.config = config or ClassifierConfig()
        self._lowered = [
            (domain, [(keyword, keyword.lower()) for keyword in keywords])
            for domain, keywords in self.index.items()
        ]
        self._technical_terms = [term.lower() for term in self.index.technical_terms]

    def classify(self, message: str) -> DomainAnalysis:
        text = message.lower()
        found: list[str] = []
        best_domain = GENERAL_DOMAIN
        best_score = 0

        for domain, keywords in self._lowered:
            score = 0
            for literal, lowered in keywords:
                if lowered and lowered in text:
                    score += 1
                    found.append(literal)
            # strict comparison keeps the first-declared domain on ties
            if score > best_score:
                best_domain = domain
                best_score = score

        confidence = min(best_score / self.config.confidence_saturation, 1.0)
        complexity = self._complexity(message, text, len(found))
        return DomainAnalysis(
            primary_domain=best_domain,
            confidence=confidence,
            keywords=found,
            complexity=complexity,
            requires_specialist=(
                confidence > self.config.specialist_confidence
                and complexity is not Complexity.BASIC
            ),
        )

    def _complexity(self, message: str, lowered: str, hits: int) -> Complexity:
        length = len(message)
        has_technical = any(term in lowered for term in self._technical_terms)
        if (
            length > self.config.advanced_length
            or hits > self.config.advanced_hits
            or has_technical
        ):
            return Complexity.ADVANCED
        if length > self.config.intermediate_length or hits > self.config.intermediate_hits:
            return Complexity.INTERMEDIATE
        return Complexity.BASIC
