from crew_core.config import ClassifierConfig
from crew_core.routing.classifier import GENERAL_DOMAIN, DomainClassifier
from crew_core.types import Complexity


def test_finance_question_is_classified_with_full_confidence() -> None:
    analysis = DomainClassifier().classify("What's our Q3 financial forecast and budget variance?")

    assert analysis.primary_domain == "finance"
    assert analysis.confidence == 1.0
    assert set(analysis.keywords) == {"budget", "financial", "financial forecast"}
    assert analysis.complexity is Complexity.INTERMEDIATE
    assert analysis.requires_specialist is True


def test_message_without_keywords_is_general_and_basic() -> None:
    analysis = DomainClassifier().classify("hello there")

    assert analysis.primary_domain == GENERAL_DOMAIN
    assert analysis.confidence == 0.0
    assert analysis.keywords == []
    assert analysis.complexity is Complexity.BASIC
    assert analysis.requires_specialist is False


def test_ties_go_to_first_declared_domain() -> None:
    analysis = DomainClassifier().classify("facebook budget")

    assert analysis.primary_domain == "social"
    assert abs(analysis.confidence - 1 / 3) < 1e-9


def test_matching_is_case_insensitive() -> None:
    lower = DomainClassifier().classify("warehouse")
    upper = DomainClassifier().classify("WAREHOUSE")

    assert lower.primary_domain == upper.primary_domain == "supply"
    assert upper.keywords == ["warehouse"]


def test_technical_term_forces_advanced_complexity() -> None:
    analysis = DomainClassifier().classify("Fix our API")

    assert analysis.primary_domain == "technical"
    assert analysis.complexity is Complexity.ADVANCED
    assert analysis.requires_specialist is False


def test_length_bands_drive_complexity() -> None:
    classifier = DomainClassifier()

    assert classifier.classify("z" * 100).complexity is Complexity.BASIC
    assert classifier.classify("z" * 101).complexity is Complexity.INTERMEDIATE
    assert classifier.classify("z" * 201).complexity is Complexity.ADVANCED


def test_confidence_saturation_is_configurable() -> None:
    classifier = DomainClassifier(config=ClassifierConfig(confidence_saturation=6))

    analysis = classifier.classify("What's our Q3 financial forecast and budget variance?")

    assert analysis.confidence == 0.5
    assert analysis.requires_specialist is False


def test_punctuation_only_message_is_general() -> None:
    analysis = DomainClassifier().classify("?!?! ... !!!")

    assert analysis.primary_domain == GENERAL_DOMAIN
    assert analysis.confidence == 0.0
    assert analysis.keywords == []
    assert analysis.requires_specialist is False
