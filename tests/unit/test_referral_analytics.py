from datetime import datetime, timedelta, timezone

from crew_core.routing.analytics import ReferralAnalytics
from crew_core.types import ReferralEvent

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _event(user_id: str = "u1", *, source: str = "coral", confidence: float = 0.9, minutes: int = 0) -> ReferralEvent:
    return ReferralEvent(
        user_id=user_id,
        source_agent_id=source,
        target_agent_id="ledger",
        original_message="Q3 budget variance?",
        domain_detected="finance",
        confidence_score=confidence,
        referral_reason="financial analysis",
        timestamp=NOW + timedelta(minutes=minutes),
    )


def test_event_log_keeps_only_the_newest_events() -> None:
    analytics = ReferralAnalytics(max_events=2)
    for minutes, source in enumerate(["coral", "splash", "helm"]):
        analytics.track(_event(source=source, minutes=minutes))

    assert [event.source_agent_id for event in analytics.events()] == ["splash", "helm"]
    assert analytics.summary()["totalReferrals"] == 2


def test_effectiveness_is_filtered_by_user() -> None:
    analytics = ReferralAnalytics()
    analytics.track(_event("u1", confidence=0.9))
    analytics.track(_event("u1", confidence=0.5))
    analytics.track(_event("u2", source="splash", confidence=0.8))

    mine = analytics.effectiveness(user_id="u1")

    assert mine["totalReferrals"] == 2
    assert mine["successfulReferrals"] == 1
    assert abs(mine["averageConfidence"] - 0.7) < 1e-9
    assert mine["topPerformingPairs"] == [{"source": "coral", "target": "ledger", "count": 2}]
    assert analytics.effectiveness()["totalReferrals"] == 3
    assert analytics.effectiveness(user_id="nobody")["totalReferrals"] == 0


def test_summary_window_and_breakdown() -> None:
    analytics = ReferralAnalytics()
    analytics.track(_event(minutes=0))
    analytics.track(_event(source="splash", minutes=30))

    summary = analytics.summary(start=NOW + timedelta(minutes=10))

    assert summary["totalReferrals"] == 1
    assert summary["topSourceAgents"] == [{"agentId": "splash", "count": 1}]
    assert summary["referralsByTimeframe"] == [{"date": "2024-05-01", "count": 1}]
