"""In-memory referral tracking and aggregate analytics."""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from datetime import datetime
from typing import Any

from crew_core.types import ReferralEvent

logger = logging.getLogger(__name__)


class ReferralAnalytics:
    """Tracks cross-agent referrals for optimization and insights."""

    def __init__(self, *, max_events: int = 10000) -> None:
        # oldest events drop out once the window is full
        self._events: deque[ReferralEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def track(self, event: ReferralEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(
            "referral tracked",
            extra={
                "source_agent": event.source_agent_id,
                "target_agent": event.target_agent_id,
                "domain": event.domain_detected,
            },
        )

    def events(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        user_id: str | None = None,
    ) -> list[ReferralEvent]:
        with self._lock:
            snapshot = list(self._events)
        return [
            event
            for event in snapshot
            if (start is None or event.timestamp >= start)
            and (end is None or event.timestamp <= end)
            and (user_id is None or event.user_id == user_id)
        ]

    def summary(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        events = self.events(start, end, user_id)
        if not events:
            return {
                "totalReferrals": 0,
                "topSourceAgents": [],
                "topTargetAgents": [],
                "domainDistribution": [],
                "averageConfidence": 0.0,
                "referralsByTimeframe": [],
            }

        sources = Counter(event.source_agent_id for event in events)
        targets = Counter(event.target_agent_id for event in events)
        domains = Counter(event.domain_detected for event in events)
        by_day = Counter(event.timestamp.date().isoformat() for event in events)

        return {
            "totalReferrals": len(events),
            "topSourceAgents": [
                {"agentId": agent, "count": count} for agent, count in sources.most_common(5)
            ],
            "topTargetAgents": [
                {"agentId": agent, "count": count} for agent, count in targets.most_common(5)
            ],
            "domainDistribution": [
                {"domain": domain, "count": count} for domain, count in domains.most_common()
            ],
            "averageConfidence": sum(e.confidence_score for e in events) / len(events),
            "referralsByTimeframe": [
                {"date": day, "count": by_day[day]} for day in sorted(by_day)
            ],
        }

    def effectiveness(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        events = self.events(start, end, user_id)
        if not events:
            return {
                "totalReferrals": 0,
                "successfulReferrals": 0,
                "averageConfidence": 0.0,
                "topPerformingPairs": [],
            }

        pairs = Counter((event.source_agent_id, event.target_agent_id) for event in events)
        return {
            "totalReferrals": len(events),
            "successfulReferrals": sum(1 for e in events if e.confidence_score > 0.7),
            "averageConfidence": sum(e.confidence_score for e in events) / len(events),
            "topPerformingPairs": [
                {"source": source, "target": target, "count": count}
                for (source, target), count in pairs.most_common(10)
            ],
        }
