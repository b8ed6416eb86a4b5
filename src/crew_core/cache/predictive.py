"""Predictive response cache consulted before any generation call."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from crew_core.cache.similarity import context_similarity, question_similarity
from crew_core.config import CacheConfig, CacheThresholds
from crew_core.errors import PersistenceError
from crew_core.obs.tracing import Timer
from crew_core.persistence.store import InMemoryResponseStore, ResponseStore
from crew_core.types import CacheMatch, MatchType, PreloadedResponse, ResponseMetadata, utc_now

logger = logging.getLogger(__name__)


class PredictiveResponseCache:
    """Serves previously generated answers when a question was already seen.

    Lookup order, first qualifying match wins, all candidates restricted to
    the requesting user and to non-expired entries:

    1. exact: the stored answer contains the question (or the stored question
       id equals it), same agent, most confident first;
    2. similar: best token overlap against the stored question id among the
       most confident entries for the same agent;
    3. contextual: context-map overlap among the most confident entries for
       the user across all agents.

    Store failures during lookup are logged and reported as a miss.
    """

    def __init__(
        self,
        backend: ResponseStore | None = None,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backend = backend or InMemoryResponseStore()
        self.config = config or CacheConfig()
        self._clock = clock
        self._thresholds = self.config.thresholds
        self._threshold_lock = threading.Lock()
        self._counters: Counter[tuple[str, str]] = Counter()
        self._counter_lock = threading.Lock()
        self._sweeper: threading.Thread | None = None
        self._sweeper_stop = threading.Event()

    @property
    def thresholds(self) -> CacheThresholds:
        return self._thresholds

    def update_thresholds(self, similarity: float, confidence: float) -> CacheThresholds:
        """Clamp both values to [0.1, 1.0] and swap in a new snapshot."""
        snapshot = CacheThresholds(
            similarity=_clamp(similarity),
            confidence=_clamp(confidence),
        )
        with self._threshold_lock:
            self._thresholds = snapshot
        logger.info(
            "cache thresholds updated: similarity=%.2f confidence=%.2f",
            snapshot.similarity,
            snapshot.confidence,
        )
        return snapshot

    def lookup(
        self,
        user_id: str,
        agent_id: str,
        question: str,
        context: Mapping[str, Any] | None = None,
    ) -> CacheMatch | None:
        if not question or not question.strip():
            self._count(user_id, "misses")
            return None

        thresholds = self._thresholds
        now = self._clock()
        with Timer() as timer:
            try:
                found = self._find(user_id, agent_id, question, context or {}, thresholds, now)
            except PersistenceError as exc:
                logger.warning("cache lookup failed, treating as miss: %s", exc)
                self._count(user_id, "errors")
                return None
            except Exception:
                logger.exception("unexpected cache lookup failure, treating as miss")
                self._count(user_id, "errors")
                return None

        if found is None:
            self._count(user_id, "misses")
            return None

        response, similarity, match_type = found
        self._count(user_id, match_type.value)
        return CacheMatch(
            response=response,
            similarity=similarity,
            confidence=response.confidence,
            match_type=match_type,
            should_use=response.confidence >= thresholds.confidence,
            cache_age_seconds=(now - response.generated_at).total_seconds(),
            processing_time_ms=timer.elapsed_ms,
        )

    def store(self, response: PreloadedResponse) -> None:
        """Persist unconditionally; duplicates coexist and rank by confidence."""
        response = replace(
            response,
            generated_at=_as_utc(response.generated_at),
            expires_at=_as_utc(response.expires_at),
        )
        self.backend.insert(response)
        logger.debug(
            "cached response for question %r (agent=%s, confidence=%.2f)",
            response.question_id,
            response.agent_id,
            response.confidence,
        )

    def remember(
        self,
        user_id: str,
        agent_id: str,
        question: str,
        answer: str,
        *,
        confidence: float,
        context: Mapping[str, Any] | None = None,
        tokens_used: int = 0,
        generation_time_ms: float = 0.0,
        ttl_seconds: int | None = None,
    ) -> PreloadedResponse:
        """Build and store an entry keyed by the question text."""
        now = self._clock()
        ttl = ttl_seconds if ttl_seconds is not None else self.config.default_ttl_seconds
        entry = PreloadedResponse(
            question_id=question.strip(),
            agent_id=agent_id,
            user_id=user_id,
            response=answer,
            confidence=max(0.0, min(confidence, 1.0)),
            generated_at=now,
            expires_at=now + timedelta(seconds=ttl),
            context=dict(context or {}),
            metadata=ResponseMetadata(
                tokens_used=tokens_used,
                generation_time_ms=generation_time_ms,
                cache_hit=False,
            ),
        )
        self.store(entry)
        return entry

    def sweep_expired(self, now: datetime | None = None) -> int:
        removed = self.backend.delete_expired(now or self._clock())
        if removed:
            logger.info("swept %d expired cache entries", removed)
        return removed

    def start_sweeper(self, interval_seconds: float | None = None) -> bool:
        """Start a daemon thread reclaiming expired entries; lookups never depend on it."""
        interval = interval_seconds or self.config.sweep_interval_seconds
        if interval is None or self._sweeper is not None:
            return False
        self._sweeper_stop.clear()

        def _run() -> None:
            while not self._sweeper_stop.wait(interval):
                try:
                    self.sweep_expired()
                except PersistenceError as exc:
                    logger.warning("cache sweep failed: %s", exc)

        self._sweeper = threading.Thread(target=_run, name="crew-core-cache-sweeper", daemon=True)
        self._sweeper.start()
        return True

    def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper_stop.set()
        self._sweeper.join(timeout=1.0)
        self._sweeper = None

    def stats(self, user_id: str | None = None) -> dict[str, Any]:
        counters: Counter[str] = Counter()
        with self._counter_lock:
            for (owner, key), count in self._counters.items():
                if user_id is None or owner == user_id:
                    counters[key] += count
        hits = {match_type.value: counters.get(match_type.value, 0) for match_type in MatchType}
        total_hits = sum(hits.values())
        lookups = total_hits + counters.get("misses", 0) + counters.get("errors", 0)

        entries = self.backend.list_for_user(user_id)
        now = self._clock()
        live = [entry for entry in entries if not entry.is_expired(now)]
        thresholds = self._thresholds
        return {
            "lookups": lookups,
            "hits": hits,
            "misses": counters.get("misses", 0),
            "errors": counters.get("errors", 0),
            "hitRate": (total_hits / lookups) if lookups else 0.0,
            "storedEntries": len(entries),
            "liveEntries": len(live),
            "averageConfidence": (
                sum(entry.confidence for entry in live) / len(live) if live else 0.0
            ),
            "thresholds": {
                "similarity": thresholds.similarity,
                "confidence": thresholds.confidence,
            },
        }

    def _find(
        self,
        user_id: str,
        agent_id: str,
        question: str,
        context: Mapping[str, Any],
        thresholds: CacheThresholds,
        now: datetime,
    ) -> tuple[PreloadedResponse, float, MatchType] | None:
        needle = question.strip().lower()
        for entry in self.backend.query(user_id, now=now, agent_id=agent_id):
            if needle in entry.response.lower() or entry.question_id.strip().lower() == needle:
                return entry, 1.0, MatchType.EXACT

        # Only the most confident entries are compared; a closer but less
        # confident question beyond the window is not considered.
        best: PreloadedResponse | None = None
        best_similarity = 0.0
        for entry in self.backend.query(
            user_id, now=now, agent_id=agent_id, limit=self.config.similar_candidates
        ):
            similarity = question_similarity(question, entry.question_id)
            if similarity > best_similarity:
                best, best_similarity = entry, similarity
        if best is not None and best_similarity >= thresholds.similarity:
            return best, best_similarity, MatchType.SIMILAR

        for entry in self.backend.query(
            user_id, now=now, limit=self.config.contextual_candidates
        ):
            overlap = context_similarity(context, entry.context)
            if (
                overlap >= self.config.context_threshold
                and entry.confidence >= thresholds.confidence
            ):
                return entry, overlap, MatchType.CONTEXTUAL
        return None

    def _count(self, user_id: str, key: str) -> None:
        with self._counter_lock:
            self._counters[(user_id, key)] += 1


def _clamp(value: float) -> float:
    return max(0.1, min(1.0, float(value)))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
