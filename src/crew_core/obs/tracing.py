"""Per-message tracing and cost accounting."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)

PATHS = ("cache", "referral", "generated", "collaboration")


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    user_id: str
    agent_id: str
    message: str
    answer: str
    path: str
    domain: str | None
    domain_confidence: float
    target_agent: str | None
    cache_match_type: str | None
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.005
    output_per_1k: float = 0.015

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability.

    Only generated and collaboration paths are billed; cache hits and
    referrals never reach the language model.
    """

    def __init__(self, *, cost_model: CostModel | None = None, max_records: int = 5000) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._cost_model = cost_model or CostModel()
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        user_id: str,
        agent_id: str,
        message: str,
        answer: str,
        path: str,
        latency_ms: float,
        domain: str | None = None,
        domain_confidence: float = 0.0,
        target_agent: str | None = None,
        cache_match_type: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> TraceRecord:
        if path not in PATHS:
            raise ValueError(f"Unknown trace path: {path}")
        billed = path in {"generated", "collaboration"}
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            user_id=user_id,
            agent_id=agent_id,
            message=message,
            answer=answer,
            path=path,
            domain=domain,
            domain_confidence=domain_confidence,
            target_agent=target_agent,
            cache_match_type=cache_match_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=(
                self._cost_model.estimate_cost(input_tokens, output_tokens) if billed else 0.0
            ),
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20, *, user_id: str | None = None) -> list[TraceRecord]:
        records = self._snapshot(user_id)
        return records[-limit:] if limit > 0 else []

    def summary(self, user_id: str | None = None) -> dict[str, float | int | dict[str, int]]:
        """Aggregate core observability metrics for dashboard display."""
        records = self._snapshot(user_id)
        total = len(records)
        path_counts = {path: 0 for path in PATHS}
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "cache_hit_rate": 0.0,
                "referral_rate": 0.0,
                "paths": path_counts,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        path_counts.update(Counter(record.path for record in records))
        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "cache_hit_rate": path_counts["cache"] / total,
            "referral_rate": path_counts["referral"] / total,
            "paths": path_counts,
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }

    def _snapshot(self, user_id: str | None) -> list[TraceRecord]:
        with self._lock:
            records = list(self._records.values())
        if user_id is None:
            return records
        return [record for record in records if record.user_id == user_id]


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
