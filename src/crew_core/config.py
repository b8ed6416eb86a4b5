"""Configuration models for the orchestration core."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ClassifierConfig(BaseModel):
    """Configures domain scoring and complexity bands."""

    confidence_saturation: int = Field(default=3, ge=1)
    specialist_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    advanced_length: int = Field(default=200, ge=1)
    intermediate_length: int = Field(default=100, ge=1)
    advanced_hits: int = Field(default=5, ge=1)
    intermediate_hits: int = Field(default=2, ge=0)


class ReferralConfig(BaseModel):
    """Configures the minimum signal required before interrupting a chat."""

    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class CacheThresholds(BaseModel):
    """Immutable matcher thresholds; replaced wholesale on tuning."""

    model_config = ConfigDict(frozen=True)

    similarity: float = Field(default=0.75, ge=0.1, le=1.0)
    confidence: float = Field(default=0.6, ge=0.1, le=1.0)


class CacheConfig(BaseModel):
    """Configures predictive response matching and retention."""

    thresholds: CacheThresholds = Field(default_factory=CacheThresholds)
    context_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    similar_candidates: int = Field(default=10, ge=1)
    contextual_candidates: int = Field(default=5, ge=1)
    default_ttl_seconds: int = Field(default=3600, ge=1)
    sweep_interval_seconds: float | None = Field(default=None, gt=0.0)


class PersistenceConfig(BaseModel):
    """Configures the record store backend and its I/O bound."""

    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "crew_core.db"
    timeout_seconds: float = Field(default=3.0, ge=0.1, le=30.0)


class Settings(BaseModel):
    """Top-level settings bundle used by the API process."""

    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    referral: ReferralConfig = Field(default_factory=ReferralConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``CREW_CORE_*`` environment variables."""
        thresholds = CacheThresholds(
            similarity=float(os.getenv("CREW_CORE_SIMILARITY_THRESHOLD", "0.75")),
            confidence=float(os.getenv("CREW_CORE_CONFIDENCE_THRESHOLD", "0.6")),
        )
        sweep = os.getenv("CREW_CORE_SWEEP_INTERVAL_SECONDS")
        return cls(
            cache=CacheConfig(
                thresholds=thresholds,
                default_ttl_seconds=int(os.getenv("CREW_CORE_CACHE_TTL_SECONDS", "3600")),
                sweep_interval_seconds=float(sweep) if sweep else None,
            ),
            persistence=PersistenceConfig(
                backend=os.getenv("CREW_CORE_STORE", "memory"),
                sqlite_path=os.getenv("CREW_CORE_SQLITE_PATH", "crew_core.db"),
                timeout_seconds=float(os.getenv("CREW_CORE_STORE_TIMEOUT", "3.0")),
            ),
            log_level=os.getenv("CREW_CORE_LOG_LEVEL", "INFO"),
            json_logs=os.getenv("CREW_CORE_JSON_LOGS", "").lower() in {"1", "true", "yes"},
        )
