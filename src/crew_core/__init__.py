"""Crew orchestration core package."""

from .config import CacheConfig, ClassifierConfig, ReferralConfig, Settings

__all__ = ["CacheConfig", "ClassifierConfig", "ReferralConfig", "Settings"]
