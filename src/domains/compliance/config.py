"""Compliance scoring and lifecycle configuration.

Every threshold and bound used by the scoring engine and the lifecycle
manager lives here so the two components cannot drift apart.
"""

import os
from dataclasses import dataclass, field


@dataclass
class ScoringConfig:
    """Score normalisation and candidate validation."""

    # Lower bounds (inclusive) of each risk level on the 0-100 scale.
    # low: [0, 25), medium: [25, 50), high: [50, 75), critical: [75, 100]
    medium_threshold: int = 25
    high_threshold: int = 50
    critical_threshold: int = 75

    min_score: int = 0
    max_score: int = 100

    # Longer category labels are truncated, not rejected.
    max_category_length: int = 100

    system_assessor_prefix: str = "system:"


@dataclass
class LifecycleConfig:
    """Compliance item state machine and optimistic concurrency."""

    # Optimistic retries on a version conflict before ConcurrentModification
    # is surfaced to the caller.
    max_recompute_retries: int = 3


@dataclass
class ComplianceConfig:
    """Top-level compliance configuration."""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)

    @classmethod
    def from_env(cls) -> "ComplianceConfig":
        """Load config with env var overrides (COMPLIANCE_ prefix)."""
        config = cls()

        if v := os.getenv("COMPLIANCE_MAX_CATEGORY_LENGTH"):
            config.scoring.max_category_length = int(v)
        if v := os.getenv("COMPLIANCE_MAX_RECOMPUTE_RETRIES"):
            config.lifecycle.max_recompute_retries = int(v)

        return config


default_config = ComplianceConfig()
