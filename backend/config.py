"""
Simulation Configuration

Centralizes all tunable parameters for the community resilience simulation.
Poverty thresholds, scoring weights, operation constants and cycle drift
ranges all live here instead of being scattered through the engine.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


@dataclass
class PovertyThresholdConfig:
    """Poverty and credit thresholds used throughout the engine."""
    survival_threshold: float = 100.0  # Credits needed to have zero deficit
    minimum_credit_floor: float = 60.0  # Emergency stabilization floor
    high_poverty_threshold: float = 0.6
    extreme_poverty_threshold: float = 0.75
    equity_override_threshold: float = 0.7  # Bids above this are auto-allocated
    stable_threshold: float = 0.3  # Below this a household is "Stable"


@dataclass
class ScoringWeightsConfig:
    """Weights for the poverty index and the bid allocation score."""

    # Poverty index (must sum to 1.0)
    credit_deficit_weight: float = 0.4
    income_instability_weight: float = 0.2
    dependency_weight: float = 0.2
    shock_exposure_weight: float = 0.2

    # Allocation score (must sum to 1.0)
    bid_weight: float = 0.4
    centrality_weight: float = 0.2
    poverty_weight: float = 0.4
    bid_normalization_cap: float = 200.0  # Bids above this earn no extra weight


@dataclass
class OperationsConfig:
    """Constants for transfers, labor, shocks and redistribution."""

    # Labor tokenization
    labor_credit_rate: float = 10.0  # Credits per tokenized hour

    # Shock injection
    shock_loss_fraction: float = 0.3
    shock_risk_increment: float = 0.1

    # Donor eligibility
    donor_max_poverty: float = 0.4
    donor_min_credits: float = 50.0

    # Suggested / shock-triggered redistribution
    redistribution_cap: float = 30.0
    redistribution_fraction: float = 0.2

    # Cycle-step redistribution (smaller)
    cycle_redistribution_cap: float = 25.0
    cycle_redistribution_fraction: float = 0.15


@dataclass
class CycleDriftConfig:
    """Organic income and labor drift applied every cycle."""
    income_bump_min: float = 2.0
    income_bump_max: float = 10.0
    labor_gain_max: float = 2.0  # Capped by current labor hours
    labor_accrual_max: float = 3.0
    instability_drift_min: float = -0.0275
    instability_drift_max: float = 0.0225


@dataclass
class RetentionConfig:
    """How many records are kept in working memory."""
    max_transfers: int = 50
    max_logs: int = 100
    max_trend_points: int = 20


@dataclass
class EmergencyFundConfig:
    initial_balance: float = 50000.0


@dataclass
class MirrorConfig:
    """Best-effort persistence mirror settings."""
    backend: str = "none"  # none | sqlite | http
    db_path: str = "allocare.db"
    api_base_url: str = "http://localhost:4000/api"
    http_timeout: float = 5.0
    outbox_capacity: int = 1000


@dataclass
class SimulationConfig:
    """Master configuration for the entire simulation."""

    # Sub-configurations
    thresholds: PovertyThresholdConfig = field(default_factory=PovertyThresholdConfig)
    weights: ScoringWeightsConfig = field(default_factory=ScoringWeightsConfig)
    operations: OperationsConfig = field(default_factory=OperationsConfig)
    drift: CycleDriftConfig = field(default_factory=CycleDriftConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    emergency_fund: EmergencyFundConfig = field(default_factory=EmergencyFundConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)

    # Seed for the cycle drift RNG (None = nondeterministic)
    random_seed: Optional[int] = None

    def __post_init__(self):
        """Validation and derived values."""
        w = self.weights
        poverty_sum = (
            w.credit_deficit_weight
            + w.income_instability_weight
            + w.dependency_weight
            + w.shock_exposure_weight
        )
        if abs(poverty_sum - 1.0) > 1e-9:
            raise ValueError(f"poverty index weights must sum to 1.0, got {poverty_sum}")
        allocation_sum = w.bid_weight + w.centrality_weight + w.poverty_weight
        if abs(allocation_sum - 1.0) > 1e-9:
            raise ValueError(f"allocation weights must sum to 1.0, got {allocation_sum}")
        if w.bid_normalization_cap <= 0:
            raise ValueError("bid_normalization_cap must be positive")

        t = self.thresholds
        if t.survival_threshold <= 0:
            raise ValueError("survival_threshold must be positive")
        if t.minimum_credit_floor < 0:
            raise ValueError("minimum_credit_floor cannot be negative")
        for name in (
            "high_poverty_threshold",
            "extreme_poverty_threshold",
            "equity_override_threshold",
            "stable_threshold",
        ):
            value = getattr(t, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value}")

        if self.drift.income_bump_min > self.drift.income_bump_max:
            raise ValueError("income_bump_min cannot exceed income_bump_max")

        r = self.retention
        if min(r.max_transfers, r.max_logs, r.max_trend_points) <= 0:
            raise ValueError("retention limits must be positive")

        if self.mirror.backend not in ("none", "sqlite", "http"):
            raise ValueError(f"unknown mirror backend {self.mirror.backend!r}")


def load_mirror_config() -> MirrorConfig:
    """Build mirror settings from environment variables (and a .env file)."""
    load_dotenv()
    defaults = MirrorConfig()
    return MirrorConfig(
        backend=os.getenv("ALLOCARE_MIRROR", defaults.backend).lower(),
        db_path=os.getenv("ALLOCARE_DB", defaults.db_path),
        api_base_url=os.getenv("ALLOCARE_API_BASE", defaults.api_base_url),
        http_timeout=float(os.getenv("ALLOCARE_API_TIMEOUT", defaults.http_timeout)),
    )


# Global configuration instance
CONFIG = SimulationConfig()
