"""
Poverty Scoring Functions

Pure functions that derive a household's poverty index, credit deficit
ratio and bid allocation score, plus community-wide aggregates.

Nothing in this module mutates its inputs or keeps state: every value can be
re-derived from a household's credits and risk factors alone.
"""

import math
from typing import Dict, Sequence, Tuple

import numpy as np

from config import CONFIG


SURVIVAL_THRESHOLD = CONFIG.thresholds.survival_threshold
MINIMUM_CREDIT_FLOOR = CONFIG.thresholds.minimum_credit_floor
HIGH_POVERTY_THRESHOLD = CONFIG.thresholds.high_poverty_threshold
EXTREME_POVERTY_THRESHOLD = CONFIG.thresholds.extreme_poverty_threshold
EQUITY_OVERRIDE_THRESHOLD = CONFIG.thresholds.equity_override_threshold
STABLE_THRESHOLD = CONFIG.thresholds.stable_threshold


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive values (round() rounds to even)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def compute_credit_deficit_ratio(credits: float) -> float:
    """Normalized shortfall below the survival threshold, 0 once it is met."""
    return max(0.0, SURVIVAL_THRESHOLD - credits) / SURVIVAL_THRESHOLD


def compute_poverty_index(
    credits: float,
    income_instability_score: float,
    dependency_ratio: float,
    shock_exposure_risk: float,
) -> Tuple[float, float]:
    """
    Compute the multidimensional poverty index for one household.

    Args:
        credits: Current credit balance
        income_instability_score: Risk factor in [0, 1]
        dependency_ratio: Risk factor in [0, 1]
        shock_exposure_risk: Risk factor in [0, 1]

    Returns:
        (poverty_index, credit_deficit_ratio), poverty index forced into [0, 1]
    """
    w = CONFIG.weights
    credit_deficit_ratio = compute_credit_deficit_ratio(credits)
    poverty_index = (
        w.credit_deficit_weight * credit_deficit_ratio
        + w.income_instability_weight * income_instability_score
        + w.dependency_weight * dependency_ratio
        + w.shock_exposure_weight * shock_exposure_risk
    )
    return _clamp01(poverty_index), credit_deficit_ratio


def compute_resilience_score(households: Sequence) -> int:
    """100 minus the mean poverty index as a percentage; 100 for no households."""
    if not households:
        return 100
    avg_poverty_index = float(np.mean([h.poverty_index for h in households]))
    return max(0, int(round_half_up(100 - avg_poverty_index * 100)))


def compute_allocation_score(bid: float, centrality_score: float, poverty_index: float) -> float:
    w = CONFIG.weights
    normalized_bid = min(1.0, bid / w.bid_normalization_cap)
    return w.bid_weight * normalized_bid + w.centrality_weight * centrality_score + w.poverty_weight * poverty_index


def compute_population_metrics(households: Sequence) -> Dict[str, float]:
    """
    Aggregate poverty indicators for a household population.

    Returns:
        Dictionary with poverty_rate (percent above the high-poverty
        threshold), extreme_poverty_count, avg_poverty_index and
        resilience_score.
    """
    if not households:
        return {
            "poverty_rate": 0.0,
            "extreme_poverty_count": 0,
            "avg_poverty_index": 0.0,
            "resilience_score": 100,
        }

    indices = np.array([h.poverty_index for h in households], dtype=np.float64)
    return {
        "poverty_rate": float(np.count_nonzero(indices > HIGH_POVERTY_THRESHOLD)) / len(indices) * 100,
        "extreme_poverty_count": int(np.count_nonzero(indices > EXTREME_POVERTY_THRESHOLD)),
        "avg_poverty_index": float(indices.mean()),
        "resilience_score": compute_resilience_score(households),
    }


def poverty_label(poverty_index: float) -> str:
    if poverty_index < STABLE_THRESHOLD:
        return "Stable"
    if poverty_index < HIGH_POVERTY_THRESHOLD:
        return "Vulnerable"
    if poverty_index < EXTREME_POVERTY_THRESHOLD:
        return "High Risk"
    return "Extreme Poverty"


def compute_time_to_exit_poverty(poverty_index: float, credits: float) -> str:
    """Rough time to reach the survival threshold at one tokenized hour per week."""
    if poverty_index < STABLE_THRESHOLD:
        return "Already stable"
    credits_needed = max(0.0, SURVIVAL_THRESHOLD - credits)
    weeks = math.ceil(credits_needed / CONFIG.operations.labor_credit_rate) if credits_needed > 0 else 0
    if weeks == 0:
        return "< 1 week"
    if weeks <= 4:
        return f"{weeks} week{'s' if weeks > 1 else ''}"
    months = math.ceil(weeks / 4)
    return f"{months} month{'s' if months > 1 else ''}"

