"""
Stabilization Rules

Emergency floor correction and the rule-based redistribution advisor.

Selection helpers return the FIRST household holding the maximal key, in
registry order. ``max()`` keeps the first maximal element, which is the
tie-break contract every caller relies on.
"""

import math
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence

from agents import HouseholdAgent, SystemLog
from config import CONFIG


class FloorCorrection(NamedTuple):
    households: List[HouseholdAgent]
    logs: List[SystemLog]
    activated: bool


@dataclass(frozen=True)
class RedistributionSuggestion:
    from_id: str
    to_id: str
    amount: float

    def to_dict(self):
        return {"from_id": self.from_id, "to_id": self.to_id, "amount": self.amount}


def apply_emergency_floor(households: List[HouseholdAgent], log_sink: List[SystemLog]) -> FloorCorrection:
    """
    Raise every household below the minimum credit floor to exactly the floor.

    One ``stabilization`` log is appended to ``log_sink`` per corrected
    household. Corrected households are NOT recalculated here; callers
    recompute poverty indices afterwards.

    Returns:
        FloorCorrection(households, log_sink, activated)
    """
    floor = CONFIG.thresholds.minimum_credit_floor
    activated = False
    for h in households:
        if h.credits < floor:
            boost = floor - h.credits
            h.credits = floor
            activated = True
            log_sink.append(SystemLog.create(
                "stabilization",
                f"Emergency Stabilization Fund activated for {h.name}: +{boost:.0f} credits",
                h.household_id,
            ))
    return FloorCorrection(households, log_sink, activated)


def _first_max(candidates: Sequence[HouseholdAgent], key) -> Optional[HouseholdAgent]:
    if not candidates:
        return None
    return max(candidates, key=key)


def select_redistribution_target(households: Sequence[HouseholdAgent]) -> Optional[HouseholdAgent]:
    """Highest poverty index strictly above the equity override threshold."""
    threshold = CONFIG.thresholds.equity_override_threshold
    return _first_max(
        [h for h in households if h.poverty_index > threshold],
        key=lambda h: h.poverty_index,
    )


def select_donor(households: Sequence[HouseholdAgent], exclude_id: Optional[str] = None) -> Optional[HouseholdAgent]:
    """Richest low-poverty household (other than ``exclude_id``)."""
    ops = CONFIG.operations
    return _first_max(
        [
            h for h in households
            if h.household_id != exclude_id
            and h.poverty_index < ops.donor_max_poverty
            and h.credits > ops.donor_min_credits
        ],
        key=lambda h: h.credits,
    )


def select_shock_target(households: Sequence[HouseholdAgent]) -> Optional[HouseholdAgent]:
    """Most shock-exposed household among those above the stable threshold."""
    threshold = CONFIG.thresholds.stable_threshold
    return _first_max(
        [h for h in households if h.poverty_index > threshold],
        key=lambda h: h.shock_exposure_risk,
    )


def redistribution_amount(donor: HouseholdAgent, cap: float, fraction: float) -> float:
    return float(min(cap, math.floor(donor.credits * fraction)))


def suggest_redistribution(
    households: Sequence[HouseholdAgent],
    cap: Optional[float] = None,
    fraction: Optional[float] = None,
) -> Optional[RedistributionSuggestion]:
    """
    Propose a donor -> recipient transfer for the highest-poverty household.

    Pure: never mutates households and never caches, so it must be
    re-evaluated after each state change.

    Args:
        households: Current population
        cap: Maximum suggested amount (defaults to the suggestion cap)
        fraction: Share of donor credits (defaults to the suggestion fraction)

    Returns:
        RedistributionSuggestion, or None when there is no target, no
        eligible donor, or the amount would be zero.
    """
    ops = CONFIG.operations
    cap = ops.redistribution_cap if cap is None else cap
    fraction = ops.redistribution_fraction if fraction is None else fraction

    target = select_redistribution_target(households)
    if target is None:
        return None
    donor = select_donor(households, exclude_id=target.household_id)
    if donor is None:
        return None
    amount = redistribution_amount(donor, cap, fraction)
    if amount <= 0:
        return None
    return RedistributionSuggestion(from_id=donor.household_id, to_id=target.household_id, amount=amount)
