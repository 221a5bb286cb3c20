"""
Unit tests for the stabilization rules

Tests cover:
- Emergency floor correction and its logs
- Redistribution target, donor and shock target selection
- First-match tie-breaking
- Redistribution suggestions (including the no-target case)
"""

from agents import HouseholdAgent
from scenario import build_initial_households
from stabilization import (
    apply_emergency_floor,
    redistribution_amount,
    select_donor,
    select_redistribution_target,
    select_shock_target,
    suggest_redistribution,
)


def make_household(household_id, credits, instability=0.0, dependency=0.0, shock=0.0):
    return HouseholdAgent(
        household_id=household_id,
        name=f"Household {household_id}",
        sector="Sector-A1",
        credits=credits,
        income_instability_score=instability,
        dependency_ratio=dependency,
        shock_exposure_risk=shock,
    )


class TestEmergencyFloor:
    """Test suite for the emergency floor corrector"""

    def test_raises_households_to_floor(self):
        households = [make_household("h1", 35), make_household("h2", 80), make_household("h3", 59.5)]
        logs = []

        correction = apply_emergency_floor(households, logs)

        assert correction.activated
        assert [h.credits for h in households] == [60, 80, 60]
        assert len(correction.logs) == 2
        assert all(log.type == "stabilization" for log in correction.logs)
        assert "+25 credits" in correction.logs[0].message
        assert correction.logs[0].household_id == "h1"

    def test_no_correction_needed(self):
        households = [make_household("h1", 60), make_household("h2", 100)]
        correction = apply_emergency_floor(households, [])

        assert not correction.activated
        assert correction.logs == []
        assert [h.credits for h in households] == [60, 100]

    def test_appends_to_existing_log_sink(self):
        households = [make_household("h1", 10)]
        sink = ["existing"]
        apply_emergency_floor(households, sink)
        assert sink[0] == "existing"
        assert len(sink) == 2


class TestSelection:
    """Test suite for target and donor selection"""

    def test_seed_redistribution_target_is_fatima(self):
        households = build_initial_households()
        assert select_redistribution_target(households).household_id == "h5"

    def test_seed_donor_is_rajan(self):
        households = build_initial_households()
        assert select_donor(households).household_id == "h2"

    def test_donor_excludes_target(self):
        households = [
            make_household("rich1", 300),
            make_household("rich2", 200),
        ]
        assert select_donor(households, exclude_id="rich1").household_id == "rich2"

    def test_donor_requires_credits_above_50(self):
        households = [make_household("h1", 50)]
        assert select_donor(households) is None

    def test_shock_target_first_match_on_tie(self):
        """Equal shock exposure resolves to the earliest household"""
        households = [
            make_household("h1", 20, instability=0.5, shock=0.8),
            make_household("h2", 20, instability=0.5, shock=0.8),
        ]
        assert select_shock_target(households).household_id == "h1"

    def test_shock_target_requires_poverty_above_stable(self):
        households = [make_household("h1", 500, shock=0.9)]
        assert select_shock_target(households) is None

    def test_redistribution_target_first_match_on_tie(self):
        households = [
            make_household("h1", 0, instability=1.0, dependency=1.0, shock=1.0),
            make_household("h2", 0, instability=1.0, dependency=1.0, shock=1.0),
        ]
        assert select_redistribution_target(households).household_id == "h1"


class TestSuggestRedistribution:
    """Test suite for the redistribution advisor"""

    def test_seed_suggestion(self):
        """Rajan (120 credits) covers Fatima: min(30, floor(120 * 0.2)) = 24"""
        households = build_initial_households()
        suggestion = suggest_redistribution(households)

        assert suggestion.from_id == "h2"
        assert suggestion.to_id == "h5"
        assert suggestion.amount == 24.0

    def test_amount_capped_at_30(self):
        households = [
            make_household("poor", 0, instability=1.0, dependency=1.0, shock=1.0),
            make_household("rich", 1000),
        ]
        assert suggest_redistribution(households).amount == 30.0

    def test_no_target_above_equity_threshold(self):
        """Large disparities below 0.7 produce no suggestion"""
        households = [
            make_household("h1", 20, instability=0.6, dependency=0.6, shock=0.6),  # 0.68
            make_household("h2", 1000),
        ]
        assert households[0].poverty_index < 0.7
        assert suggest_redistribution(households) is None

    def test_no_eligible_donor(self):
        households = [
            make_household("h1", 0, instability=1.0, dependency=1.0, shock=1.0),
            make_household("h2", 40),
        ]
        assert suggest_redistribution(households) is None

    def test_does_not_mutate(self):
        households = build_initial_households()
        before = [h.to_dict() for h in households]
        suggest_redistribution(households)
        assert [h.to_dict() for h in households] == before

    def test_redistribution_amount_floor(self):
        donor = make_household("d", 57)
        assert redistribution_amount(donor, 25, 0.15) == 8.0
