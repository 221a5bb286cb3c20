"""
Unit tests for the agent records

Tests cover:
- HouseholdAgent derived fields and invariant enforcement
- Task bidding and allocation state
- SystemLog and CECSJob validation
- Household registry lookup, recalculation and network edges
"""

import pytest
from agents import Bid, CECSJob, HouseholdAgent, SystemLog, Task
from registry import HouseholdRegistry
from scenario import build_initial_households, build_initial_tasks, grow_population
from scoring import compute_poverty_index


class TestHouseholdAgent:
    """Test suite for HouseholdAgent"""

    def test_derived_fields_computed_on_creation(self):
        """poverty_index and credit_deficit_ratio are filled in by __post_init__"""
        h = HouseholdAgent(
            household_id="h5",
            name="Fatima Begum",
            sector="Sector-A1",
            credits=15,
            income_instability_score=0.95,
            dependency_ratio=0.9,
            shock_exposure_risk=0.85,
        )
        assert abs(h.credit_deficit_ratio - 0.85) < 1e-9
        assert abs(h.poverty_index - 0.88) < 1e-9
        assert h.is_extreme_poverty
        assert h.is_high_poverty

    def test_recalculate_after_credit_change(self):
        """Derived fields follow credits after recalculate()"""
        h = HouseholdAgent(household_id="h1", name="A", sector="S", credits=50, income_instability_score=0.5)
        h.credits = 100
        h.recalculate()
        assert h.credit_deficit_ratio == 0.0
        assert abs(h.poverty_index - 0.1) < 1e-9

    def test_invalid_risk_factor(self):
        with pytest.raises(ValueError, match="income_instability_score"):
            HouseholdAgent(household_id="h1", name="A", sector="S", credits=50, income_instability_score=1.5)

    def test_invalid_centrality(self):
        with pytest.raises(ValueError, match="centrality_score"):
            HouseholdAgent(household_id="h1", name="A", sector="S", credits=50, centrality_score=-0.1)

    def test_negative_labor_hours(self):
        with pytest.raises(ValueError, match="labor_hours"):
            HouseholdAgent(household_id="h1", name="A", sector="S", credits=50, labor_hours=-1)

    def test_self_connection_rejected(self):
        with pytest.raises(ValueError, match="itself"):
            HouseholdAgent(household_id="h1", name="A", sector="S", credits=50, connections=["h1"])

    def test_to_dict_round_trips_fields(self):
        h = build_initial_households()[0]
        data = h.to_dict()
        assert data["household_id"] == "h1"
        assert data["name"] == "Priya Sharma"
        assert data["connections"] == ["h2", "h3"]
        assert data["poverty_index"] == h.poverty_index


class TestTask:
    """Test suite for Task bidding state"""

    def test_seed_tasks_open(self):
        tasks = build_initial_tasks()
        assert [t.task_id for t in tasks] == ["t1", "t2", "t3"]
        assert all(t.is_open for t in tasks)

    def test_place_bid_replaces_previous_bid(self):
        """A household keeps only its latest bid on a task"""
        task = build_initial_tasks()[0]
        task.place_bid(Bid(household_id="h1", amount=10, allocation_score=0.3))
        task.place_bid(Bid(household_id="h2", amount=20, allocation_score=0.4))
        task.place_bid(Bid(household_id="h1", amount=15, allocation_score=0.35))

        assert len(task.bids) == 2
        assert [b.amount for b in task.bids if b.household_id == "h1"] == [15]

    def test_allocate(self):
        task = build_initial_tasks()[1]
        task.allocate("h5", equity_override=True)
        assert task.status == "allocated"
        assert task.allocated == "h5"
        assert task.equity_override
        assert not task.is_open

    def test_invalid_difficulty(self):
        with pytest.raises(ValueError, match="difficulty"):
            Task(task_id="t9", title="x", description="y", base_credit_requirement=10,
                 stability_impact=0.5, difficulty="Extreme", category="Education")


class TestRecords:
    """Test suite for log and job records"""

    def test_system_log_create(self):
        log = SystemLog.create("shock", "Economic Shock", "h1")
        assert log.type == "shock"
        assert log.household_id == "h1"
        assert log.log_id.startswith("log-")

    def test_system_log_unknown_type(self):
        with pytest.raises(ValueError, match="log type"):
            SystemLog.create("panic", "nope")

    def test_cecs_job_validation(self):
        with pytest.raises(ValueError, match="category"):
            CECSJob(job_id="j1", title="x", category="Mining", description="", credits=10,
                    cash_payment=5, coupons=[], sector="Sector-A1")
        with pytest.raises(ValueError, match="proof_required"):
            CECSJob(job_id="j1", title="x", category="Social", description="", credits=10,
                    cash_payment=5, coupons=[], sector="Sector-A1", proof_required="selfie")


class TestHouseholdRegistry:
    """Test suite for HouseholdRegistry"""

    def test_lookup_and_order(self):
        registry = HouseholdRegistry(build_initial_households())
        assert len(registry) == 5
        assert [h.household_id for h in registry] == ["h1", "h2", "h3", "h4", "h5"]
        assert "h3" in registry
        assert registry.get("h3").name == "Meena Devi"
        assert registry.get("missing") is None

    def test_duplicate_ids_rejected(self):
        households = build_initial_households()
        households.append(households[0])
        with pytest.raises(ValueError, match="duplicate"):
            HouseholdRegistry(households)

    def test_recalculate_all_has_no_stale_values(self):
        """After a pass every stored index matches a fresh computation"""
        registry = HouseholdRegistry(build_initial_households())
        for h in registry:
            h.credits -= 10
            h.shock_exposure_risk = min(1.0, h.shock_exposure_risk + 0.05)
        registry.recalculate_all()

        for h in registry:
            fresh, deficit = compute_poverty_index(
                h.credits, h.income_instability_score, h.dependency_ratio, h.shock_exposure_risk
            )
            assert h.poverty_index == fresh
            assert h.credit_deficit_ratio == deficit

    def test_network_edges_deduplicated(self):
        registry = HouseholdRegistry(build_initial_households())
        edges = registry.network_edges()
        pairs = {tuple(sorted((e["source"], e["target"]))) for e in edges}

        assert len(pairs) == len(edges)
        assert ("h1", "h2") in pairs
        assert ("h2", "h5") in pairs
        assert all(e["strength"] == 0.5 for e in edges)

    def test_grow_population(self):
        households = grow_population(build_initial_households(), 25, seed=7)
        registry = HouseholdRegistry(households)

        assert len(registry) == 25
        for h in registry:
            assert h.household_id not in h.connections
            for target in h.connections:
                assert target in registry
