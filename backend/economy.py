"""
Community Economy Engine

This module implements the simulation coordinator that owns the household
registry and applies every state-mutating operation: credit transfers,
labor tokenization, task bidding, shock injection, CECS jobs and the
per-cycle Detect -> Prioritize -> Allocate -> Stabilize -> Recalculate tick.

Every public operation runs under one re-entrant lock, so no caller ever
observes a half-applied operation. Persistence is a side channel: events
are pushed to the mirror outbox after the in-memory change and are never
waited on.
"""

import logging
import math
import random
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from agents import Bid, CECSJob, HouseholdAgent, PovertyTrendPoint, SystemLog, Task, Transfer
from config import CONFIG
from mirror import MirrorOutbox
from registry import HouseholdRegistry
from scenario import build_cecs_jobs
from scoring import compute_allocation_score, compute_population_metrics, round_half_up
from stabilization import (
    RedistributionSuggestion,
    apply_emergency_floor,
    redistribution_amount,
    select_donor,
    select_redistribution_target,
    select_shock_target,
    suggest_redistribution,
)


logger = logging.getLogger(__name__)


class CommunityEconomy:
    """
    Main simulation coordinator for the community resilience model.

    Invalid requests (unknown ids, insufficient credits, closed tasks,
    non-positive amounts) are silent no-ops that return None.
    """

    def __init__(
        self,
        households: List[HouseholdAgent],
        tasks: Optional[List[Task]] = None,
        mirror: Optional[MirrorOutbox] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the economy with pre-constructed households and tasks.

        Args:
            households: Seed population (mutated in place from now on)
            tasks: Seed tasks open for bidding
            mirror: Optional persistence outbox
            seed: Seed for the cycle drift RNG (falls back to CONFIG.random_seed)
        """
        self.registry = HouseholdRegistry(households)
        self.registry.recalculate_all()
        self.tasks: Dict[str, Task] = {t.task_id: t for t in tasks or []}
        self.cecs_jobs: List[CECSJob] = []
        self.mirror = mirror
        self.rng = random.Random(CONFIG.random_seed if seed is None else seed)

        # Bounded histories; transfers and logs are newest first, trends oldest first
        retention = CONFIG.retention
        self.transfers: Deque[Transfer] = deque(maxlen=retention.max_transfers)
        self.system_logs: Deque[SystemLog] = deque(maxlen=retention.max_logs)
        self.trend_data: Deque[PovertyTrendPoint] = deque(maxlen=retention.max_trend_points)

        self.cycle = 1
        self.ai_redistribution_enabled = False
        self.emergency_fund_active = False
        self.emergency_fund_balance = CONFIG.emergency_fund.initial_balance
        self.households_exited_this_cycle = 0
        self.total_poverty_reduction = 0.0
        self.pilot_running = False

        self._lock = threading.RLock()

        self._push_logs([
            SystemLog.create("info", "AlloCare Nexus initialized. Poverty Intelligence Engine active."),
            SystemLog.create("info", f"Monitoring {len(self.registry)} households across community network."),
        ])
        self._mirror_households()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def households(self) -> List[HouseholdAgent]:
        return list(self.registry.households)

    def get_household(self, household_id: str) -> Optional[HouseholdAgent]:
        return self.registry.get(household_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def get_job(self, job_id: str) -> Optional[CECSJob]:
        return next((j for j in self.cecs_jobs if j.job_id == job_id), None)

    def get_ai_suggestion(self) -> Optional[RedistributionSuggestion]:
        """Current redistribution recommendation; never mutates state."""
        with self._lock:
            return suggest_redistribution(self.registry.households)

    def network_edges(self) -> List[Dict[str, object]]:
        return self.registry.network_edges()

    def get_metrics(self) -> Dict[str, float]:
        """
        Calculate community-wide indicators for monitoring and display.

        Returns:
            Dictionary with poverty rate, extreme count, mean poverty index,
            resilience score and the cumulative cycle counters.
        """
        with self._lock:
            metrics = compute_population_metrics(self.registry.households)
            metrics.update({
                "cycle": self.cycle,
                "total_households": len(self.registry),
                "total_credits": sum(h.credits for h in self.registry),
                "total_poverty_reduction": self.total_poverty_reduction,
                "households_exited_this_cycle": self.households_exited_this_cycle,
                "emergency_fund_active": self.emergency_fund_active,
                "emergency_fund_balance": self.emergency_fund_balance,
                "ai_redistribution_enabled": self.ai_redistribution_enabled,
            })
            return metrics

    def snapshot(self) -> Dict[str, object]:
        """Full serializable view of the simulation state."""
        with self._lock:
            return {
                "cycle": self.cycle,
                "households": self.registry.snapshot(),
                "tasks": [t.to_dict() for t in self.tasks.values()],
                "transfers": [t.to_dict() for t in self.transfers],
                "trend_data": [p.to_dict() for p in self.trend_data],
                "system_logs": [log.to_dict() for log in self.system_logs],
                "cecs_jobs": [j.to_dict() for j in self.cecs_jobs],
                "network_edges": self.registry.network_edges(),
                "metrics": self.get_metrics(),
                "pilot_running": self.pilot_running,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _emit(self, operation: str, **payload) -> None:
        if self.mirror is not None:
            self.mirror.emit(operation, **payload)

    def _push_logs(self, logs: List[SystemLog]) -> None:
        for log in logs:
            self.system_logs.appendleft(log)
            self._emit("record_log", log_type=log.type, message=log.message, household_id=log.household_id)

    def _mirror_households(self) -> None:
        self._emit("mirror_households", households=self.registry.snapshot())

    def _stabilize(self, log_sink: List[SystemLog]) -> bool:
        """Floor correction followed by a full recalculation."""
        correction = apply_emergency_floor(self.registry.households, log_sink)
        self.registry.recalculate_all()
        if correction.activated:
            logger.debug("Emergency floor activated at cycle %d", self.cycle)
        return correction.activated

    def _move_credits(self, donor: HouseholdAgent, recipient: HouseholdAgent, amount: float,
                      ai_suggested: bool) -> Transfer:
        donor.credits -= amount
        recipient.credits += amount
        transfer = Transfer(from_id=donor.household_id, to_id=recipient.household_id,
                            amount=amount, ai_suggested=ai_suggested)
        self.transfers.appendleft(transfer)
        self._emit(
            "record_transfer",
            from_id=donor.household_id,
            to_id=recipient.household_id,
            amount=amount,
            ai_suggested=ai_suggested,
            from_name=donor.name,
            to_name=recipient.name,
        )
        return transfer

    # ------------------------------------------------------------------
    # Transaction operations
    # ------------------------------------------------------------------

    def add_log(self, log_type: str, message: str, household_id: Optional[str] = None) -> SystemLog:
        with self._lock:
            log = SystemLog.create(log_type, message, household_id)
            self._push_logs([log])
            return log

    def recalculate_all(self) -> None:
        with self._lock:
            self.registry.recalculate_all()
            self._mirror_households()

    def transfer_credits(self, from_id: str, to_id: str, amount: float,
                         ai_suggested: bool = False) -> Optional[Transfer]:
        """Move credits between two households, then enforce the floor."""
        with self._lock:
            sender = self.registry.get(from_id)
            recipient = self.registry.get(to_id)
            if sender is None or recipient is None or from_id == to_id:
                return None
            if not math.isfinite(amount) or amount <= 0 or sender.credits < amount:
                logger.debug("Rejected transfer %s -> %s of %s", from_id, to_id, amount)
                return None

            transfer = self._move_credits(sender, recipient, amount, ai_suggested)
            floor_logs: List[SystemLog] = []
            if self._stabilize(floor_logs):
                self.emergency_fund_active = True

            if ai_suggested:
                message = (f"AI-Suggested: {sender.name} -> {recipient.name}: {amount:g} credits transferred "
                           "(Redistribution prevents cascade poverty)")
            else:
                message = f"{sender.name} -> {recipient.name}: {amount:g} credits transferred"
            self._push_logs([SystemLog.create("transfer", message, to_id), *floor_logs])
            self._mirror_households()
            return transfer

    def tokenize_labor(self, household_id: str, hours: float = 1) -> Optional[HouseholdAgent]:
        """Convert labor hours into credits at the configured rate."""
        with self._lock:
            household = self.registry.get(household_id)
            if household is None or not math.isfinite(hours) or hours <= 0:
                return None

            credits_earned = hours * CONFIG.operations.labor_credit_rate
            was_extreme = household.is_extreme_poverty
            household.credits += credits_earned
            household.labor_hours = max(0.0, household.labor_hours - hours)
            household.recalculate()

            exited = was_extreme and household.poverty_index <= CONFIG.thresholds.extreme_poverty_threshold
            household.exited_poverty_this_cycle = exited

            logs = [SystemLog.create(
                "labor",
                f"{household.name} tokenized {hours:g}h labor -> +{credits_earned:g} credits",
                household_id,
            )]
            if exited:
                logs.append(SystemLog.create("info", f"{household.name} moved out of extreme poverty!", household_id))

            self._emit(
                "record_tokenization",
                household_id=household_id,
                hours=hours,
                credits_earned=credits_earned,
                new_credits=household.credits,
                new_labor_hours=household.labor_hours,
                new_poverty_index=household.poverty_index,
                new_credit_deficit=household.credit_deficit_ratio,
            )

            if self._stabilize(logs):
                self.emergency_fund_active = True
                self._mirror_households()
            self._push_logs(logs)
            return household

    def submit_bid(self, task_id: str, household_id: str, amount: float) -> Optional[Bid]:
        """
        Place (or replace) a household's bid on an open task.

        A bidder above the equity override threshold is allocated the task
        immediately, without comparing against other bids. Otherwise the
        task stays open; there is no automatic best-score allocation.
        """
        with self._lock:
            task = self.tasks.get(task_id)
            household = self.registry.get(household_id)
            if task is None or not task.is_open or household is None:
                return None
            if not math.isfinite(amount) or amount <= 0 or household.credits < amount:
                return None

            allocation_score = compute_allocation_score(amount, household.centrality_score, household.poverty_index)
            bid = Bid(household_id=household_id, amount=amount, allocation_score=allocation_score)
            task.place_bid(bid)

            equity_override = household.poverty_index > CONFIG.thresholds.equity_override_threshold
            if equity_override:
                task.allocate(household_id, equity_override=True)
                log = SystemLog.create(
                    "equity_override",
                    f'Equity Override Triggered - {household.name} auto-allocated "{task.title}" '
                    f"(Poverty Index: {household.poverty_index:.2f})",
                    household_id,
                )
            else:
                log = SystemLog.create(
                    "bid",
                    f'{household.name} bid {amount:g} credits on "{task.title}" (Score: {allocation_score:.2f})',
                    household_id,
                )

            self._emit(
                "record_bid",
                task_id=task_id,
                household_id=household_id,
                amount=amount,
                allocation_score=allocation_score,
                task_meta={
                    "title": task.title,
                    "base_credit_requirement": task.base_credit_requirement,
                    "category": task.category,
                    "household_name": household.name,
                },
                equity_override=equity_override,
            )
            self._push_logs([log])
            return bid

    def simulate_shock(self) -> Optional[HouseholdAgent]:
        """
        Hit the most shock-exposed vulnerable household with a credit loss.

        With AI redistribution enabled a donor immediately covers part of
        the loss; otherwise the current suggestion is only logged.

        Returns:
            The shocked household, or None when no household qualifies.
        """
        with self._lock:
            households = self.registry.households
            target = select_shock_target(households)
            if target is None:
                return None

            ops = CONFIG.operations
            credit_loss = math.floor(target.credits * ops.shock_loss_fraction)
            target.credits = max(0.0, target.credits - credit_loss)
            for h in households:
                h.last_shocked = h is target
            target.shock_exposure_risk = min(1.0, target.shock_exposure_risk + ops.shock_risk_increment)

            logs = [SystemLog.create(
                "shock",
                f"Economic Shock: {target.name} lost {credit_loss} credits "
                f"({ops.shock_loss_fraction:.0%} reduction)",
                target.household_id,
            )]
            self.emergency_fund_active = self._stabilize(logs)

            self._emit(
                "record_shock",
                household_id=target.household_id,
                credit_loss=credit_loss,
                new_credits=target.credits,
                new_shock_risk=target.shock_exposure_risk,
                new_poverty_index=target.poverty_index,
            )

            if self.ai_redistribution_enabled:
                donor = select_donor(households, exclude_id=target.household_id)
                amount = redistribution_amount(donor, ops.redistribution_cap, ops.redistribution_fraction) if donor else 0
                if donor is not None and amount > 0:
                    self._move_credits(donor, target, amount, ai_suggested=True)
                    logs.append(SystemLog.create(
                        "redistribution",
                        f"AI Auto-Redistribution: {donor.name} -> {target.name}: {amount:g} credits "
                        "to prevent cascade poverty",
                        target.household_id,
                    ))
                    if self._stabilize(logs):
                        self.emergency_fund_active = True
            else:
                suggestion = suggest_redistribution(households)
                if suggestion is not None:
                    donor = self.registry.get(suggestion.from_id)
                    recipient = self.registry.get(suggestion.to_id)
                    logs.append(SystemLog.create(
                        "redistribution",
                        f"AI Recommends: Transfer {suggestion.amount:g} credits from {donor.name} "
                        f"to {recipient.name} to prevent cascade poverty",
                        suggestion.to_id,
                    ))

            self._push_logs(logs)
            self._mirror_households()
            logger.debug("Shock applied to %s (-%s credits)", target.household_id, credit_loss)
            return target

    def trigger_shock(self) -> Optional[HouseholdAgent]:
        return self.simulate_shock()

    def toggle_ai_redistribution(self) -> bool:
        with self._lock:
            return self.set_ai_redistribution(not self.ai_redistribution_enabled)

    def set_ai_redistribution(self, enabled: bool) -> bool:
        with self._lock:
            self.ai_redistribution_enabled = bool(enabled)
            if self.ai_redistribution_enabled:
                message = "AI Redistribution Engine ENABLED - Automatic cascade prevention active"
            else:
                message = "AI Redistribution Engine DISABLED"
            self._push_logs([SystemLog.create("info", message)])
            return self.ai_redistribution_enabled

    def fund_emergency_pool(self, amount: float) -> bool:
        with self._lock:
            if not math.isfinite(amount) or amount <= 0:
                return False
            self.emergency_fund_balance += amount
            self._push_logs([SystemLog.create("stabilization", f"NGO added {amount:g} credits to the Emergency Pool")])
            return True

    # ------------------------------------------------------------------
    # Cycle engine
    # ------------------------------------------------------------------

    def _cycle_redistribution(self, logs: List[SystemLog]) -> None:
        households = self.registry.households
        target = select_redistribution_target(households)
        if target is None:
            return
        donor = select_donor(households, exclude_id=target.household_id)
        if donor is None:
            return
        ops = CONFIG.operations
        amount = redistribution_amount(donor, ops.cycle_redistribution_cap, ops.cycle_redistribution_fraction)
        if amount <= 0:
            return
        self._move_credits(donor, target, amount, ai_suggested=True)
        logs.append(SystemLog.create(
            "redistribution",
            f"Cycle {self.cycle}: AI redistributed {amount:g} credits from {donor.name} to {target.name}",
            target.household_id,
        ))
        self._stabilize(logs)

    def _apply_organic_drift(self) -> None:
        drift = CONFIG.drift
        for h in self.registry:
            income_bump = self.rng.uniform(drift.income_bump_min, drift.income_bump_max)
            labor_gain = min(h.labor_hours, self.rng.uniform(0.0, drift.labor_gain_max))
            h.credits += income_bump
            h.labor_hours += labor_gain + self.rng.uniform(0.0, drift.labor_accrual_max)
            h.income_instability_score = max(
                0.0,
                h.income_instability_score + self.rng.uniform(drift.instability_drift_min, drift.instability_drift_max),
            )

    def run_cycle(self) -> PovertyTrendPoint:
        """
        Advance the simulation by one cycle.

        Order: optional AI redistribution, organic income/labor drift,
        poverty recalculation, trend point for the current cycle number,
        cumulative poverty reduction, exit count, then the counter moves on.

        Returns:
            The trend point recorded for this cycle.
        """
        with self._lock:
            logs: List[SystemLog] = []
            if self.ai_redistribution_enabled:
                self._cycle_redistribution(logs)

            self._apply_organic_drift()
            households = self.registry.recalculate_all()

            metrics = compute_population_metrics(households)
            poverty_rate = metrics["poverty_rate"]
            point = PovertyTrendPoint(
                cycle=self.cycle,
                poverty_rate=round_half_up(poverty_rate),
                extreme_poverty_count=metrics["extreme_poverty_count"],
                resilience_score=metrics["resilience_score"],
                avg_poverty_index=round_half_up(metrics["avg_poverty_index"], 2),
            )

            previous_rate = self.trend_data[-1].poverty_rate if self.trend_data else poverty_rate
            self.total_poverty_reduction += max(0.0, previous_rate - poverty_rate)
            self.trend_data.append(point)

            self.households_exited_this_cycle = sum(1 for h in households if h.exited_poverty_this_cycle)
            for h in households:
                h.exited_poverty_this_cycle = False

            logs.append(SystemLog.create(
                "info",
                f"Cycle {self.cycle} complete: Poverty Rate: {point.poverty_rate:.0f}% | "
                f"Resilience: {point.resilience_score} | Extreme: {point.extreme_poverty_count}",
            ))
            logger.info(
                "Cycle %d: poverty rate %.0f%%, resilience %d, extreme %d",
                self.cycle, point.poverty_rate, point.resilience_score, point.extreme_poverty_count,
            )

            self.cycle += 1

            self._mirror_households()
            self._emit("record_trend_point", **point.to_dict())
            self._push_logs(logs)
            return point

    # ------------------------------------------------------------------
    # Community Engagement (CECS) jobs
    # ------------------------------------------------------------------

    def activate_program(self, sector: str) -> List[CECSJob]:
        """Create one active job per CECS template for a critical sector."""
        with self._lock:
            jobs = build_cecs_jobs(sector)
            self.cecs_jobs.extend(jobs)
            self._push_logs([SystemLog.create(
                "info",
                f"AI flagged {sector} as critical. NGO activated Community Engagement Program (CECS) "
                f"with {len(jobs)} jobs.",
            )])
            return jobs

    def submit_job_proof(self, job_id: str, household_id: str, proof: str) -> Optional[CECSJob]:
        with self._lock:
            job = self.get_job(job_id)
            household = self.registry.get(household_id)
            if job is None or job.status != "active" or household is None or not proof:
                return None
            job.status = "verified"
            job.assigned_to = household_id
            job.submission_proof = proof
            self._push_logs([SystemLog.create(
                "info", f'{household.name} submitted proof for job "{job.title}".', household_id,
            )])
            return job

    def verify_job(self, job_id: str) -> Optional[CECSJob]:
        """Complete a verified job and pay its credits to the assignee."""
        with self._lock:
            job = self.get_job(job_id)
            if job is None or job.status != "verified" or job.assigned_to is None:
                return None
            household = self.registry.get(job.assigned_to)
            if household is None:
                return None

            household.credits += job.credits
            household.recalculate()
            job.status = "completed"
            self._push_logs([SystemLog.create(
                "stabilization",
                f'Job "{job.title}" verified for {household.name}. '
                f"Payout: {job.credits:g} Credits + {job.cash_payment:g} Cash.",
                household.household_id,
            )])
            self._mirror_households()
            return job

    # ------------------------------------------------------------------
    # Pilot scenario
    # ------------------------------------------------------------------

    def run_pilot_simulation(self) -> List[PovertyTrendPoint]:
        """
        Scripted three-cycle intervention on the seed community.

        Cycle 1 tokenizes labor, cycle 2 places bids (triggering equity
        overrides), cycle 3 redistributes, injects a shock and recovers.
        """
        with self._lock:
            self.pilot_running = True
            points: List[PovertyTrendPoint] = []
            try:
                self.add_log("info", "Pilot Simulation Started - 3 cycles of automated intervention")

                self.tokenize_labor("h3", 8)
                self.tokenize_labor("h5", 10)
                points.append(self.run_cycle())
                self.add_log("info", "Cycle 1: Labor tokenization complete")

                self.submit_bid("t2", "h3", 20)
                self.submit_bid("t1", "h5", 30)
                self.submit_bid("t3", "h2", 40)
                points.append(self.run_cycle())
                self.add_log("info", "Cycle 2: Task bidding and equity override applied")

                self.transfer_credits("h2", "h1", 25, ai_suggested=True)
                self.simulate_shock()
                self.tokenize_labor("h1", 5)
                points.append(self.run_cycle())
                self.add_log("info", "Cycle 3 complete: recovery interventions applied")
                self.add_log("info", "Pilot Simulation Complete - Community resilience improved")
            finally:
                self.pilot_running = False
            return points
