"""
AlloCare Agent Records

This module defines the records the community simulation operates on:
households (the agents), the tasks they bid on, and the append-only
transfer, log and trend records produced by every operation.

Households are mutated in place by the economy; their derived poverty
fields are only ever written by ``HouseholdAgent.recalculate``.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import CONFIG
from scoring import compute_poverty_index


LOG_TYPES = (
    "equity_override",
    "shock",
    "redistribution",
    "labor",
    "bid",
    "transfer",
    "stabilization",
    "info",
)
TASK_STATUSES = ("open", "allocated", "completed")
TASK_DIFFICULTIES = ("Low", "Medium", "High")
JOB_CATEGORIES = ("Environment", "Sanitation", "Social", "Infrastructure")
JOB_STATUSES = ("pending", "active", "verified", "completed")
PROOF_TYPES = ("photo", "gps", "attendance")

_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_record_id(prefix: str, length: int = 9) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=length))
    return f"{prefix}-{now_ms()}-{suffix}"


@dataclass(slots=True)
class HouseholdAgent:
    """
    Represents a household node in the community network.

    Risk factors are normalized to [0, 1]. ``poverty_index`` and
    ``credit_deficit_ratio`` are derived and recomputed after construction
    and after every operation that touches credits or risk factors.
    """

    # Identification
    household_id: str
    name: str
    sector: str

    # Financial state
    credits: float
    labor_hours: float = 0.0

    # Risk factors
    income_instability_score: float = 0.0
    dependency_ratio: float = 0.0
    shock_exposure_risk: float = 0.0
    centrality_score: float = 0.0  # network importance, independent of poverty

    connections: List[str] = field(default_factory=list)

    # Derived
    poverty_index: float = 0.0
    credit_deficit_ratio: float = 0.0

    # Transient flags
    last_shocked: bool = False
    exited_poverty_this_cycle: bool = False

    def __post_init__(self):
        """Validate invariants after initialization."""
        for name in (
            "income_instability_score",
            "dependency_ratio",
            "shock_exposure_risk",
            "centrality_score",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0,1], got {value}")
        if self.labor_hours < 0:
            raise ValueError(f"labor_hours cannot be negative, got {self.labor_hours}")
        if self.household_id in self.connections:
            raise ValueError(f"household {self.household_id} cannot be connected to itself")
        self.recalculate()

    def recalculate(self) -> None:
        """Overwrite the derived poverty fields from the current state."""
        self.poverty_index, self.credit_deficit_ratio = compute_poverty_index(
            self.credits,
            self.income_instability_score,
            self.dependency_ratio,
            self.shock_exposure_risk,
        )

    @property
    def is_high_poverty(self) -> bool:
        return self.poverty_index > CONFIG.thresholds.high_poverty_threshold

    @property
    def is_extreme_poverty(self) -> bool:
        return self.poverty_index > CONFIG.thresholds.extreme_poverty_threshold

    def to_dict(self) -> Dict[str, object]:
        """
        Serialize all fields to basic Python types.

        Returns:
            Dictionary representation of the household state
        """
        return {
            "household_id": self.household_id,
            "name": self.name,
            "sector": self.sector,
            "credits": self.credits,
            "labor_hours": self.labor_hours,
            "income_instability_score": self.income_instability_score,
            "dependency_ratio": self.dependency_ratio,
            "shock_exposure_risk": self.shock_exposure_risk,
            "centrality_score": self.centrality_score,
            "connections": list(self.connections),
            "poverty_index": self.poverty_index,
            "credit_deficit_ratio": self.credit_deficit_ratio,
            "last_shocked": self.last_shocked,
            "exited_poverty_this_cycle": self.exited_poverty_this_cycle,
        }


@dataclass(slots=True)
class Bid:
    household_id: str
    amount: float
    allocation_score: float
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, object]:
        return {
            "household_id": self.household_id,
            "amount": self.amount,
            "allocation_score": self.allocation_score,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class Task:
    """
    An allocatable unit of community work.

    A task accepts bids while ``open``; at most one bid per household is
    kept (a newer bid replaces the household's previous one).
    """

    task_id: str
    title: str
    description: str
    base_credit_requirement: float
    stability_impact: float
    difficulty: str
    category: str
    bids: List[Bid] = field(default_factory=list)
    allocated: Optional[str] = None
    equity_override: bool = False
    status: str = "open"

    def __post_init__(self):
        if not (0.0 <= self.stability_impact <= 1.0):
            raise ValueError(f"stability_impact must be in [0,1], got {self.stability_impact}")
        if self.difficulty not in TASK_DIFFICULTIES:
            raise ValueError(f"difficulty must be one of {TASK_DIFFICULTIES}, got {self.difficulty!r}")
        if self.status not in TASK_STATUSES:
            raise ValueError(f"status must be one of {TASK_STATUSES}, got {self.status!r}")

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def place_bid(self, bid: Bid) -> None:
        self.bids = [b for b in self.bids if b.household_id != bid.household_id]
        self.bids.append(bid)

    def allocate(self, household_id: str, equity_override: bool = False) -> None:
        self.status = "allocated"
        self.allocated = household_id
        self.equity_override = equity_override

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "description": self.description,
            "base_credit_requirement": self.base_credit_requirement,
            "stability_impact": self.stability_impact,
            "difficulty": self.difficulty,
            "category": self.category,
            "bids": [b.to_dict() for b in self.bids],
            "allocated": self.allocated,
            "equity_override": self.equity_override,
            "status": self.status,
        }


@dataclass(slots=True)
class Transfer:
    from_id: str
    to_id: str
    amount: float
    timestamp: int = field(default_factory=now_ms)
    ai_suggested: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "from_id": self.from_id,
            "to_id": self.to_id,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "ai_suggested": self.ai_suggested,
        }


@dataclass(slots=True)
class SystemLog:
    """One entry of the community activity feed."""

    log_id: str
    timestamp: int
    type: str
    message: str
    household_id: Optional[str] = None

    def __post_init__(self):
        if self.type not in LOG_TYPES:
            raise ValueError(f"log type must be one of {LOG_TYPES}, got {self.type!r}")

    @classmethod
    def create(cls, log_type: str, message: str, household_id: Optional[str] = None) -> "SystemLog":
        return cls(
            log_id=new_record_id("log"),
            timestamp=now_ms(),
            type=log_type,
            message=message,
            household_id=household_id,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "log_id": self.log_id,
            "timestamp": self.timestamp,
            "type": self.type,
            "message": self.message,
            "household_id": self.household_id,
        }


@dataclass(slots=True)
class PovertyTrendPoint:
    cycle: int
    poverty_rate: float  # percent of households above the high-poverty threshold
    extreme_poverty_count: int
    resilience_score: int
    avg_poverty_index: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "cycle": self.cycle,
            "poverty_rate": self.poverty_rate,
            "extreme_poverty_count": self.extreme_poverty_count,
            "resilience_score": self.resilience_score,
            "avg_poverty_index": self.avg_poverty_index,
        }


@dataclass(slots=True)
class CECSJob:
    """
    A Community Engagement program job.

    Lifecycle: pending -> active (sector activation) -> verified (worker
    submits proof) -> completed (reviewer verifies and credits are paid).
    """

    job_id: str
    title: str
    category: str
    description: str
    credits: float
    cash_payment: float
    coupons: List[str]
    sector: str
    status: str = "pending"
    proof_required: Optional[str] = None
    assigned_to: Optional[str] = None
    submission_proof: Optional[str] = None

    def __post_init__(self):
        if self.category not in JOB_CATEGORIES:
            raise ValueError(f"category must be one of {JOB_CATEGORIES}, got {self.category!r}")
        if self.status not in JOB_STATUSES:
            raise ValueError(f"status must be one of {JOB_STATUSES}, got {self.status!r}")
        if self.proof_required is not None and self.proof_required not in PROOF_TYPES:
            raise ValueError(f"proof_required must be one of {PROOF_TYPES}, got {self.proof_required!r}")
        if self.credits < 0:
            raise ValueError(f"credits cannot be negative, got {self.credits}")

    def to_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "credits": self.credits,
            "cash_payment": self.cash_payment,
            "coupons": list(self.coupons),
            "sector": self.sector,
            "status": self.status,
            "proof_required": self.proof_required,
            "assigned_to": self.assigned_to,
            "submission_proof": self.submission_proof,
        }
