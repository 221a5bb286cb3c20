"""
Seed Scenario

The fixed starting community (five households across four sectors), the
three seed tasks, and the CECS job templates used when a sector's
Community Engagement program is activated.
"""

import random
from typing import Dict, List, Optional

from agents import CECSJob, HouseholdAgent, Task, new_record_id


INITIAL_HOUSEHOLDS: List[Dict[str, object]] = [
    {
        "household_id": "h1",
        "name": "Priya Sharma",
        "credits": 45,
        "labor_hours": 12,
        "income_instability_score": 0.8,
        "dependency_ratio": 0.7,
        "shock_exposure_risk": 0.75,
        "centrality_score": 0.6,
        "connections": ["h2", "h3"],
        "sector": "Sector-A1",
    },
    {
        "household_id": "h2",
        "name": "Rajan Kumar",
        "credits": 120,
        "labor_hours": 5,
        "income_instability_score": 0.3,
        "dependency_ratio": 0.2,
        "shock_exposure_risk": 0.25,
        "centrality_score": 0.8,
        "connections": ["h1", "h4", "h5"],
        "sector": "Sector-A2",
    },
    {
        "household_id": "h3",
        "name": "Meena Devi",
        "credits": 30,
        "labor_hours": 20,
        "income_instability_score": 0.9,
        "dependency_ratio": 0.85,
        "shock_exposure_risk": 0.8,
        "centrality_score": 0.4,
        "connections": ["h1", "h5"],
        "sector": "Sector-B1",
    },
    {
        "household_id": "h4",
        "name": "Arjun Patel",
        "credits": 85,
        "labor_hours": 8,
        "income_instability_score": 0.5,
        "dependency_ratio": 0.45,
        "shock_exposure_risk": 0.4,
        "centrality_score": 0.65,
        "connections": ["h2", "h5"],
        "sector": "Sector-B2",
    },
    {
        "household_id": "h5",
        "name": "Fatima Begum",
        "credits": 15,
        "labor_hours": 25,
        "income_instability_score": 0.95,
        "dependency_ratio": 0.9,
        "shock_exposure_risk": 0.85,
        "centrality_score": 0.35,
        "connections": ["h2", "h3", "h4"],
        "sector": "Sector-A1",
    },
]

INITIAL_TASKS: List[Dict[str, object]] = [
    {
        "task_id": "t1",
        "title": "Community Water Distribution",
        "description": "Coordinate water supply logistics for 50 households in the eastern zone.",
        "base_credit_requirement": 30,
        "stability_impact": 0.8,
        "difficulty": "Medium",
        "category": "Infrastructure",
    },
    {
        "task_id": "t2",
        "title": "Mobile Health Camp Support",
        "description": "Assist medical team with patient registration and logistics for 2-day health camp.",
        "base_credit_requirement": 20,
        "stability_impact": 0.9,
        "difficulty": "Low",
        "category": "Healthcare",
    },
    {
        "task_id": "t3",
        "title": "Digital Literacy Workshop",
        "description": "Teach basic smartphone and internet skills to 20 community members.",
        "base_credit_requirement": 40,
        "stability_impact": 0.7,
        "difficulty": "High",
        "category": "Education",
    },
]

CECS_JOB_TEMPLATES: List[Dict[str, object]] = [
    {"title": "Waste Segregation Drive", "category": "Sanitation",
     "description": "Monthly segregation of community waste.",
     "credits": 25, "cash_payment": 15, "coupons": ["GROCERY-5"], "proof_required": "photo"},
    {"title": "Public Sanitation Cleaning", "category": "Sanitation",
     "description": "Cleaning of community common areas.",
     "credits": 30, "cash_payment": 20, "coupons": ["GEN-10"], "proof_required": "gps"},
    {"title": "Recycling Sorting Initiative", "category": "Environment",
     "description": "Sorting recyclable materials for processing.",
     "credits": 20, "cash_payment": 10, "coupons": ["GREEN-5"], "proof_required": "photo"},
    {"title": "Tree Plantation Program", "category": "Environment",
     "description": "Planting and nurturing local saplings.",
     "credits": 40, "cash_payment": 25, "coupons": ["ECO-15"], "proof_required": "photo"},
    {"title": "Local Survey Assistance", "category": "Social",
     "description": "Aiding in household data collection.",
     "credits": 15, "cash_payment": 30, "coupons": ["SOCIAL-5"], "proof_required": "attendance"},
]

SECTORS = ["Sector-A1", "Sector-A2", "Sector-B1", "Sector-B2"]


def build_initial_households() -> List[HouseholdAgent]:
    return [HouseholdAgent(**{**row, "connections": list(row["connections"])}) for row in INITIAL_HOUSEHOLDS]


def build_initial_tasks() -> List[Task]:
    return [Task(**row) for row in INITIAL_TASKS]


def build_cecs_jobs(sector: str) -> List[CECSJob]:
    """One active job per template for the given sector."""
    return [
        CECSJob(
            job_id=new_record_id("cecs", length=5),
            sector=sector,
            status="active",
            **{**template, "coupons": list(template["coupons"])},
        )
        for template in CECS_JOB_TEMPLATES
    ]


def grow_population(
    households: List[HouseholdAgent],
    num_households: int,
    seed: Optional[int] = None,
) -> List[HouseholdAgent]:
    """
    Extend a population with synthetic households up to ``num_households``.

    New households get seeded random risk profiles, are linked into a ring
    with their predecessor, and get one extra random connection.
    """
    rng = random.Random(seed)
    grown = list(households)
    existing_ids = {h.household_id for h in grown}
    next_index = len(grown) + 1

    while len(grown) < num_households:
        household_id = f"h{next_index}"
        next_index += 1
        if household_id in existing_ids:
            continue

        connections: List[str] = []
        if grown:
            previous = grown[-1]
            connections.append(previous.household_id)
            previous.connections.append(household_id)
            extra = rng.choice(grown)
            if extra.household_id not in connections:
                connections.append(extra.household_id)
                extra.connections.append(household_id)

        grown.append(HouseholdAgent(
            household_id=household_id,
            name=f"Household {household_id.upper()}",
            sector=rng.choice(SECTORS),
            credits=round(rng.uniform(10, 180), 2),
            labor_hours=round(rng.uniform(0, 25), 1),
            income_instability_score=round(rng.uniform(0.1, 0.95), 2),
            dependency_ratio=round(rng.uniform(0.1, 0.9), 2),
            shock_exposure_risk=round(rng.uniform(0.1, 0.85), 2),
            centrality_score=round(rng.uniform(0.2, 0.9), 2),
            connections=connections,
        ))
        existing_ids.add(household_id)

    return grown
