"""
Run a scripted AlloCare community simulation.

This script builds the seed community (optionally grown to a larger
synthetic population), optionally runs the three-cycle pilot scenario,
then advances the cycle engine for a number of cycles. A per-cycle table
is printed and a JSON summary is written next to the mirror database.
"""

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from agents import HouseholdAgent
from config import MirrorConfig
from economy import CommunityEconomy
from mirror import MirrorOutbox, build_mirror
from scenario import build_initial_households, build_initial_tasks, grow_population
from scoring import poverty_label


logger = logging.getLogger(__name__)


def create_community_economy(
    num_households: Optional[int] = None,
    seed: Optional[int] = None,
    mirror: Optional[MirrorOutbox] = None,
) -> CommunityEconomy:
    """
    Create a community economy from the seed scenario.

    Args:
        num_households: Grow the five seed households to this many (None keeps the seed)
        seed: Seed for population growth and cycle drift
        mirror: Optional persistence outbox

    Returns:
        CommunityEconomy instance
    """
    households = build_initial_households()
    if num_households is not None and num_households > len(households):
        households = grow_population(households, num_households, seed=seed)
    return CommunityEconomy(households, tasks=build_initial_tasks(), mirror=mirror, seed=seed)


def compute_household_stats(households: List[HouseholdAgent]) -> Dict[str, float]:
    """Vectorized snapshot of household credit and poverty distribution."""
    if not households:
        return {
            "mean_credits": 0.0,
            "median_credits": 0.0,
            "min_credits": 0.0,
            "mean_poverty_index": 0.0,
            "median_poverty_index": 0.0,
            "max_poverty_index": 0.0,
            "total_labor_hours": 0.0,
        }

    credits = np.array([h.credits for h in households], dtype=float)
    poverty = np.array([h.poverty_index for h in households], dtype=float)
    labor = np.array([h.labor_hours for h in households], dtype=float)

    return {
        "mean_credits": float(credits.mean()),
        "median_credits": float(np.median(credits)),
        "min_credits": float(credits.min()),
        "mean_poverty_index": float(poverty.mean()),
        "median_poverty_index": float(np.median(poverty)),
        "max_poverty_index": float(poverty.max()),
        "total_labor_hours": float(labor.sum()),
    }


def main(
    num_cycles: int = 10,
    num_households: Optional[int] = None,
    seed: Optional[int] = None,
    ai_redistribution: bool = False,
    run_pilot: bool = False,
    db_path: Optional[str] = None,
    output_tag: str = "community",
):
    """Run the simulation and write a JSON summary."""
    mirror = None
    if db_path:
        db_file = Path(db_path)
        if db_file.exists():
            db_file.unlink()
            print(f"Removed existing database: {db_file}")
        mirror = build_mirror(MirrorConfig(backend="sqlite", db_path=str(db_file)))
        mirror.start()

    start = time.time()
    economy = create_community_economy(num_households=num_households, seed=seed, mirror=mirror)
    if ai_redistribution:
        economy.set_ai_redistribution(True)

    print("=" * 80)
    print(f"ALLOCARE COMMUNITY SIMULATION ({len(economy.households):,} households, {num_cycles} cycles)")
    print("=" * 80)
    print()

    if run_pilot:
        print("Running pilot scenario (3 cycles)...")
        economy.run_pilot_simulation()

    print(f"{'Cycle':>5} | {'Poverty %':>9} | {'Extreme':>7} | {'Resilience':>10} | {'Avg PI':>6}")
    print("-" * 52)
    for point in economy.trend_data:
        print(f"{point.cycle:5d} | {point.poverty_rate:9.0f} | {point.extreme_poverty_count:7d} | "
              f"{point.resilience_score:10d} | {point.avg_poverty_index:6.2f}")

    for _ in range(num_cycles):
        point = economy.run_cycle()
        print(f"{point.cycle:5d} | {point.poverty_rate:9.0f} | {point.extreme_poverty_count:7d} | "
              f"{point.resilience_score:10d} | {point.avg_poverty_index:6.2f}")

    total_time = time.time() - start
    metrics = economy.get_metrics()
    stats = compute_household_stats(economy.households)

    if mirror is not None:
        if not mirror.flush(timeout=10.0):
            logger.warning("Mirror did not drain before shutdown (%d pending)", mirror.pending)
        mirror.stop()

    print()
    print("=" * 80)
    print("COMMUNITY DASHBOARD")
    print("=" * 80)
    print(f"  Poverty rate:                 {metrics['poverty_rate']:>15.1f}%")
    print(f"  Extreme poverty households:   {metrics['extreme_poverty_count']:>15,}")
    print(f"  Resilience score:             {metrics['resilience_score']:>15,}")
    print(f"  Average poverty index:        {metrics['avg_poverty_index']:>15.3f}")
    print(f"  Total poverty reduction:      {metrics['total_poverty_reduction']:>15.1f}")
    print(f"  Mean credits:                 {stats['mean_credits']:>15,.2f}")
    print(f"  Median credits:               {stats['median_credits']:>15,.2f}")
    print(f"  Emergency fund active:        {str(metrics['emergency_fund_active']):>15}")
    print(f"  Total time:                   {total_time:>15.2f} seconds")
    print()

    if len(economy.households) <= 20:
        print("HOUSEHOLDS:")
        for h in economy.households:
            print(f"  {h.household_id:>4} {h.name:20s} {h.credits:8.2f} credits | "
                  f"PI {h.poverty_index:.2f} ({poverty_label(h.poverty_index)})")
        print()

    summary = {
        "simulation_info": {
            "num_cycles": num_cycles,
            "num_households": len(economy.households),
            "pilot": run_pilot,
            "ai_redistribution": economy.ai_redistribution_enabled,
            "seed": seed,
            "total_simulation_time_seconds": total_time,
        },
        "final_state": {**metrics, **stats},
        "trend_data": [p.to_dict() for p in economy.trend_data],
        "transfers": [t.to_dict() for t in economy.transfers],
    }
    if mirror is not None:
        summary["mirror"] = {"dropped": mirror.dropped, "failed": mirror.failed}

    output_dir = Path(db_path).parent if db_path else Path(".")
    summary_path = output_dir / f"simulation_{output_tag}_summary.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)
    print(f"Summary saved to: {summary_path}")
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Run AlloCare community simulation.")
    parser.add_argument("--cycles", type=int, default=10, help="Number of cycles to run")
    parser.add_argument("--households", type=int, default=None, help="Grow the seed community to N households")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for growth and drift")
    parser.add_argument("--ai", action="store_true", help="Enable AI redistribution")
    parser.add_argument("--pilot", action="store_true", help="Run the 3-cycle pilot scenario first")
    parser.add_argument("--db", type=str, default=None, help="Mirror events into this SQLite database")
    parser.add_argument("--tag", type=str, default="community", help="Output tag for the summary filename")
    args = parser.parse_args()

    main(
        num_cycles=args.cycles,
        num_households=args.households,
        seed=args.seed,
        ai_redistribution=args.ai,
        run_pilot=args.pilot,
        db_path=args.db,
        output_tag=args.tag,
    )
