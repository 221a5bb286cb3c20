"""
Household Registry

Canonical in-memory collection of households, owned by the economy.
Keeps an id lookup for O(1) access alongside the ordered list; iteration
order is the seed order and is what first-match tie-breaking relies on.
"""

from typing import Dict, Iterator, List, Optional

from agents import HouseholdAgent


class HouseholdRegistry:
    """Ordered household list with an id lookup and bulk recalculation."""

    def __init__(self, households: List[HouseholdAgent]):
        self.households: List[HouseholdAgent] = []
        self.household_lookup: Dict[str, HouseholdAgent] = {}
        self.replace_all(households)

    def __iter__(self) -> Iterator[HouseholdAgent]:
        return iter(self.households)

    def __len__(self) -> int:
        return len(self.households)

    def __contains__(self, household_id: str) -> bool:
        return household_id in self.household_lookup

    def get(self, household_id: str) -> Optional[HouseholdAgent]:
        return self.household_lookup.get(household_id)

    def replace_all(self, households: List[HouseholdAgent]) -> None:
        """Swap in a new population, rejecting duplicate ids."""
        lookup: Dict[str, HouseholdAgent] = {}
        for h in households:
            if h.household_id in lookup:
                raise ValueError(f"duplicate household id {h.household_id!r}")
            lookup[h.household_id] = h
        self.households = list(households)
        self.household_lookup = lookup

    def recalculate_all(self) -> List[HouseholdAgent]:
        """Recompute derived poverty fields for every household (idempotent)."""
        for h in self.households:
            h.recalculate()
        return self.households

    def network_edges(self) -> List[Dict[str, object]]:
        """
        Undirected, de-duplicated dependency edges from household connections.

        Connections to ids outside the registry are skipped.
        """
        edges: List[Dict[str, object]] = []
        seen = set()
        for h in self.households:
            for target_id in h.connections:
                if target_id not in self.household_lookup:
                    continue
                key = tuple(sorted((h.household_id, target_id)))
                if key in seen:
                    continue
                seen.add(key)
                edges.append({"source": h.household_id, "target": target_id, "strength": 0.5})
        return edges

    def snapshot(self) -> List[Dict[str, object]]:
        return [h.to_dict() for h in self.households]
