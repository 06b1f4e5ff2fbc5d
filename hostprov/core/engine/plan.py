"""
Plan construction — activated catalog steps in dependency order.

A Plan is immutable and built once per run. Ordering is a topological
sort over ``requires`` edges plus ``after`` edges whose target is in the
plan. Among steps that are ready at the same time, catalog declaration
order wins, so the same configuration always yields the same plan.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from hostprov.core.engine.catalog import CatalogEntry, default_catalog
from hostprov.core.errors import CyclicDependency, MissingDependency, PlanError
from hostprov.core.models.config import ProvisionConfig
from hostprov.core.steps.base import Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    """Ordered, immutable sequence of steps."""

    steps: tuple[Step, ...]
    inactive: tuple[str, ...] = ()

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.steps]

    def get(self, name: str) -> Step | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.steps),
            "steps": [s.describe() for s in self.steps],
            "inactive": list(self.inactive),
        }


def build_plan(config: ProvisionConfig, catalog: Sequence[CatalogEntry] | None = None) -> Plan:
    """Select the catalog entries active for ``config`` and order them.

    Raises:
        PlanError: Duplicate step names.
        MissingDependency: A required step is unknown or not activated.
        CyclicDependency: Prerequisites form a cycle.
    """
    entries = list(catalog) if catalog is not None else default_catalog(config)

    seen: set[str] = set()
    for entry in entries:
        if entry.name in seen:
            raise PlanError(f"Duplicate step name: {entry.name}")
        seen.add(entry.name)

    active = [e.step for e in entries if e.when(config)]
    inactive = tuple(e.name for e in entries if not e.when(config))
    steps = order_steps(active)

    logger.debug("Plan: %d step(s), %d inactive", len(steps), len(inactive))
    return Plan(steps=tuple(steps), inactive=inactive)


def order_steps(steps: Sequence[Step]) -> list[Step]:
    """Stable topological sort (Kahn's algorithm, ties by input order)."""
    index = {s.name: i for i, s in enumerate(steps)}

    # Build adjacency: prerequisite → steps that wait on it
    successors: dict[str, list[str]] = {s.name: [] for s in steps}
    in_degree: dict[str, int] = {s.name: 0 for s in steps}
    for step in steps:
        for dep in step.requires:
            if dep not in index:
                raise MissingDependency(step.name, dep)
        prereqs = set(step.requires) | {a for a in step.after if a in index}
        for dep in prereqs:
            successors[dep].append(step.name)
            in_degree[step.name] += 1

    ready = [index[name] for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: list[Step] = []

    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for successor in successors[step.name]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, index[successor])

    if len(ordered) < len(steps):
        remaining = {name for name, degree in in_degree.items() if degree > 0}
        raise CyclicDependency(_find_cycle(steps, remaining, index))

    return ordered


def _find_cycle(steps: Sequence[Step], remaining: set[str], index: dict[str, int]) -> list[str]:
    """Name one cycle among the steps Kahn's algorithm could not place."""
    prereqs = {
        s.name: [d for d in (*s.requires, *s.after) if d in remaining]
        for s in steps
        if s.name in remaining
    }
    start = min(remaining, key=index.__getitem__)
    path: list[str] = []
    position: dict[str, int] = {}
    node = start
    # Every remaining node has a remaining prerequisite, so the walk must repeat
    while node not in position:
        position[node] = len(path)
        path.append(node)
        node = prereqs[node][0]
    cycle = path[position[node]:] + [node]
    cycle.reverse()
    return cycle
