"""Decode solver values into domain placements and re-check them."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple

from .api import SolveResult, SolveStatus, SOLUTION_STATUSES
from .domain import (
    CapacityConstraint,
    DomainModel,
    EligibilityConstraint,
    Entity,
    ExclusionConstraint,
    PrecedenceConstraint,
)
from .errors import InconsistentSolutionError, NoSolutionError
from .model import TOLERANCE
from .registry import AssignmentKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    entity: str
    resource: str
    slot: Optional[int]
    amount: float = 1.0

    def as_dict(self) -> Dict[str, Any]:
        return {"entity": self.entity, "resource": self.resource, "slot": self.slot, "amount": self.amount}


@dataclass(frozen=True)
class Assignment:
    """Validated domain-level answer: where every entity went, and who was left out."""

    placements: Tuple[Placement, ...]
    unassigned: Tuple[str, ...] = ()
    status: SolveStatus = SolveStatus.OPTIMAL
    objective_value: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "placements", tuple(self.placements))
        object.__setattr__(self, "unassigned", tuple(self.unassigned))

    def placements_for(self, entity_id: str) -> List[Placement]:
        return [p for p in self.placements if p.entity == entity_id]

    def placements_on(self, resource_id: str) -> List[Placement]:
        return [p for p in self.placements if p.resource == resource_id]

    def is_assigned(self, entity_id: str) -> bool:
        return any(p.entity == entity_id for p in self.placements)

    @property
    def assigned(self) -> List[str]:
        seen: List[str] = []
        for placement in self.placements:
            if placement.entity not in seen:
                seen.append(placement.entity)
        return seen

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "objective_value": self.objective_value,
            "placements": [p.as_dict() for p in self.placements],
            "unassigned": list(self.unassigned),
        }


class SolutionMapper:
    """Turn a :class:`SolveResult` into an :class:`Assignment` for ``domain``.

    Every rule of the domain is checked again on the decoded placements
    without looking at the compiled constraints, so a compiler or backend
    defect shows up here instead of reaching the caller.
    """

    def __init__(self, domain: DomainModel, tolerance: float = TOLERANCE):
        self.domain = domain
        self.tolerance = tolerance

    def decode(self, result: SolveResult) -> List[Placement]:
        placements: List[Placement] = []
        for key, value in result.values.items():
            if not isinstance(key, AssignmentKey) or value <= self.tolerance:
                continue
            placements.append(Placement(key.entity, key.resource, key.slot, float(value)))
        entity_order = {entity.id: i for i, entity in enumerate(self.domain.entities)}
        resource_order = {resource.id: i for i, resource in enumerate(self.domain.resources)}
        placements.sort(
            key=lambda p: (
                entity_order.get(p.entity, len(entity_order)),
                -1 if p.slot is None else p.slot,
                resource_order.get(p.resource, len(resource_order)),
            )
        )
        return placements

    def map(self, result: SolveResult) -> Assignment:
        if result.status not in SOLUTION_STATUSES:
            raise NoSolutionError(result.status)
        placements = self.decode(result)
        violations = self.violations(placements)
        if violations:
            logger.error(
                "Solver answer breaks %d domain rule(s); this is a compiler or backend defect: %s",
                len(violations),
                "; ".join(violations[:5]),
            )
            raise InconsistentSolutionError(violations)
        placed = {p.entity for p in placements}
        unassigned = [entity.id for entity in self.domain.entities if entity.id not in placed]
        return Assignment(
            placements=placements,
            unassigned=unassigned,
            status=result.status,
            objective_value=result.objective_value,
        )

    # -- checks ----------------------------------------------------------

    def violations(self, placements: List[Placement]) -> List[str]:
        problems: List[str] = []
        by_entity: Dict[str, List[Placement]] = defaultdict(list)
        for placement in placements:
            if not self.domain.has_entity(placement.entity):
                problems.append(f"unknown entity '{placement.entity}'")
                continue
            if not self.domain.has_resource(placement.resource):
                problems.append(f"unknown resource '{placement.resource}'")
                continue
            by_entity[placement.entity].append(placement)

        for entity in self.domain.entities:
            problems.extend(self._check_entity(entity, by_entity.get(entity.id, [])))
        problems.extend(self._check_capacity(by_entity))
        for constraint in self.domain.constraints:
            if isinstance(constraint, CapacityConstraint):
                problems.extend(self._check_capacity(by_entity, constraint))
            elif isinstance(constraint, PrecedenceConstraint):
                problems.extend(self._check_precedence(constraint, by_entity))
            elif isinstance(constraint, ExclusionConstraint):
                problems.extend(self._check_exclusion(constraint, by_entity))
            elif isinstance(constraint, EligibilityConstraint):
                problems.extend(self._check_eligibility(constraint, by_entity.get(constraint.entity, [])))
        return problems

    def _check_entity(self, entity: Entity, placements: List[Placement]) -> List[str]:
        problems: List[str] = []
        tol = self.tolerance
        if entity.is_split:
            total = sum(p.amount for p in placements)
            if total > entity.size + tol:
                problems.append(f"'{entity.id}' placed {total:g} units, more than its size {entity.size:g}")
            if entity.required and total < entity.size - tol:
                problems.append(f"required '{entity.id}' placed {total:g} of {entity.size:g} units")
        else:
            if len(placements) > 1:
                problems.append(f"'{entity.id}' placed {len(placements)} times")
            if entity.required and not placements:
                problems.append(f"required '{entity.id}' left unassigned")
            for placement in placements:
                if abs(placement.amount - 1.0) > tol:
                    problems.append(f"'{entity.id}' has a partial placement {placement.amount:g}")
        for placement in placements:
            if entity.allowed_resources is not None and placement.resource not in entity.allowed_resources:
                problems.append(f"'{entity.id}' placed on ineligible resource '{placement.resource}'")
            if not self.domain.timed:
                if placement.slot is not None:
                    problems.append(f"'{entity.id}' has slot {placement.slot} in an untimed model")
                continue
            if placement.slot is None or placement.slot < 0 or placement.slot + entity.duration > self.domain.horizon:
                problems.append(f"'{entity.id}' at slot {placement.slot} runs past the horizon")
            elif entity.allowed_slots is not None and placement.slot not in entity.allowed_slots:
                problems.append(f"'{entity.id}' starts at ineligible slot {placement.slot}")
        return problems

    def _usage(self, by_entity: Dict[str, List[Placement]]) -> Dict[Tuple[str, Optional[int]], float]:
        """Load per (resource, slot); every occupied pair has an entry, even at zero load."""

        usage: Dict[Tuple[str, Optional[int]], float] = defaultdict(float)
        for entity_id, placements in by_entity.items():
            entity = self.domain.entity(entity_id)
            for placement in placements:
                load = placement.amount if entity.is_split else float(entity.size)
                if placement.slot is None:
                    usage[(placement.resource, None)] += load
                    continue
                for slot in range(placement.slot, placement.slot + entity.duration):
                    usage[(placement.resource, slot)] += load
        return usage

    def _check_capacity(
        self,
        by_entity: Dict[str, List[Placement]],
        constraint: Optional[CapacityConstraint] = None,
    ) -> List[str]:
        problems: List[str] = []
        usage = self._usage(by_entity)
        resources = self.domain.resources
        if constraint is not None:
            if not self.domain.has_resource(constraint.resource):
                return [f"capacity constraint on unknown resource '{constraint.resource}'"]
            resources = (self.domain.resource(constraint.resource),)
        for resource in resources:
            for slot in self.domain.slots():
                if constraint is not None and constraint.slots is not None and slot not in constraint.slots:
                    continue
                if constraint is not None and constraint.limit is not None:
                    limit = float(constraint.limit)
                else:
                    limit = resource.capacity_at(slot)
                load = usage.get((resource.id, slot), 0.0)
                if limit <= self.tolerance and (resource.id, slot) in usage:
                    problems.append(f"'{resource.id}' has no capacity at slot {slot} but is used")
                elif load > limit + self.tolerance:
                    problems.append(f"'{resource.id}' over capacity at slot {slot}: {load:g} > {limit:g}")
        return problems

    def _check_precedence(
        self, constraint: PrecedenceConstraint, by_entity: Dict[str, List[Placement]]
    ) -> List[str]:
        before = by_entity.get(constraint.before)
        after = by_entity.get(constraint.after)
        if not before or not after:
            return []
        duration = self.domain.entity(constraint.before).duration
        earliest = before[0].slot + duration + constraint.lag
        if after[0].slot < earliest:
            return [
                f"'{constraint.after}' starts at {after[0].slot} before '{constraint.before}' "
                f"allows ({earliest})"
            ]
        return []

    def _check_exclusion(
        self, constraint: ExclusionConstraint, by_entity: Dict[str, List[Placement]]
    ) -> List[str]:
        holders: Dict[Tuple[str, Optional[int]], set] = defaultdict(set)
        for entity_id in constraint.entities:
            if not self.domain.has_entity(entity_id):
                continue
            duration = self.domain.entity(entity_id).duration
            for placement in by_entity.get(entity_id, []):
                if constraint.resource is not None and placement.resource != constraint.resource:
                    continue
                slots = [None] if placement.slot is None else range(placement.slot, placement.slot + duration)
                for slot in slots:
                    if constraint.slot is not None and slot != constraint.slot:
                        continue
                    holders[(placement.resource, slot)].add(entity_id)
        return [
            f"exclusive entities {sorted(members)} share '{resource}' at slot {slot}"
            for (resource, slot), members in sorted(holders.items(), key=lambda item: (item[0][0], item[0][1] or 0))
            if len(members) > 1
        ]

    def _check_eligibility(self, constraint: EligibilityConstraint, placements: List[Placement]) -> List[str]:
        problems: List[str] = []
        for placement in placements:
            if constraint.resources is not None and placement.resource not in constraint.resources:
                problems.append(f"'{constraint.entity}' placed on ineligible resource '{placement.resource}'")
            if constraint.slots is not None and placement.slot not in constraint.slots:
                problems.append(f"'{constraint.entity}' starts at ineligible slot {placement.slot}")
        return problems


def map_solution(result: SolveResult, domain: DomainModel) -> Assignment:
    """Decode and validate ``result`` against ``domain``."""

    return SolutionMapper(domain).map(result)


__all__ = ["Placement", "Assignment", "SolutionMapper", "map_solution"]
