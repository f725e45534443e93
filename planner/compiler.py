"""Lower domain constraints to linear constraints over registered variables."""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple, Type

from .domain import (
    CapacityConstraint,
    Constraint,
    DomainModel,
    EligibilityConstraint,
    Entity,
    ExclusionConstraint,
    PrecedenceConstraint,
    Resource,
)
from .errors import InvalidKeyError, UnsupportedConstraintError
from .model import TOLERANCE, LinearConstraint, LinearExpr
from .registry import AssignmentKey, DecisionVariable, StartKey, UsageKey, VariableRegistry

logger = logging.getLogger(__name__)


def _label(value) -> str:
    return "all" if value is None else str(value)


class ConstraintCompiler:
    """Populate a :class:`VariableRegistry` and emit the matching constraints.

    Decision variables are only registered for eligible (entity, resource,
    start slot) tuples, so an ineligible placement does not exist in the model
    at all.  Iteration follows the order of the domain model and sorted slot
    numbers, which keeps compilation deterministic.
    """

    def __init__(self, domain: DomainModel, registry: VariableRegistry):
        if registry.domain is not domain:
            raise ValueError("Registry belongs to a different domain model")
        self.domain = domain
        self.registry = registry
        self._restrictions = self._collect_restrictions()
        self._linked_starts: Set[str] = set()

    # -- eligibility -----------------------------------------------------

    def _collect_restrictions(self) -> Dict[str, Tuple[Optional[FrozenSet[str]], Optional[FrozenSet[int]]]]:
        domain = self.domain
        restrictions: Dict[str, Tuple[Optional[FrozenSet[str]], Optional[FrozenSet[int]]]] = {}
        for entity in domain.entities:
            restrictions[entity.id] = (entity.allowed_resources, entity.allowed_slots)
            for resource_id in sorted(entity.allowed_resources or ()):
                self._require_resource(resource_id)
        for constraint in domain.constraints:
            if not isinstance(constraint, EligibilityConstraint):
                continue
            self._require_entity(constraint.entity)
            for resource_id in sorted(constraint.resources or ()):
                self._require_resource(resource_id)
            if constraint.slots is not None and not domain.timed:
                raise UnsupportedConstraintError(
                    f"Eligibility for '{constraint.entity}' restricts slots but the model has no horizon"
                )
            resources, slots = restrictions[constraint.entity]
            if constraint.resources is not None:
                resources = constraint.resources if resources is None else resources & constraint.resources
            if constraint.slots is not None:
                slots = constraint.slots if slots is None else slots & constraint.slots
            restrictions[constraint.entity] = (resources, slots)
        return restrictions

    def eligible_resources(self, entity: Entity) -> List[Resource]:
        allowed, _ = self._restrictions[entity.id]
        return [r for r in self.domain.resources if allowed is None or r.id in allowed]

    def eligible_starts(self, entity: Entity) -> List[Optional[int]]:
        if not self.domain.timed:
            return [None]
        _, allowed = self._restrictions[entity.id]
        last_start = self.domain.horizon - entity.duration
        return [s for s in range(last_start + 1) if allowed is None or s in allowed]

    def register_decisions(self) -> List[DecisionVariable]:
        """Register one placement variable per eligible (entity, resource, start)."""

        for entity in self.domain.entities:
            for resource in self.eligible_resources(entity):
                for slot in self.eligible_starts(entity):
                    self.registry.register(AssignmentKey(entity.id, resource.id, slot))
        return self.registry.variables()

    # -- helpers ---------------------------------------------------------

    def _require_entity(self, entity_id: str) -> Entity:
        if not self.domain.has_entity(entity_id):
            raise InvalidKeyError(entity_id, f"Unknown entity '{entity_id}'")
        return self.domain.entity(entity_id)

    def _require_resource(self, resource_id: str) -> Resource:
        if not self.domain.has_resource(resource_id):
            raise InvalidKeyError(resource_id, f"Unknown resource '{resource_id}'")
        return self.domain.resource(resource_id)

    def occupying(self, entity: Entity, resource_id: str, slot: Optional[int]) -> List[DecisionVariable]:
        """Registered placement variables that put ``entity`` on ``resource_id`` during ``slot``."""

        if slot is None:
            var = self.registry.lookup(AssignmentKey(entity.id, resource_id, None))
            return [var] if var is not None else []
        found = []
        for start in range(max(slot - entity.duration + 1, 0), slot + 1):
            var = self.registry.lookup(AssignmentKey(entity.id, resource_id, start))
            if var is not None:
                found.append(var)
        return found

    def _start_variable(self, entity: Entity, out: List[LinearConstraint]) -> DecisionVariable:
        start = self.registry.register(StartKey(entity.id))
        if entity.id not in self._linked_starts:
            self._linked_starts.add(entity.id)
            pairs = [(start, 1.0)]
            pairs.extend((var, -float(var.key.slot)) for var in self.registry.assignments_for(entity.id))
            out.append(
                LinearConstraint(
                    name=f"start_link_{entity.id}",
                    expr=LinearExpr.from_pairs(pairs),
                    sense="==",
                    rhs=0.0,
                    origin="precedence",
                )
            )
        return start

    # -- compilation -----------------------------------------------------

    def compile(self) -> List[LinearConstraint]:
        constraints: List[LinearConstraint] = []
        constraints.extend(self._placement_constraints())
        for ordinal, constraint in enumerate(self.domain.all_constraints()):
            handler = _HANDLERS.get(type(constraint))
            if handler is None:
                raise UnsupportedConstraintError(f"No compiler for constraint {constraint!r}")
            constraints.extend(handler(self, constraint, ordinal))
        constraints.extend(self._activation_constraints())
        logger.debug(
            "Compiled %d constraints over %d variables", len(constraints), len(self.registry)
        )
        return constraints

    def _placement_constraints(self) -> List[LinearConstraint]:
        out: List[LinearConstraint] = []
        for entity in self.domain.entities:
            variables = self.registry.assignments_for(entity.id)
            if not variables and not entity.required:
                continue
            limit = float(entity.size) if entity.is_split else 1.0
            if entity.required and not variables:
                logger.info("Required entity '%s' has no eligible placement", entity.id)
            out.append(
                LinearConstraint(
                    name=f"place_{entity.id}",
                    expr=LinearExpr.from_pairs((var, 1.0) for var in variables),
                    sense="==" if entity.required else "<=",
                    rhs=limit,
                    origin="placement",
                )
            )
        return out

    def _compile_capacity(self, constraint: CapacityConstraint, ordinal: int) -> List[LinearConstraint]:
        resource = self._require_resource(constraint.resource)
        if constraint.slots is not None and not self.domain.timed:
            raise UnsupportedConstraintError(
                f"Capacity on '{resource.id}' restricts slots but the model has no horizon"
            )
        out: List[LinearConstraint] = []
        for slot in self.domain.slots():
            if constraint.slots is not None and slot not in constraint.slots:
                continue
            limit = resource.capacity_at(slot) if constraint.limit is None else float(constraint.limit)
            occupants = [
                (entity, var)
                for entity in self.domain.entities
                for var in self.occupying(entity, resource.id, slot)
            ]
            if not occupants:
                continue
            if limit <= TOLERANCE:
                # Every placement on this resource/slot is rejected.
                out.append(
                    LinearConstraint(
                        name=f"zero_capacity_{ordinal}_{resource.id}_{_label(slot)}",
                        expr=LinearExpr.from_pairs((var, 1.0) for _, var in occupants),
                        sense="<=",
                        rhs=0.0,
                        origin="capacity",
                    )
                )
                continue
            expr = LinearExpr.from_pairs(
                (var, 1.0 if entity.is_split else float(entity.size)) for entity, var in occupants
            )
            if not expr:
                continue
            out.append(
                LinearConstraint(
                    name=f"capacity_{ordinal}_{resource.id}_{_label(slot)}",
                    expr=expr,
                    sense="<=",
                    rhs=limit,
                    origin="capacity",
                )
            )
        return out

    def _compile_precedence(self, constraint: PrecedenceConstraint, ordinal: int) -> List[LinearConstraint]:
        before = self._require_entity(constraint.before)
        after = self._require_entity(constraint.after)
        if not self.domain.timed:
            raise UnsupportedConstraintError(
                f"Precedence '{before.id}' before '{after.id}' needs start times but the model has no horizon"
            )
        for entity in (before, after):
            if entity.is_split:
                raise UnsupportedConstraintError(
                    f"Entity '{entity.id}' is split across slots and has no single start time"
                )
        out: List[LinearConstraint] = []
        start_before = self._start_variable(before, out)
        start_after = self._start_variable(after, out)
        # start(after) >= start(before) + duration + lag once both are placed;
        # big_m relaxes the row when either side stays unassigned.
        big_m = float(self.domain.horizon + constraint.lag)
        reach = float(before.duration + constraint.lag)
        pairs = [(start_after, 1.0), (start_before, -1.0)]
        pairs.extend((var, -(reach + big_m)) for var in self.registry.assignments_for(before.id))
        pairs.extend((var, -big_m) for var in self.registry.assignments_for(after.id))
        out.append(
            LinearConstraint(
                name=f"precedence_{ordinal}_{before.id}_{after.id}",
                expr=LinearExpr.from_pairs(pairs),
                sense=">=",
                rhs=-2.0 * big_m,
                origin="precedence",
            )
        )
        return out

    def _compile_exclusion(self, constraint: ExclusionConstraint, ordinal: int) -> List[LinearConstraint]:
        members = [self._require_entity(entity_id) for entity_id in constraint.entities]
        for entity in members:
            if entity.is_split:
                raise UnsupportedConstraintError(
                    f"Exclusion needs yes/no placements but '{entity.id}' is split into amounts"
                )
        if constraint.resource is not None:
            resources = [self._require_resource(constraint.resource)]
        else:
            resources = list(self.domain.resources)
        if constraint.slot is not None:
            if not self.domain.timed:
                raise UnsupportedConstraintError("Exclusion restricted to a slot needs a horizon")
            if not 0 <= constraint.slot < self.domain.horizon:
                raise InvalidKeyError(constraint.slot, "Exclusion slot is outside the horizon")
            slots: List[Optional[int]] = [constraint.slot]
        else:
            slots = self.domain.slots()
        out: List[LinearConstraint] = []
        for resource in resources:
            for slot in slots:
                variables = [var for entity in members for var in self.occupying(entity, resource.id, slot)]
                if len({var.key.entity for var in variables}) < 2:
                    continue
                out.append(
                    LinearConstraint(
                        name=f"exclusion_{ordinal}_{resource.id}_{_label(slot)}",
                        expr=LinearExpr.from_pairs((var, 1.0) for var in variables),
                        sense="<=",
                        rhs=1.0,
                        origin="exclusion",
                    )
                )
        return out

    def _compile_eligibility(self, constraint: EligibilityConstraint, ordinal: int) -> List[LinearConstraint]:
        # Applied while registering variables; nothing left to emit.
        return []

    def _activation_constraints(self) -> List[LinearConstraint]:
        out: List[LinearConstraint] = []
        for resource in self.domain.resources:
            if resource.fixed_cost == 0:
                continue
            variables = self.registry.assignments_on(resource.id)
            if not variables:
                continue
            usage = self.registry.register(UsageKey(resource.id))
            big_m = sum(var.upper for var in variables)
            pairs = [(var, 1.0) for var in variables]
            pairs.append((usage, -big_m))
            out.append(
                LinearConstraint(
                    name=f"activation_{resource.id}",
                    expr=LinearExpr.from_pairs(pairs),
                    sense="<=",
                    rhs=0.0,
                    origin="activation",
                )
            )
        return out


_HANDLERS: Dict[Type[Constraint], Callable[[ConstraintCompiler, Constraint, int], List[LinearConstraint]]] = {
    CapacityConstraint: ConstraintCompiler._compile_capacity,
    PrecedenceConstraint: ConstraintCompiler._compile_precedence,
    ExclusionConstraint: ConstraintCompiler._compile_exclusion,
    EligibilityConstraint: ConstraintCompiler._compile_eligibility,
}


__all__ = ["ConstraintCompiler"]
