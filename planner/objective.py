"""Assemble the weighted linear objective from domain preferences and costs."""

from __future__ import annotations

from dataclasses import dataclass
import math
from numbers import Real
from typing import Any, Iterable, List, Optional

from .domain import DomainModel, Preference
from .errors import InvalidKeyError, InvalidWeightError
from .model import LinearExpr, Objective, Sense
from .registry import DecisionVariable, UsageKey, VariableRegistry


@dataclass(frozen=True)
class ObjectiveTerm:
    variable: DecisionVariable
    weight: float


def check_weight(weight: Any, what: str = "weight") -> float:
    """Return ``weight`` as a float or raise :class:`InvalidWeightError`."""

    if weight is None:
        raise InvalidWeightError(f"{what} is undefined")
    if isinstance(weight, bool) or not isinstance(weight, Real):
        raise InvalidWeightError(f"{what} must be a number, got {weight!r}")
    value = float(weight)
    if not math.isfinite(value):
        raise InvalidWeightError(f"{what} must be finite, got {weight!r}")
    return value


class ObjectiveBuilder:
    """Collect (variable, weight) terms and freeze them into an :class:`Objective`.

    The optimization sense is recorded as given and handed to the solver
    backend untouched.
    """

    def __init__(self, registry: VariableRegistry, sense: Sense = Sense.MINIMIZE):
        self.registry = registry
        self.sense = Sense(sense)
        self._terms: List[ObjectiveTerm] = []

    def add_term(self, variable: DecisionVariable, weight: Any) -> "ObjectiveBuilder":
        if self.registry.lookup(variable.key) is not variable:
            raise InvalidKeyError(variable.key, "Objective term uses a variable from another registry")
        value = check_weight(weight, f"Weight for {variable.name}")
        self._terms.append(ObjectiveTerm(variable, value))
        return self

    def add_preference(self, preference: Preference) -> "ObjectiveBuilder":
        domain = self.registry.domain
        what = f"Preference weight for '{preference.entity}'"
        value = check_weight(preference.weight, what)
        if not domain.has_entity(preference.entity):
            raise InvalidKeyError(preference.entity, f"Unknown entity '{preference.entity}'")
        if preference.resource is not None and not domain.has_resource(preference.resource):
            raise InvalidKeyError(preference.resource, f"Unknown resource '{preference.resource}'")
        for variable in self.registry.assignments_for(preference.entity):
            key = variable.key
            if preference.resource is not None and key.resource != preference.resource:
                continue
            if preference.slot is not None and key.slot != preference.slot:
                continue
            self._terms.append(ObjectiveTerm(variable, value))
        return self

    def add_preferences(self, preferences: Iterable[Preference]) -> "ObjectiveBuilder":
        for preference in preferences:
            self.add_preference(preference)
        return self

    def add_fixed_costs(self, domain: Optional[DomainModel] = None) -> "ObjectiveBuilder":
        """Charge each resource's fixed cost on its usage variable, when one exists.

        A cost always works against the objective, so it is subtracted when
        maximizing.
        """

        domain = domain or self.registry.domain
        for resource in domain.resources:
            usage = self.registry.lookup(UsageKey(resource.id))
            if usage is None:
                continue
            value = check_weight(resource.fixed_cost, f"Fixed cost of '{resource.id}'")
            if self.sense is Sense.MAXIMIZE:
                value = -value
            self._terms.append(ObjectiveTerm(usage, value))
        return self

    @property
    def terms(self) -> List[ObjectiveTerm]:
        return list(self._terms)

    def build(self) -> Objective:
        expr = LinearExpr.from_pairs((term.variable, term.weight) for term in self._terms)
        return Objective(expr=expr, sense=self.sense, terms=tuple(self._terms))


__all__ = ["ObjectiveTerm", "ObjectiveBuilder", "check_weight"]
