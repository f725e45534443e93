"""Backend-neutral linear model produced by the compiler and consumed by solver backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .registry import DecisionVariable, DomainKey


TOLERANCE = 1e-6


class Sense(str, Enum):
    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


@dataclass(frozen=True)
class LinearExpr:
    """``sum(coef * x[index]) + constant`` with terms sorted by variable index."""

    terms: Tuple[Tuple[int, float], ...] = ()
    constant: float = 0.0

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[DecisionVariable, float]], constant: float = 0.0) -> "LinearExpr":
        merged: Dict[int, float] = {}
        for variable, coef in pairs:
            merged[variable.index] = merged.get(variable.index, 0.0) + float(coef)
        terms = tuple((index, coef) for index, coef in sorted(merged.items()) if coef != 0.0)
        return cls(terms=terms, constant=float(constant))

    def evaluate(self, values: Mapping[int, float]) -> float:
        return self.constant + sum(coef * float(values.get(index, 0.0)) for index, coef in self.terms)

    def indices(self) -> List[int]:
        return [index for index, _ in self.terms]

    def __bool__(self) -> bool:
        return bool(self.terms)


@dataclass(frozen=True)
class LinearConstraint:
    name: str
    expr: LinearExpr
    sense: str
    rhs: float
    origin: str = ""

    def __post_init__(self):
        if self.sense not in ("<=", ">=", "=="):
            raise ValueError(f"Unknown constraint sense '{self.sense}'")

    def holds(self, values: Mapping[int, float], tolerance: float = TOLERANCE) -> bool:
        lhs = self.expr.evaluate(values)
        if self.sense == "<=":
            return lhs <= self.rhs + tolerance
        if self.sense == ">=":
            return lhs >= self.rhs - tolerance
        return abs(lhs - self.rhs) <= tolerance

    @property
    def is_trivial(self) -> bool:
        """True when no variable appears, so the constraint is decided by its constants."""

        return not self.expr.terms


@dataclass(frozen=True)
class Objective:
    expr: LinearExpr
    sense: Sense
    terms: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class CompiledModel:
    """Everything a solver capability needs, and nothing domain specific."""

    variables: Tuple[DecisionVariable, ...]
    constraints: Tuple[LinearConstraint, ...]
    objective: Objective
    name: str = "planner"
    _by_key: Dict[DomainKey, DecisionVariable] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "variables", tuple(self.variables))
        object.__setattr__(self, "constraints", tuple(self.constraints))
        object.__setattr__(self, "_by_key", {var.key: var for var in self.variables})

    def variable(self, index: int) -> DecisionVariable:
        return self.variables[index]

    def variable_for(self, key: DomainKey) -> Optional[DecisionVariable]:
        return self._by_key.get(key)

    def trivially_violated(self) -> List[LinearConstraint]:
        """Constraints without variables whose constants already break them."""

        return [c for c in self.constraints if c.is_trivial and not c.holds({})]

    def values_by_key(self, values: Mapping[int, float]) -> Dict[DomainKey, float]:
        return {var.key: float(values[var.index]) for var in self.variables if var.index in values}

    def signature(self) -> Tuple[Any, ...]:
        """Structural fingerprint used to compare two compilations."""

        return (
            tuple((v.index, v.name, v.key, v.kind.value, v.lower, v.upper) for v in self.variables),
            tuple((c.name, c.expr.terms, c.expr.constant, c.sense, c.rhs, c.origin) for c in self.constraints),
            (self.objective.sense.value, self.objective.expr.terms, self.objective.expr.constant),
        )

    def stats(self) -> Dict[str, int]:
        return {
            "variables": len(self.variables),
            "constraints": len(self.constraints),
            "objective_terms": len(self.objective.expr.terms),
        }


def scale_to_integers(numbers: Sequence[float], max_power: int = 6) -> Optional[int]:
    """Return the smallest power of ten turning every number integral, or ``None``."""

    for power in range(max_power + 1):
        factor = 10 ** power
        if all(abs(n * factor - round(n * factor)) <= TOLERANCE for n in numbers):
            return factor
    return None


__all__ = [
    "TOLERANCE",
    "Sense",
    "LinearExpr",
    "LinearConstraint",
    "Objective",
    "CompiledModel",
    "scale_to_integers",
]
