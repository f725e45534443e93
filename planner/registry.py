"""Allocation and lookup of solver decision variables keyed by domain identifiers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Dict, Iterator, List, Optional, Union

from .domain import AllocationMode, DomainModel
from .errors import InvalidKeyError


class VariableKind(str, Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    CONTINUOUS = "continuous"


@dataclass(frozen=True)
class AssignmentKey:
    """Placement of ``entity`` on ``resource`` starting at ``slot`` (``None`` when untimed)."""

    entity: str
    resource: str
    slot: Optional[int] = None


@dataclass(frozen=True)
class StartKey:
    """Start time of ``entity``; only exists for timed models."""

    entity: str


@dataclass(frozen=True)
class UsageKey:
    """Whether ``resource`` is used at all (carries its fixed cost)."""

    resource: str


DomainKey = Union[AssignmentKey, StartKey, UsageKey]


@dataclass(frozen=True)
class DecisionVariable:
    index: int
    name: str
    key: DomainKey
    kind: VariableKind
    lower: float
    upper: float


_NAME_UNSAFE = re.compile(r"[^0-9A-Za-z]+")


def _slug(value: str) -> str:
    return _NAME_UNSAFE.sub("_", value).strip("_") or "_"


class VariableRegistry:
    """Owns the decision variables of one solve session.

    ``register`` is idempotent: asking twice for the same key returns the
    variable allocated the first time.  The mapping only grows and is never
    shared between sessions.
    """

    def __init__(self, domain: DomainModel):
        self.domain = domain
        self._by_key: Dict[DomainKey, DecisionVariable] = {}
        self._ordered: List[DecisionVariable] = []

    def register(self, key: DomainKey) -> DecisionVariable:
        existing = self._by_key.get(key)
        if existing is not None:
            return existing
        kind, lower, upper, name = self._describe(key)
        variable = DecisionVariable(
            index=len(self._ordered),
            name=name,
            key=key,
            kind=kind,
            lower=lower,
            upper=upper,
        )
        self._by_key[key] = variable
        self._ordered.append(variable)
        return variable

    def lookup(self, key: DomainKey) -> Optional[DecisionVariable]:
        return self._by_key.get(key)

    def variables(self) -> List[DecisionVariable]:
        return list(self._ordered)

    def assignments_for(self, entity_id: str) -> List[DecisionVariable]:
        return [
            var
            for var in self._ordered
            if isinstance(var.key, AssignmentKey) and var.key.entity == entity_id
        ]

    def assignments_on(self, resource_id: str) -> List[DecisionVariable]:
        return [
            var
            for var in self._ordered
            if isinstance(var.key, AssignmentKey) and var.key.resource == resource_id
        ]

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[DecisionVariable]:
        return iter(list(self._ordered))

    def _describe(self, key: DomainKey):
        domain = self.domain
        if isinstance(key, AssignmentKey):
            if not domain.has_entity(key.entity):
                raise InvalidKeyError(key, f"Unknown entity '{key.entity}'")
            if not domain.has_resource(key.resource):
                raise InvalidKeyError(key, f"Unknown resource '{key.resource}'")
            entity = domain.entity(key.entity)
            if domain.timed:
                if key.slot is None or not 0 <= key.slot <= domain.horizon - entity.duration:
                    raise InvalidKeyError(key, f"Slot {key.slot!r} is outside the horizon for '{key.entity}'")
            elif key.slot is not None:
                raise InvalidKeyError(key, "Untimed models have no slots")
            name = f"x_{_slug(key.entity)}_{_slug(key.resource)}"
            if key.slot is not None:
                name += f"_{key.slot}"
            if entity.mode is AllocationMode.WHOLE:
                return VariableKind.BOOLEAN, 0.0, 1.0, name
            if entity.mode is AllocationMode.UNITS:
                return VariableKind.INTEGER, 0.0, float(entity.size), name
            return VariableKind.CONTINUOUS, 0.0, float(entity.size), name
        if isinstance(key, StartKey):
            if not domain.has_entity(key.entity):
                raise InvalidKeyError(key, f"Unknown entity '{key.entity}'")
            if not domain.timed:
                raise InvalidKeyError(key, "Untimed models have no start times")
            entity = domain.entity(key.entity)
            upper = max(domain.horizon - entity.duration, 0)
            return VariableKind.INTEGER, 0.0, float(upper), f"start_{_slug(key.entity)}"
        if isinstance(key, UsageKey):
            if not domain.has_resource(key.resource):
                raise InvalidKeyError(key, f"Unknown resource '{key.resource}'")
            return VariableKind.BOOLEAN, 0.0, 1.0, f"use_{_slug(key.resource)}"
        raise InvalidKeyError(key, "Unsupported decision key type")


__all__ = [
    "VariableKind",
    "AssignmentKey",
    "StartKey",
    "UsageKey",
    "DomainKey",
    "DecisionVariable",
    "VariableRegistry",
]
