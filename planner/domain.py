"""Typed description of an assignment/scheduling problem.

The caller builds a :class:`DomainModel` out of entities (things to place),
resources (capacity providers) and a closed set of constraint variants.  All
records are frozen; the model is validated once on construction and is never
mutated by the compiler or the solver layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import math
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import InvalidDomainError


class AllocationMode(str, Enum):
    """How an entity consumes resources."""

    WHOLE = "whole"
    UNITS = "units"
    FRACTIONAL = "fractional"

    @classmethod
    def parse(cls, value: Union[str, "AllocationMode", None]) -> "AllocationMode":
        if value is None:
            return cls.WHOLE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(mode.value for mode in cls)
            raise InvalidDomainError(f"Unknown allocation mode '{value}'. Expected one of: {choices}.") from None


def _check_number(value: Any, what: str, *, minimum: Optional[float] = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDomainError(f"{what} must be a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidDomainError(f"{what} must be finite, got {value!r}")
    if minimum is not None and number < minimum:
        raise InvalidDomainError(f"{what} must be >= {minimum:g}, got {value!r}")
    return number


def _check_int(value: Any, what: str, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidDomainError(f"{what} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidDomainError(f"{what} must be >= {minimum}, got {value!r}")
    return value


def _optional_frozenset(values: Optional[Iterable[Any]]) -> Optional[FrozenSet[Any]]:
    if values is None:
        return None
    if isinstance(values, (str, bytes)):
        return frozenset([values])
    return frozenset(values)


@dataclass(frozen=True)
class Entity:
    """A schedulable unit (task, job, lesson, batch)."""

    id: str
    duration: int = 1
    size: float = 1
    allowed_resources: Optional[FrozenSet[str]] = None
    allowed_slots: Optional[FrozenSet[int]] = None
    required: bool = False
    mode: AllocationMode = AllocationMode.WHOLE
    name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise InvalidDomainError(f"Entity id must be a non-empty string, got {self.id!r}")
        object.__setattr__(self, "mode", AllocationMode.parse(self.mode))
        object.__setattr__(self, "allowed_resources", _optional_frozenset(self.allowed_resources))
        object.__setattr__(self, "allowed_slots", _optional_frozenset(self.allowed_slots))
        _check_int(self.duration, f"Entity '{self.id}' duration", minimum=1)
        _check_number(self.size, f"Entity '{self.id}' size", minimum=0)
        if self.mode is not AllocationMode.WHOLE and self.duration != 1:
            raise InvalidDomainError(
                f"Entity '{self.id}' uses {self.mode.value} allocation and must have duration 1"
            )
        if self.mode is AllocationMode.UNITS and float(self.size) != int(self.size):
            raise InvalidDomainError(f"Entity '{self.id}' splits into units, so its size must be whole")

    @property
    def is_split(self) -> bool:
        return self.mode is not AllocationMode.WHOLE

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Resource:
    """A bounded capacity provider (worker, machine, room, operating unit)."""

    id: str
    capacity: float = 1
    capacity_profile: Tuple[Tuple[int, float], ...] = ()
    fixed_cost: float = 0
    name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise InvalidDomainError(f"Resource id must be a non-empty string, got {self.id!r}")
        _check_number(self.capacity, f"Resource '{self.id}' capacity", minimum=0)
        profile = self.capacity_profile
        if isinstance(profile, Mapping):
            profile = profile.items()
        normalized = []
        for slot, value in sorted(profile or ()):
            _check_int(slot, f"Resource '{self.id}' capacity profile slot", minimum=0)
            normalized.append((slot, _check_number(value, f"Resource '{self.id}' capacity at slot {slot}", minimum=0)))
        object.__setattr__(self, "capacity_profile", tuple(normalized))

    def capacity_at(self, slot: Optional[int]) -> float:
        """Return the capacity available at ``slot`` (``None`` for untimed models)."""

        if slot is not None:
            for profile_slot, value in self.capacity_profile:
                if profile_slot == slot:
                    return value
        return float(self.capacity)

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class CapacityConstraint:
    """Total use of ``resource`` must stay within its capacity (or ``limit``) per slot."""

    resource: str
    limit: Optional[float] = None
    slots: Optional[FrozenSet[int]] = None

    def __post_init__(self):
        object.__setattr__(self, "slots", _optional_frozenset(self.slots))
        if self.limit is not None:
            _check_number(self.limit, f"Capacity limit for '{self.resource}'", minimum=0)


@dataclass(frozen=True)
class PrecedenceConstraint:
    """``before`` must finish (plus ``lag`` slots) before ``after`` starts."""

    before: str
    after: str
    lag: int = 0

    def __post_init__(self):
        _check_int(self.lag, f"Precedence lag between '{self.before}' and '{self.after}'", minimum=0)
        if self.before == self.after:
            raise InvalidDomainError(f"Entity '{self.before}' cannot precede itself")


@dataclass(frozen=True)
class ExclusionConstraint:
    """At most one of ``entities`` may occupy a given resource at a given slot."""

    entities: Tuple[str, ...]
    resource: Optional[str] = None
    slot: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "entities", tuple(self.entities))
        if len(set(self.entities)) < 2:
            raise InvalidDomainError("An exclusion group needs at least two distinct entities")


@dataclass(frozen=True)
class EligibilityConstraint:
    """Restrict ``entity`` to the listed resources and/or start slots."""

    entity: str
    resources: Optional[FrozenSet[str]] = None
    slots: Optional[FrozenSet[int]] = None

    def __post_init__(self):
        object.__setattr__(self, "resources", _optional_frozenset(self.resources))
        object.__setattr__(self, "slots", _optional_frozenset(self.slots))


Constraint = Union[CapacityConstraint, PrecedenceConstraint, ExclusionConstraint, EligibilityConstraint]

CONSTRAINT_TYPES = (CapacityConstraint, PrecedenceConstraint, ExclusionConstraint, EligibilityConstraint)


@dataclass(frozen=True)
class Preference:
    """Objective weight earned (or paid) per placed unit of ``entity``.

    ``resource`` and ``slot`` narrow the preference to matching placements.
    The weight is validated by the objective builder, not here.
    """

    entity: str
    weight: Any
    resource: Optional[str] = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class DomainModel:
    """A complete, read-only problem instance."""

    entities: Tuple[Entity, ...]
    resources: Tuple[Resource, ...]
    constraints: Tuple[Constraint, ...] = ()
    preferences: Tuple[Preference, ...] = ()
    horizon: Optional[int] = None
    _entity_index: Dict[str, Entity] = field(default=None, init=False, repr=False, compare=False)
    _resource_index: Dict[str, Resource] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "entities", tuple(self.entities))
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "constraints", tuple(self.constraints))
        object.__setattr__(self, "preferences", tuple(self.preferences))
        if self.horizon is not None:
            _check_int(self.horizon, "Horizon", minimum=1)

        entity_index: Dict[str, Entity] = {}
        for entity in self.entities:
            if not isinstance(entity, Entity):
                raise InvalidDomainError(f"Expected an Entity, got {entity!r}")
            if entity.id in entity_index:
                raise InvalidDomainError(f"Duplicate entity id '{entity.id}'")
            if self.horizon is None and (entity.duration != 1 or entity.allowed_slots):
                raise InvalidDomainError(
                    f"Entity '{entity.id}' uses time slots but the model has no horizon"
                )
            entity_index[entity.id] = entity
        resource_index: Dict[str, Resource] = {}
        for resource in self.resources:
            if not isinstance(resource, Resource):
                raise InvalidDomainError(f"Expected a Resource, got {resource!r}")
            if resource.id in resource_index:
                raise InvalidDomainError(f"Duplicate resource id '{resource.id}'")
            resource_index[resource.id] = resource
        for constraint in self.constraints:
            if not isinstance(constraint, CONSTRAINT_TYPES):
                raise InvalidDomainError(f"Unsupported constraint object {constraint!r}")
        object.__setattr__(self, "_entity_index", entity_index)
        object.__setattr__(self, "_resource_index", resource_index)

    @property
    def timed(self) -> bool:
        return self.horizon is not None

    def slots(self) -> List[Optional[int]]:
        """Ordered slot values; ``[None]`` for untimed models."""

        if self.horizon is None:
            return [None]
        return list(range(self.horizon))

    def has_entity(self, entity_id: Any) -> bool:
        return entity_id in self._entity_index

    def has_resource(self, resource_id: Any) -> bool:
        return resource_id in self._resource_index

    def entity(self, entity_id: str) -> Entity:
        return self._entity_index[entity_id]

    def resource(self, resource_id: str) -> Resource:
        return self._resource_index[resource_id]

    def all_constraints(self) -> Iterator[Constraint]:
        """Implicit per-resource capacity constraints followed by the explicit ones."""

        for resource in self.resources:
            yield CapacityConstraint(resource.id)
        yield from self.constraints

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DomainModel":
        """Build a model from JSON-style data (as posted by a form or API client)."""

        if not isinstance(data, Mapping):
            raise InvalidDomainError("Problem description must be a mapping")
        try:
            entities = [
                Entity(
                    id=str(row["id"]),
                    duration=row.get("duration", 1),
                    size=row.get("size", 1),
                    allowed_resources=row.get("allowed_resources"),
                    allowed_slots=row.get("allowed_slots"),
                    required=bool(row.get("required", False)),
                    mode=row.get("mode"),
                    name=row.get("name"),
                )
                for row in data.get("entities", [])
            ]
            resources = [
                Resource(
                    id=str(row["id"]),
                    capacity=row.get("capacity", 1),
                    capacity_profile={int(k): v for k, v in (row.get("capacity_profile") or {}).items()},
                    fixed_cost=row.get("fixed_cost", 0),
                    name=row.get("name"),
                )
                for row in data.get("resources", [])
            ]
            constraints = [_constraint_from_dict(row) for row in data.get("constraints", [])]
            preferences = [
                Preference(
                    entity=str(row["entity"]),
                    weight=row.get("weight"),
                    resource=row.get("resource"),
                    slot=row.get("slot"),
                )
                for row in data.get("preferences", [])
            ]
        except KeyError as exc:
            raise InvalidDomainError(f"Missing field {exc.args[0]!r} in problem description") from None
        except (TypeError, AttributeError) as exc:
            raise InvalidDomainError(f"Malformed problem description: {exc}") from None
        return cls(
            entities=entities,
            resources=resources,
            constraints=constraints,
            preferences=preferences,
            horizon=data.get("horizon"),
        )


def _constraint_from_dict(row: Mapping[str, Any]) -> Constraint:
    kind = str(row.get("type", "")).lower()
    if kind == "capacity":
        return CapacityConstraint(row["resource"], limit=row.get("limit"), slots=row.get("slots"))
    if kind == "precedence":
        return PrecedenceConstraint(row["before"], row["after"], lag=row.get("lag", 0))
    if kind == "exclusion":
        return ExclusionConstraint(tuple(row["entities"]), resource=row.get("resource"), slot=row.get("slot"))
    if kind == "eligibility":
        return EligibilityConstraint(row["entity"], resources=row.get("resources"), slots=row.get("slots"))
    raise InvalidDomainError(f"Unknown constraint type '{row.get('type')}'")


__all__ = [
    "AllocationMode",
    "Entity",
    "Resource",
    "CapacityConstraint",
    "PrecedenceConstraint",
    "ExclusionConstraint",
    "EligibilityConstraint",
    "Constraint",
    "CONSTRAINT_TYPES",
    "Preference",
    "DomainModel",
]
