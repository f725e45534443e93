"""Validation and parsing of problem descriptions."""

import pytest

from planner.domain import (
    AllocationMode,
    CapacityConstraint,
    DomainModel,
    EligibilityConstraint,
    Entity,
    ExclusionConstraint,
    PrecedenceConstraint,
    Resource,
)
from planner.errors import InvalidDomainError


def test_from_dict_builds_every_record_type():
    domain = DomainModel.from_dict(
        {
            "horizon": 4,
            "entities": [
                {"id": "A", "duration": 2, "required": True, "allowed_resources": ["r1"]},
                {"id": "B", "mode": "units", "size": 2},
            ],
            "resources": [
                {"id": "r1", "capacity": 2, "capacity_profile": {"3": 0}},
                {"id": "r2", "fixed_cost": 5},
            ],
            "constraints": [
                {"type": "capacity", "resource": "r1", "limit": 1, "slots": [0, 1]},
                {"type": "precedence", "before": "A", "after": "B", "lag": 1},
                {"type": "exclusion", "entities": ["A", "B"], "resource": "r1"},
                {"type": "Eligibility", "entity": "B", "slots": [2, 3]},
            ],
            "preferences": [{"entity": "A", "weight": 3, "resource": "r1"}],
        }
    )

    assert domain.horizon == 4
    assert domain.entity("A").allowed_resources == frozenset({"r1"})
    assert domain.entity("B").mode is AllocationMode.UNITS
    assert domain.resource("r1").capacity_at(3) == 0
    assert domain.resource("r1").capacity_at(0) == 2
    assert domain.resource("r2").fixed_cost == 5
    assert [type(c) for c in domain.constraints] == [
        CapacityConstraint,
        PrecedenceConstraint,
        ExclusionConstraint,
        EligibilityConstraint,
    ]
    assert domain.preferences[0].weight == 3


def test_all_constraints_lists_implicit_capacity_first():
    domain = DomainModel(
        entities=[Entity("A"), Entity("B")],
        resources=[Resource("r1"), Resource("r2")],
        constraints=[ExclusionConstraint(("A", "B"))],
    )

    constraints = list(domain.all_constraints())

    assert constraints[:2] == [CapacityConstraint("r1"), CapacityConstraint("r2")]
    assert constraints[2] == ExclusionConstraint(("A", "B"))


@pytest.mark.parametrize(
    "build",
    [
        lambda: DomainModel(entities=[Entity("A"), Entity("A")], resources=[]),
        lambda: DomainModel(entities=[], resources=[Resource("r"), Resource("r")]),
        lambda: DomainModel(entities=[Entity("A", duration=2)], resources=[]),
        lambda: DomainModel(entities=[], resources=[], horizon=0),
        lambda: Entity(""),
        lambda: Entity("A", duration=0),
        lambda: Entity("A", size=-1),
        lambda: Entity("A", mode="fractional", duration=2),
        lambda: Entity("A", mode="units", size=1.5),
        lambda: Entity("A", mode="halves"),
        lambda: Resource("r", capacity=-1),
        lambda: Resource("r", capacity=float("nan")),
        lambda: PrecedenceConstraint("A", "A"),
        lambda: PrecedenceConstraint("A", "B", lag=-1),
        lambda: ExclusionConstraint(("A", "A")),
    ],
)
def test_malformed_records_are_rejected(build):
    with pytest.raises(InvalidDomainError):
        build()


def test_from_dict_reports_missing_fields():
    with pytest.raises(InvalidDomainError) as excinfo:
        DomainModel.from_dict({"entities": [{"duration": 1}], "resources": []})

    assert "'id'" in str(excinfo.value)


def test_from_dict_rejects_unknown_constraint_type():
    with pytest.raises(InvalidDomainError):
        DomainModel.from_dict({"entities": [], "resources": [], "constraints": [{"type": "budget"}]})


def test_untimed_model_has_single_slot():
    domain = DomainModel(entities=[Entity("A")], resources=[Resource("r1")])

    assert not domain.timed
    assert domain.slots() == [None]
    assert domain.resource("r1").capacity_at(None) == 1
