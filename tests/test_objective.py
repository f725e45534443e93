"""Tests for :mod:`planner.objective`."""

import math

import pytest

from planner.api import SolveConfig
from planner.domain import DomainModel, Entity, Preference, Resource
from planner.errors import InvalidKeyError, InvalidWeightError
from planner.model import Sense
from planner.objective import ObjectiveBuilder, check_weight
from planner.orchestrator import build_model
from planner.registry import AssignmentKey, UsageKey, VariableRegistry


def _registry(domain):
    registry = VariableRegistry(domain)
    for entity in domain.entities:
        for resource in domain.resources:
            registry.register(AssignmentKey(entity.id, resource.id))
    return registry


def _domain(**extra):
    return DomainModel(
        entities=[Entity("A"), Entity("B")],
        resources=[Resource("r1"), Resource("r2")],
        **extra,
    )


@pytest.mark.parametrize("weight", [None, float("nan"), math.inf, -math.inf, "3", True])
def test_invalid_weights_are_rejected(weight):
    with pytest.raises(InvalidWeightError):
        check_weight(weight)


def test_weights_are_returned_as_floats():
    assert check_weight(3) == 3.0
    assert check_weight(-0.5) == -0.5


def test_sense_is_passed_through_unchanged():
    registry = _registry(_domain())
    objective = ObjectiveBuilder(registry, Sense.MAXIMIZE).build()

    assert objective.sense is Sense.MAXIMIZE
    assert not objective.expr


def test_preferences_match_resource_filter():
    registry = _registry(_domain())
    builder = ObjectiveBuilder(registry)
    builder.add_preferences([Preference("A", 5), Preference("B", 2, resource="r2")])
    objective = builder.build()

    weights = {registry.variables()[index].key: coef for index, coef in objective.expr.terms}
    assert weights == {
        AssignmentKey("A", "r1"): 5.0,
        AssignmentKey("A", "r2"): 5.0,
        AssignmentKey("B", "r2"): 2.0,
    }
    assert len(builder.terms) == 3


def test_repeated_terms_merge_on_the_same_variable():
    registry = _registry(_domain())
    variable = registry.lookup(AssignmentKey("A", "r1"))
    objective = ObjectiveBuilder(registry).add_term(variable, 2).add_term(variable, 1.5).build()

    assert objective.expr.terms == ((variable.index, 3.5),)


def test_preference_with_nan_weight_fails_fast():
    registry = _registry(_domain())

    with pytest.raises(InvalidWeightError):
        ObjectiveBuilder(registry).add_preference(Preference("A", float("nan")))


def test_preference_for_unknown_entity_is_rejected():
    registry = _registry(_domain())

    with pytest.raises(InvalidKeyError):
        ObjectiveBuilder(registry).add_preference(Preference("ghost", 1))


def test_term_from_another_registry_is_rejected():
    domain = _domain()
    foreign = _registry(domain).lookup(AssignmentKey("A", "r1"))

    with pytest.raises(InvalidKeyError):
        ObjectiveBuilder(_registry(domain)).add_term(foreign, 1)


def test_fixed_costs_weight_usage_variables():
    domain = DomainModel(
        entities=[Entity("A")],
        resources=[Resource("r1", fixed_cost=7), Resource("r2")],
    )
    model, registry = build_model(domain, SolveConfig(sense="minimize"))

    usage = registry.lookup(UsageKey("r1"))
    assert model.objective.expr.terms == ((usage.index, 7.0),)


def test_non_finite_fixed_cost_is_rejected():
    domain = DomainModel(entities=[Entity("A")], resources=[Resource("r1", fixed_cost=float("inf"))])

    with pytest.raises(InvalidWeightError):
        build_model(domain)


def test_fixed_costs_count_against_a_maximized_objective():
    domain = DomainModel(
        entities=[Entity("A")],
        resources=[Resource("r1", fixed_cost=7), Resource("r2")],
    )
    model, registry = build_model(domain, SolveConfig(sense="maximize"))

    usage = registry.lookup(UsageKey("r1"))
    assert model.objective.expr.terms == ((usage.index, -7.0),)
