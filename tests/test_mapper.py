"""Decoding and re-validation of solver answers in :mod:`planner.mapper`."""

import logging

import pytest

from planner.api import SolveResult, SolveStatus
from planner.domain import (
    CapacityConstraint,
    DomainModel,
    EligibilityConstraint,
    Entity,
    ExclusionConstraint,
    PrecedenceConstraint,
    Resource,
)
from planner.errors import InconsistentSolutionError, NoSolutionError
from planner.mapper import Placement, map_solution
from planner.registry import AssignmentKey, StartKey


def _result(values, status=SolveStatus.OPTIMAL, objective=0.0):
    return SolveResult(status=status, objective_value=objective, values=values)


@pytest.mark.parametrize(
    "status",
    [SolveStatus.INFEASIBLE, SolveStatus.UNBOUNDED, SolveStatus.TIMED_OUT, SolveStatus.SOLVER_ERROR],
)
def test_results_without_solution_cannot_be_mapped(status):
    domain = DomainModel(entities=[Entity("A")], resources=[Resource("r1")])

    with pytest.raises(NoSolutionError) as excinfo:
        map_solution(_result({AssignmentKey("A", "r1"): 1.0}, status=status), domain)

    assert excinfo.value.status is status


def test_placements_and_unassigned_entities():
    domain = DomainModel(
        entities=[Entity("A"), Entity("B", duration=2), Entity("C")],
        resources=[Resource("r1"), Resource("r2")],
        constraints=[PrecedenceConstraint("A", "B")],
        horizon=3,
    )
    values = {
        AssignmentKey("B", "r2", 1): 1.0,
        AssignmentKey("A", "r1", 0): 1.0,
        AssignmentKey("A", "r1", 1): 0.0,
        StartKey("A"): 0.0,
        StartKey("B"): 1.0,
    }

    assignment = map_solution(_result(values, objective=4.0), domain)

    assert assignment.placements == (
        Placement("A", "r1", 0, 1.0),
        Placement("B", "r2", 1, 1.0),
    )
    assert assignment.unassigned == ("C",)
    assert assignment.assigned == ["A", "B"]
    assert assignment.objective_value == 4.0
    assert assignment.as_dict()["unassigned"] == ["C"]


def test_split_amounts_are_kept():
    domain = DomainModel(
        entities=[Entity("A", mode="fractional", size=2, required=True)],
        resources=[Resource("r1", capacity=1.5), Resource("r2", capacity=1)],
    )
    values = {AssignmentKey("A", "r1"): 1.25, AssignmentKey("A", "r2"): 0.75}

    assignment = map_solution(_result(values), domain)

    assert [p.amount for p in assignment.placements_for("A")] == [1.25, 0.75]


def _assert_inconsistent(values, domain, caplog, fragment):
    with caplog.at_level(logging.ERROR, logger="planner.mapper"):
        with pytest.raises(InconsistentSolutionError) as excinfo:
            map_solution(_result(values), domain)
    assert any(fragment in v for v in excinfo.value.violations)
    assert "defect" in caplog.text


def test_over_capacity_is_inconsistent(caplog):
    domain = DomainModel(entities=[Entity("A"), Entity("B")], resources=[Resource("r1")])
    values = {AssignmentKey("A", "r1"): 1.0, AssignmentKey("B", "r1"): 1.0}

    _assert_inconsistent(values, domain, caplog, "over capacity")


def test_zero_capacity_use_is_inconsistent(caplog):
    domain = DomainModel(entities=[Entity("A", size=0)], resources=[Resource("r1", capacity=0)])

    _assert_inconsistent({AssignmentKey("A", "r1"): 1.0}, domain, caplog, "no capacity")


def test_explicit_capacity_limit_is_checked(caplog):
    domain = DomainModel(
        entities=[Entity("A"), Entity("B")],
        resources=[Resource("r1", capacity=2)],
        constraints=[CapacityConstraint("r1", limit=1)],
    )
    values = {AssignmentKey("A", "r1"): 1.0, AssignmentKey("B", "r1"): 1.0}

    _assert_inconsistent(values, domain, caplog, "over capacity")


def test_required_entity_left_out_is_inconsistent(caplog):
    domain = DomainModel(entities=[Entity("A", required=True)], resources=[Resource("r1")])

    _assert_inconsistent({AssignmentKey("A", "r1"): 0.0}, domain, caplog, "left unassigned")


def test_double_placement_is_inconsistent(caplog):
    domain = DomainModel(entities=[Entity("A")], resources=[Resource("r1"), Resource("r2")])
    values = {AssignmentKey("A", "r1"): 1.0, AssignmentKey("A", "r2"): 1.0}

    _assert_inconsistent(values, domain, caplog, "placed 2 times")


def test_precedence_violation_is_inconsistent(caplog):
    domain = DomainModel(
        entities=[Entity("A", duration=2), Entity("B")],
        resources=[Resource("r1"), Resource("r2")],
        constraints=[PrecedenceConstraint("A", "B", lag=1)],
        horizon=5,
    )
    values = {AssignmentKey("A", "r1", 0): 1.0, AssignmentKey("B", "r2", 2): 1.0}

    _assert_inconsistent(values, domain, caplog, "starts at 2")


def test_exclusion_violation_is_inconsistent(caplog):
    domain = DomainModel(
        entities=[Entity("A"), Entity("B")],
        resources=[Resource("r1", capacity=2)],
        constraints=[ExclusionConstraint(("A", "B"))],
    )
    values = {AssignmentKey("A", "r1"): 1.0, AssignmentKey("B", "r1"): 1.0}

    _assert_inconsistent(values, domain, caplog, "exclusive entities")


def test_ineligible_placement_is_inconsistent(caplog):
    domain = DomainModel(
        entities=[Entity("A")],
        resources=[Resource("r1"), Resource("r2")],
        constraints=[EligibilityConstraint("A", resources=["r2"])],
    )

    _assert_inconsistent({AssignmentKey("A", "r1"): 1.0}, domain, caplog, "ineligible resource")


def test_placement_past_horizon_is_inconsistent(caplog):
    domain = DomainModel(entities=[Entity("A", duration=2)], resources=[Resource("r1")], horizon=3)

    _assert_inconsistent({AssignmentKey("A", "r1", 2): 1.0}, domain, caplog, "past the horizon")
