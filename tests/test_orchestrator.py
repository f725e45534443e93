"""Session lifecycle and status handling, driven with fake solver backends."""

import dataclasses

import pytest

from planner import api
from planner.api import BackendResponse, SolveConfig, SolveStatus
from planner.domain import DomainModel, Entity, Preference, Resource
from planner.errors import InvalidWeightError, SessionStateError, SolverBackendError
from planner.orchestrator import SessionState, SolveSession, build_model, search_model, solve_problem
from planner.registry import AssignmentKey


def _domain(**extra):
    return DomainModel(
        entities=[Entity("A"), Entity("B")],
        resources=[Resource("r1")],
        **extra,
    )


def _place(model, *keys, status=SolveStatus.OPTIMAL):
    values = {var.index: 0.0 for var in model.variables}
    for key in keys:
        values[model.variable_for(key).index] = 1.0
    return BackendResponse(status=status, values=values, raw_status=status.value, message="fake")


def test_zero_time_limit_times_out_without_calling_backend(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("backend must not be called")

    monkeypatch.setattr(api, "solve_model", fail)
    session = SolveSession(_domain(), SolveConfig(time_limit_seconds=0))

    result = session.solve()

    assert result.status is SolveStatus.TIMED_OUT
    assert session.state is SessionState.TIMED_OUT
    assert result.objective_value is None
    assert not result.has_solution


def test_backend_failure_is_solver_error_not_infeasible(monkeypatch):
    def broken(model, config, **kwargs):
        raise SolverBackendError("engine crashed")

    monkeypatch.setattr(api, "solve_model", broken)

    result = SolveSession(_domain()).solve()

    assert result.status is SolveStatus.SOLVER_ERROR
    assert "engine crashed" in result.message


def test_unexpected_backend_exception_is_solver_error(monkeypatch, caplog):
    def broken(model, config, **kwargs):
        raise RuntimeError("segfault-ish")

    monkeypatch.setattr(api, "solve_model", broken)

    result = SolveSession(_domain()).solve()

    assert result.status is SolveStatus.SOLVER_ERROR
    assert "Unexpected failure" in caplog.text


def test_session_solves_only_once(monkeypatch):
    monkeypatch.setattr(api, "solve_model", lambda model, config, **kw: _place(model))
    session = SolveSession(_domain())
    session.solve()

    with pytest.raises(SessionStateError):
        session.solve()
    with pytest.raises(SessionStateError):
        session.build()


def test_results_are_frozen(monkeypatch):
    monkeypatch.setattr(
        api, "solve_model", lambda model, config, **kw: _place(model, AssignmentKey("A", "r1"))
    )
    result = SolveSession(_domain()).solve()

    with pytest.raises(dataclasses.FrozenInstanceError):
        result.status = SolveStatus.INFEASIBLE
    with pytest.raises(TypeError):
        result.values[AssignmentKey("A", "r1")] = 0.0


def test_objective_value_is_recomputed_from_values(monkeypatch):
    def fake(model, config, **kwargs):
        response = _place(model, AssignmentKey("B", "r1"))
        response.message = "objective=999"
        return response

    monkeypatch.setattr(api, "solve_model", fake)
    domain = _domain(preferences=[Preference("A", 5), Preference("B", 3)])

    result = SolveSession(domain, SolveConfig(sense="maximize")).solve()

    assert result.status is SolveStatus.OPTIMAL
    assert result.objective_value == 3.0
    assert result.value(AssignmentKey("B", "r1")) == 1.0


def test_integral_values_are_rounded(monkeypatch):
    def fake(model, config, **kwargs):
        response = _place(model, AssignmentKey("A", "r1"))
        response.values[model.variable_for(AssignmentKey("A", "r1")).index] = 0.9999999
        return response

    monkeypatch.setattr(api, "solve_model", fake)

    result = SolveSession(_domain()).solve()

    assert result.value(AssignmentKey("A", "r1")) == 1.0


def test_missing_values_are_a_solver_error(monkeypatch):
    monkeypatch.setattr(
        api,
        "solve_model",
        lambda model, config, **kw: BackendResponse(status=SolveStatus.OPTIMAL, values={0: 1.0}),
    )

    result = SolveSession(_domain()).solve()

    assert result.status is SolveStatus.SOLVER_ERROR
    assert not result.values


def test_timed_out_keeps_incumbent(monkeypatch):
    monkeypatch.setattr(
        api,
        "solve_model",
        lambda model, config, **kw: _place(model, AssignmentKey("A", "r1"), status=SolveStatus.TIMED_OUT),
    )
    messages = []

    outcome = solve_problem(_domain(), progress_callback=messages.append)

    assert outcome.status is SolveStatus.TIMED_OUT
    assert outcome.result.has_solution
    assert outcome.assignment is None
    assert any("best solution found so far" in m for m in messages)
    assert outcome.result.progress == tuple(messages)


def test_build_errors_surface_before_submission(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("backend must not be called")

    monkeypatch.setattr(api, "solve_model", fail)
    session = SolveSession(_domain(preferences=[Preference("A", None)]))

    with pytest.raises(InvalidWeightError):
        session.solve()
    assert session.state is SessionState.BUILDING


def test_infeasible_outcome_has_no_assignment(monkeypatch):
    monkeypatch.setattr(
        api,
        "solve_model",
        lambda model, config, **kw: BackendResponse(status=SolveStatus.INFEASIBLE, raw_status="INFEASIBLE"),
    )

    outcome = solve_problem(_domain())

    assert outcome.status is SolveStatus.INFEASIBLE
    assert outcome.assignment is None
    assert outcome.as_dict()["assignment"] is None


def test_solve_problem_maps_assignment(monkeypatch):
    monkeypatch.setattr(
        api, "solve_model", lambda model, config, **kw: _place(model, AssignmentKey("B", "r1"))
    )

    outcome = solve_problem(_domain(), describe=True)
    data = outcome.as_dict()

    assert outcome.assignment.unassigned == ("A",)
    assert data["assignment"]["placements"] == [
        {"entity": "B", "resource": "r1", "slot": None, "amount": 1.0}
    ]
    assert data["formula"]["latex"][0].startswith("Minimize:")


def test_empty_objective_asks_backend_to_fill_placements():
    model, _ = build_model(_domain())

    searched = search_model(model)

    assert searched is not model
    assert searched.objective.expr.terms == ((0, 1.0), (1, 1.0))
    assert model.objective.expr.terms == ()


def test_independent_sessions_do_not_share_state(monkeypatch):
    monkeypatch.setattr(api, "solve_model", lambda model, config, **kw: _place(model))
    first = SolveSession(_domain())
    second = SolveSession(_domain())

    first.solve()

    assert second.state is SessionState.BUILDING
    assert first.registry is not second.registry
