"""Tests for the backend selection helpers exposed by :mod:`planner.api`."""

from __future__ import annotations

import pytest

pytest.importorskip("ortools")
pytest.importorskip("pulp")

from planner import api, ortools_backend, pulp_backend
from planner.api import BackendResponse, SolveConfig, SolveStatus
from planner.errors import InvalidConfigError, SolverBackendError
from planner.model import CompiledModel, LinearConstraint, LinearExpr, Objective, Sense
from planner.registry import AssignmentKey, DecisionVariable, VariableKind


def _empty_model(constraints=()):
    return CompiledModel((), constraints, Objective(LinearExpr(), Sense.MINIMIZE))


def test_default_backend_is_ortools():
    """The default backend should resolve to the OR-Tools implementation."""

    backend = api.get_backend()
    assert backend is ortools_backend


def test_pulp_backend_can_be_resolved():
    """The PuLP backend should be registered and importable."""

    backend = api.get_backend("PuLP")
    assert backend is pulp_backend


def test_unknown_backend_raises_clear_error():
    """Requesting an unsupported backend should raise a descriptive error."""

    with pytest.raises(ValueError) as excinfo:
        api.get_backend("unknown")
    assert isinstance(excinfo.value, InvalidConfigError)
    message = str(excinfo.value)
    assert "unknown" in message
    assert "ortools" in message
    assert "pulp" in message


def test_unimportable_backend_is_a_backend_error(monkeypatch):
    """A registered backend whose module is missing reports a backend failure."""

    monkeypatch.setitem(api._BACKEND_REGISTRY, "ghost", "planner.no_such_backend")

    with pytest.raises(SolverBackendError):
        api.get_backend("ghost")


def test_solve_model_uses_requested_backend(monkeypatch):
    """``solve_model`` should dispatch to the selected backend implementation."""

    sentinel = BackendResponse(status=SolveStatus.OPTIMAL)
    model = _empty_model()

    def fake_solve(model_arg, config, progress_callback=None):
        assert model_arg is model
        assert config.time_limit_seconds == 5
        assert progress_callback is None
        return sentinel

    monkeypatch.setattr(pulp_backend, "solve", fake_solve)

    result = api.solve_model(model, SolveConfig(time_limit_seconds=5), backend="pulp")
    assert result is sentinel


def test_config_backend_is_used_when_no_override(monkeypatch):
    calls = []
    monkeypatch.setattr(
        pulp_backend,
        "solve",
        lambda model, config, progress_callback=None: calls.append("pulp") or BackendResponse(SolveStatus.OPTIMAL),
    )

    api.solve_model(_empty_model(), SolveConfig(backend="pulp"))

    assert calls == ["pulp"]


def test_available_backends_includes_registered_values():
    """The helper exposing available backends should list known identifiers."""

    choices = api.available_backends()
    assert "ortools" in choices
    assert "pulp" in choices
    assert api.is_reentrant("ortools")


@pytest.mark.parametrize("backend", [ortools_backend, pulp_backend])
def test_trivially_infeasible_models_skip_the_solver(backend):
    broken = LinearConstraint("impossible", LinearExpr(), "==", 1.0)

    response = backend.solve(_empty_model([broken]), SolveConfig())

    assert response.status is SolveStatus.INFEASIBLE
    assert "impossible" in response.message


@pytest.mark.parametrize("backend", [ortools_backend, pulp_backend])
def test_models_without_variables_are_optimal(backend):
    response = backend.solve(_empty_model(), SolveConfig())

    assert response.status is SolveStatus.OPTIMAL
    assert response.values == {}


def test_fine_objective_weights_are_rounded_for_cp_sat():
    variables = (
        DecisionVariable(0, "a", AssignmentKey("A", "r1"), VariableKind.BOOLEAN, 0.0, 1.0),
        DecisionVariable(1, "b", AssignmentKey("B", "r1"), VariableKind.BOOLEAN, 0.0, 1.0),
    )
    objective = Objective(LinearExpr(((0, 1 / 3), (1, 0.25))), Sense.MAXIMIZE)

    _, cp_vars, scale = ortools_backend.build_cp_model(CompiledModel(variables, (), objective))

    assert scale == ortools_backend.OBJECTIVE_SCALE
    assert len(cp_vars) == 2
