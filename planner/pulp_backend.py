"""Mixed-integer linear programming backend implemented with PuLP/HiGHS."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import pulp

from .api import BackendResponse, SolveConfig, SolveStatus, trivial_response
from .errors import SolverBackendError
from .model import TOLERANCE, CompiledModel, Sense
from .registry import VariableKind


logger = logging.getLogger(__name__)

REENTRANT = True

_CATEGORIES = {
    VariableKind.BOOLEAN: pulp.LpBinary,
    VariableKind.INTEGER: pulp.LpInteger,
    VariableKind.CONTINUOUS: pulp.LpContinuous,
}

# A stop after at least this share of the time limit counts as hitting it.
TIME_LIMIT_SLACK = 0.9


def _make_solver(config: SolveConfig) -> pulp.apis.core.LpSolver:
    options: Dict[str, Any] = {"msg": False, "timeLimit": config.time_limit_seconds}
    if config.optimality_gap:
        options["gapRel"] = config.optimality_gap
    if config.workers:
        options["threads"] = config.workers
    solver_cmd = pulp.apis.HiGHS_CMD(**options)
    if solver_cmd.available():
        return solver_cmd
    solver = pulp.apis.HiGHS(**options)
    if not solver.available():
        raise SolverBackendError("HiGHS solver is not available")
    return solver


def build_problem(model: CompiledModel):
    """Translate ``model`` into a :class:`pulp.LpProblem` and its variables by index."""

    sense = pulp.LpMaximize if model.objective.sense is Sense.MAXIMIZE else pulp.LpMinimize
    problem = pulp.LpProblem(model.name, sense)
    lp_vars: List[pulp.LpVariable] = [
        pulp.LpVariable(
            f"v{var.index}",
            lowBound=var.lower,
            upBound=var.upper,
            cat=_CATEGORIES[var.kind],
        )
        for var in model.variables
    ]
    problem.addVariables(lp_vars)
    for idx, constraint in enumerate(model.constraints):
        if constraint.is_trivial:
            continue
        lhs = pulp.lpSum(coef * lp_vars[index] for index, coef in constraint.expr.terms) + constraint.expr.constant
        if constraint.sense == "<=":
            problem += lhs <= constraint.rhs, f"c{idx}"
        elif constraint.sense == ">=":
            problem += lhs >= constraint.rhs, f"c{idx}"
        else:
            problem += lhs == constraint.rhs, f"c{idx}"
    objective = model.objective.expr
    problem.setObjective(
        pulp.lpSum(coef * lp_vars[index] for index, coef in objective.terms) + objective.constant
    )
    return problem, lp_vars


def _hit_time_limit(config: SolveConfig, elapsed: float) -> bool:
    limit = config.time_limit_seconds
    return limit is not None and elapsed >= limit * TIME_LIMIT_SLACK


def _mip_gap(problem: pulp.LpProblem) -> Optional[float]:
    """Relative MIP gap reported by in-process HiGHS, or ``None`` when unknown."""

    solver_model = getattr(problem, "solverModel", None)
    if solver_model is None:
        return None
    gap = getattr(solver_model.getInfo(), "mip_gap", None)
    return None if gap is None else float(gap)


def _classify(
    status_str: str,
    sol_status: Optional[int],
    has_values: bool,
    config: SolveConfig,
    elapsed: float,
    mip_gap: Optional[float] = None,
) -> SolveStatus:
    if sol_status == pulp.LpSolutionIntegerFeasible and has_values:
        if _hit_time_limit(config, elapsed):
            return SolveStatus.TIMED_OUT
        return SolveStatus.FEASIBLE
    if sol_status == pulp.LpSolutionOptimal or status_str == "Optimal":
        # With a gap limit HiGHS also says "Optimal" when it stopped at the gap.
        if config.optimality_gap and (mip_gap is None or mip_gap > TOLERANCE):
            return SolveStatus.FEASIBLE
        return SolveStatus.OPTIMAL
    if status_str == "Infeasible":
        return SolveStatus.INFEASIBLE
    if status_str == "Unbounded":
        return SolveStatus.UNBOUNDED
    if config.time_limit_seconds is not None and (has_values or _hit_time_limit(config, elapsed)):
        return SolveStatus.TIMED_OUT
    return SolveStatus.SOLVER_ERROR


def solve(
    model: CompiledModel,
    config: SolveConfig,
    *,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> BackendResponse:
    """Solve ``model`` using HiGHS and return a :class:`BackendResponse`."""

    shortcut = trivial_response(model)
    if shortcut is not None:
        return shortcut

    problem, lp_vars = build_problem(model)
    solver = _make_solver(config)
    started = time.perf_counter()
    try:
        problem.solve(solver)
    except pulp.PulpSolverError as exc:
        raise SolverBackendError(f"HiGHS failed: {exc}") from exc
    elapsed = time.perf_counter() - started

    status_str = pulp.LpStatus.get(problem.status, "Undefined")
    sol_status = getattr(problem, "sol_status", None)
    raw_values = [lp_var.varValue for lp_var in lp_vars]
    has_values = any(value is not None for value in raw_values)
    mip_gap = _mip_gap(problem) if config.optimality_gap else None
    status = _classify(status_str, sol_status, has_values, config, elapsed, mip_gap)

    values: Dict[int, float] = {}
    if has_values and status in (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE, SolveStatus.TIMED_OUT):
        # Unset variables are left out; the session reports them as a solver error.
        for var, value in zip(model.variables, raw_values):
            if value is not None:
                values[var.index] = float(value)

    raw_status = status_str
    if status is SolveStatus.TIMED_OUT:
        raw_status = f"{status_str} (time limit reached)"
    message = f"HiGHS solution: status={raw_status}"
    if values:
        message += f", objective={model.objective.expr.evaluate(values):.2f}"
    logger.info(message)
    if progress_callback is not None:
        progress_callback(message)

    return BackendResponse(
        status=status,
        values=values,
        raw_status=raw_status,
        message=message,
        wall_time=elapsed,
    )


__all__ = [
    "REENTRANT",
    "build_problem",
    "solve",
]
