"""Constraint programming backend implemented with OR-Tools CP-SAT."""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

from ortools.sat.python import cp_model

from .api import BackendResponse, SolveConfig, SolveStatus, trivial_response
from .errors import SolverBackendError
from .model import TOLERANCE, CompiledModel, Sense, scale_to_integers
from .registry import VariableKind


logger = logging.getLogger(__name__)

REENTRANT = True

# A stop after at least this share of the time limit counts as hitting it.
TIME_LIMIT_SLACK = 0.9

# Objective weights that no power of ten up to 10**6 makes integral are
# rounded at this scale instead.
OBJECTIVE_SCALE = 1_000_000


def configure_solver(config: SolveConfig) -> cp_model.CpSolver:
    """Configure a CP-SAT solver from ``config``."""
    solver = cp_model.CpSolver()
    if config.time_limit_seconds is not None:
        solver.parameters.max_time_in_seconds = float(config.time_limit_seconds)
    solver.parameters.relative_gap_limit = float(config.optimality_gap)
    if config.workers:
        solver.parameters.num_search_workers = int(config.workers)
    solver.parameters.log_search_progress = False
    return solver


def get_model_size(model: cp_model.CpModel) -> Tuple[int, int]:
    """Get the number of constraints and variables in the model."""
    proto = model.Proto()
    return len(proto.constraints), len(proto.variables)


def build_cp_model(model: CompiledModel):
    """Translate ``model`` into a CP-SAT model.

    CP-SAT only accepts integer data, so every constraint row and the
    objective are multiplied by the smallest power of ten that makes their
    numbers integral.  Objective weights needing more than six decimals are rounded at
    :data:`OBJECTIVE_SCALE`; constraint rows are never rounded.  Returns ``(cp_model, variables, objective_scale)``.
    """

    cp = cp_model.CpModel()
    cp_vars: List[cp_model.IntVar] = []
    for var in model.variables:
        if var.kind is VariableKind.CONTINUOUS:
            raise SolverBackendError(
                f"CP-SAT cannot represent continuous variable '{var.name}'; use the 'pulp' backend"
            )
        if var.kind is VariableKind.BOOLEAN:
            cp_vars.append(cp.NewBoolVar(var.name))
        else:
            cp_vars.append(cp.NewIntVar(math.ceil(var.lower - TOLERANCE), math.floor(var.upper + TOLERANCE), var.name))

    for constraint in model.constraints:
        if constraint.is_trivial:
            continue
        rhs = constraint.rhs - constraint.expr.constant
        numbers = [coef for _, coef in constraint.expr.terms] + [rhs]
        factor = scale_to_integers(numbers)
        if factor is None:
            raise SolverBackendError(f"Constraint '{constraint.name}' needs more precision than CP-SAT supports")
        lhs = sum(int(round(coef * factor)) * cp_vars[index] for index, coef in constraint.expr.terms)
        bound = int(round(rhs * factor))
        if constraint.sense == "<=":
            cp.Add(lhs <= bound)
        elif constraint.sense == ">=":
            cp.Add(lhs >= bound)
        else:
            cp.Add(lhs == bound)

    objective_scale = 1
    terms = model.objective.expr.terms
    if terms:
        objective_scale = scale_to_integers([coef for _, coef in terms])
        if objective_scale is None:
            logger.warning("Rounding objective weights to 1/%d for CP-SAT", OBJECTIVE_SCALE)
            objective_scale = OBJECTIVE_SCALE
        expr = sum(int(round(coef * objective_scale)) * cp_vars[index] for index, coef in terms)
        if model.objective.sense is Sense.MAXIMIZE:
            cp.Maximize(expr)
        else:
            cp.Minimize(expr)
    return cp, cp_vars, objective_scale


def _relative_gap(objective: float, bound: float) -> float:
    return abs(objective - bound) / max(1.0, abs(objective))


def solve(
    model: CompiledModel,
    config: SolveConfig,
    *,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> BackendResponse:
    """Solve ``model`` with CP-SAT and return a :class:`BackendResponse`."""

    shortcut = trivial_response(model)
    if shortcut is not None:
        return shortcut

    cp, cp_vars, objective_scale = build_cp_model(model)
    num_constraints, num_vars = get_model_size(cp)
    logger.info("CP-SAT model: %d constraints, %d variables", num_constraints, num_vars)

    solver = configure_solver(config)
    raw = solver.Solve(cp)
    status_name = solver.StatusName(raw)
    wall_time = solver.WallTime()
    has_objective = bool(model.objective.expr.terms)

    if raw == cp_model.MODEL_INVALID:
        raise SolverBackendError(f"CP-SAT rejected the model: {cp.Validate() or status_name}")

    best_bound: Optional[float] = None
    if raw in (cp_model.OPTIMAL, cp_model.FEASIBLE) and has_objective:
        best_bound = solver.BestObjectiveBound() / objective_scale

    limit = config.time_limit_seconds
    hit_limit = limit is not None and wall_time >= limit * TIME_LIMIT_SLACK
    if raw == cp_model.OPTIMAL:
        status = SolveStatus.OPTIMAL
        if has_objective and _relative_gap(solver.ObjectiveValue(), solver.BestObjectiveBound()) > TOLERANCE:
            # Stopped by the relative gap limit rather than a proof of optimality.
            status = SolveStatus.FEASIBLE
    elif raw == cp_model.FEASIBLE:
        status = SolveStatus.TIMED_OUT if hit_limit else SolveStatus.FEASIBLE
    elif raw == cp_model.INFEASIBLE:
        status = SolveStatus.INFEASIBLE
    elif limit is not None:
        status = SolveStatus.TIMED_OUT
    else:
        status = SolveStatus.SOLVER_ERROR

    values: Dict[int, float] = {}
    if raw in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        values = {var.index: float(solver.Value(cp_var)) for var, cp_var in zip(model.variables, cp_vars)}

    message = f"CP-SAT solution: status={status_name}"
    if values:
        message += f", objective={model.objective.expr.evaluate(values):.2f}"
    message += f", wall_time={wall_time:.2f}s"
    logger.info(message)
    if progress_callback is not None:
        progress_callback(message)

    return BackendResponse(
        status=status,
        values=values,
        best_bound=best_bound,
        raw_status=status_name,
        message=message,
        wall_time=wall_time,
    )


__all__ = [
    "REENTRANT",
    "build_cp_model",
    "configure_solver",
    "get_model_size",
    "solve",
]
