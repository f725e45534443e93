"""End-to-end build → solve → interpret pipeline for one problem instance."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import api
from .api import SOLUTION_STATUSES, BackendResponse, SolveConfig, SolveResult, SolveStatus
from .compiler import ConstraintCompiler
from .domain import DomainModel
from .errors import PlannerError, SessionStateError, SolverBackendError
from .formula import ModelDescription, describe_model, describe_solution
from .mapper import Assignment, map_solution
from .model import TOLERANCE, CompiledModel, LinearExpr, Objective, Sense
from .objective import ObjectiveBuilder
from .registry import AssignmentKey, VariableKind, VariableRegistry

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    BUILDING = "BUILDING"
    SUBMITTED = "SUBMITTED"
    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"
    INFEASIBLE = "INFEASIBLE"
    UNBOUNDED = "UNBOUNDED"
    TIMED_OUT = "TIMED_OUT"
    SOLVER_ERROR = "SOLVER_ERROR"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionState.BUILDING, SessionState.SUBMITTED)


def build_model(domain: DomainModel, config: Optional[SolveConfig] = None) -> Tuple[CompiledModel, VariableRegistry]:
    """Compile ``domain`` into a backend-neutral model with a fresh registry."""

    config = config or SolveConfig()
    registry = VariableRegistry(domain)
    compiler = ConstraintCompiler(domain, registry)
    compiler.register_decisions()
    constraints = compiler.compile()
    objective = (
        ObjectiveBuilder(registry, config.sense)
        .add_preferences(domain.preferences)
        .add_fixed_costs(domain)
        .build()
    )
    return CompiledModel(registry.variables(), constraints, objective), registry


def search_model(model: CompiledModel) -> CompiledModel:
    """Model actually handed to the backend.

    Without any objective terms the backend is asked to place as much as the
    constraints allow; the reported objective value still comes from the
    caller's (empty) objective.
    """

    if model.objective.expr:
        return model
    placements = [var for var in model.variables if isinstance(var.key, AssignmentKey)]
    if not placements:
        return model
    fill = Objective(expr=LinearExpr.from_pairs((var, 1.0) for var in placements), sense=Sense.MAXIMIZE)
    return CompiledModel(model.variables, model.constraints, fill, name=model.name)


def _clean_values(model: CompiledModel, values: Dict[int, float]) -> Dict[int, float]:
    cleaned: Dict[int, float] = {}
    for index, value in values.items():
        var = model.variable(index)
        value = float(value)
        if var.kind is not VariableKind.CONTINUOUS and abs(value - round(value)) <= TOLERANCE:
            value = float(round(value))
        cleaned[index] = value
    return cleaned


class SolveSession:
    """Owns the registry, compiled model and result of a single solve.

    The session moves ``BUILDING → SUBMITTED → <terminal>`` exactly once.
    Nothing is shared between sessions, so independent sessions may run on
    separate threads.
    """

    def __init__(
        self,
        domain: DomainModel,
        config: Optional[SolveConfig] = None,
        *,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.domain = domain
        self.config = config or SolveConfig()
        self.progress_callback = progress_callback
        self.state = SessionState.BUILDING
        self.model: Optional[CompiledModel] = None
        self.registry: Optional[VariableRegistry] = None
        self.result: Optional[SolveResult] = None
        self._progress: List[str] = []

    def _report(self, message: str) -> None:
        self._progress.append(message)
        if self.progress_callback is not None:
            self.progress_callback(message)

    def build(self) -> CompiledModel:
        """Run the building phase; input errors propagate before any solver call."""

        if self.state is not SessionState.BUILDING:
            raise SessionStateError(f"Cannot build a session in state {self.state.value}")
        if self.model is None:
            self.model, self.registry = build_model(self.domain, self.config)
            stats = self.model.stats()
            logger.info(
                "Built model: %d variables, %d constraints, %d objective terms",
                stats["variables"],
                stats["constraints"],
                stats["objective_terms"],
            )
        return self.model

    def solve(self) -> SolveResult:
        """Submit the model and return the frozen terminal result."""

        if self.state is not SessionState.BUILDING:
            raise SessionStateError(f"Session already {self.state.value.lower()}; start a new session to resolve")
        model = self.build()
        self.state = SessionState.SUBMITTED
        started = time.perf_counter()
        limit = self.config.time_limit_seconds
        if limit is not None and limit <= 0:
            response = BackendResponse(
                status=SolveStatus.TIMED_OUT,
                raw_status="Time limit is zero",
                message="No solver time available; model was not searched",
                wall_time=0.0,
            )
        else:
            try:
                searched = search_model(model)
                response = api.solve_model(searched, self.config, progress_callback=self._report)
                if searched is not model:
                    response.best_bound = None
            except SolverBackendError as exc:
                logger.error("Solver backend failed: %s", exc)
                response = BackendResponse(
                    status=SolveStatus.SOLVER_ERROR,
                    raw_status=type(exc).__name__,
                    message=str(exc),
                )
            except PlannerError:
                self.state = SessionState.BUILDING
                raise
            except Exception as exc:
                logger.exception("Unexpected failure inside the solver backend")
                response = BackendResponse(
                    status=SolveStatus.SOLVER_ERROR,
                    raw_status=type(exc).__name__,
                    message=str(exc),
                )
        elapsed = time.perf_counter() - started
        self.result = self._interpret(model, response, elapsed)
        self.state = SessionState(self.result.status.value)
        logger.info(
            "Solve finished: status=%s objective=%s elapsed=%.3fs",
            self.result.status.value,
            self.result.objective_value,
            elapsed,
        )
        return self.result

    def _interpret(self, model: CompiledModel, response: BackendResponse, elapsed: float) -> SolveResult:
        status = response.status
        values: Dict[int, float] = {}
        objective_value: Optional[float] = None
        if status in SOLUTION_STATUSES or (status is SolveStatus.TIMED_OUT and response.values):
            values = _clean_values(model, response.values)
            missing = [var.name for var in model.variables if var.index not in values]
            if missing:
                logger.error("Backend returned %d unset variables (first: %s)", len(missing), missing[0])
                status = SolveStatus.SOLVER_ERROR
                values = {}
            else:
                objective_value = model.objective.expr.evaluate(values)
        if status is SolveStatus.TIMED_OUT and values:
            self._report("Time limit reached; returning the best solution found so far")
        elif status is SolveStatus.TIMED_OUT:
            self._report("Time limit reached before any solution was found")
        return SolveResult(
            status=status,
            objective_value=objective_value,
            values=model.values_by_key(values),
            best_bound=response.best_bound,
            elapsed_seconds=elapsed,
            raw_status=response.raw_status,
            message=response.message,
            progress=tuple(self._progress),
        )

    def describe(self) -> ModelDescription:
        return describe_model(self.build() if self.model is None else self.model)


@dataclass(frozen=True)
class SolveOutcome:
    """What the presentation layer receives: result, decoded assignment, formulas."""

    result: SolveResult
    assignment: Optional[Assignment]
    description: Optional[ModelDescription] = None

    @property
    def status(self) -> SolveStatus:
        return self.result.status

    def as_dict(self) -> Dict[str, Any]:
        data = self.result.as_dict()
        data["assignment"] = self.assignment.as_dict() if self.assignment is not None else None
        if self.description is not None:
            data["formula"] = self.description.as_dict()
        return data


def solve_problem(
    domain: DomainModel,
    config: Optional[SolveConfig] = None,
    *,
    describe: bool = False,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> SolveOutcome:
    """High-level helper that builds, solves and maps ``domain`` in one call.

    Infeasible, unbounded, timed-out and failed solves come back as statuses
    with ``assignment=None``; only input errors and internal inconsistencies
    raise.
    """

    session = SolveSession(domain, config, progress_callback=progress_callback)
    result = session.solve()
    assignment = map_solution(result, domain) if result.is_solved else None
    description = None
    if describe:
        description = describe_solution(session.model, result)
    return SolveOutcome(result=result, assignment=assignment, description=description)


__all__ = [
    "SessionState",
    "SolveSession",
    "SolveOutcome",
    "build_model",
    "solve_problem",
]
