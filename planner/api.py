"""Public abstractions for interacting with solver backends."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from importlib import import_module
import math
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidConfigError, SolverBackendError
from .model import CompiledModel, Sense
from .registry import DomainKey


DEFAULT_TIME_LIMIT = 120.0


class SolveStatus(str, Enum):
    """Enum representing the terminal outcome of a solve."""

    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"
    INFEASIBLE = "INFEASIBLE"
    UNBOUNDED = "UNBOUNDED"
    TIMED_OUT = "TIMED_OUT"
    SOLVER_ERROR = "SOLVER_ERROR"


SOLUTION_STATUSES = frozenset({SolveStatus.OPTIMAL, SolveStatus.FEASIBLE})


def _parse_number(value: Any, what: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            raise InvalidConfigError(f"{what} must be a number, got '{value}'") from None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigError(f"{what} must be a number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class SolveConfig:
    """Settings handed to the solver capability with every model.

    ``optimality_gap`` is a relative fraction (``0.05`` accepts any solution
    within 5% of the best bound).  ``time_limit_seconds=None`` means no
    wall-clock limit.
    """

    time_limit_seconds: Optional[float] = DEFAULT_TIME_LIMIT
    optimality_gap: float = 0.0
    sense: Sense = Sense.MINIMIZE
    workers: Optional[int] = None
    backend: Optional[str] = None

    def __post_init__(self):
        if self.time_limit_seconds is not None:
            limit = _parse_number(self.time_limit_seconds, "Time limit")
            if limit is not None and (not math.isfinite(limit) or limit < 0):
                raise InvalidConfigError(f"Time limit must be a non-negative number of seconds, got {limit}")
            object.__setattr__(self, "time_limit_seconds", limit)
        gap = _parse_number(self.optimality_gap, "Optimality gap")
        if gap is None:
            gap = 0.0
        if not 0.0 <= gap < 1.0:
            raise InvalidConfigError(f"Optimality gap must be a fraction in [0, 1), got {gap}")
        object.__setattr__(self, "optimality_gap", gap)
        try:
            object.__setattr__(self, "sense", Sense(str(getattr(self.sense, "value", self.sense)).lower()))
        except ValueError:
            raise InvalidConfigError(f"Unknown optimization sense '{self.sense}'") from None
        if self.workers is not None:
            workers = _parse_number(self.workers, "Workers")
            if workers is None or workers != int(workers) or workers < 1:
                raise InvalidConfigError(f"Workers must be a positive integer, got {self.workers!r}")
            object.__setattr__(self, "workers", int(workers))

    @classmethod
    def from_mapping(
        cls, data: Optional[Mapping[str, Any]], base: Optional["SolveConfig"] = None
    ) -> "SolveConfig":
        """Build a config from form/JSON data.

        Missing keys keep the values of ``base`` (or the defaults).
        """

        data = dict(data or {})
        kwargs: Dict[str, Any] = {}
        aliases = {
            "time_limit_seconds": ("time_limit_seconds", "timeLimitSeconds", "time_limit"),
            "optimality_gap": ("optimality_gap", "optimalityGapFraction", "gap"),
            "sense": ("sense",),
            "workers": ("workers", "threads"),
            "backend": ("backend",),
        }
        for target, names in aliases.items():
            for name in names:
                if name in data:
                    kwargs[target] = data.pop(name)
                    break
        if data:
            raise InvalidConfigError(f"Unknown solve setting(s): {', '.join(sorted(data))}")
        if kwargs.get("backend") == "":
            kwargs["backend"] = None
        if base is not None:
            return replace(base, **kwargs)
        return cls(**kwargs)


@dataclass
class BackendResponse:
    """Raw answer of a backend, keyed by variable index."""

    status: SolveStatus
    values: Dict[int, float] = field(default_factory=dict)
    best_bound: Optional[float] = None
    raw_status: Any = None
    message: str = ""
    wall_time: Optional[float] = None


@dataclass(frozen=True)
class SolveResult:
    """Immutable snapshot of one solve invocation."""

    status: SolveStatus
    objective_value: Optional[float] = None
    values: Mapping[DomainKey, float] = field(default_factory=dict)
    best_bound: Optional[float] = None
    elapsed_seconds: float = 0.0
    raw_status: Any = None
    message: str = ""
    progress: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "progress", tuple(self.progress))

    @property
    def has_solution(self) -> bool:
        """True when ``values`` hold a complete solver assignment."""

        return bool(self.values) and self.status in (
            SolveStatus.OPTIMAL,
            SolveStatus.FEASIBLE,
            SolveStatus.TIMED_OUT,
        )

    @property
    def is_solved(self) -> bool:
        return self.status in SOLUTION_STATUSES

    def value(self, key: DomainKey, default: float = 0.0) -> float:
        return self.values.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        values: List[Dict[str, Any]] = []
        for key, value in self.values.items():
            row = {"kind": type(key).__name__}
            row.update(asdict(key))
            row["value"] = value
            values.append(row)
        return {
            "status": self.status.value,
            "objective_value": self.objective_value,
            "best_bound": self.best_bound,
            "elapsed_seconds": self.elapsed_seconds,
            "raw_status": None if self.raw_status is None else str(self.raw_status),
            "message": self.message,
            "progress": list(self.progress),
            "values": values,
        }


def trivial_response(model: CompiledModel) -> Optional[BackendResponse]:
    """Answer models a solver never needs to see.

    A constraint without variables that its constants already violate makes
    the model infeasible; a model without variables is solved by its
    constants alone.
    """

    broken = model.trivially_violated()
    if broken:
        names = ", ".join(c.name for c in broken[:5])
        return BackendResponse(
            status=SolveStatus.INFEASIBLE,
            raw_status="Trivially infeasible",
            message=f"Constraints without any eligible variable cannot hold: {names}",
            wall_time=0.0,
        )
    if not model.variables:
        return BackendResponse(
            status=SolveStatus.OPTIMAL,
            raw_status="Empty model",
            message="Model has no decision variables",
            wall_time=0.0,
        )
    return None


_BACKEND_REGISTRY: Dict[str, str] = {}
_DEFAULT_BACKEND = "ortools"


def register_backend(identifier: str, module_path: str) -> None:
    """Register a solver backend import path under ``identifier``."""

    _BACKEND_REGISTRY[identifier.lower()] = module_path


def available_backends() -> List[str]:
    """Return the list of registered backend identifiers."""

    return sorted(_BACKEND_REGISTRY)


def _resolve_backend_name(identifier: Optional[str]) -> str:
    key = (identifier or _DEFAULT_BACKEND).lower()
    if key not in _BACKEND_REGISTRY:
        available = ", ".join(available_backends()) or "none"
        name = identifier if identifier is not None else _DEFAULT_BACKEND
        raise InvalidConfigError(f"Unknown solver backend '{name}'. Available options: {available}.")
    return key


def get_backend(identifier: Optional[str] = None) -> ModuleType:
    """Return the module implementing the requested solver backend."""

    key = _resolve_backend_name(identifier)
    try:
        return import_module(_BACKEND_REGISTRY[key])
    except ImportError as exc:
        raise SolverBackendError(f"Backend '{key}' is not installed: {exc}") from exc


def is_reentrant(identifier: Optional[str] = None) -> bool:
    """Whether concurrent calls into the backend are safe without serialization."""

    return bool(getattr(get_backend(identifier), "REENTRANT", False))


def solve_model(
    model: CompiledModel,
    config: SolveConfig,
    *,
    backend: Optional[str] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> BackendResponse:
    """Hand a compiled model to the selected backend and return its raw response."""

    name = backend if backend is not None else config.backend
    backend_module = get_backend(name)
    solver = getattr(backend_module, "solve", None)
    if solver is None:
        raise SolverBackendError(f"Backend '{name or _DEFAULT_BACKEND}' does not expose a solve() function.")
    return solver(model, config, progress_callback=progress_callback)


register_backend("ortools", "planner.ortools_backend")
register_backend("pulp", "planner.pulp_backend")


__all__ = [
    "DEFAULT_TIME_LIMIT",
    "Sense",
    "SolveStatus",
    "SOLUTION_STATUSES",
    "SolveConfig",
    "BackendResponse",
    "SolveResult",
    "available_backends",
    "register_backend",
    "get_backend",
    "is_reentrant",
    "solve_model",
    "trivial_response",
]
