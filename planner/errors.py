"""Exception hierarchy shared by the model builder, orchestrator and mapper."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence


class PlannerError(Exception):
    """Base class for every error raised by :mod:`planner`."""


class ModelBuildError(PlannerError):
    """Raised while building a model, before anything reaches a solver."""


class InvalidDomainError(ModelBuildError, ValueError):
    """Raised when entities, resources or constraints are malformed."""


class InvalidKeyError(ModelBuildError, KeyError):
    """Raised when a decision key references something the domain does not contain."""

    def __init__(self, key: Any, reason: str):
        super().__init__(key, reason)
        self.key = key
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason} (key={self.key!r})"


class UnsupportedConstraintError(ModelBuildError):
    """Raised when a constraint cannot be expressed over the registered variables."""


class InvalidWeightError(ModelBuildError, ValueError):
    """Raised when an objective weight is missing, non-numeric or not finite."""


class InvalidConfigError(PlannerError, ValueError):
    """Raised when solve settings are out of range."""


class SolverBackendError(PlannerError):
    """Raised by a backend when the solver capability itself fails."""


class SessionStateError(PlannerError, RuntimeError):
    """Raised when a solve session is driven out of order."""


class MappingError(PlannerError):
    """Base class for errors raised while decoding a solve result."""


class NoSolutionError(MappingError):
    """Raised when a result without a usable solution is mapped."""

    def __init__(self, status: Any, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"No solution to map (status={getattr(status, 'value', status)})")


class InconsistentSolutionError(MappingError):
    """Raised when a decoded assignment breaks a constraint it was compiled from.

    This signals a defect in the compiler or a solver backend, not a problem
    with the caller's input.
    """

    def __init__(self, violations: Sequence[str]):
        self.violations: List[str] = list(violations)
        super().__init__(
            "Decoded assignment violates %d constraint(s): %s"
            % (len(self.violations), "; ".join(self.violations[:5]))
        )


__all__ = [
    "PlannerError",
    "ModelBuildError",
    "InvalidDomainError",
    "InvalidKeyError",
    "UnsupportedConstraintError",
    "InvalidWeightError",
    "InvalidConfigError",
    "SolverBackendError",
    "SessionStateError",
    "MappingError",
    "NoSolutionError",
    "InconsistentSolutionError",
]
