"""Flask JSON front end for the planner.

Clients post a problem description (entities, resources, constraints and
preferences) together with solve settings and receive the solver status, the
validated assignment and, on request, a formula description of the model.
The heavy lifting lives in the ``planner`` package; this module only turns
HTTP requests into planner calls and planner errors into HTTP responses.
"""

from flask import Flask, jsonify, request
import logging
import threading

from planner.api import DEFAULT_TIME_LIMIT, SolveConfig, available_backends, is_reentrant
from planner.domain import DomainModel
from planner.errors import (
    InconsistentSolutionError,
    InvalidConfigError,
    MappingError,
    ModelBuildError,
    NoSolutionError,
    PlannerError,
    SessionStateError,
    SolverBackendError,
)
from planner.orchestrator import SolveSession, solve_problem

app = Flask(__name__)

# Defaults for every solve; each can be overridden with a ``PLANNER_*``
# environment variable (e.g. ``PLANNER_SOLVER_TIME_LIMIT=30``) or per request.
app.config.update(
    SOLVER_TIME_LIMIT=DEFAULT_TIME_LIMIT,
    SOLVER_OPTIMALITY_GAP=0.0,
    SOLVER_BACKEND="ortools",
    SOLVER_WORKERS=None,
)
app.config.from_prefixed_env("PLANNER")

logging.basicConfig(level=logging.INFO)

# Mapping of planner exceptions to HTTP status codes; the first matching
# class in order wins.
ERROR_STATUS = (
    (NoSolutionError, 422),
    (InconsistentSolutionError, 500),
    (SessionStateError, 500),
    (ModelBuildError, 400),
    (InvalidConfigError, 400),
    (MappingError, 500),
    (PlannerError, 500),
)

# Backends that are not safe to call concurrently share this lock.
_SOLVER_LOCK = threading.Lock()


def status_for(exc):
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return 500


@app.errorhandler(PlannerError)
def handle_planner_error(exc):
    code = status_for(exc)
    if code >= 500:
        app.logger.error("Internal planner failure: %s", exc)
    else:
        app.logger.warning("Rejected request: %s", exc)
    return jsonify({"error": type(exc).__name__, "message": str(exc)}), code


def _read_payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidConfigError("Request body must be a JSON object")
    return payload


def _read_config(payload):
    """Combine ``app.config`` defaults with the request's ``settings`` object."""

    base = SolveConfig(
        time_limit_seconds=app.config["SOLVER_TIME_LIMIT"],
        optimality_gap=app.config["SOLVER_OPTIMALITY_GAP"],
        backend=app.config["SOLVER_BACKEND"] or None,
        workers=app.config["SOLVER_WORKERS"],
    )
    settings = payload.get("settings") or {}
    if not isinstance(settings, dict):
        raise InvalidConfigError("'settings' must be a JSON object")
    return SolveConfig.from_mapping(settings, base=base)


@app.route("/backends", methods=["GET"])
def backends():
    """List the registered solver backends and the configured default."""

    return jsonify({"backends": available_backends(), "default": app.config["SOLVER_BACKEND"]})


@app.route("/solve", methods=["POST"])
def solve():
    """Build, solve and map the posted problem.

    Solver outcomes without a solution (infeasible, timed out, backend
    failure) are reported with HTTP 200 and ``assignment: null``; only bad
    input and internal defects produce error codes.
    """

    payload = _read_payload()
    domain = DomainModel.from_dict(payload.get("problem") or {})
    config = _read_config(payload)
    describe = bool(payload.get("describe", False))

    def progress_cb(msg):
        app.logger.info(msg)

    try:
        reentrant = is_reentrant(config.backend)
    except SolverBackendError:
        # The session reports the missing backend as SOLVER_ERROR.
        reentrant = False
    if reentrant:
        outcome = solve_problem(domain, config, describe=describe, progress_callback=progress_cb)
    else:
        with _SOLVER_LOCK:
            outcome = solve_problem(domain, config, describe=describe, progress_callback=progress_cb)
    app.logger.info("Solve request finished with status %s", outcome.status.value)
    return jsonify(outcome.as_dict())


@app.route("/describe", methods=["POST"])
def describe():
    """Return the formula description of the posted problem without solving it."""

    payload = _read_payload()
    domain = DomainModel.from_dict(payload.get("problem") or {})
    config = _read_config(payload)
    session = SolveSession(domain, config)
    description = session.describe()
    body = description.as_dict()
    body["stats"] = session.model.stats()
    return jsonify(body)


if __name__ == "__main__":
    app.run(debug=True)
