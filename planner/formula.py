"""Rendering-agnostic expression tree of a compiled model.

The tree is plain data so a presentation layer can typeset it however it
likes; :func:`to_latex` and :func:`to_text` cover the two common cases.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from .api import SolveResult
from .model import CompiledModel, LinearConstraint, LinearExpr, Sense
from .registry import AssignmentKey, DecisionVariable, StartKey, UsageKey


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Symbol:
    name: str
    subscript: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Term:
    coefficient: float
    factor: Union[Symbol, Number]


@dataclass(frozen=True)
class Sum:
    terms: Tuple[Term, ...] = ()
    constant: float = 0.0


@dataclass(frozen=True)
class Relation:
    lhs: Sum
    op: str
    rhs: Number


@dataclass(frozen=True)
class Statement:
    """One displayable line: an objective (``Minimize: ...``) or a named constraint."""

    kind: str
    label: str
    body: Union[Sum, Relation]


@dataclass(frozen=True)
class ModelDescription:
    objective: Statement
    constraints: Tuple[Statement, ...] = ()
    solution: Optional[Statement] = None

    def statements(self) -> List[Statement]:
        out = [self.objective, *self.constraints]
        if self.solution is not None:
            out.append(self.solution)
        return out

    def as_dict(self) -> Dict[str, Any]:
        data = {
            "objective": to_dict(self.objective),
            "constraints": [to_dict(c) for c in self.constraints],
            "latex": [to_latex(s) for s in self.statements()],
            "text": [to_text(s) for s in self.statements()],
        }
        data["solution"] = to_dict(self.solution) if self.solution is not None else None
        return data


def symbol_for(variable: DecisionVariable) -> Symbol:
    key = variable.key
    if isinstance(key, AssignmentKey):
        parts = (key.entity, key.resource) if key.slot is None else (key.entity, key.resource, str(key.slot))
        return Symbol("X", parts)
    if isinstance(key, StartKey):
        return Symbol("S", (key.entity,))
    if isinstance(key, UsageKey):
        return Symbol("Y", (key.resource,))
    return Symbol(variable.name)


def _sum(model: CompiledModel, expr: LinearExpr) -> Sum:
    return Sum(
        terms=tuple(Term(coef, symbol_for(model.variable(index))) for index, coef in expr.terms),
        constant=expr.constant,
    )


def _constraint_statement(model: CompiledModel, constraint: LinearConstraint) -> Statement:
    return Statement(
        kind="constraint",
        label=constraint.name,
        body=Relation(_sum(model, constraint.expr), constraint.sense, Number(constraint.rhs)),
    )


def _objective_label(sense: Sense) -> str:
    return "Maximize" if sense is Sense.MAXIMIZE else "Minimize"


def describe_model(model: CompiledModel) -> ModelDescription:
    """Build the expression tree for the objective and every constraint."""

    objective = Statement(
        kind="objective",
        label=_objective_label(model.objective.sense),
        body=_sum(model, model.objective.expr),
    )
    return ModelDescription(
        objective=objective,
        constraints=tuple(_constraint_statement(model, c) for c in model.constraints),
    )


def describe_solution(model: CompiledModel, result: SolveResult) -> ModelDescription:
    """Describe ``model`` and add the objective with solved values substituted."""

    description = describe_model(model)
    if not result.has_solution or result.objective_value is None:
        return description
    expr = model.objective.expr
    substituted = Sum(
        terms=tuple(
            Term(coef, Number(result.value(model.variable(index).key)))
            for index, coef in expr.terms
        ),
        constant=expr.constant,
    )
    solution = Statement(
        kind="solution",
        label=_objective_label(model.objective.sense),
        body=Relation(substituted, "==", Number(result.objective_value)),
    )
    return ModelDescription(description.objective, description.constraints, solution)


# -- rendering -----------------------------------------------------------

_LATEX_SPECIAL = re.compile(r"([\\{}_^#$%&~])")
_LATEX_OPS = {"<=": r"\leq", ">=": r"\geq", "==": "="}
_TEXT_OPS = {"<=": "<=", ">=": ">=", "==": "="}


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _latex_escape(text: str) -> str:
    return _LATEX_SPECIAL.sub(lambda m: "\\" + m.group(1) if m.group(1) != "\\" else r"\backslash ", text)


def _latex_factor(factor: Union[Symbol, Number]) -> str:
    if isinstance(factor, Number):
        return _fmt(factor.value)
    if not factor.subscript:
        return _latex_escape(factor.name)
    sub = ",".join(r"\text{%s}" % _latex_escape(part) for part in factor.subscript)
    return f"{_latex_escape(factor.name)}_{{{sub}}}"


def _text_factor(factor: Union[Symbol, Number]) -> str:
    if isinstance(factor, Number):
        return _fmt(factor.value)
    if not factor.subscript:
        return factor.name
    return f"{factor.name}[{','.join(factor.subscript)}]"


def _render_sum(node: Sum, factor, times: str) -> str:
    parts: List[str] = []
    for term in node.terms:
        coef = term.coefficient
        sign = "-" if coef < 0 else "+"
        magnitude = abs(coef)
        if isinstance(term.factor, Symbol) and magnitude == 1:
            body = factor(term.factor)
        else:
            body = f"{_fmt(magnitude)}{times}{factor(term.factor)}"
        parts.append(f"{sign} {body}")
    if node.constant:
        parts.append(f"{'-' if node.constant < 0 else '+'} {_fmt(abs(node.constant))}")
    if not parts:
        return "0"
    text = " ".join(parts)
    if text.startswith("+ "):
        text = text[2:]
    elif text.startswith("- "):
        text = "-" + text[2:]
    return text


def to_latex(statement: Statement) -> str:
    body = statement.body
    if isinstance(body, Relation):
        rendered = "%s %s %s" % (
            _render_sum(body.lhs, _latex_factor, r" \times "),
            _LATEX_OPS[body.op],
            _fmt(body.rhs.value),
        )
    else:
        rendered = _render_sum(body, _latex_factor, r" \times ")
    if statement.kind == "constraint":
        return rendered
    return f"{statement.label}: ${rendered}$"


def to_text(statement: Statement) -> str:
    body = statement.body
    if isinstance(body, Relation):
        rendered = f"{_render_sum(body.lhs, _text_factor, '*')} {_TEXT_OPS[body.op]} {_fmt(body.rhs.value)}"
    else:
        rendered = _render_sum(body, _text_factor, "*")
    return f"{statement.label}: {rendered}"


def _node_dict(node: Any) -> Any:
    if isinstance(node, Number):
        return {"type": "number", "value": node.value}
    if isinstance(node, Symbol):
        return {"type": "symbol", "name": node.name, "subscript": list(node.subscript)}
    if isinstance(node, Term):
        return {"type": "term", "coefficient": node.coefficient, "factor": _node_dict(node.factor)}
    if isinstance(node, Sum):
        return {"type": "sum", "terms": [_node_dict(t) for t in node.terms], "constant": node.constant}
    if isinstance(node, Relation):
        return {"type": "relation", "lhs": _node_dict(node.lhs), "op": node.op, "rhs": _node_dict(node.rhs)}
    raise TypeError(f"Unknown formula node {node!r}")


def to_dict(statement: Statement) -> Dict[str, Any]:
    return {"kind": statement.kind, "label": statement.label, "body": _node_dict(statement.body)}


__all__ = [
    "Number",
    "Symbol",
    "Term",
    "Sum",
    "Relation",
    "Statement",
    "ModelDescription",
    "describe_model",
    "describe_solution",
    "symbol_for",
    "to_latex",
    "to_text",
    "to_dict",
]
