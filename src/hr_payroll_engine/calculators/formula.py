"""Sandboxed arithmetic formula evaluation.

Formulas are parsed with :mod:`ast` and walked against a whitelist of node
types. Only the four arithmetic operators, unary signs, numeric literals,
parentheses, ``min``/``max`` and the documented variables are accepted.
Evaluation is done in :class:`~decimal.Decimal`.
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Mapping
from decimal import Decimal, DivisionByZero, InvalidOperation

FORMULA_VARIABLES = frozenset(
    {
        "basic_salary",
        "monthly_salary",
        "annual_salary",
        "service_months",
        "daily_rate",
        "leave_days",
        "working_days",
        "basic_pay",
        "gross_pay",
    }
)

MAX_FORMULA_LENGTH = 500

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS = {
    "min": min,
    "max": max,
}


class FormulaError(ValueError):
    """Raised when a formula is malformed or cannot be evaluated."""


def parse_formula(expression: str) -> ast.Expression:
    """Parse and validate a formula without evaluating it."""
    if not expression or not expression.strip():
        raise FormulaError("formula is empty")
    if len(expression) > MAX_FORMULA_LENGTH:
        raise FormulaError(f"formula longer than {MAX_FORMULA_LENGTH} characters")

    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"malformed formula: {e.msg}") from e

    for node in ast.walk(tree):
        _check_node(node)
    return tree


def variables_used(expression: str) -> set[str]:
    """Return the variable names referenced by a formula."""
    tree = parse_formula(expression)
    return {
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name) and node.id not in _FUNCTIONS
    }


def evaluate_formula(expression: str, variables: Mapping[str, Decimal]) -> Decimal:
    """Evaluate a formula against the given variables.

    Raises:
        FormulaError: malformed formula, undefined variable, division by zero
    """
    tree = parse_formula(expression)
    try:
        return _eval(tree.body, variables)
    except (DivisionByZero, InvalidOperation, ZeroDivisionError) as e:
        raise FormulaError("division by zero or invalid arithmetic") from e


def _check_node(node: ast.AST) -> None:
    if isinstance(node, (ast.Expression, ast.Load)):
        return
    if isinstance(node, ast.BinOp):
        if type(node.op) not in _BIN_OPS:
            raise FormulaError(f"operator {type(node.op).__name__} is not allowed")
        return
    if isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPS:
            raise FormulaError(f"operator {type(node.op).__name__} is not allowed")
        return
    if type(node) in _BIN_OPS or type(node) in _UNARY_OPS:
        return
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(f"literal {node.value!r} is not a number")
        return
    if isinstance(node, ast.Name):
        if node.id not in FORMULA_VARIABLES and node.id not in _FUNCTIONS:
            raise FormulaError(f"unknown variable '{node.id}'")
        return
    if isinstance(node, ast.Call):
        if (
            not isinstance(node.func, ast.Name)
            or node.func.id not in _FUNCTIONS
            or node.keywords
            or not node.args
        ):
            raise FormulaError("only min() and max() calls are allowed")
        return
    raise FormulaError(f"{type(node).__name__} is not allowed in formulas")


def _eval(node: ast.AST, variables: Mapping[str, Decimal]) -> Decimal:
    if isinstance(node, ast.BinOp):
        left = _eval(node.left, variables)
        right = _eval(node.right, variables)
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_eval(node.operand, variables))
    if isinstance(node, ast.Constant):
        return Decimal(str(node.value))
    if isinstance(node, ast.Name):
        if node.id in _FUNCTIONS:
            raise FormulaError(f"'{node.id}' must be called")
        value = variables.get(node.id)
        if value is None:
            raise FormulaError(f"variable '{node.id}' is not defined")
        return Decimal(value)
    if isinstance(node, ast.Call):
        args = [_eval(arg, variables) for arg in node.args]
        return _FUNCTIONS[node.func.id](args)  # type: ignore[union-attr]
    raise FormulaError(f"{type(node).__name__} is not allowed in formulas")
