"""
Restricted arithmetic for template line formulas.

Formulas compute a line amount from template variables, e.g.
``{net} * 0.23`` or ``round(gross / 1.23, 2)``.  They are parsed with
``ast`` and walked node by node; anything outside the allowed set is
rejected before evaluation.

Allowed:
  - Numbers (evaluated as Decimal)
  - Variable references: ``{name}`` or bare ``name``
  - Binary: + - * / and unary -, +
  - Functions: abs(), round(), min(), max()

Rejected:
  - attribute access, subscripts, comparisons, strings, lambdas,
    any other call or name
"""

import ast
import re
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, DivisionByZero, InvalidOperation

ALLOWED_FUNCTIONS: frozenset[str] = frozenset({"abs", "round", "min", "max"})

VARIABLE_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

_PLACEHOLDER = re.compile(r"\{([a-zA-Z][a-zA-Z0-9_]*)\}")

_BINARY_OPS = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
}


class FormulaError(ValueError):
    """Formula is malformed, unsafe, or references an unknown variable."""

    def __init__(self, formula: str, message: str):
        self.formula = formula
        super().__init__(f"{message} in formula '{formula}'")


def _normalize(formula: str) -> str:
    return _PLACEHOLDER.sub(r"\1", formula)


def referenced_variables(formula: str) -> set[str]:
    """Names a formula reads (function names excluded)."""
    tree = _parse(formula)
    return {
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name) and node.id not in ALLOWED_FUNCTIONS
    }


def _parse(formula: str) -> ast.Expression:
    try:
        tree = ast.parse(_normalize(formula), mode="eval")
    except SyntaxError as exc:
        raise FormulaError(formula, "Syntax error") from exc
    for node in ast.walk(tree):
        _check_node(formula, node)
    return tree


def _check_node(formula: str, node: ast.AST) -> None:
    if isinstance(node, (ast.Expression, ast.Load, ast.operator, ast.unaryop)):
        if isinstance(node, ast.operator) and type(node) not in _BINARY_OPS:
            raise FormulaError(formula, f"Operator {type(node).__name__} not allowed")
        if isinstance(node, ast.unaryop) and not isinstance(node, (ast.USub, ast.UAdd)):
            raise FormulaError(formula, f"Operator {type(node).__name__} not allowed")
        return
    if isinstance(node, (ast.BinOp, ast.UnaryOp, ast.Name)):
        return
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(formula, "Only numeric literals are allowed")
        return
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in ALLOWED_FUNCTIONS:
            raise FormulaError(formula, "Function call not allowed")
        if node.keywords:
            raise FormulaError(formula, "Keyword arguments not allowed")
        return
    raise FormulaError(formula, f"{type(node).__name__} not allowed")


def validate_formula(formula: str) -> None:
    """Raise FormulaError unless the formula only uses allowed constructs."""
    _parse(formula)


def evaluate_formula(formula: str, variables: Mapping[str, Decimal]) -> Decimal:
    """
    Evaluate a formula with Decimal arithmetic.

    Raises:
        FormulaError: On a disallowed construct, unknown variable, or
            division by zero.
    """
    tree = _parse(formula)

    def _eval(node: ast.AST) -> Decimal:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant):
            return Decimal(str(node.value))
        if isinstance(node, ast.Name):
            if node.id not in variables:
                raise FormulaError(formula, f"Unknown variable '{node.id}'")
            return Decimal(str(variables[node.id]))
        if isinstance(node, ast.UnaryOp):
            value = _eval(node.operand)
            return -value if isinstance(node.op, ast.USub) else value
        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](_eval(node.left), _eval(node.right))
        # ast.Call, already restricted to ALLOWED_FUNCTIONS
        args = [_eval(arg) for arg in node.args]
        name = node.func.id
        if name == "abs" and len(args) == 1:
            return abs(args[0])
        if name == "round" and len(args) in (1, 2):
            places = int(args[1]) if len(args) == 2 else 0
            return args[0].quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        if name in ("min", "max") and args:
            return min(args) if name == "min" else max(args)
        raise FormulaError(formula, f"Wrong number of arguments to {name}()")

    try:
        return _eval(tree)
    except (DivisionByZero, InvalidOperation, ZeroDivisionError) as exc:
        raise FormulaError(formula, "Arithmetic error") from exc
