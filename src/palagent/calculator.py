"""
Safe arithmetic for the calculate tool.

Expressions are parsed with ast and walked node by node. Only numeric
literals, arithmetic operators, a few math functions and the constants
pi, e and tau are accepted; anything else is rejected before evaluation.
"""

import ast
import math
import operator
import re
from collections.abc import Callable
from typing import Any

from palagent.primitives import ArgumentError

MAX_LENGTH = 256
MAX_DEPTH = 40
MAX_EXPONENT = 64

_BINARY_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log10,
    "ln": math.log,
    "exp": math.exp,
    "abs": abs,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "min": min,
    "max": max,
}

_CONSTANTS = {"pi": math.pi, "e": math.e, "tau": math.tau}

_PERCENT_OF = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*of\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")


def normalize(expression: str) -> str:
    """Rewrite everyday notation ("15% of 80", "2^10", "3 x 4") into Python syntax."""
    expr = expression.strip().lower()
    expr = _PERCENT_OF.sub(r"(\1 * \2 / 100)", expr)
    expr = _PERCENT.sub(r"(\1 / 100)", expr)
    expr = expr.replace("^", "**").replace("×", "*").replace("÷", "/")
    expr = re.sub(r"(?<=\d)\s*x\s*(?=\d)", " * ", expr)
    # thousands separators: "1,250" but not "max(1, 2)"
    return re.sub(r"(?<=\d),(?=\d{3}(?!\d))", "", expr)


def _eval(node: ast.AST, depth: int = 0) -> Any:
    if depth > MAX_DEPTH:
        raise ArgumentError("Expression is too complex")

    if isinstance(node, ast.Expression):
        return _eval(node.body, depth + 1)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ArgumentError("Only numbers are allowed")
        return node.value

    if isinstance(node, ast.BinOp):
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise ArgumentError("Operator is not allowed")
        left = _eval(node.left, depth + 1)
        right = _eval(node.right, depth + 1)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ArgumentError(f"Exponent is too large (max {MAX_EXPONENT})")
        return op(left, right)

    if isinstance(node, ast.UnaryOp):
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ArgumentError("Operator is not allowed")
        return op(_eval(node.operand, depth + 1))

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            name = getattr(node.func, "id", "?")
            raise ArgumentError(f"Function '{name}' is not allowed")
        if node.keywords:
            raise ArgumentError("Keyword arguments are not allowed")
        return _FUNCTIONS[node.func.id](*[_eval(arg, depth + 1) for arg in node.args])

    if isinstance(node, ast.Name):
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise ArgumentError(f"Unknown name '{node.id}'")

    raise ArgumentError("Unsupported expression")


def evaluate(expression: str) -> float | int:
    """
    Evaluate an arithmetic expression.

    Raises ArgumentError for anything that is not plain arithmetic or
    whose result is not a finite number.
    """
    if not expression or not expression.strip():
        raise ArgumentError("Expression must not be empty")
    if len(expression) > MAX_LENGTH:
        raise ArgumentError("Expression is too long")

    expr = normalize(expression)
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError:
        raise ArgumentError(f"Could not calculate: {expression}") from None
    try:
        result = _eval(tree)
        finite = isinstance(result, (int, float)) and math.isfinite(result)
    except (ZeroDivisionError, OverflowError, ValueError, TypeError) as e:
        raise ArgumentError(f"Could not calculate: {e}") from None

    if isinstance(result, bool) or not finite:
        raise ArgumentError("Result is not a valid number")
    if isinstance(result, float) and result.is_integer() and abs(result) < 1e15:
        return int(result)
    return result


def calculate(expression: str) -> dict[str, Any]:
    """Result shape for the calculate tool."""
    result = evaluate(expression)
    formatted = f"{result:,}" if isinstance(result, int) else f"{result:,.10g}"
    return {"expression": expression, "result": result, "formatted": formatted}
