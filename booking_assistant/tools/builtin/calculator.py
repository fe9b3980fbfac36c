"""Deterministic arithmetic tool. The model never does the maths itself."""
from __future__ import annotations

import ast
import operator
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Optional, Union

from booking_assistant.core.exceptions import ValidationError
from booking_assistant.tools.registry import ToolDefinition

Number = Union[int, float]

DAILY_BUDGET = "daily_budget"
_MAX_EXPRESSION = 200
_MAX_EXPONENT = 10

_BINARY: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _eval(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValidationError("Exponent too large", details={"field": "expression"})
        return _BINARY[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_eval(node.operand))
    raise ValidationError(
        f"Unsupported expression element: {type(node).__name__}",
        details={"field": "expression"},
    )


def evaluate(expression: str) -> Number:
    """Evaluate ``+ - * / // % **`` over numbers and parentheses."""
    text = (expression or "").replace("$", "").replace(",", "").strip()
    if not text or len(text) > _MAX_EXPRESSION:
        raise ValidationError("Expression is empty or too long", details={"field": "expression"})
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise ValidationError(f"Invalid expression {expression!r}", details={"field": "expression"}, cause=exc) from exc
    try:
        return _eval(tree)
    except ZeroDivisionError as exc:
        raise ValidationError("Division by zero", details={"field": "expression"}, cause=exc) from exc


def round_daily_budget(value: Number) -> int:
    """Half-up to a whole dollar: 87.5 → 88."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def calculate(expression: str, purpose: Optional[str] = None) -> Dict[str, Any]:
    result = evaluate(expression)
    out: Dict[str, Any] = {"expression": expression, "result": result}
    if purpose == DAILY_BUDGET:
        out["purpose"] = DAILY_BUDGET
        out["daily_budget"] = round_daily_budget(result)
    return out


CALCULATOR_TOOL = ToolDefinition(
    name="calculator",
    description=(
        "Evaluate an arithmetic expression exactly. Use for any maths, e.g. turning "
        "a total budget into a daily rate (purpose=daily_budget). A daily_budget "
        "calculation is always followed by a vehicle search with that bound."
    ),
    parameters={
        "type": "object",
        "properties": {
            "expression": {"type": "string", "description": "e.g. '350 / 4'"},
            "purpose": {"type": "string", "enum": [DAILY_BUDGET], "description": "Tag budget conversions."},
        },
        "required": ["expression"],
    },
    handler=calculate,
)
