"""Built-in tools available to every model that supports tool calls"""

from __future__ import annotations

import ast
import math
import operator
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .registry import ToolFunction, ToolRegistry

# ========== calculate ==========

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.FloorDiv: operator.floordiv,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}

_FUNCTIONS = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "log": math.log10,
    "ln": math.log,
    "abs": abs,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": round,
    "min": min,
    "max": max,
    "pow": math.pow,
}
_CONSTANTS = {"pi": math.pi, "e": math.e}

MAX_EXPONENT = 10_000


def _eval_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise ValueError(f"Unknown name: {node.id}")
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("Exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        func = _FUNCTIONS.get(node.func.id)
        if func is None:
            raise ValueError(f"Unknown function: {node.func.id}")
        return func(*(_eval_node(arg) for arg in node.args))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    """Evaluate an arithmetic expression without ``eval``; ``^`` is power"""
    tree = ast.parse(expression.replace("^", "**"), mode="eval")
    result = _eval_node(tree)
    if not isinstance(result, (int, float)):
        raise ValueError("Expression did not evaluate to a number")
    return result


async def _calculate(args: dict[str, Any]) -> dict[str, Any]:
    expression = str(args.get("expression", "")).strip()
    if not expression:
        raise ValueError("Missing 'expression'")
    try:
        result = evaluate_expression(expression)
    except ZeroDivisionError:
        return {"result": "Error: division by zero", "expression": expression}
    except (ValueError, SyntaxError, TypeError, OverflowError) as e:
        return {"result": f"Error: {e}", "expression": expression}

    if isinstance(result, float):
        if math.isnan(result):
            return {"result": "NaN", "expression": expression}
        if math.isinf(result):
            return {"result": "Infinity" if result > 0 else "-Infinity", "expression": expression}
        result = round(result, 12)
    return {"result": result, "expression": expression}


calculate_tool = ToolFunction(
    name="calculate",
    description=(
        "Evaluates mathematical expressions and returns the result. Supports arithmetic "
        "(+, -, *, /, %), powers (^), roots (sqrt), trigonometry (sin, cos, tan), "
        "logarithms (log, ln), and constants (pi, e)."
    ),
    parameters={
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": 'The mathematical expression to evaluate (e.g., "2 + 3 * 4", "sqrt(16)", "sin(pi/2)")',
            }
        },
        "required": ["expression"],
    },
    handler=_calculate,
)


# ========== get_time ==========

TIME_FORMATS = ("iso", "locale", "unix", "detailed")


def _resolve_zone(name: str):
    if not name or name == "local":
        return None
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


async def _get_time(args: dict[str, Any]) -> dict[str, Any]:
    tz_name = str(args.get("timezone") or "local")
    fmt = str(args.get("format") or "detailed")
    if fmt not in TIME_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}; expected one of {', '.join(TIME_FORMATS)}")

    now = datetime.now(timezone.utc)
    local = now.astimezone()
    result: dict[str, Any] = {
        "timestamp": int(now.timestamp() * 1000),
        "iso": now.isoformat(),
        "locale": local.strftime("%c"),
        "timezone": local.tzname(),
        "utc": now.strftime("%a, %d %b %Y %H:%M:%S GMT"),
    }

    try:
        zone = _resolve_zone(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        result["formatted"] = {"timezone": tz_name, "error": "Invalid timezone specified"}
        return result
    target = now.astimezone(zone) if zone is not None else local

    if fmt == "iso":
        result["formatted"] = target.isoformat()
    elif fmt == "unix":
        result["formatted"] = int(now.timestamp())
    elif fmt == "locale":
        result["formatted"] = target.strftime("%B %d, %Y at %I:%M:%S %p %Z")
    else:
        result["formatted"] = {
            "local": {
                "timezone": local.tzname(),
                "time": local.strftime("%B %d, %Y, %I:%M:%S %p %Z"),
                "date": local.strftime("%A, %B %d, %Y"),
                "time24": local.strftime("%H:%M:%S"),
            },
            "utc": {"timezone": "UTC", "time": now.strftime("%B %d, %Y, %I:%M:%S %p UTC"), "iso": now.isoformat()},
            "unix": {"timestamp": result["timestamp"], "seconds": int(now.timestamp())},
        }
        if zone is not None:
            result["formatted"]["requested"] = {
                "timezone": tz_name,
                "time": target.strftime("%B %d, %Y, %I:%M:%S %p %Z"),
            }
    return result


get_time_tool = ToolFunction(
    name="get_time",
    description=(
        "Returns the current date and time information. Can optionally format for specific "
        "timezones or return in different formats."
    ),
    parameters={
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": 'Optional IANA timezone (e.g., "UTC", "America/New_York"). Defaults to local.',
                "default": "local",
            },
            "format": {
                "type": "string",
                "description": 'One of "iso", "locale", "unix", "detailed". Defaults to "detailed".',
                "enum": list(TIME_FORMATS),
                "default": "detailed",
            },
        },
        "required": [],
    },
    handler=_get_time,
)


builtin_tools = [calculate_tool, get_time_tool]


def create_default_registry() -> ToolRegistry:
    """A registry holding every built-in tool"""
    return ToolRegistry(builtin_tools)
