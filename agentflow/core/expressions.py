"""Default expression evaluator.

The evaluator is a plain callable ``(expression, variables) -> value``. The
default one is a templating evaluator: it substitutes ``${name}`` placeholders
with the string form of each bound variable and then coerces the result back
into a boolean or number when the text looks like one. It has no operators;
hosts needing real expressions pass their own callable to the engine.
"""

import json
import re
from typing import Any, Callable, Dict


ExpressionEvaluator = Callable[[str, Dict[str, Any]], Any]

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


def stringify(value: Any) -> str:
    """Render a value the way it appears inside an interpolated string."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def coerce(text: str) -> Any:
    """Turn boolean- and number-looking text into the matching value."""
    if text == "true":
        return True
    if text == "false":
        return False
    if _INT_PATTERN.match(text):
        return int(text)
    if _FLOAT_PATTERN.match(text):
        return float(text)
    return text


def evaluate_expression(expression: str, variables: Dict[str, Any]) -> Any:
    """
    Substitute ``${name}`` placeholders and coerce the result.

    Args:
        expression: Template text
        variables: Variable bindings to substitute

    Returns:
        ``True``/``False`` for ``"true"``/``"false"``, an int or float for
        numeric text, otherwise the substituted string
    """
    result = expression
    for name, value in variables.items():
        pattern = re.compile(r"\$\{" + re.escape(name) + r"\}")
        replacement = stringify(value)
        result = pattern.sub(lambda _match: replacement, result)
    return coerce(result)
