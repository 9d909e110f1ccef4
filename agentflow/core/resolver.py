"""Resolution of declared step inputs into concrete values."""

from typing import Any, Dict

from ..models.core import LiteralInput, VariableInput, ExpressionInput
from .exceptions import UnresolvedVariableError
from .expressions import ExpressionEvaluator, evaluate_expression


class InputResolver:
    """
    Turns a StepInput into a value using a variable bindings snapshot.

    Resolution is a pure read: the bindings are never modified.

    Args:
        evaluator: Expression evaluator used for expression inputs
        strict_variables: Raise UnresolvedVariableError for unbound variables
            instead of resolving them to None
    """

    def __init__(self, evaluator: ExpressionEvaluator = evaluate_expression, strict_variables: bool = False):
        self.evaluator = evaluator
        self.strict_variables = strict_variables

    def resolve(self, step_input, variables: Dict[str, Any]) -> Any:
        if isinstance(step_input, LiteralInput):
            return step_input.value
        if isinstance(step_input, VariableInput):
            if step_input.name not in variables and self.strict_variables:
                raise UnresolvedVariableError(step_input.name)
            return variables.get(step_input.name)
        if isinstance(step_input, ExpressionInput):
            return self.evaluator(step_input.expression, variables)
        raise TypeError(f"Unsupported step input: {type(step_input).__name__}")
