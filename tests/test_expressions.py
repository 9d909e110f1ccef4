"""Tests for the templating evaluator and input resolution."""

import pytest

from agentflow.core.exceptions import UnresolvedVariableError
from agentflow.core.expressions import coerce, evaluate_expression, stringify
from agentflow.core.resolver import InputResolver
from agentflow.models.core import ExpressionInput, LiteralInput, VariableInput


class TestEvaluateExpression:
    """Test ${name} substitution and coercion."""

    def test_substitutes_every_placeholder(self):
        result = evaluate_expression("Hello ${name}, you are ${age}", {"name": "Ada", "age": 36})
        assert result == "Hello Ada, you are 36"

    def test_repeated_placeholder(self):
        assert evaluate_expression("${x}-${x}", {"x": "a"}) == "a-a"

    def test_unbound_placeholders_are_left_alone(self):
        assert evaluate_expression("Hi ${missing}", {"other": 1}) == "Hi ${missing}"

    def test_boolean_text_is_coerced(self):
        assert evaluate_expression("${flag}", {"flag": True}) is True
        assert evaluate_expression("${flag}", {"flag": False}) is False
        assert evaluate_expression("true", {}) is True

    def test_numeric_text_is_coerced(self):
        assert evaluate_expression("${n}", {"n": 42}) == 42
        assert evaluate_expression("${n}", {"n": 2.5}) == 2.5
        assert evaluate_expression("${n}", {"n": 3.0}) == 3
        assert evaluate_expression("-7", {}) == -7

    def test_plain_text_is_returned_as_string(self):
        assert evaluate_expression("just text", {}) == "just text"
        assert evaluate_expression("", {}) == ""

    def test_structured_values_are_rendered_as_json(self):
        result = evaluate_expression("data=${data}", {"data": {"a": [1, 2]}})
        assert result == 'data={"a": [1, 2]}'

    def test_none_renders_as_null(self):
        assert evaluate_expression("value: ${v}", {"v": None}) == "value: null"

    def test_regex_characters_in_names_and_values(self):
        variables = {"$input": "x", "a.b": "$1\\g<0>"}
        assert evaluate_expression("${$input}/${a.b}", variables) == "x/$1\\g<0>"

    def test_variables_are_not_modified(self):
        variables = {"items": [1, 2]}
        evaluate_expression("${items}", variables)
        assert variables == {"items": [1, 2]}


class TestHelpers:
    """Test stringify and coerce."""

    @pytest.mark.parametrize("value, expected", [
        (None, "null"),
        (True, "true"),
        (False, "false"),
        (1.0, "1"),
        (1.5, "1.5"),
        ([1, "a"], '[1, "a"]'),
        ("text", "text"),
    ])
    def test_stringify(self, value, expected):
        assert stringify(value) == expected

    @pytest.mark.parametrize("text, expected", [
        ("true", True),
        ("false", False),
        ("10", 10),
        ("+3", 3),
        ("1e3", 1000.0),
        (".5", 0.5),
        ("True", "True"),
        ("1.2.3", "1.2.3"),
        ("12abc", "12abc"),
    ])
    def test_coerce(self, text, expected):
        assert coerce(text) == expected
        assert type(coerce(text)) is type(expected)


class TestInputResolver:
    """Test resolution of literal, variable and expression inputs."""

    def test_literal(self):
        resolver = InputResolver()
        assert resolver.resolve(LiteralInput(value={"k": 1}), {}) == {"k": 1}

    def test_variable(self):
        resolver = InputResolver()
        assert resolver.resolve(VariableInput(name="x"), {"x": [1]}) == [1]

    def test_missing_variable_is_none_when_lenient(self):
        resolver = InputResolver()
        assert resolver.resolve(VariableInput(name="x"), {}) is None

    def test_missing_variable_raises_when_strict(self):
        resolver = InputResolver(strict_variables=True)
        with pytest.raises(UnresolvedVariableError) as exc_info:
            resolver.resolve(VariableInput(name="x"), {})
        assert exc_info.value.message == "Variable not found: x"

    def test_bound_none_is_not_missing_when_strict(self):
        resolver = InputResolver(strict_variables=True)
        assert resolver.resolve(VariableInput(name="x"), {"x": None}) is None

    def test_expression_uses_evaluator(self):
        calls = []

        def evaluator(expression, variables):
            calls.append((expression, dict(variables)))
            return "evaluated"

        resolver = InputResolver(evaluator)
        assert resolver.resolve(ExpressionInput(expression="${a}"), {"a": 1}) == "evaluated"
        assert calls == [("${a}", {"a": 1})]

    def test_expression_with_default_evaluator(self):
        resolver = InputResolver()
        assert resolver.resolve(ExpressionInput(expression="${a}!"), {"a": "hi"}) == "hi!"
